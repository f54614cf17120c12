"""
AuditLogEntry — append-only record of every state transition.

table_name + record_id + changes are enough to reconstruct an entity's history
without replaying application logic.
"""
from sqlalchemy import Column, Integer, Text, Boolean, DateTime, JSON, event

from oversight.database import Base
from oversight.time_utils import utcnow, isoformat_or_none


class AuditLogEntry(Base):
    __tablename__ = 'audit_log'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(Text, nullable=False)
    action = Column(Text, nullable=False)
    table_name = Column(Text, nullable=False)
    record_id = Column(Text, nullable=False)
    changes = Column(JSON, nullable=False, default=dict)
    details = Column(JSON, nullable=True)
    actor = Column(Text, nullable=False, default='system')
    success = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'event_type': self.event_type,
            'action': self.action,
            'table_name': self.table_name,
            'record_id': self.record_id,
            'changes': self.changes,
            'details': self.details,
            'actor': self.actor,
            'success': self.success,
            'created_at': isoformat_or_none(self.created_at),
        }


@event.listens_for(AuditLogEntry, 'before_update')
def _reject_update(mapper, connection, target):
    raise ValueError("audit_log is append-only")


@event.listens_for(AuditLogEntry, 'before_delete')
def _reject_delete(mapper, connection, target):
    raise ValueError("audit_log is append-only")
