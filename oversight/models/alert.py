"""
SystemAlert — terminal signal for operator attention.

Written by the dispatcher's DLQ path, read by the dashboard.
"""
from sqlalchemy import Column, Integer, Text, Boolean, DateTime, JSON

from oversight.database import Base
from oversight.time_utils import utcnow, isoformat_or_none


class SystemAlert(Base):
    __tablename__ = 'system_alerts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_type = Column(Text, nullable=False, index=True)
    account_id = Column(Text, nullable=True, index=True)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'alert_type': self.alert_type,
            'account_id': self.account_id,
            'message': self.message,
            'details': self.details,
            'resolved': self.resolved,
            'created_at': isoformat_or_none(self.created_at),
        }
