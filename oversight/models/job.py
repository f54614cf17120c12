"""
OutboundJob — one queued call against the Graph API.

Claimed exclusively by a worker (claim_owner + claimed_at), retried with
backoff via scheduled_for, dead-lettered once its category's ceiling is hit.
"""
import uuid

from sqlalchemy import Column, Text, Integer, DateTime, JSON, Index

from oversight.database import Base
from oversight.time_utils import utcnow, isoformat_or_none


def new_job_id():
    return str(uuid.uuid4())


class OutboundJob(Base):
    __tablename__ = 'outbound_queue_jobs'

    id = Column(Text, primary_key=True, default=new_job_id)
    account_id = Column(Text, nullable=False, index=True)
    action_type = Column(Text, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    priority = Column(Text, nullable=False, default='normal')
    status = Column(Text, nullable=False, default='pending')
    attempt_count = Column(Integer, nullable=False, default=0)
    scheduled_for = Column(DateTime, nullable=False, default=utcnow)
    claim_owner = Column(Text, nullable=True)
    claimed_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    error_category = Column(Text, nullable=True)
    raw_error = Column(JSON, nullable=True)  # provider body, verbatim
    provider_result_id = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    finished_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('ix_outbound_jobs_due', 'status', 'priority', 'scheduled_for', 'created_at'),
        Index('ix_outbound_jobs_account_status', 'account_id', 'status'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'account_id': self.account_id,
            'action_type': self.action_type,
            'payload': self.payload,
            'priority': self.priority,
            'status': self.status,
            'attempt_count': self.attempt_count,
            'scheduled_for': isoformat_or_none(self.scheduled_for),
            'claim_owner': self.claim_owner,
            'claimed_at': isoformat_or_none(self.claimed_at),
            'last_error': self.last_error,
            'error_category': self.error_category,
            'raw_error': self.raw_error,
            'provider_result_id': self.provider_result_id,
            'created_at': isoformat_or_none(self.created_at),
            'updated_at': isoformat_or_none(self.updated_at),
            'finished_at': isoformat_or_none(self.finished_at),
        }
