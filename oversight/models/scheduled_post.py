"""
ScheduledPost — agent-authored content awaiting operator sign-off.

pending → approved | rejected; approved → publishing → published | failed.
"""
import uuid

from sqlalchemy import Column, Text, DateTime, JSON

from oversight.database import Base
from oversight.time_utils import utcnow, isoformat_or_none


class ScheduledPost(Base):
    __tablename__ = 'scheduled_posts'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(Text, nullable=False, index=True)
    status = Column(Text, nullable=False, default='pending')
    caption = Column(Text, default='')
    image_url = Column(Text, nullable=False)
    media_type = Column(Text, nullable=False, default='IMAGE')
    scheduled_time = Column(DateTime, nullable=True)
    agent_modifications = Column(JSON, nullable=True)
    selection_factors = Column(JSON, nullable=True)
    job_id = Column(Text, nullable=True)
    instagram_media_id = Column(Text, nullable=True)
    published_at = Column(DateTime, nullable=True)
    reviewed_by = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'account_id': self.account_id,
            'status': self.status,
            'caption': self.caption,
            'image_url': self.image_url,
            'media_type': self.media_type,
            'scheduled_time': isoformat_or_none(self.scheduled_time),
            'agent_modifications': self.agent_modifications,
            'selection_factors': self.selection_factors,
            'job_id': self.job_id,
            'instagram_media_id': self.instagram_media_id,
            'published_at': isoformat_or_none(self.published_at),
            'reviewed_by': self.reviewed_by,
            'reviewed_at': isoformat_or_none(self.reviewed_at),
            'rejection_reason': self.rejection_reason,
            'error': self.error,
            'created_at': isoformat_or_none(self.created_at),
        }
