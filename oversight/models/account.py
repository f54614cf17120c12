"""
AgentAccount — the business account a job acts on behalf of.

Read-only from the core's perspective except for the connection flag (flipped
on auth_failure) and the shared rate-limit cool-down.
"""
from sqlalchemy import Column, Text, Boolean, DateTime

from oversight.database import Base
from oversight.time_utils import utcnow


class AgentAccount(Base):
    __tablename__ = 'agent_accounts'

    id = Column(Text, primary_key=True)
    instagram_business_id = Column(Text, nullable=False)
    username = Column(Text, default='')
    is_connected = Column(Boolean, nullable=False, default=True)
    connection_status = Column(Text, nullable=False, default='active')
    rate_limited_until = Column(DateTime, nullable=True)
    disconnected_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'instagram_business_id': self.instagram_business_id,
            'username': self.username,
            'is_connected': self.is_connected,
            'connection_status': self.connection_status,
            'rate_limited_until': self.rate_limited_until.isoformat() if self.rate_limited_until else None,
        }
