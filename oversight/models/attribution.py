"""
Sales attribution records, the human review queue, and per-account model weights.

SalesAttribution rows are written by the external scoring collaborator; a
review row exists only when the inference needs a human checkpoint.
AttributionModel.weights are UPSERTed by the learning job, never by reviews.
"""
import uuid

from sqlalchemy import Column, Text, Float, Boolean, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship

from oversight.database import Base
from oversight.time_utils import utcnow, isoformat_or_none


def _uuid():
    return str(uuid.uuid4())


class SalesAttribution(Base):
    __tablename__ = 'sales_attributions'

    id = Column(Text, primary_key=True, default=_uuid)
    account_id = Column(Text, nullable=False, index=True)
    order_id = Column(Text, nullable=False)
    order_value = Column(Float, default=0.0)
    attributed_media_id = Column(Text, nullable=True)
    model_scores = Column(JSON, default=dict)      # first_touch, last_touch, linear, time_decay, combined
    journey_timeline = Column(JSON, default=list)  # ordered touchpoints
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'account_id': self.account_id,
            'order_id': self.order_id,
            'order_value': self.order_value,
            'attributed_media_id': self.attributed_media_id,
            'model_scores': self.model_scores or {},
            'journey_timeline': self.journey_timeline or [],
            'created_at': isoformat_or_none(self.created_at),
        }


class AttributionReview(Base):
    __tablename__ = 'attribution_review_queue'

    id = Column(Text, primary_key=True, default=_uuid)
    attribution_id = Column(Text, ForeignKey('sales_attributions.id'), nullable=False)
    account_id = Column(Text, nullable=False, index=True)
    review_status = Column(Text, nullable=False, default='pending')
    fraud_risk = Column(Boolean, nullable=False, default=False)
    review_reason = Column(Text, nullable=True)
    reviewed_by = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    attribution = relationship('SalesAttribution')

    def to_dict(self):
        return {
            'id': self.id,
            'attribution_id': self.attribution_id,
            'account_id': self.account_id,
            'review_status': self.review_status,
            'fraud_risk': self.fraud_risk,
            'review_reason': self.review_reason,
            'reviewed_by': self.reviewed_by,
            'reviewed_at': isoformat_or_none(self.reviewed_at),
            'created_at': isoformat_or_none(self.created_at),
            'attribution': self.attribution.to_dict() if self.attribution else None,
        }


class AttributionModel(Base):
    __tablename__ = 'attribution_models'

    account_id = Column(Text, primary_key=True)
    weights = Column(JSON, nullable=False)
    performance_metrics = Column(JSON, nullable=True)
    last_trained_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'account_id': self.account_id,
            'weights': self.weights,
            'performance_metrics': self.performance_metrics,
            'last_trained_at': isoformat_or_none(self.last_trained_at),
        }
