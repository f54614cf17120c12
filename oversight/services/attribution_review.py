"""
Attribution review — human checkpoint on inferred revenue credit.

    pending ──approve──▶ approved
       └────reject───▶ rejected

Rows arrive from the external scoring collaborator already `pending`. Repeating
the decision a row already carries is a no-op (slow dashboards double-submit);
flipping a decided row is an IllegalTransitionError.

Model weights are never touched by a review. A separately scheduled learning
job reads reviewed_outcomes() and writes weights through apply_learned_weights();
how it computes them is a pluggable policy.
"""
import logging

from sqlalchemy import select, func, update

from oversight.config import DEFAULT_ATTRIBUTION_WEIGHTS
from oversight.database import get_session, transaction
from oversight.errors import IllegalTransitionError, NotFoundError, PayloadValidationError
from oversight.models.attribution import AttributionModel, AttributionReview, SalesAttribution
from oversight.models.enums import ReviewStatus
from oversight.services.audit import record_transition, status_change
from oversight.time_utils import utcnow

logger = logging.getLogger('services.attribution_review')

TABLE = 'attribution_review_queue'
MODEL_NAMES = tuple(DEFAULT_ATTRIBUTION_WEIGHTS)

TRANSITIONS = {
    ReviewStatus.PENDING: frozenset({ReviewStatus.APPROVED, ReviewStatus.REJECTED}),
    ReviewStatus.APPROVED: frozenset(),
    ReviewStatus.REJECTED: frozenset(),
}

if set(TRANSITIONS) != set(ReviewStatus):
    raise RuntimeError("ReviewStatus transition table is not exhaustive")


class AttributionReviewService:

    def __init__(self, session_factory=None, clock=None):
        self.session_factory = session_factory or get_session
        self.clock = clock or utcnow

    def _transaction(self):
        return transaction(self.session_factory)

    # ── Review decisions ─────────────────────────────────────────────────────

    def approve(self, review_id, reviewer='operator'):
        return self._decide(review_id, ReviewStatus.APPROVED, reviewer)

    def reject(self, review_id, reviewer='operator', reason=None):
        return self._decide(review_id, ReviewStatus.REJECTED, reviewer, reason)

    def _decide(self, review_id, target, reviewer, reason=None):
        now = self.clock()
        with self._transaction() as session:
            review = session.get(AttributionReview, review_id)
            if review is None:
                raise NotFoundError('AttributionReview', review_id)

            current = ReviewStatus(review.review_status)
            if current is target:
                return self._repeat(review, target, reviewer)
            if target not in TRANSITIONS[current]:
                raise IllegalTransitionError('AttributionReview', review_id,
                                             current.value, target.value)

            values = {'review_status': target.value, 'reviewed_by': reviewer, 'reviewed_at': now}
            if reason:
                values['review_reason'] = reason
            result = session.execute(
                update(AttributionReview)
                .where(AttributionReview.id == review.id,
                       AttributionReview.review_status == current.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Another reviewer decided first
                session.refresh(review)
                decided = ReviewStatus(review.review_status)
                if decided is target:
                    return self._repeat(review, target, reviewer)
                raise IllegalTransitionError('AttributionReview', review_id,
                                             decided.value, target.value)

            session.refresh(review)
            record_transition(
                session, TABLE, review.id, target.value, status_change(current, target),
                event_type=f'attribution_{target.value}', actor=reviewer, at=now,
                details={'attribution_id': review.attribution_id,
                         'fraud_risk': review.fraud_risk, 'reason': reason},
            )
            result = review.to_dict()

        logger.info("Attribution review %s %s by %s", review_id, target.value, reviewer)
        return result

    @staticmethod
    def _repeat(review, target, reviewer):
        logger.info("Review %s already %s; ignoring repeat from %s",
                    review.id, target.value, reviewer)
        return review.to_dict()

    # ── Reads ────────────────────────────────────────────────────────────────

    def get_review(self, review_id):
        session = self.session_factory()
        try:
            review = session.get(AttributionReview, review_id)
            if review is None:
                raise NotFoundError('AttributionReview', review_id)
            return review.to_dict()
        finally:
            session.close()

    def list_reviews(self, status=None, account_id=None, fraud_risk=None, limit=50, offset=0):
        session = self.session_factory()
        try:
            query = select(AttributionReview)
            if status:
                query = query.where(AttributionReview.review_status == status)
            if account_id:
                query = query.where(AttributionReview.account_id == account_id)
            if fraud_risk is not None:
                query = query.where(AttributionReview.fraud_risk == fraud_risk)

            total = session.scalar(select(func.count()).select_from(query.subquery()))
            rows = session.scalars(
                query.order_by(AttributionReview.created_at.desc()).limit(limit).offset(offset)
            ).all()
            return [review.to_dict() for review in rows], total
        finally:
            session.close()

    def get_model(self, account_id):
        """Current weights for an account, or the defaults if it was never trained."""
        session = self.session_factory()
        try:
            model = session.get(AttributionModel, account_id)
            if model is None:
                return {
                    'account_id': account_id,
                    'weights': dict(DEFAULT_ATTRIBUTION_WEIGHTS),
                    'performance_metrics': None,
                    'last_trained_at': None,
                    'is_default': True,
                }
            return {**model.to_dict(), 'is_default': False}
        finally:
            session.close()

    # ── Learning job surface ─────────────────────────────────────────────────

    def reviewed_outcomes(self, account_id, since=None):
        """
        Aggregate decided reviews for the learning job.

        Returns counts per decision and, per attribution model, the mean score
        the model gave to approved and to rejected attributions.
        """
        session = self.session_factory()
        try:
            query = (
                select(AttributionReview.review_status, SalesAttribution.model_scores)
                .join(SalesAttribution, SalesAttribution.id == AttributionReview.attribution_id)
                .where(AttributionReview.account_id == account_id,
                       AttributionReview.review_status != ReviewStatus.PENDING.value)
            )
            if since is not None:
                query = query.where(AttributionReview.reviewed_at >= since)
            rows = session.execute(query).all()
        finally:
            session.close()

        counts = {ReviewStatus.APPROVED.value: 0, ReviewStatus.REJECTED.value: 0}
        sums = {name: {status: 0.0 for status in counts} for name in MODEL_NAMES}
        for status, scores in rows:
            counts[status] += 1
            for name in MODEL_NAMES:
                sums[name][status] += float((scores or {}).get(name) or 0.0)

        model_scores = {
            name: {
                f'{status}_mean': (sums[name][status] / counts[status]) if counts[status] else None
                for status in counts
            }
            for name in MODEL_NAMES
        }
        return {'account_id': account_id, 'counts': counts, 'model_scores': model_scores}

    def apply_learned_weights(self, account_id, weights, performance_metrics=None):
        """UPSERT an account's model weights. Weights must be known and non-negative."""
        if not isinstance(weights, dict) or not weights:
            raise PayloadValidationError("weights must be a non-empty object")
        unknown = sorted(set(weights) - set(MODEL_NAMES))
        if unknown:
            raise PayloadValidationError(f"Unknown attribution models: {', '.join(unknown)}")
        for name, value in weights.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise PayloadValidationError(f"weight {name} must be a non-negative number")

        merged = {name: float(weights.get(name, 0.0)) for name in MODEL_NAMES}
        total = sum(merged.values())
        if abs(total - 1.0) > 0.01:
            logger.warning("Weights for %s sum to %.3f, not 1.0", account_id, total)

        now = self.clock()
        with self._transaction() as session:
            model = session.get(AttributionModel, account_id)
            previous = dict(model.weights) if model is not None else None
            if model is None:
                model = AttributionModel(account_id=account_id)
                session.add(model)
            model.weights = merged
            model.performance_metrics = performance_metrics
            model.last_trained_at = now
            model.updated_at = now

            record_transition(
                session, 'attribution_models', account_id, 'weights_updated',
                {'weights': {'from': previous, 'to': merged}},
                event_type='attribution_weights_updated', actor='learning_job', at=now,
                details={'performance_metrics': performance_metrics},
            )
            result = model.to_dict()

        logger.info("Attribution weights for %s updated: %s", account_id, merged)
        return result


def run_learning_job(policy, account_id, since=None, service=None):
    """
    One learning pass for an account.

    policy(current_weights, outcomes) returns (weights, metrics), or None to
    leave the weights unchanged.
    """
    service = service or AttributionReviewService()
    current = service.get_model(account_id)['weights']
    outcomes = service.reviewed_outcomes(account_id, since=since)
    result = policy(current, outcomes)
    if result is None:
        logger.info("Learning policy kept weights for %s", account_id)
        return None
    weights, metrics = result
    return service.apply_learned_weights(account_id, weights, metrics)
