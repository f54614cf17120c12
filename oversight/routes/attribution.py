"""
Attribution routes — review queue for inferred sales credit + model weights.
"""
import logging
from flask import Blueprint, jsonify, request

from oversight.errors import OversightError
from oversight.routes.common import (
    session_factory, page_args, paginated, bool_arg, body, operator_name,
)
from oversight.services.attribution_review import AttributionReviewService

logger = logging.getLogger('routes.attribution')

bp = Blueprint('attribution', __name__)


def _service():
    return AttributionReviewService(session_factory=session_factory())


@bp.route('/api/attribution-reviews')
def list_reviews():
    page, per_page, offset = page_args()
    items, total = _service().list_reviews(
        status=request.args.get('status'),
        account_id=request.args.get('account_id'),
        fraud_risk=bool_arg('fraud_risk'),
        limit=per_page, offset=offset,
    )
    return paginated(items, total, page, per_page)


@bp.route('/api/attribution-reviews/<review_id>/approve', methods=['POST'])
def approve_review(review_id):
    """Approve an attribution. Repeating an approval is a no-op."""
    try:
        return jsonify(_service().approve(review_id, reviewer=operator_name()))
    except OversightError:
        raise
    except Exception as e:
        logger.exception("Approve of review %s failed", review_id)
        return jsonify({'error': str(e)}), 500


@bp.route('/api/attribution-reviews/<review_id>/reject', methods=['POST'])
def reject_review(review_id):
    data = body()
    try:
        return jsonify(_service().reject(review_id, reviewer=operator_name(data),
                                         reason=data.get('reason')))
    except OversightError:
        raise
    except Exception as e:
        logger.exception("Reject of review %s failed", review_id)
        return jsonify({'error': str(e)}), 500


@bp.route('/api/attribution-models/<account_id>')
def get_model(account_id):
    return jsonify(_service().get_model(account_id))
