"""
Content routes — review queue for agent-drafted posts.
"""
import logging
from flask import Blueprint, jsonify, request

from oversight.errors import OversightError
from oversight.routes.common import session_factory, page_args, paginated, body, operator_name
from oversight.services.content_approval import ContentApprovalService

logger = logging.getLogger('routes.content')

bp = Blueprint('content', __name__)


def _service():
    return ContentApprovalService(session_factory=session_factory())


@bp.route('/api/scheduled-posts')
def list_posts():
    page, per_page, offset = page_args()
    items, total = _service().list_posts(
        status=request.args.get('status'),
        account_id=request.args.get('account_id'),
        limit=per_page, offset=offset,
    )
    return paginated(items, total, page, per_page)


@bp.route('/api/scheduled-posts/<post_id>')
def get_post(post_id):
    return jsonify(_service().get_post(post_id))


@bp.route('/api/scheduled-posts/<post_id>/approve', methods=['POST'])
def approve_post(post_id):
    """Approve a draft; its publish job is enqueued in the same commit."""
    try:
        return jsonify(_service().approve(post_id, reviewer=operator_name()))
    except OversightError:
        raise
    except Exception as e:
        logger.exception("Approve of post %s failed", post_id)
        return jsonify({'error': str(e)}), 500


@bp.route('/api/scheduled-posts/<post_id>/reject', methods=['POST'])
def reject_post(post_id):
    data = body()
    try:
        return jsonify(_service().reject(post_id, reviewer=operator_name(data),
                                         reason=data.get('reason')))
    except OversightError:
        raise
    except Exception as e:
        logger.exception("Reject of post %s failed", post_id)
        return jsonify({'error': str(e)}), 500
