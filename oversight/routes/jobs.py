"""
Job routes — outbound queue inspection, enqueue, cancel, DLQ requeue.
"""
import logging
from flask import Blueprint, jsonify, request

from oversight.errors import OversightError
from oversight.models.enums import JobStatus
from oversight.routes.common import session_factory, page_args, paginated, body, operator_name
from oversight.services.queue_store import QueueStore

logger = logging.getLogger('routes.jobs')

bp = Blueprint('jobs', __name__)


def _store():
    return QueueStore(session_factory=session_factory())


@bp.route('/api/jobs')
def list_jobs():
    """List jobs, filterable by status, action_type, account_id, priority."""
    page, per_page, offset = page_args()
    items, total = _store().list_jobs(
        status=request.args.get('status'),
        action_type=request.args.get('action_type'),
        account_id=request.args.get('account_id'),
        priority=request.args.get('priority'),
        limit=per_page, offset=offset,
    )
    return paginated(items, total, page, per_page)


@bp.route('/api/jobs/summary')
def jobs_summary():
    """Counts per action_type and status."""
    return jsonify(_store().status_summary(account_id=request.args.get('account_id')))


@bp.route('/api/jobs/dlq')
def list_dlq():
    """Dead-lettered jobs, most recently failed first."""
    page, per_page, offset = page_args()
    items, total = _store().list_jobs(
        status=JobStatus.DLQ.value,
        action_type=request.args.get('action_type'),
        account_id=request.args.get('account_id'),
        limit=per_page, offset=offset,
    )
    return paginated(items, total, page, per_page)


@bp.route('/api/jobs/<job_id>')
def get_job(job_id):
    return jsonify(_store().get_job(job_id))


@bp.route('/api/jobs', methods=['POST'])
def enqueue_job():
    """Enqueue an outbound action for the dispatcher."""
    data = body()
    try:
        store = _store()
        job_id = store.enqueue(
            data.get('account_id'),
            data.get('action_type'),
            data.get('payload'),
            priority=data.get('priority') or 'normal',
            actor=data.get('actor') or 'agent',
        )
        return jsonify(store.get_job(job_id)), 201
    except OversightError:
        raise
    except Exception as e:
        logger.exception("Enqueue failed")
        return jsonify({'error': str(e)}), 500


@bp.route('/api/jobs/<job_id>/cancel', methods=['POST'])
def cancel_job(job_id):
    """Cancel a job that no worker has claimed yet."""
    try:
        job = _store().cancel(job_id, actor=operator_name())
        return jsonify({'cancelled': True, 'job': job})
    except OversightError:
        raise
    except Exception as e:
        logger.exception("Cancel of job %s failed", job_id)
        return jsonify({'error': str(e)}), 500


@bp.route('/api/jobs/<job_id>/requeue', methods=['POST'])
def requeue_job(job_id):
    """Manual operator override: put a DLQ job back with a fresh attempt budget."""
    try:
        return jsonify(_store().requeue(job_id, actor=operator_name()))
    except OversightError:
        raise
    except Exception as e:
        logger.exception("Requeue of job %s failed", job_id)
        return jsonify({'error': str(e)}), 500
