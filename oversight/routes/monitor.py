"""
Monitor routes — system alerts, audit trail, health check.
"""
import logging
from flask import Blueprint, jsonify, request
from sqlalchemy import text

from oversight.routes.common import session_factory, page_args, paginated, bool_arg
from oversight.services.alerts import list_alerts
from oversight.services.audit import list_entries

logger = logging.getLogger('routes.monitor')

bp = Blueprint('monitor', __name__)


@bp.route('/health')
def health_check():
    """Health check endpoint."""
    session = session_factory()()
    try:
        session.execute(text('SELECT 1'))
        return jsonify({"status": "healthy", "database": "ok"}), 200
    except Exception as e:
        logger.error("Health check: database unreachable: %s", e)
        return jsonify({"status": "unhealthy", "database": str(e)}), 503
    finally:
        session.close()


@bp.route('/api/alerts')
def alerts():
    page, per_page, offset = page_args()
    session = session_factory()()
    try:
        rows, total = list_alerts(
            session,
            alert_type=request.args.get('type') or request.args.get('alert_type'),
            account_id=request.args.get('account_id'),
            resolved=bool_arg('resolved'),
            limit=per_page, offset=offset,
        )
        return paginated([row.to_dict() for row in rows], total, page, per_page)
    finally:
        session.close()


@bp.route('/api/audit-log')
def audit_log():
    """Audit trail, newest first; filter by table_name, record_id, action."""
    page, per_page, offset = page_args()
    session = session_factory()()
    try:
        rows, total = list_entries(
            session,
            table_name=request.args.get('table_name'),
            record_id=request.args.get('record_id'),
            action=request.args.get('action'),
            limit=per_page, offset=offset,
        )
        return paginated([row.to_dict() for row in rows], total, page, per_page)
    finally:
        session.close()
