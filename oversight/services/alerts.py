"""
System alerts — written by the DLQ path, read by the dashboard.

Like the audit sink, raise_alert() adds to the caller's session so the alert
lands atomically with the terminal job transition that caused it.
"""
import logging

from sqlalchemy import select, func

from oversight.models.alert import SystemAlert
from oversight.models.enums import AlertType

logger = logging.getLogger('services.alerts')


def raise_alert(session, alert_type, account_id, message, details=None, at=None):
    """Add a SystemAlert to `session` and flush so its id can be referenced."""
    alert_type = AlertType(alert_type)
    alert = SystemAlert(
        alert_type=alert_type.value,
        account_id=account_id,
        message=message[:1000],
        details=details or {},
        resolved=False,
    )
    if at is not None:
        alert.created_at = at
    session.add(alert)
    session.flush()
    logger.warning("Alert %s raised for account %s: %s", alert_type.value, account_id, message)
    return alert


def list_alerts(session, alert_type=None, account_id=None, resolved=None, limit=50, offset=0):
    query = select(SystemAlert)
    if alert_type:
        query = query.where(SystemAlert.alert_type == alert_type)
    if account_id:
        query = query.where(SystemAlert.account_id == account_id)
    if resolved is not None:
        query = query.where(SystemAlert.resolved == resolved)

    total = session.scalar(select(func.count()).select_from(query.subquery()))
    rows = session.scalars(
        query.order_by(SystemAlert.id.desc()).limit(limit).offset(offset)
    ).all()
    return rows, total
