"""
Audit logger — leaf sink for every state transition.

record_transition() only adds the entry to the caller's session; the caller
commits it together with the transition it describes, so an entry exists if
and only if the change it records was persisted.
"""
import logging

from sqlalchemy import select, func

from oversight.models.audit import AuditLogEntry

logger = logging.getLogger('services.audit')


def record_transition(session, table_name, record_id, action, changes,
                      event_type=None, details=None, actor='system', success=True, at=None):
    """
    Add one immutable audit entry to `session`.

    changes maps field → {'from': old, 'to': new}; details carries context such
    as the raw provider error or the id of an alert raised by this transition.
    """
    entry = AuditLogEntry(
        event_type=event_type or f'{table_name}.{action}',
        action=action,
        table_name=table_name,
        record_id=str(record_id),
        changes=changes or {},
        details=details,
        actor=actor or 'system',
        success=success,
    )
    if at is not None:
        entry.created_at = at
    session.add(entry)
    return entry


def status_change(old, new):
    """Shorthand for the most common `changes` payload."""
    return {'status': {'from': _raw(old), 'to': _raw(new)}}


def list_entries(session, table_name=None, record_id=None, action=None, limit=50, offset=0):
    """Newest-first page of audit entries plus the unfiltered-by-page total."""
    query = select(AuditLogEntry)
    if table_name:
        query = query.where(AuditLogEntry.table_name == table_name)
    if record_id:
        query = query.where(AuditLogEntry.record_id == str(record_id))
    if action:
        query = query.where(AuditLogEntry.action == action)

    total = session.scalar(select(func.count()).select_from(query.subquery()))
    rows = session.scalars(
        query.order_by(AuditLogEntry.id.desc()).limit(limit).offset(offset)
    ).all()
    return rows, total


def _raw(value):
    return getattr(value, 'value', value)
