"""
Helpers shared by the API blueprints — pagination, filters, service wiring.
"""
from flask import current_app, jsonify, request

from oversight.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from oversight.database import get_session


def session_factory():
    """Session factory for this app; tests swap it through app.config."""
    return current_app.config.get('SESSION_FACTORY') or get_session


def page_args():
    """(page, per_page, offset) from the query string, clamped to sane bounds."""
    page = max(request.args.get('page', 1, type=int) or 1, 1)
    per_page = request.args.get('per_page', DEFAULT_PAGE_SIZE, type=int) or DEFAULT_PAGE_SIZE
    per_page = min(max(per_page, 1), MAX_PAGE_SIZE)
    return page, per_page, (page - 1) * per_page


def paginated(items, total, page, per_page):
    return jsonify({
        'items': items,
        'total': total,
        'page': page,
        'per_page': per_page,
    })


def bool_arg(name):
    """Tri-state boolean query arg: None when absent."""
    raw = request.args.get(name)
    if raw is None or raw == '':
        return None
    return raw.lower() in ('1', 'true', 'yes')


def body():
    return request.get_json(silent=True) or {}


def operator_name(data=None):
    """Who is acting: explicit body field, then X-Operator header."""
    data = data if data is not None else body()
    return data.get('reviewer') or request.headers.get('X-Operator') or 'operator'
