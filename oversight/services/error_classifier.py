"""
Error classifier — reduces raw Graph API failures to one of five categories.

Pure functions only. Everything downstream (retry, DLQ, alerts) reasons about
ErrorCategory and never about provider codes.

Reference: https://developers.facebook.com/docs/graph-api/guides/error-handling
"""
from typing import Any, Dict, Optional, Tuple

from oversight.config import OPERATOR_MESSAGES
from oversight.models.enums import ErrorCategory


# ── Provider error codes ─────────────────────────────────────────────────────

AUTH_FAILURE_CODES = {
    102,   # API session / key invalid
    190,   # access token invalid or expired
    463,   # session expired
    467,   # invalid access token
}

# Subcodes under 190 that signal revoked / expired / changed-password tokens
AUTH_FAILURE_SUBCODES = {458, 459, 460, 463, 464, 467}

RATE_LIMIT_CODES = {
    4,      # application request limit
    17,     # user request limit
    32,     # page request limit
    341,    # application limit reached
    613,    # calls within one hour exceeded
    80002,  # Instagram business use case rate limit
    80006,  # Messenger rate limit
}

TRANSIENT_CODES = {
    1,   # unknown API error, retry later
    2,   # service temporarily unavailable
}

PERMANENT_CODES = {
    10,     # permission denied / outside messaging window
    100,    # invalid parameter
    200,    # permissions error
    368,    # blocked for policy violation
    551,    # user not available for messaging
    9004,   # media could not be fetched
    36003,  # invalid aspect ratio
}

POLICY_VIOLATION_CODES = {368}

POLICY_VIOLATION_SUBCODES = {
    2207051,  # action blocked as spam / restricted
    2018278,  # message sent outside the allowed window
    1390008,  # content flagged by integrity checks
}

# 2207xxx subcodes are Instagram content publishing errors: bad media, size, format
_IG_PUBLISH_SUBCODE_RANGE = range(2207000, 2208000)


def classify(http_status: Optional[int], provider_error_code: Optional[int],
             provider_error_subcode: Optional[int] = None) -> ErrorCategory:
    """
    Map (HTTP status, provider code) to an ErrorCategory.

    Provider codes win over HTTP status because the Graph API returns most
    failures as HTTP 400 with the real meaning in the body. A missing status
    means no response was received at all (timeout, connection reset).
    """
    code = _as_int(provider_error_code)
    subcode = _as_int(provider_error_subcode)

    if code in AUTH_FAILURE_CODES or (code is not None and subcode in AUTH_FAILURE_SUBCODES):
        return ErrorCategory.AUTH_FAILURE
    if code in RATE_LIMIT_CODES:
        return ErrorCategory.RATE_LIMIT
    if code in TRANSIENT_CODES:
        return ErrorCategory.TRANSIENT
    if code in PERMANENT_CODES or subcode in POLICY_VIOLATION_SUBCODES:
        return ErrorCategory.PERMANENT
    if subcode is not None and subcode in _IG_PUBLISH_SUBCODE_RANGE:
        return ErrorCategory.PERMANENT

    if http_status is None:
        return ErrorCategory.TRANSIENT
    if http_status == 401:
        return ErrorCategory.AUTH_FAILURE
    if http_status == 429:
        return ErrorCategory.RATE_LIMIT
    if http_status == 408 or 500 <= http_status <= 599:
        return ErrorCategory.TRANSIENT
    if http_status in (404, 410):
        return ErrorCategory.PERMANENT
    return ErrorCategory.UNKNOWN


def is_policy_violation(provider_error_code: Optional[int],
                        provider_error_subcode: Optional[int] = None) -> bool:
    """True when a permanent failure stems from a content/policy rejection."""
    return (
        _as_int(provider_error_code) in POLICY_VIOLATION_CODES
        or _as_int(provider_error_subcode) in POLICY_VIOLATION_SUBCODES
    )


def parse_provider_error(body: Any) -> Tuple[Optional[int], Optional[int], str]:
    """
    Extract (code, subcode, message) from a Graph API error body.

    Shape: {"error": {"message": "...", "type": "OAuthException", "code": 190,
    "error_subcode": 460, "fbtrace_id": "..."}}
    """
    if not isinstance(body, dict):
        return None, None, str(body or '')[:500]
    error = body.get('error')
    if not isinstance(error, dict):
        return None, None, str(error or body)[:500]
    return (
        _as_int(error.get('code')),
        _as_int(error.get('error_subcode')),
        str(error.get('message') or error.get('error_user_msg') or '')[:500],
    )


def retry_after_seconds(headers: Optional[Dict[str, str]]) -> Optional[float]:
    """Provider-supplied backoff hint from a Retry-After header, in seconds."""
    if not headers:
        return None
    for key, value in headers.items():
        if key.lower() == 'retry-after':
            try:
                seconds = float(value)
            except (TypeError, ValueError):
                return None
            return seconds if seconds >= 0 else None
    return None


def operator_message(category) -> str:
    """One of the four operator-facing messages for a category."""
    value = category.value if isinstance(category, ErrorCategory) else str(category)
    return OPERATOR_MESSAGES.get(value, OPERATOR_MESSAGES['unknown'])


def _as_int(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
