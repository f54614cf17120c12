"""
Instagram Graph API client — the five outbound calls the dispatcher makes.

Success returns the parsed JSON body. A non-2xx response raises ProviderError
carrying the HTTP status, the provider code/subcode and the raw body, which is
everything the error classifier needs. Network failures propagate as
requests.RequestException (no HTTP status).
"""
import logging
import requests
from typing import Any, Dict, Optional

from oversight.config import GRAPH_API_BASE, REQUEST_TIMEOUT_SECONDS, PUBLISH_TIMEOUT_SECONDS
from oversight.services.error_classifier import parse_provider_error

logger = logging.getLogger('services.provider')


class ProviderError(Exception):
    """Graph API answered with a non-2xx status."""

    def __init__(self, http_status: int, body: Any, headers: Optional[Dict[str, str]] = None):
        self.http_status = http_status
        self.body = body
        self.headers = dict(headers or {})
        self.code, self.subcode, self.provider_message = parse_provider_error(body)
        super().__init__(
            f"Graph API {http_status}"
            + (f" (code {self.code})" if self.code is not None else '')
            + (f": {self.provider_message}" if self.provider_message else '')
        )


class GraphApiClient:
    """Thin wrapper over requests.Session; one instance is shared by the worker pool."""

    def __init__(self, base_url=None, session=None,
                 timeout=REQUEST_TIMEOUT_SECONDS, publish_timeout=PUBLISH_TIMEOUT_SECONDS):
        self.base_url = (base_url or GRAPH_API_BASE).rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout
        self.publish_timeout = publish_timeout

    # ── Messaging ────────────────────────────────────────────────────────────

    def reply_comment(self, access_token, comment_id, text):
        return self._post(f'{comment_id}/replies', access_token,
                          params={'message': text.strip()})

    def reply_dm(self, access_token, conversation_id, text):
        return self._post(f'{conversation_id}/messages', access_token,
                          params={'message': text.strip()})

    def send_dm(self, access_token, ig_user_id, recipient_id, text):
        return self._post(f'{ig_user_id}/messages', access_token, json={
            'recipient': {'id': str(recipient_id)},
            'message': {'text': text.strip()},
        })

    # ── Publishing (two-step: container, then media_publish) ────────────────

    def create_media_container(self, access_token, ig_user_id, media_url,
                               caption='', media_type='IMAGE'):
        params = {'caption': caption or ''}
        media_type = (media_type or 'IMAGE').upper()
        if media_type in ('VIDEO', 'REELS'):
            params['video_url'] = media_url
            params['media_type'] = media_type
        else:
            params['image_url'] = media_url
        return self._post(f'{ig_user_id}/media', access_token,
                          params=params, timeout=self.publish_timeout)

    def publish_media(self, access_token, ig_user_id, creation_id):
        return self._post(f'{ig_user_id}/media_publish', access_token,
                          params={'creation_id': creation_id}, timeout=self.publish_timeout)

    # ── Transport ────────────────────────────────────────────────────────────

    def _post(self, path, access_token, params=None, json=None, timeout=None):
        url = f'{self.base_url}/{path}'
        query = dict(params or {})
        query['access_token'] = access_token

        response = self.session.post(url, params=query, json=json,
                                     timeout=timeout or self.timeout)
        body = _json_or_text(response)
        if not 200 <= response.status_code < 300:
            logger.warning("POST %s → %d: %s", path, response.status_code, body)
            raise ProviderError(response.status_code, body, response.headers)

        logger.debug("POST %s → %d", path, response.status_code)
        return body if isinstance(body, dict) else {}


def result_id(body: Dict[str, Any]) -> Optional[str]:
    """Provider id of whatever a call created (send_dm answers with message_id)."""
    value = body.get('id') or body.get('message_id')
    return str(value) if value is not None else None


def _json_or_text(response):
    try:
        return response.json()
    except ValueError:
        return response.text
