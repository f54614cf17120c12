"""
Credential resolution — account id → (ig_user_id, access token).

Tokens live in an external token service; this module only decides whether an
account may act at all and fetches its current token right before a call.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import requests

from oversight.config import TOKEN_SERVICE_URL, TOKEN_SERVICE_KEY, REQUEST_TIMEOUT_SECONDS
from oversight.database import get_session
from oversight.services.account_store import AccountStore

logger = logging.getLogger('services.credentials')


class AuthError(Exception):
    """Account is unknown, disconnected, or has no usable token."""


@dataclass(frozen=True)
class Credential:
    ig_user_id: str
    access_token: str

    def __repr__(self):
        return f"Credential(ig_user_id={self.ig_user_id!r}, access_token='***')"


class CredentialResolver(ABC):

    @abstractmethod
    def resolve(self, account_id) -> Credential:
        """Return a usable credential or raise AuthError."""


class TokenServiceResolver(CredentialResolver):
    """
    Checks the account's connection flag, then asks the token service.

    A 401/403/404 from the token service means the account has no valid
    token (AuthError); any other failure propagates and is retried as a
    transient error.
    """

    def __init__(self, base_url=None, service_key=None, session_factory=None,
                 accounts=None, http=None, timeout=REQUEST_TIMEOUT_SECONDS):
        self.base_url = (base_url or TOKEN_SERVICE_URL).rstrip('/')
        self.service_key = service_key if service_key is not None else TOKEN_SERVICE_KEY
        self.session_factory = session_factory or get_session
        self.accounts = accounts or AccountStore()
        self.http = http or requests.Session()
        self.timeout = timeout

    def resolve(self, account_id) -> Credential:
        session = self.session_factory()
        try:
            account = self.accounts.get(session, account_id)
            if account is None:
                raise AuthError(f"Business account not found: {account_id}")
            if not account.is_connected:
                raise AuthError(f"Business account {account_id} is disconnected")
            ig_user_id = account.instagram_business_id
        finally:
            session.close()

        headers = {'Accept': 'application/json'}
        if self.service_key:
            headers['X-Service-Key'] = self.service_key

        response = self.http.get(f'{self.base_url}/tokens/{account_id}',
                                 headers=headers, timeout=self.timeout)
        if response.status_code in (401, 403, 404):
            logger.error("Token service refused account %s (%d)", account_id, response.status_code)
            raise AuthError(f"No valid token for account {account_id}")
        response.raise_for_status()

        token = (response.json() or {}).get('access_token')
        if not token:
            raise AuthError(f"Token service returned no token for account {account_id}")
        return Credential(ig_user_id=str(ig_user_id), access_token=token)
