"""
Account store — connection flag and shared rate-limit cool-down.

Every mutator takes the caller's session so the change commits atomically with
the job transition that triggered it.
"""
import logging

from sqlalchemy import select

from oversight.models.account import AgentAccount

logger = logging.getLogger('services.account_store')


class AccountStore:

    def get(self, session, account_id):
        return session.get(AgentAccount, account_id)

    def is_connected(self, session, account_id):
        account = session.get(AgentAccount, account_id)
        return bool(account and account.is_connected)

    def set_disconnected(self, session, account_id, at):
        """Flip the account to disconnected. Returns the previous flag value."""
        account = session.get(AgentAccount, account_id)
        if account is None:
            logger.warning("set_disconnected: account %s not found", account_id)
            return None
        previous = account.is_connected
        account.is_connected = False
        account.connection_status = 'disconnected'
        account.disconnected_at = at
        if previous:
            logger.error("Account %s disconnected after auth failure", account_id)
        return previous

    def mark_rate_limited(self, session, account_id, until):
        """Extend the account's cool-down to `until` (never shortens it)."""
        account = session.get(AgentAccount, account_id)
        if account is None:
            logger.warning("mark_rate_limited: account %s not found", account_id)
            return None
        if account.rate_limited_until is None or account.rate_limited_until < until:
            account.rate_limited_until = until
        logger.warning("Account %s rate-limited until %s", account_id, account.rate_limited_until)
        return account.rate_limited_until

    def cooling_down_ids(self, now):
        """Subquery of account ids whose cool-down has not expired at `now`."""
        return select(AgentAccount.id).where(AgentAccount.rate_limited_until > now)
