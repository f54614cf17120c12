"""
Dispatcher — claims due jobs, performs the Graph API call, records the result.

One run:
  1. return abandoned claims to pending (reaper)
  2. claim a batch (at most one job per account)
  3. execute the batch on a thread pool; each job ends in complete() or fail()

Provider failures are reduced to an ErrorCategory here; nothing past this
boundary looks at HTTP statuses or provider codes.
"""
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import List, Optional

import requests

from oversight.config import (
    CLAIM_TIMEOUT_SECONDS, POLL_INTERVAL_SECONDS, WORKER_BATCH_SIZE, WORKER_POOL_SIZE,
)
from oversight.errors import IllegalTransitionError, PayloadValidationError
from oversight.models.enums import ErrorCategory, JobStatus
from oversight.payloads import ReplyComment, ReplyDm, SendDm, PublishPost, RepostUgc, parse_payload
from oversight.services.credentials import AuthError
from oversight.services.error_classifier import classify, is_policy_violation, retry_after_seconds
from oversight.services.provider import ProviderError, result_id

logger = logging.getLogger('services.dispatcher')


@dataclass(frozen=True)
class DispatchOutcome:
    job_id: str
    status: str                      # completed | pending (retry) | dlq | lost_claim
    category: Optional[str] = None
    provider_result_id: Optional[str] = None


def repost_caption(username, caption=''):
    """Credit line for reposted UGC."""
    if caption:
        return f"📸 @{username}: {caption}\n\n#repost"
    return f"📸 @{username}\n\n#repost"


class Dispatcher:

    def __init__(self, store, provider, resolver, worker_id=None,
                 batch_size=WORKER_BATCH_SIZE, pool_size=WORKER_POOL_SIZE,
                 claim_timeout=CLAIM_TIMEOUT_SECONDS):
        self.store = store
        self.provider = provider
        self.resolver = resolver
        self.worker_id = worker_id or f'worker-{uuid.uuid4().hex[:8]}'
        self.batch_size = batch_size
        self.pool_size = pool_size
        self.claim_timeout = claim_timeout

    # ── Loop ─────────────────────────────────────────────────────────────────

    def run_once(self) -> List[DispatchOutcome]:
        reaped = self.store.reap_abandoned(self.claim_timeout)
        if reaped:
            logger.warning("Reaped %d abandoned claim(s)", reaped)

        jobs = self.store.claim_next(self.worker_id, self.batch_size)
        if not jobs:
            return []

        if self.pool_size <= 1 or len(jobs) == 1:
            return [self.execute(job) for job in jobs]

        outcomes = []
        with ThreadPoolExecutor(max_workers=min(self.pool_size, len(jobs))) as executor:
            future_to_job = {executor.submit(self.execute, job): job for job in jobs}
            for future in as_completed(future_to_job):
                outcomes.append(future.result())
        return outcomes

    def run_forever(self, poll_interval=POLL_INTERVAL_SECONDS, stop_event=None):
        """Poll until stop_event is set. A failing round is logged, never fatal."""
        stop_event = stop_event or threading.Event()
        logger.info("Dispatcher %s polling every %ss (batch %d, pool %d)",
                    self.worker_id, poll_interval, self.batch_size, self.pool_size)
        while not stop_event.is_set():
            try:
                outcomes = self.run_once()
            except Exception:
                logger.exception("Dispatch round failed", extra={'worker_id': self.worker_id})
                outcomes = []
            if not outcomes:
                stop_event.wait(poll_interval)
        logger.info("Dispatcher %s stopped", self.worker_id, extra={'worker_id': self.worker_id})

    # ── One job ──────────────────────────────────────────────────────────────

    def execute(self, job) -> DispatchOutcome:
        """Run one claimed job to completion or a recorded failure."""
        try:
            return self._attempt(job)
        except IllegalTransitionError as e:
            # Claim was reaped and re-claimed while the call was in flight
            logger.warning("Job %s: claim lost before result was recorded: %s", job.id, e,
                           extra=self._log_context(job))
            return DispatchOutcome(job.id, 'lost_claim')

    def _attempt(self, job) -> DispatchOutcome:
        try:
            credential = self.resolver.resolve(job.account_id)
        except AuthError as e:
            return self._fail(job, str(e), ErrorCategory.AUTH_FAILURE)
        except requests.RequestException as e:
            return self._fail(job, f"Credential lookup failed: {e}", classify(None, None))

        try:
            payload = parse_payload(job.action_type, job.payload)
        except PayloadValidationError as e:
            return self._fail(job, str(e), ErrorCategory.PERMANENT)

        try:
            body = self._perform(job, payload, credential)
        except ProviderError as e:
            return self._fail(
                job, str(e), classify(e.http_status, e.code, e.subcode),
                raw_error=e.body,
                retry_after=retry_after_seconds(e.headers),
                policy_violation=is_policy_violation(e.code, e.subcode),
            )
        except requests.RequestException as e:
            return self._fail(job, f"Network error: {e}", classify(None, None))
        except IllegalTransitionError:
            raise
        except Exception as e:
            logger.exception("Job %s: unexpected error during %s", job.id, job.action_type,
                             extra=self._log_context(job))
            return self._fail(job, f"{type(e).__name__}: {e}", ErrorCategory.UNKNOWN)

        media_id = result_id(body)
        self.store.complete(job.id, provider_result_id=media_id, worker_id=self.worker_id)
        logger.info("Job %s (%s) completed → %s", job.id, job.action_type, media_id,
                    extra=self._log_context(job))
        return DispatchOutcome(job.id, JobStatus.COMPLETED.value, provider_result_id=media_id)

    def _perform(self, job, payload, credential):
        token = credential.access_token
        match payload:
            case ReplyComment(comment_id=comment_id, reply_text=text):
                return self.provider.reply_comment(token, comment_id, text)
            case ReplyDm(conversation_id=conversation_id, message_text=text):
                return self.provider.reply_dm(token, conversation_id, text)
            case SendDm(recipient_id=recipient_id, message_text=text):
                return self.provider.send_dm(token, credential.ig_user_id, recipient_id, text)
            case PublishPost():
                return self._publish(job, credential, payload.image_url, payload.caption,
                                     payload.media_type, payload.creation_id)
            case RepostUgc():
                return self._publish(job, credential, payload.media_url,
                                     repost_caption(payload.username, payload.caption),
                                     'IMAGE', payload.creation_id)
            case _:
                raise TypeError(f"No handler for payload {type(payload).__name__}")

    def _publish(self, job, credential, media_url, caption, media_type, creation_id):
        """Container then media_publish; creation_id is persisted between the two."""
        if not creation_id:
            container = self.provider.create_media_container(
                credential.access_token, credential.ig_user_id, media_url,
                caption=caption, media_type=media_type,
            )
            creation_id = result_id(container)
            if not creation_id:
                raise ValueError("Media container response carried no id")
            self.store.save_progress(job.id, {'creation_id': creation_id}, worker_id=self.worker_id)
            logger.info("Job %s: media container %s created", job.id, creation_id,
                        extra=self._log_context(job))

        return self.provider.publish_media(credential.access_token, credential.ig_user_id, creation_id)

    def _fail(self, job, error, category, raw_error=None, retry_after=None, policy_violation=False):
        result = self.store.fail(
            job.id, error, category, worker_id=self.worker_id, raw_error=raw_error,
            retry_after=retry_after, policy_violation=policy_violation,
        )
        return DispatchOutcome(job.id, result['status'], category=ErrorCategory(category).value)

    def _log_context(self, job):
        return {'worker_id': self.worker_id, 'job_id': job.id,
                'account_id': job.account_id, 'action_type': job.action_type}
