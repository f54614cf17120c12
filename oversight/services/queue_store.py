"""
Queue store — durable outbound job queue backed by outbound_queue_jobs.

Every mutation runs in one transaction together with its audit entry and any
side effects (account disconnect, cool-down, alert, scheduled-post transition),
and is rolled back as a whole if anything in it fails.

Claiming is a conditional UPDATE checked by rowcount:

    UPDATE outbound_queue_jobs
       SET status='processing', claim_owner=:worker, attempt_count=attempt_count+1
     WHERE id=:id AND status='pending' AND claim_owner IS NULL
       AND NOT EXISTS (SELECT 1 FROM outbound_queue_jobs o
                        WHERE o.account_id=:account AND o.status='processing')

so two workers can never both own a job, and an account never has two jobs in
flight at once. Candidates are each account's next due job, ranked with
row_number() over the account, so a backlog on one account cannot crowd the
others out of a batch.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, delete, case, func
from sqlalchemy.orm import aliased

from oversight.config import CLAIM_TIMEOUT_SECONDS, DISPATCH_TICK_FUNC
from oversight.database import get_session, transaction
from oversight.errors import IllegalTransitionError, NotFoundError, PayloadValidationError
from oversight.models.enums import (
    ActionType, AlertType, ErrorCategory, JobPriority, JobStatus, PostStatus,
)
from oversight.models.job import OutboundJob, new_job_id
from oversight.models.scheduled_post import ScheduledPost
from oversight.payloads import parse_action_type, parse_payload, payload_to_dict
from oversight.services import content_approval
from oversight.services.account_store import AccountStore
from oversight.services.alerts import raise_alert
from oversight.services.audit import record_transition, status_change
from oversight.services.error_classifier import operator_message
from oversight.services.retry_policy import RetryPolicy
from oversight.time_utils import utcnow, seconds_from

logger = logging.getLogger('services.queue_store')

TABLE = 'outbound_queue_jobs'

# Candidates fetched per claim round; rows lost to other workers are skipped
CANDIDATE_MULTIPLIER = 4


@dataclass(frozen=True)
class ClaimedJob:
    """Detached snapshot of a job a worker now owns."""
    id: str
    account_id: str
    action_type: str
    payload: Dict[str, Any]
    priority: str
    attempt_count: int
    scheduled_for: datetime
    claim_owner: str
    claimed_at: datetime


def push_dispatch_tick():
    """Wake a worker through RQ. Polling still picks the job up if this fails."""
    try:
        from oversight.extensions import get_dispatch_queue
        get_dispatch_queue().enqueue(DISPATCH_TICK_FUNC)
    except Exception as e:
        logger.warning("Dispatch wake-up push failed (polling will pick the job up): %s", e)


class QueueStore:

    def __init__(self, session_factory=None, clock=None, policy=None, accounts=None,
                 notify=None):
        self.session_factory = session_factory or get_session
        self.clock = clock or utcnow
        self.policy = policy or RetryPolicy()
        self.accounts = accounts or AccountStore()
        self.notify = notify if notify is not None else push_dispatch_tick

    def _transaction(self):
        return transaction(self.session_factory)

    # ── Producers ────────────────────────────────────────────────────────────

    def enqueue(self, account_id, action_type, payload, priority=JobPriority.NORMAL,
                scheduled_for=None, actor='agent') -> str:
        """Validate and persist a new pending job. Returns its id."""
        with self._transaction() as session:
            job_id = self.enqueue_in(session, account_id, action_type, payload,
                                     priority=priority, scheduled_for=scheduled_for, actor=actor)

        if JobPriority(priority) is JobPriority.HIGH and self.notify is not None:
            self.notify()
        return job_id

    def enqueue_in(self, session, account_id, action_type, payload, priority=JobPriority.NORMAL,
                   scheduled_for=None, actor='agent', at=None) -> str:
        """
        Add a job to an open session without committing.

        Used by content approval so the post transition and its publish job
        commit together.
        """
        if not account_id or not str(account_id).strip():
            raise PayloadValidationError("account_id is required")
        action = parse_action_type(action_type)
        try:
            priority = JobPriority(priority)
        except ValueError:
            raise PayloadValidationError(f"Unknown priority: {priority!r}") from None
        variant = parse_payload(action, payload)

        post = None
        post_id = getattr(variant, 'scheduled_post_id', None)
        if post_id is not None:
            post = session.get(ScheduledPost, post_id)
            if post is None or post.status != PostStatus.APPROVED.value:
                raise PayloadValidationError(
                    f"scheduled_post_id {post_id} does not reference an approved post"
                )
            if post.job_id is not None:
                raise PayloadValidationError(
                    f"scheduled post {post_id} already has publish job {post.job_id}"
                )

        now = at or self.clock()
        job = OutboundJob(
            id=new_job_id(),
            account_id=str(account_id),
            action_type=action.value,
            payload=payload_to_dict(variant),
            priority=priority.value,
            status=JobStatus.PENDING.value,
            attempt_count=0,
            scheduled_for=scheduled_for or now,
            created_at=now,
            updated_at=now,
        )
        session.add(job)
        session.flush()
        if post is not None:
            # One publish job per post; claims check this binding
            post.job_id = job.id
        record_transition(
            session, TABLE, job.id, 'enqueue', status_change(None, JobStatus.PENDING),
            event_type='job_enqueued', actor=actor, at=now,
            details={'account_id': job.account_id, 'action_type': job.action_type,
                     'priority': job.priority},
        )
        logger.info("Enqueued %s job %s for account %s (%s)",
                    action.value, job.id, account_id, priority.value)
        return job.id

    # ── Workers ──────────────────────────────────────────────────────────────

    def claim_next(self, worker_id, max_batch=1) -> List[ClaimedJob]:
        """
        Atomically claim up to max_batch due jobs for worker_id.

        Order is high priority first, then scheduled_for, then created_at.
        Jobs of cooling-down accounts and of accounts with a job already in
        flight are skipped, and a batch holds at most one job per account.
        A publish job its post is not waiting on is dead-lettered here
        instead of being handed out.
        """
        if max_batch < 1:
            return []
        now = self.clock()
        claimed = []

        with self._transaction() as session:
            busy = aliased(OutboundJob)
            in_flight = select(busy.account_id).where(
                busy.status == JobStatus.PROCESSING.value
            )
            selection_order = (
                case((OutboundJob.priority == JobPriority.HIGH.value, 0), else_=1),
                OutboundJob.scheduled_for,
                OutboundJob.created_at,
            )
            # Each account's next due job only
            heads = (
                select(
                    OutboundJob.id,
                    func.row_number().over(
                        partition_by=OutboundJob.account_id, order_by=selection_order,
                    ).label('position'),
                )
                .where(
                    OutboundJob.status == JobStatus.PENDING.value,
                    OutboundJob.claim_owner.is_(None),
                    OutboundJob.scheduled_for <= now,
                    OutboundJob.account_id.not_in(in_flight),
                    OutboundJob.account_id.not_in(self.accounts.cooling_down_ids(now)),
                )
                .subquery()
            )
            candidates = session.scalars(
                select(OutboundJob)
                .join(heads, heads.c.id == OutboundJob.id)
                .where(heads.c.position == 1)
                .order_by(*selection_order)
                .limit(max_batch * CANDIDATE_MULTIPLIER)
            ).all()

            for job in candidates:
                if len(claimed) >= max_batch:
                    break
                if not self._try_claim(session, job, worker_id, now):
                    continue

                session.refresh(job)
                record_transition(
                    session, TABLE, job.id, 'claim',
                    {**status_change(JobStatus.PENDING, JobStatus.PROCESSING),
                     'attempt_count': {'from': job.attempt_count - 1, 'to': job.attempt_count}},
                    event_type='job_claimed', actor=worker_id, at=now,
                )
                post_id = self._post_id(job)
                if post_id and not content_approval.mark_publishing(session, post_id, job.id, now):
                    self._dead_letter(
                        session, job, ErrorCategory.PERMANENT,
                        f"scheduled post {post_id} is not waiting on this job",
                        alert_type=AlertType.SYNC_FAILURE, reason='post not owned by job',
                        actor=worker_id, now=now, sync_post=False,
                    )
                    continue
                claimed.append(_snapshot(job))

        if claimed:
            logger.info("Worker %s claimed %d job(s): %s",
                        worker_id, len(claimed), ', '.join(j.id for j in claimed))
        return claimed

    def _try_claim(self, session, job, worker_id, now):
        other = aliased(OutboundJob)
        account_busy = (
            select(other.id)
            .where(other.account_id == job.account_id,
                   other.status == JobStatus.PROCESSING.value)
            .exists()
        )
        result = session.execute(
            update(OutboundJob)
            .where(
                OutboundJob.id == job.id,
                OutboundJob.status == JobStatus.PENDING.value,
                OutboundJob.claim_owner.is_(None),
                ~account_busy,
            )
            .values(
                status=JobStatus.PROCESSING.value,
                claim_owner=worker_id,
                claimed_at=now,
                attempt_count=OutboundJob.attempt_count + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def complete(self, job_id, provider_result_id=None, worker_id=None) -> Dict[str, Any]:
        """processing → completed. A publish job also moves its post to published."""
        now = self.clock()
        with self._transaction() as session:
            job = self._load_owned(session, job_id, worker_id, JobStatus.COMPLETED)
            job.status = JobStatus.COMPLETED.value
            job.provider_result_id = provider_result_id
            job.finished_at = now
            job.updated_at = now

            post_id = self._post_id(job)
            if post_id and job.action_type == ActionType.PUBLISH_POST.value:
                content_approval.mark_published(session, post_id, job.id, provider_result_id, now)

            record_transition(
                session, TABLE, job.id, 'complete',
                status_change(JobStatus.PROCESSING, JobStatus.COMPLETED),
                event_type='job_completed', actor=job.claim_owner or 'system', at=now,
                details={'provider_result_id': provider_result_id,
                         'attempt_count': job.attempt_count},
            )
            result = job.to_dict()

        logger.info("Job %s completed (result %s)", job_id, provider_result_id)
        return result

    def save_progress(self, job_id, payload_updates, worker_id=None) -> Dict[str, Any]:
        """
        Merge intermediate provider results into a claimed job's payload.

        publish_post stores the container's creation_id here right after step 1,
        so a retry after a failed media_publish skips container creation.
        """
        now = self.clock()
        with self._transaction() as session:
            job = self._load_owned(session, job_id, worker_id, JobStatus.PROCESSING)
            previous = dict(job.payload or {})
            job.payload = {**previous, **payload_updates}
            job.updated_at = now
            record_transition(
                session, TABLE, job.id, 'progress',
                {key: {'from': previous.get(key), 'to': value}
                 for key, value in payload_updates.items()},
                event_type='job_progress', actor=job.claim_owner or 'system', at=now,
            )
            return dict(job.payload)

    def fail(self, job_id, error, category, worker_id=None, raw_error=None, retry_after=None,
             policy_violation=False) -> Dict[str, Any]:
        """
        Record a failed attempt and either reschedule the job or dead-letter it.

        Dead-lettering writes the job, the account disconnect (auth_failure),
        the alert, the post transition and the audit entry in one commit.
        """
        category = ErrorCategory(category)
        now = self.clock()
        with self._transaction() as session:
            job = self._load_owned(session, job_id, worker_id, JobStatus.FAILED)
            decision = self.policy.decide(category, job.attempt_count,
                                          retry_after=retry_after,
                                          policy_violation=policy_violation)

            job.last_error = (error or '')[:1000]
            job.error_category = category.value
            job.raw_error = raw_error
            job.updated_at = now

            if category is ErrorCategory.RATE_LIMIT:
                cooldown = retry_after if retry_after is not None else self.policy.backoff_seconds(job.attempt_count)
                self.accounts.mark_rate_limited(session, job.account_id, seconds_from(now, cooldown))

            details = {
                'error': job.last_error,
                'error_category': category.value,
                'raw_error': raw_error,
                'attempt_count': job.attempt_count,
                'operator_message': operator_message(category),
            }
            actor = job.claim_owner or 'system'

            if decision.retry:
                previous = job.scheduled_for
                job.scheduled_for = max(previous, seconds_from(now, decision.delay_seconds))
                job.status = JobStatus.PENDING.value
                job.claim_owner = None
                job.claimed_at = None
                record_transition(
                    session, TABLE, job.id, 'retry',
                    {'status': {'from': JobStatus.PROCESSING.value, 'to': JobStatus.PENDING.value},
                     'scheduled_for': {'from': previous.isoformat(),
                                       'to': job.scheduled_for.isoformat()}},
                    event_type='job_retry_scheduled', actor=actor, at=now,
                    details={**details, 'outcome': JobStatus.FAILED.value,
                             'delay_seconds': decision.delay_seconds},
                )
                logger.warning("Job %s attempt %d failed (%s), retry at %s: %s",
                               job.id, job.attempt_count, category.value,
                               job.scheduled_for.isoformat(), job.last_error)
            else:
                self._dead_letter(session, job, category, job.last_error,
                                  alert_type=decision.alert_type, reason=decision.reason,
                                  actor=actor, now=now, raw_error=raw_error)

            result = job.to_dict()
        return result

    def _dead_letter(self, session, job, category, error, alert_type, reason, actor, now,
                     raw_error=None, sync_post=True):
        """
        Move a claimed job to dlq inside the caller's transaction.

        The account disconnect (auth_failure), the alert, the post transition
        and the audit entry are written alongside the job.
        """
        job.status = JobStatus.DLQ.value
        job.last_error = (error or '')[:1000]
        job.error_category = category.value
        job.raw_error = raw_error
        job.claim_owner = None
        job.claimed_at = None
        job.finished_at = now
        job.updated_at = now

        if category is ErrorCategory.AUTH_FAILURE:
            self.accounts.set_disconnected(session, job.account_id, now)

        alert = raise_alert(
            session, alert_type, job.account_id,
            f"{operator_message(category)}: {job.action_type} job {job.id} failed: {job.last_error}",
            details={'job_id': job.id, 'action_type': job.action_type,
                     'error_category': category.value,
                     'attempt_count': job.attempt_count, 'raw_error': raw_error},
            at=now,
        )

        post_id = self._post_id(job)
        if post_id and sync_post:
            content_approval.mark_failed(session, post_id, job.id, job.last_error, now)

        record_transition(
            session, TABLE, job.id, 'dead_letter',
            status_change(JobStatus.PROCESSING, JobStatus.DLQ),
            event_type='job_dead_lettered', actor=actor, at=now,
            details={'error': job.last_error, 'error_category': category.value,
                     'raw_error': raw_error, 'attempt_count': job.attempt_count,
                     'operator_message': operator_message(category),
                     'alert_id': alert.id, 'reason': reason},
        )
        logger.error("Job %s dead-lettered after %d attempt(s) (%s): %s",
                     job.id, job.attempt_count, category.value, job.last_error)
        return alert

    # ── Operators ────────────────────────────────────────────────────────────

    def cancel(self, job_id, actor='operator') -> Dict[str, Any]:
        """
        Remove a job that no worker has claimed yet.

        The row is deleted; its last state survives in the audit entry.
        """
        now = self.clock()
        with self._transaction() as session:
            job = session.get(OutboundJob, job_id)
            if job is None:
                raise NotFoundError('OutboundJob', job_id)
            snapshot = job.to_dict()

            result = session.execute(
                delete(OutboundJob)
                .where(OutboundJob.id == job_id,
                       OutboundJob.status == JobStatus.PENDING.value,
                       OutboundJob.claim_owner.is_(None))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise IllegalTransitionError('OutboundJob', job_id, job.status, 'cancelled')
            session.expunge(job)

            # The approved post is free for a new publish job
            post_id = self._post_id(job)
            if post_id:
                post = session.get(ScheduledPost, post_id)
                if post is not None and post.job_id == job_id:
                    post.job_id = None

            record_transition(
                session, TABLE, job_id, 'cancel',
                {'status': {'from': JobStatus.PENDING.value, 'to': None}},
                event_type='job_cancelled', actor=actor, at=now,
                details={'job': snapshot},
            )

        logger.info("Job %s cancelled by %s", job_id, actor)
        return snapshot

    def requeue(self, job_id, actor='operator') -> Dict[str, Any]:
        """dlq → pending with a fresh attempt budget."""
        now = self.clock()
        with self._transaction() as session:
            job = session.get(OutboundJob, job_id)
            if job is None:
                raise NotFoundError('OutboundJob', job_id)
            if job.status != JobStatus.DLQ.value:
                raise IllegalTransitionError('OutboundJob', job_id, job.status,
                                             JobStatus.PENDING.value)

            # A dead-lettered post is terminal; it must be re-created, not replayed
            post_id = self._post_id(job)
            if post_id and job.action_type == ActionType.PUBLISH_POST.value:
                post = session.get(ScheduledPost, post_id)
                if post is not None and post.status == PostStatus.FAILED.value:
                    raise IllegalTransitionError('OutboundJob', job_id, job.status,
                                                 JobStatus.PENDING.value)

            previous_attempts = job.attempt_count
            job.status = JobStatus.PENDING.value
            job.attempt_count = 0
            job.scheduled_for = max(job.scheduled_for, now)
            job.claim_owner = None
            job.claimed_at = None
            job.finished_at = None
            job.error_category = None
            job.updated_at = now

            record_transition(
                session, TABLE, job.id, 'requeue',
                {**status_change(JobStatus.DLQ, JobStatus.PENDING),
                 'attempt_count': {'from': previous_attempts, 'to': 0}},
                event_type='job_requeued', actor=actor, at=now,
                details={'last_error': job.last_error},
            )
            result = job.to_dict()

        logger.info("Job %s requeued from DLQ by %s", job_id, actor)
        return result

    def reap_abandoned(self, claim_timeout=CLAIM_TIMEOUT_SECONDS) -> int:
        """
        Release claims older than claim_timeout seconds.

        An expired claim counts as an `unknown` failure of that attempt: the job
        goes back to pending, or to dlq once attempt_count is past the unknown
        retry ceiling, so a job that keeps killing its worker cannot cycle forever.
        """
        now = self.clock()
        cutoff = now - timedelta(seconds=claim_timeout)
        reaped = 0

        with self._transaction() as session:
            stale = session.scalars(
                select(OutboundJob).where(
                    OutboundJob.status == JobStatus.PROCESSING.value,
                    OutboundJob.claimed_at < cutoff,
                )
            ).all()

            for job in stale:
                owner, claimed_at = job.claim_owner, job.claimed_at
                decision = self.policy.decide(ErrorCategory.UNKNOWN, job.attempt_count)
                values = {'updated_at': now}
                if decision.retry:
                    values.update(status=JobStatus.PENDING.value, claim_owner=None, claimed_at=None)
                result = session.execute(
                    update(OutboundJob)
                    .where(OutboundJob.id == job.id,
                           OutboundJob.status == JobStatus.PROCESSING.value,
                           OutboundJob.claimed_at == claimed_at)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    continue
                reaped += 1

                if not decision.retry:
                    self._dead_letter(
                        session, job, ErrorCategory.UNKNOWN,
                        f"Claim by {owner} expired on attempt {job.attempt_count}",
                        alert_type=decision.alert_type, reason=decision.reason,
                        actor='system', now=now,
                    )
                    continue

                record_transition(
                    session, TABLE, job.id, 'reap',
                    status_change(JobStatus.PROCESSING, JobStatus.PENDING),
                    event_type='job_claim_reaped', at=now,
                    details={'claim_owner': owner, 'claimed_at': claimed_at.isoformat(),
                             'attempt_count': job.attempt_count},
                )
                logger.warning("Reaped job %s: claim by %s since %s expired",
                               job.id, owner, claimed_at.isoformat())
        return reaped

    # ── Reads ────────────────────────────────────────────────────────────────

    def get_job(self, job_id) -> Dict[str, Any]:
        session = self.session_factory()
        try:
            job = session.get(OutboundJob, job_id)
            if job is None:
                raise NotFoundError('OutboundJob', job_id)
            return job.to_dict()
        finally:
            session.close()

    def list_jobs(self, status=None, action_type=None, account_id=None, priority=None,
                  limit=50, offset=0):
        """Newest-first page of jobs as dicts, plus the total match count."""
        session = self.session_factory()
        try:
            query = select(OutboundJob)
            if status:
                query = query.where(OutboundJob.status == status)
            if action_type:
                query = query.where(OutboundJob.action_type == action_type)
            if account_id:
                query = query.where(OutboundJob.account_id == account_id)
            if priority:
                query = query.where(OutboundJob.priority == priority)

            total = session.scalar(select(func.count()).select_from(query.subquery()))
            order = OutboundJob.updated_at.desc() if status == JobStatus.DLQ.value \
                else OutboundJob.created_at.desc()
            rows = session.scalars(query.order_by(order).limit(limit).offset(offset)).all()
            return [job.to_dict() for job in rows], total
        finally:
            session.close()

    def status_summary(self, account_id=None) -> Dict[str, Dict[str, int]]:
        """{action_type: {status: count}} across the queue."""
        session = self.session_factory()
        try:
            query = select(OutboundJob.action_type, OutboundJob.status, func.count())
            if account_id:
                query = query.where(OutboundJob.account_id == account_id)
            rows = session.execute(
                query.group_by(OutboundJob.action_type, OutboundJob.status)
            ).all()
            summary = {}
            for action_type, status, count in rows:
                summary.setdefault(action_type, {})[status] = count
            return summary
        finally:
            session.close()

    @staticmethod
    def _load_owned(session, job_id, worker_id, requested):
        job = session.get(OutboundJob, job_id)
        if job is None:
            raise NotFoundError('OutboundJob', job_id)
        if job.status != JobStatus.PROCESSING.value:
            raise IllegalTransitionError('OutboundJob', job_id, job.status, requested.value)
        # A reaped and re-claimed job belongs to its new owner
        if worker_id is not None and job.claim_owner != worker_id:
            raise IllegalTransitionError('OutboundJob', job_id,
                                         f'{job.status} by {job.claim_owner}', requested.value)
        return job

    @staticmethod
    def _post_id(job) -> Optional[str]:
        if job.action_type != ActionType.PUBLISH_POST.value:
            return None
        return (job.payload or {}).get('scheduled_post_id')


def _snapshot(job) -> ClaimedJob:
    return ClaimedJob(
        id=job.id,
        account_id=job.account_id,
        action_type=job.action_type,
        payload=dict(job.payload or {}),
        priority=job.priority,
        attempt_count=job.attempt_count,
        scheduled_for=job.scheduled_for,
        claim_owner=job.claim_owner,
        claimed_at=job.claimed_at,
    )
