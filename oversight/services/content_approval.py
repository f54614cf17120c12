"""
Content approval — human sign-off between an agent draft and a live post.

    pending ──approve──▶ approved ──(worker claims job)──▶ publishing ──▶ published
       │                                                        └──────▶ failed
       └──reject──▶ rejected

Approval enqueues a publish_post job; the post only becomes `publishing` when
a worker claims that job, and only the job's complete/fail path moves it to
`published` / `failed`, in the same transaction as the job's own transition.
"""
import logging

from sqlalchemy import select, func, update

from oversight.database import get_session, transaction
from oversight.errors import IllegalTransitionError, NotFoundError, PayloadValidationError
from oversight.models.enums import ActionType, JobPriority, PostStatus
from oversight.models.scheduled_post import ScheduledPost
from oversight.payloads import MEDIA_TYPES, PublishPost, payload_to_dict
from oversight.services.audit import record_transition, status_change
from oversight.time_utils import utcnow

logger = logging.getLogger('services.content_approval')

TABLE = 'scheduled_posts'

TRANSITIONS = {
    PostStatus.PENDING: frozenset({PostStatus.APPROVED, PostStatus.REJECTED}),
    PostStatus.APPROVED: frozenset({PostStatus.PUBLISHING}),
    PostStatus.PUBLISHING: frozenset({PostStatus.PUBLISHED, PostStatus.FAILED}),
    PostStatus.REJECTED: frozenset(),
    PostStatus.PUBLISHED: frozenset(),
    PostStatus.FAILED: frozenset(),
}

if set(TRANSITIONS) != set(PostStatus):
    raise RuntimeError("PostStatus transition table is not exhaustive")

SELECTION_FACTOR_KEYS = (
    'visual_quality', 'engagement_potential', 'brand_alignment', 'recency', 'uniqueness',
)
MODIFICATION_KEYS = ('caption', 'hook', 'body', 'cta', 'hashtags', 'reason')


def can_transition(current, target):
    return PostStatus(target) in TRANSITIONS[PostStatus(current)]


def transition(session, post, target, actor='system', at=None, changes=None, details=None):
    """
    Move `post` to `target` and audit it, or raise IllegalTransitionError.

    The write is conditional on the status the caller read, so of two
    concurrent decisions on one post only the first commits.
    """
    current = PostStatus(post.status)
    target = PostStatus(target)
    if target not in TRANSITIONS[current]:
        raise IllegalTransitionError('ScheduledPost', post.id, current.value, target.value)

    now = at or utcnow()
    result = session.execute(
        update(ScheduledPost)
        .where(ScheduledPost.id == post.id, ScheduledPost.status == current.value)
        .values(status=target.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise IllegalTransitionError('ScheduledPost', post.id,
                                     f'{current.value} (changed concurrently)', target.value)

    post.status = target.value
    post.updated_at = now
    record_transition(
        session, TABLE, post.id, target.value,
        {**status_change(current, target), **(changes or {})},
        event_type=f'post_{target.value}', details=details, actor=actor, at=at,
    )
    return post


# ── Job-driven transitions (called inside the queue store's transaction) ─────

def mark_publishing(session, post_id, job_id, at) -> bool:
    """
    approved → publishing when the worker claims the post's publish job.

    Returns False when the post is not waiting on this job; the caller must
    not run it.
    """
    post = session.get(ScheduledPost, post_id)
    if post is not None and post.job_id == job_id and post.status == PostStatus.PUBLISHING.value:
        return True  # re-claim after a retry or reaped claim
    return _sync_from_job(session, post_id, PostStatus.PUBLISHING, job_id, at) is not None


def mark_published(session, post_id, job_id, media_id, at):
    post = _sync_from_job(session, post_id, PostStatus.PUBLISHED, job_id, at,
                          changes={'instagram_media_id': {'from': None, 'to': media_id}})
    if post is not None:
        post.instagram_media_id = media_id
        post.published_at = at
    return post


def mark_failed(session, post_id, job_id, error, at):
    post = _sync_from_job(session, post_id, PostStatus.FAILED, job_id, at,
                          details={'error': error})
    if post is not None:
        post.error = error
    return post


def _sync_from_job(session, post_id, target, job_id, at, changes=None, details=None):
    """
    Mirror a job transition onto its post.

    Only the job recorded on the post may move it. The job's own transition is
    authoritative and must not be aborted by a post in an unexpected state, so
    an illegal move is refused (post left as is) and recorded as a failed
    audit entry instead of raised.
    """
    post = session.get(ScheduledPost, post_id)
    if post is None:
        logger.warning("Job %s references missing scheduled post %s", job_id, post_id)
        return None
    if post.job_id != job_id:
        return _refuse(session, post, target, job_id, at)
    if post.status == target.value:
        return None  # re-claim after a retry or reaped claim
    if not can_transition(post.status, target):
        return _refuse(session, post, target, job_id, at)
    return transition(session, post, target, actor=f'job:{job_id}', at=at,
                      changes=changes, details={'job_id': job_id, **(details or {})})


def _refuse(session, post, target, job_id, at):
    logger.error("Post %s: refusing %s → %s from job %s (post belongs to job %s)",
                 post.id, post.status, target.value, job_id, post.job_id)
    record_transition(
        session, TABLE, post.id, target.value, {},
        event_type='post_transition_refused',
        details={'job_id': job_id, 'post_job_id': post.job_id,
                 'current': post.status, 'requested': target.value},
        success=False, at=at,
    )
    return None


# ── Operator surface ─────────────────────────────────────────────────────────

class ContentApprovalService:

    def __init__(self, session_factory=None, queue_store=None, clock=None):
        if queue_store is None:
            from oversight.services.queue_store import QueueStore
            queue_store = QueueStore(session_factory=session_factory, clock=clock)
        self.session_factory = session_factory or get_session
        self.queue_store = queue_store
        self.clock = clock or utcnow

    def _transaction(self):
        return transaction(self.session_factory)

    def create_draft(self, account_id, image_url, caption='', media_type='IMAGE',
                     agent_modifications=None, selection_factors=None,
                     scheduled_time=None, actor='agent'):
        """Producer helper: validate and insert a `pending` draft."""
        if not account_id:
            raise PayloadValidationError("account_id is required")
        if not image_url or not str(image_url).strip():
            raise PayloadValidationError("image_url is required")
        media_type = (media_type or 'IMAGE').upper()
        if media_type not in MEDIA_TYPES:
            raise PayloadValidationError(f"Unsupported media_type: {media_type}")
        validate_agent_modifications(agent_modifications)
        validate_selection_factors(selection_factors)

        now = self.clock()
        with self._transaction() as session:
            post = ScheduledPost(
                account_id=account_id,
                status=PostStatus.PENDING.value,
                caption=caption or '',
                image_url=image_url,
                media_type=media_type,
                scheduled_time=scheduled_time,
                agent_modifications=agent_modifications,
                selection_factors=selection_factors,
                created_at=now,
                updated_at=now,
            )
            session.add(post)
            session.flush()
            record_transition(session, TABLE, post.id, 'draft_created',
                              status_change(None, PostStatus.PENDING),
                              event_type='post_draft_created', actor=actor, at=now)
            logger.info("Draft %s created for account %s", post.id, account_id)
            return post.id

    def approve(self, post_id, reviewer='operator'):
        """pending → approved, enqueueing the publish_post job in the same commit."""
        now = self.clock()
        with self._transaction() as session:
            post = self._load(session, post_id)
            transition(session, post, PostStatus.APPROVED, actor=reviewer, at=now)
            post.reviewed_by = reviewer
            post.reviewed_at = now

            payload = PublishPost(
                image_url=post.image_url,
                caption=post.caption or '',
                media_type=post.media_type or 'IMAGE',
                scheduled_post_id=post.id,
            )
            job_id = self.queue_store.enqueue_in(
                session, post.account_id, ActionType.PUBLISH_POST, payload_to_dict(payload),
                priority=JobPriority.NORMAL, scheduled_for=post.scheduled_time,
                actor=reviewer, at=now,
            )
            post.job_id = job_id
            result = post.to_dict()

        logger.info("Post %s approved by %s (job %s)", post_id, reviewer, job_id)
        return result

    def reject(self, post_id, reviewer='operator', reason=None):
        """pending → rejected. Terminal; no job is created."""
        now = self.clock()
        with self._transaction() as session:
            post = self._load(session, post_id)
            transition(session, post, PostStatus.REJECTED, actor=reviewer, at=now,
                       details={'reason': reason} if reason else None)
            post.reviewed_by = reviewer
            post.reviewed_at = now
            post.rejection_reason = reason
            result = post.to_dict()

        logger.info("Post %s rejected by %s", post_id, reviewer)
        return result

    def get_post(self, post_id):
        session = self.session_factory()
        try:
            return self._load(session, post_id).to_dict()
        finally:
            session.close()

    def list_posts(self, status=None, account_id=None, limit=50, offset=0):
        session = self.session_factory()
        try:
            query = select(ScheduledPost)
            if status:
                query = query.where(ScheduledPost.status == status)
            if account_id:
                query = query.where(ScheduledPost.account_id == account_id)
            total = session.scalar(select(func.count()).select_from(query.subquery()))
            rows = session.scalars(
                query.order_by(ScheduledPost.created_at.desc()).limit(limit).offset(offset)
            ).all()
            return [post.to_dict() for post in rows], total
        finally:
            session.close()

    @staticmethod
    def _load(session, post_id):
        post = session.get(ScheduledPost, post_id)
        if post is None:
            raise NotFoundError('ScheduledPost', post_id)
        return post


def validate_agent_modifications(modifications):
    """Every automated edit must carry a non-empty reason."""
    if modifications is None:
        return
    if not isinstance(modifications, dict):
        raise PayloadValidationError("agent_modifications must be an object")
    unexpected = sorted(set(modifications) - set(MODIFICATION_KEYS))
    if unexpected:
        raise PayloadValidationError(f"agent_modifications has unexpected fields: {', '.join(unexpected)}")
    reason = modifications.get('reason')
    if not isinstance(reason, str) or not reason.strip():
        raise PayloadValidationError("agent_modifications.reason is required")
    hashtags = modifications.get('hashtags')
    if hashtags is not None and not (
        isinstance(hashtags, list) and all(isinstance(tag, str) for tag in hashtags)
    ):
        raise PayloadValidationError("agent_modifications.hashtags must be a list of strings")


def validate_selection_factors(factors):
    """Each selection factor is an optional score in [0, 100]."""
    if factors is None:
        return
    if not isinstance(factors, dict):
        raise PayloadValidationError("selection_factors must be an object")
    for key, value in factors.items():
        if key not in SELECTION_FACTOR_KEYS:
            raise PayloadValidationError(f"Unknown selection factor: {key}")
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 100:
            raise PayloadValidationError(f"selection factor {key} must be between 0 and 100")
