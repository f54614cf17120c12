"""Closed status and type vocabularies for every entity the core owns."""
from enum import Enum


class ActionType(str, Enum):
    """Outbound action a job performs against the Graph API."""
    REPLY_COMMENT = 'reply_comment'
    REPLY_DM = 'reply_dm'
    SEND_DM = 'send_dm'
    PUBLISH_POST = 'publish_post'
    REPOST_UGC = 'repost_ugc'


class JobPriority(str, Enum):
    HIGH = 'high'
    NORMAL = 'normal'


class JobStatus(str, Enum):
    """
    outbound_queue_jobs.status lifecycle.

    FAILED is never stored on a row. It labels an attempt that will be
    retried (the `outcome` of a job_retry_scheduled audit entry) while the
    row goes straight from PROCESSING back to PENDING with a later
    scheduled_for.
    """
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'
    DLQ = 'dlq'


class ErrorCategory(str, Enum):
    """The only failure vocabulary the dispatcher reasons about."""
    AUTH_FAILURE = 'auth_failure'
    PERMANENT = 'permanent'
    RATE_LIMIT = 'rate_limit'
    TRANSIENT = 'transient'
    UNKNOWN = 'unknown'


class PostStatus(str, Enum):
    PENDING = 'pending'        # agent draft awaiting review
    APPROVED = 'approved'      # publish_post job enqueued
    REJECTED = 'rejected'
    PUBLISHING = 'publishing'  # job claimed by a worker
    PUBLISHED = 'published'
    FAILED = 'failed'          # job dead-lettered; re-create to try again


class ReviewStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class AlertType(str, Enum):
    AUTH_FAILURE = 'auth_failure'
    RATE_LIMIT = 'rate_limit'
    CONTENT_VIOLATION = 'content_violation'
    AGENT_DOWN = 'agent_down'
    SYNC_FAILURE = 'sync_failure'


def values(enum_cls):
    """List of raw string values for an enum class."""
    return [member.value for member in enum_cls]
