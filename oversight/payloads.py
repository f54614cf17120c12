"""
Job payload variants — one dataclass per action_type.

Every payload is validated against its variant before a job is accepted, so the
dispatcher never probes optional fields on a loose dict.
"""
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional, Union

from oversight.errors import PayloadValidationError
from oversight.models.enums import ActionType


MEDIA_TYPES = ('IMAGE', 'VIDEO', 'REELS')


@dataclass(frozen=True)
class ReplyComment:
    comment_id: str
    reply_text: str


@dataclass(frozen=True)
class ReplyDm:
    conversation_id: str
    message_text: str


@dataclass(frozen=True)
class SendDm:
    recipient_id: str
    message_text: str


@dataclass(frozen=True)
class PublishPost:
    image_url: str
    caption: str = ''
    media_type: str = 'IMAGE'
    scheduled_post_id: Optional[str] = None
    creation_id: Optional[str] = None  # set after step 1 so a retry skips container creation


@dataclass(frozen=True)
class RepostUgc:
    permission_id: str
    media_url: str
    username: str
    caption: str = ''
    creation_id: Optional[str] = None


JobPayload = Union[ReplyComment, ReplyDm, SendDm, PublishPost, RepostUgc]

PAYLOAD_TYPES = {
    ActionType.REPLY_COMMENT: ReplyComment,
    ActionType.REPLY_DM: ReplyDm,
    ActionType.SEND_DM: SendDm,
    ActionType.PUBLISH_POST: PublishPost,
    ActionType.REPOST_UGC: RepostUgc,
}

# Fields that must be non-empty strings after stripping
_REQUIRED_TEXT = {
    ReplyComment: ('comment_id', 'reply_text'),
    ReplyDm: ('conversation_id', 'message_text'),
    SendDm: ('recipient_id', 'message_text'),
    PublishPost: ('image_url',),
    RepostUgc: ('permission_id', 'media_url', 'username'),
}


def parse_action_type(action_type: str) -> ActionType:
    try:
        return ActionType(action_type)
    except ValueError:
        raise PayloadValidationError(f"Unknown action_type: {action_type!r}") from None


def parse_payload(action_type, raw: Dict[str, Any]) -> JobPayload:
    """Validate a raw payload dict and build the variant for action_type."""
    action = parse_action_type(action_type)
    if not isinstance(raw, dict):
        raise PayloadValidationError(f"{action.value} payload must be an object")

    cls = PAYLOAD_TYPES[action]
    known = {f.name for f in fields(cls)}
    unexpected = sorted(set(raw) - known)
    if unexpected:
        raise PayloadValidationError(
            f"{action.value} payload has unexpected fields: {', '.join(unexpected)}"
        )

    for name in _REQUIRED_TEXT[cls]:
        value = raw.get(name)
        # IG ids sometimes arrive as ints from webhooks
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if not isinstance(value, str) or not value.strip():
            raise PayloadValidationError(f"{action.value} payload requires non-empty '{name}'")

    values = {k: (str(v) if k in _REQUIRED_TEXT[cls] else v) for k, v in raw.items()}

    if cls is PublishPost:
        media_type = (values.get('media_type') or 'IMAGE').upper()
        if media_type not in MEDIA_TYPES:
            raise PayloadValidationError(f"Unsupported media_type: {media_type}")
        values['media_type'] = media_type

    return cls(**values)


def payload_to_dict(payload: JobPayload) -> Dict[str, Any]:
    """Serialize a variant for the JSON payload column, dropping unset optionals."""
    return {k: v for k, v in asdict(payload).items() if v is not None}
