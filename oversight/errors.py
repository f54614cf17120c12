"""
Structural errors — caller bugs rejected synchronously at the API boundary.

None of these ever enter the queue or trigger a retry.
"""


class OversightError(Exception):
    """Base class for all structural errors raised by the core."""
    http_status = 400


class PayloadValidationError(OversightError):
    """Job payload (or draft content) does not match its action-specific schema."""
    http_status = 400


class NotFoundError(OversightError):
    """Referenced job, post or review does not exist."""
    http_status = 404

    def __init__(self, entity, record_id):
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} {record_id} not found")


class IllegalTransitionError(OversightError):
    """Requested state change is not allowed from the record's current state."""
    http_status = 409

    def __init__(self, entity, record_id, current, requested):
        self.entity = entity
        self.record_id = record_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"{entity} {record_id}: cannot move from '{current}' to '{requested}'"
        )
