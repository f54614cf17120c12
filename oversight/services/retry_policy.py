"""
Retry and backoff policy for outbound jobs.

Given (category, attempt_count) decide whether a failed attempt is retried,
how long to wait, and which alert to raise when the job is dead-lettered.
"""
from dataclasses import dataclass, field
from typing import Dict, Optional

from oversight.config import BACKOFF_BASE_SECONDS, BACKOFF_CAP_SECONDS, RETRY_CEILINGS
from oversight.models.enums import AlertType, ErrorCategory


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_seconds: float = 0.0
    alert_type: Optional[AlertType] = None
    reason: str = ''


@dataclass(frozen=True)
class RetryPolicy:
    base_seconds: float = BACKOFF_BASE_SECONDS
    cap_seconds: float = BACKOFF_CAP_SECONDS
    ceilings: Dict[str, int] = field(default_factory=lambda: dict(RETRY_CEILINGS))

    def __post_init__(self):
        if self.base_seconds < 0 or self.cap_seconds < 0:
            raise ValueError("backoff base and cap must be >= 0")
        for name, ceiling in self.ceilings.items():
            if ceiling < 0:
                raise ValueError(f"retry ceiling for {name} must be >= 0")

    def ceiling(self, category: ErrorCategory) -> int:
        return int(self.ceilings.get(category.value, 0))

    def backoff_seconds(self, attempt_count: int) -> float:
        """min(base * 2^attempt_count, cap)."""
        return min(self.base_seconds * (2 ** max(attempt_count, 0)), self.cap_seconds)

    def decide(self, category: ErrorCategory, attempt_count: int,
               retry_after: Optional[float] = None,
               policy_violation: bool = False) -> RetryDecision:
        """
        Decide the fate of a job whose attempt number `attempt_count` just failed.

        A job retries while attempt_count <= ceiling, so a transient job with
        ceiling 3 gets the initial attempt plus three retries before DLQ.
        """
        category = ErrorCategory(category)

        if category is ErrorCategory.AUTH_FAILURE:
            return RetryDecision(False, alert_type=AlertType.AUTH_FAILURE,
                                 reason='credential rejected')

        if category is ErrorCategory.PERMANENT:
            alert = AlertType.CONTENT_VIOLATION if policy_violation else AlertType.SYNC_FAILURE
            return RetryDecision(False, alert_type=alert, reason='unretryable request')

        if category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN, ErrorCategory.RATE_LIMIT):
            exhausted_alert = (
                AlertType.RATE_LIMIT if category is ErrorCategory.RATE_LIMIT
                else AlertType.SYNC_FAILURE
            )
            if attempt_count > self.ceiling(category):
                return RetryDecision(False, alert_type=exhausted_alert,
                                     reason=f'retry ceiling {self.ceiling(category)} exceeded')
            delay = self.backoff_seconds(attempt_count)
            if category is ErrorCategory.RATE_LIMIT and retry_after is not None:
                delay = float(retry_after)
            return RetryDecision(True, delay_seconds=delay, reason='retry scheduled')

        raise ValueError(f"Unhandled error category: {category}")
