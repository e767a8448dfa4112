"""
Retry Policy -- classification and backoff for failed transactions.

Responsibility:
    Decides whether a failed transaction may be charged again and when.
    Backoff is an explicit table indexed by attempt number, so it can be
    tested without wall-clock waits.

Architecture position:
    Kernel > Domain -- pure, no I/O.  The ledger consults it when a
    transaction fails; the Retry Coordinator consults it before re-charging.

Rules:
    - Only failures whose reason is in the transient set are retried.
    - Attempt n (n = retry_count + 1) runs at failed_at + backoff[n - 1].
    - When retry_count reaches len(backoff) no further attempt is scheduled.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum


class FailureReason:
    """Well-known failure reason codes."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    GATEWAY_BUSY = "gateway_busy"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    SESSION_EXPIRED = "session_expired"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    USER_DECLINED = "user_declined"
    INVALID_PHONE_NUMBER = "invalid_phone_number"
    INVALID_AMOUNT = "invalid_amount"


DEFAULT_BACKOFF: tuple[timedelta, ...] = (
    timedelta(minutes=1),
    timedelta(minutes=5),
    timedelta(minutes=30),
)

DEFAULT_TRANSIENT_REASONS: frozenset[str] = frozenset({
    FailureReason.NETWORK_ERROR,
    FailureReason.TIMEOUT,
    FailureReason.GATEWAY_BUSY,
    FailureReason.GATEWAY_UNAVAILABLE,
    FailureReason.SESSION_EXPIRED,
})


class FailureClass(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of evaluating one failure."""

    should_retry: bool
    next_retry_at: datetime | None
    failure_class: FailureClass
    attempt_number: int | None = None
    explanation: str = ""

    @property
    def final(self) -> bool:
        """True when the transaction will stay failed permanently."""
        return not self.should_retry


@dataclass(frozen=True)
class RetryPolicy:
    backoff: tuple[timedelta, ...] = DEFAULT_BACKOFF
    transient_reasons: frozenset[str] = field(default=DEFAULT_TRANSIENT_REASONS)

    def __post_init__(self) -> None:
        for earlier, later in zip(self.backoff, self.backoff[1:]):
            if later <= earlier:
                raise ValueError("Retry backoff must be strictly increasing")

    @property
    def max_retries(self) -> int:
        return len(self.backoff)

    def classify(self, reason: str | None) -> FailureClass:
        if reason is not None and reason in self.transient_reasons:
            return FailureClass.TRANSIENT
        return FailureClass.PERMANENT

    def delay_for(self, attempt_number: int) -> timedelta:
        """Delay before retry attempt ``attempt_number`` (1-based)."""
        if attempt_number < 1 or attempt_number > self.max_retries:
            raise ValueError(
                f"Attempt {attempt_number} outside 1..{self.max_retries}"
            )
        return self.backoff[attempt_number - 1]

    def should_retry(
        self,
        retry_count: int,
        failure_reason: str | None,
        failed_at: datetime,
    ) -> RetryDecision:
        failure_class = self.classify(failure_reason)
        if failure_class == FailureClass.PERMANENT:
            return RetryDecision(
                should_retry=False,
                next_retry_at=None,
                failure_class=failure_class,
                explanation=f"permanent failure: {failure_reason}",
            )
        if retry_count >= self.max_retries:
            return RetryDecision(
                should_retry=False,
                next_retry_at=None,
                failure_class=failure_class,
                explanation=f"retries exhausted ({retry_count}/{self.max_retries})",
            )
        attempt = retry_count + 1
        return RetryDecision(
            should_retry=True,
            next_retry_at=failed_at + self.delay_for(attempt),
            failure_class=failure_class,
            attempt_number=attempt,
        )

    @classmethod
    def from_minutes(
        cls,
        backoff_minutes: list[int] | tuple[int, ...],
        transient_reasons: frozenset[str] | set[str] | None = None,
    ) -> "RetryPolicy":
        return cls(
            backoff=tuple(timedelta(minutes=m) for m in backoff_minutes),
            transient_reasons=frozenset(
                transient_reasons
                if transient_reasons is not None
                else DEFAULT_TRANSIENT_REASONS
            ),
        )
