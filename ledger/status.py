"""Launch status machine - forward-only progression of a launch record."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class MixingStatus(str, Enum):
    """Status values reported by (or inferred from) the mixing collaborator."""
    DEPOSIT_PENDING = "deposit_pending"
    MIXED = "mixed"
    READY = "ready"
    COMPLETE = "complete"
    OK = "ok"
    WITHDRAWING = "withdrawing"
    WITHDRAWN = "withdrawn"
    WITHDRAW_ERROR = "withdraw_error"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "MixingStatus":
        """Map a free-form collaborator string onto the closed set."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_ready(self) -> bool:
        """Funds are mixed and can be withdrawn."""
        return self in READY_STATUSES


READY_STATUSES = frozenset({
    MixingStatus.MIXED,
    MixingStatus.READY,
    MixingStatus.COMPLETE,
    MixingStatus.OK,
})


class LaunchStatus(str, Enum):
    """Canonical overallStatus values."""
    DEPOSIT_PENDING = "deposit_pending"
    MIXED = "mixed"
    READY = "ready"
    COMPLETE = "complete"
    OK = "ok"
    WITHDRAWING = "withdrawing"
    WITHDRAWN = "withdrawn"
    LAUNCHED = "launched"
    SOLD = "sold"
    CLAIMED_AND_RETURNED = "claimed_and_returned"
    DEPOSIT_ERROR = "deposit_error"
    WITHDRAW_ERROR = "withdraw_error"


# Position in the canonical forward sequence
STATUS_RANK = {
    LaunchStatus.DEPOSIT_PENDING: 0,
    LaunchStatus.MIXED: 1,
    LaunchStatus.READY: 1,
    LaunchStatus.COMPLETE: 1,
    LaunchStatus.OK: 1,
    LaunchStatus.WITHDRAWING: 2,
    LaunchStatus.WITHDRAWN: 3,
    LaunchStatus.LAUNCHED: 4,
    LaunchStatus.SOLD: 5,
    LaunchStatus.CLAIMED_AND_RETURNED: 5,
}

# Error variant -> rank at which the failed phase may be retried
ERROR_RESUME_RANK = {
    LaunchStatus.DEPOSIT_ERROR: 0,
    LaunchStatus.WITHDRAW_ERROR: STATUS_RANK[LaunchStatus.WITHDRAWING],
}

MIXING_TIER_RANK = 1


def _parse(status: Optional[str]) -> Optional[LaunchStatus]:
    try:
        return LaunchStatus(status)
    except ValueError:
        return None


def is_error(status: Optional[str]) -> bool:
    return _parse(status) in ERROR_RESUME_RANK


def status_rank(status: Optional[str]) -> int:
    """
    Rank of a status in the forward sequence.

    Error variants rank at their resume point. Strings the collaborator
    invents are treated as mixing-tier states.
    """
    parsed = _parse(status)
    if parsed is None:
        return MIXING_TIER_RANK
    if parsed in ERROR_RESUME_RANK:
        return ERROR_RESUME_RANK[parsed]
    return STATUS_RANK[parsed]


def can_transition(current: Optional[str], new: str) -> bool:
    """
    True if moving ``current`` -> ``new`` never regresses the record.

    - into an error: allowed from a non-error state not past the error's resume rank
    - out of an error: allowed to anything at or past its resume rank
    - otherwise: rank must not decrease
    """
    if current is None or current == new:
        return True

    if is_error(new):
        return not is_error(current) and status_rank(current) <= status_rank(new)

    return status_rank(new) >= status_rank(current)


def at_least(status: Optional[str], floor: LaunchStatus) -> bool:
    """True if ``status`` is a non-error state at or beyond ``floor``."""
    return not is_error(status) and status_rank(status) >= STATUS_RANK[floor]


@dataclass(frozen=True)
class Reconciliation:
    """Outcome of comparing a reported mixing status with the cached one."""

    reported: MixingStatus
    status: str
    ready: bool
    changed: bool


def reconcile_status(
    cached_mixing_status: Optional[str],
    overall_status: Optional[str],
    reported: Optional[str],
) -> Reconciliation:
    """
    Pure status sync: decide what a poll of the mixing collaborator means.

    Never performs I/O. ``changed`` is only set when persisting the
    reported status would be a legal forward move that differs from the
    cached mixing status.
    """
    parsed = MixingStatus.parse(reported)
    incoming = reported if reported else (overall_status or MixingStatus.UNKNOWN.value)

    if parsed.is_ready:
        return Reconciliation(reported=parsed, status=incoming, ready=True, changed=False)

    changed = (
        incoming != cached_mixing_status
        and incoming != overall_status
        and can_transition(overall_status, incoming)
    )
    return Reconciliation(reported=parsed, status=incoming, ready=False, changed=changed)
