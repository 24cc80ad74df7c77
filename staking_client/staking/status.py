"""
Transaction status tracking: Building -> AwaitingSignature -> Submitted -> Confirmed | Failed.

One TrackedTransaction per user action. Transitions are forward-only and a
terminal transaction accepts no further transitions; a new action gets a new
TrackedTransaction. Observers (UI, CLI) are notified on every transition.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from solders.pubkey import Pubkey

from staking_client.core.exceptions import InvalidTransitionError
from staking_client.staking_logging import get_logger
from staking_client.utils.wallet_utils import short_address

logger = get_logger(__name__)


class TransactionKind(str, Enum):
    REGISTER = "register"
    STAKE = "stake"
    UNSTAKE = "unstake"
    CLAIM = "claim"
    COMPOUND = "compound"


class TransactionStatus(str, Enum):
    BUILDING = "building"
    AWAITING_SIGNATURE = "awaiting_signature"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TransactionStatus.CONFIRMED, TransactionStatus.FAILED)


class FailureReason(str, Enum):
    EXPIRED = "expired"
    PROGRAM_ERROR = "program_error"
    USER_CANCELLED = "user_cancelled"
    TIMEOUT = "timeout"
    REJECTED = "rejected"
    UNKNOWN = "unknown"


_ALLOWED: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.BUILDING: frozenset({TransactionStatus.AWAITING_SIGNATURE, TransactionStatus.FAILED}),
    TransactionStatus.AWAITING_SIGNATURE: frozenset({TransactionStatus.SUBMITTED, TransactionStatus.FAILED}),
    TransactionStatus.SUBMITTED: frozenset({TransactionStatus.CONFIRMED, TransactionStatus.FAILED}),
    TransactionStatus.CONFIRMED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class ConfirmationResult:
    """Terminal outcome of confirm()."""

    status: TransactionStatus
    signature: str
    reason: FailureReason | None = None
    error_code: int | None = None
    message: str | None = None
    slot: int | None = None

    @property
    def confirmed(self) -> bool:
        return self.status is TransactionStatus.CONFIRMED


@dataclass
class TrackedTransaction:
    id: int
    kind: TransactionKind
    owner: Pubkey
    status: TransactionStatus = TransactionStatus.BUILDING
    signature: str | None = None
    reason: FailureReason | None = None
    error_code: int | None = None
    message: str | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def terminal(self) -> bool:
        return self.status.terminal


Observer = Callable[[TrackedTransaction], None]


class TransactionStatusTracker:
    """Owns the lifecycle of every TrackedTransaction for one client instance."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._active: dict[int, TrackedTransaction] = {}
        self._last: dict[str, TrackedTransaction] = {}
        self._observers: list[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer; returns a function that unsubscribes it."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def begin(self, kind: TransactionKind, owner: Pubkey) -> TrackedTransaction:
        tracked = TrackedTransaction(id=next(self._ids), kind=kind, owner=owner)
        self._active[tracked.id] = tracked
        self._notify(tracked)
        return tracked

    def advance(
        self,
        tracked: TrackedTransaction,
        status: TransactionStatus,
        *,
        signature: str | None = None,
        reason: FailureReason | None = None,
        error_code: int | None = None,
        message: str | None = None,
    ) -> TrackedTransaction:
        if status not in _ALLOWED[tracked.status]:
            raise InvalidTransitionError(
                f"transaction {tracked.id}: {tracked.status.value} -> {status.value} not allowed"
            )
        tracked.status = status
        tracked.updated_at = time.time()
        if signature is not None:
            tracked.signature = signature
        if status is TransactionStatus.FAILED:
            tracked.reason = reason or FailureReason.UNKNOWN
            tracked.error_code = error_code
        if message is not None:
            tracked.message = message
        if status.terminal:
            self._active.pop(tracked.id, None)
            self._last[str(tracked.owner)] = tracked
        logger.info(
            "transaction_status",
            tx_id=tracked.id,
            kind=tracked.kind.value,
            owner=short_address(tracked.owner),
            status=status.value,
            signature=tracked.signature,
            reason=tracked.reason.value if tracked.reason else None,
            error_code=tracked.error_code,
        )
        self._notify(tracked)
        return tracked

    def fail(self, tracked: TrackedTransaction, reason: FailureReason, *, error_code: int | None = None, message: str | None = None) -> None:
        """Mark a non-terminal transaction Failed; no-op if it already reached a terminal state."""
        if tracked.terminal:
            return
        self.advance(tracked, TransactionStatus.FAILED, reason=reason, error_code=error_code, message=message)

    def complete(self, tracked: TrackedTransaction, result: ConfirmationResult) -> TrackedTransaction:
        return self.advance(
            tracked,
            result.status,
            signature=result.signature,
            reason=result.reason,
            error_code=result.error_code,
            message=result.message,
        )

    def active(self) -> list[TrackedTransaction]:
        return list(self._active.values())

    def last(self, owner: Pubkey) -> TrackedTransaction | None:
        return self._last.get(str(owner))

    def clear(self, owner: Pubkey) -> None:
        self._last.pop(str(owner), None)

    def _notify(self, tracked: TrackedTransaction) -> None:
        for observer in list(self._observers):
            try:
                observer(tracked)
            except Exception as e:
                logger.warning("transaction_observer_failed", tx_id=tracked.id, error=str(e))
