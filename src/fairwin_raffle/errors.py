"""Error taxonomy and result type for the raffle engine.

Engine components raise the ``RaffleError`` subclasses below. The
``RaffleEngine`` facade converts them into ``EngineResult`` values so callers
branch on ``ErrorKind`` instead of catching exceptions. Infrastructure
failures (database, RPC) are not part of this taxonomy and propagate.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Stable error codes exposed to collaborators."""

    RAFFLE_NOT_FOUND = "raffle_not_found"
    RAFFLE_NOT_ACTIVE = "raffle_not_active"
    INVALID_ENTRY = "invalid_entry"
    MAX_ENTRIES_EXCEEDED = "max_entries_exceeded"
    INVALID_STATUS_TRANSITION = "invalid_status_transition"
    NO_ENTRIES_FOR_DRAW = "no_entries_for_draw"
    WINNER_NOT_FOUND = "winner_not_found"
    PAYOUT_NOT_FOUND = "payout_not_found"
    PAYOUT_ALREADY_PROCESSED = "payout_already_processed"
    VALIDATION_ERROR = "validation_error"


class RaffleError(Exception):
    """Base exception for engine rule violations."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": dict(self.details)}


class RaffleNotFound(RaffleError):
    """Raised when a raffle id does not exist."""

    kind = ErrorKind.RAFFLE_NOT_FOUND

    def __init__(self, raffle_id: str) -> None:
        super().__init__(f"Raffle {raffle_id} not found", raffle_id=raffle_id)


class RaffleNotActive(RaffleError):
    """Raised when entries arrive outside the raffle's entry window."""

    kind = ErrorKind.RAFFLE_NOT_ACTIVE


class InvalidEntry(RaffleError):
    """Raised when an entry submission is malformed or mispriced."""

    kind = ErrorKind.INVALID_ENTRY


class MaxEntriesExceeded(RaffleError):
    """Raised when a wallet would exceed the raffle's per-user cap."""

    kind = ErrorKind.MAX_ENTRIES_EXCEEDED


class InvalidStatusTransition(RaffleError):
    """Raised when a lifecycle transition is not allowed or lost a race."""

    kind = ErrorKind.INVALID_STATUS_TRANSITION


class NoEntriesForDraw(RaffleError):
    """Raised when a draw is requested for a raffle without entries."""

    kind = ErrorKind.NO_ENTRIES_FOR_DRAW


class WinnerNotFound(RaffleError):
    kind = ErrorKind.WINNER_NOT_FOUND

    def __init__(self, winner_id: str) -> None:
        super().__init__(f"Winner {winner_id} not found", winner_id=winner_id)


class PayoutNotFound(RaffleError):
    kind = ErrorKind.PAYOUT_NOT_FOUND

    def __init__(self, winner_id: str) -> None:
        super().__init__(f"No payout recorded for winner {winner_id}", winner_id=winner_id)


class PayoutAlreadyProcessed(RaffleError):
    """Raised when a paid payout would be changed."""

    kind = ErrorKind.PAYOUT_ALREADY_PROCESSED


class ValidationError(RaffleError):
    """Raised when raffle configuration fails validation."""

    kind = ErrorKind.VALIDATION_ERROR


@dataclass(frozen=True)
class EngineResult(Generic[T]):
    """Outcome of a facade operation: a value or a tagged error.

    Example:
        ```python
        result = await engine.submit_entry(raffle_id, wallet, 3, paid, ref)
        if result.ok:
            entry = result.unwrap().entry
        elif result.error.kind is ErrorKind.MAX_ENTRIES_EXCEEDED:
            ...
        ```
    """

    value: T | None = None
    error: RaffleError | None = None

    @classmethod
    def success(cls, value: T) -> EngineResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: RaffleError) -> EngineResult[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    def unwrap(self) -> T:
        """Return the value or re-raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
