"""Raffle lifecycle state machine.

Transitions follow ``RAFFLE_TRANSITIONS`` and are applied with a
compare-and-set on the stored status, so two writers racing on the same
raffle cannot both succeed and a status never moves backwards.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from fairwin_raffle.engine.models import (
    ENTRY_STATUSES,
    RAFFLE_TRANSITIONS,
    TRIGGER_TRANSITIONS,
    Raffle,
    RaffleStatus,
    TransitionTrigger,
)
from fairwin_raffle.errors import InvalidStatusTransition, RaffleNotFound
from fairwin_raffle.storage.repos import RaffleRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_ENDING_THRESHOLD = timedelta(minutes=5)


def can_transition(current: RaffleStatus, new: RaffleStatus) -> bool:
    return new in RAFFLE_TRANSITIONS[current]


def is_accepting_entries(raffle: Raffle, now: datetime) -> bool:
    return raffle.status in ENTRY_STATUSES and raffle.start_time <= now < raffle.end_time


class RaffleStateMachine:
    """Applies lifecycle triggers to stored raffles.

    Example:
        ```python
        machine = RaffleStateMachine(session)
        raffle = await machine.advance_time(raffle_id, now)
        raffle = await machine.try_transition(raffle_id, TransitionTrigger.CANCEL, now)
        ```
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        ending_threshold: timedelta = DEFAULT_ENDING_THRESHOLD,
    ) -> None:
        self._raffles = RaffleRepository(session)
        self._ending_threshold = ending_threshold

    @property
    def ending_threshold(self) -> timedelta:
        return self._ending_threshold

    def check_guard(self, raffle: Raffle, trigger: TransitionTrigger, now: datetime) -> None:
        """Raise InvalidStatusTransition if the trigger's time guard does not hold."""
        if trigger is TransitionTrigger.START and now < raffle.start_time:
            raise InvalidStatusTransition(
                f"Raffle {raffle.raffle_id} starts at {raffle.start_time.isoformat()}",
                raffle_id=raffle.raffle_id,
                trigger=trigger.value,
            )
        if trigger is TransitionTrigger.CLOSE_SOON and raffle.end_time - now > self._ending_threshold:
            raise InvalidStatusTransition(
                f"Raffle {raffle.raffle_id} is not within the ending window",
                raffle_id=raffle.raffle_id,
                trigger=trigger.value,
            )
        if trigger is TransitionTrigger.DRAW and now < raffle.end_time:
            raise InvalidStatusTransition(
                f"Raffle {raffle.raffle_id} ends at {raffle.end_time.isoformat()}",
                raffle_id=raffle.raffle_id,
                trigger=trigger.value,
            )

    def due_trigger(self, raffle: Raffle, now: datetime) -> TransitionTrigger | None:
        """The time-based trigger that applies to ``raffle`` at ``now``, if any."""
        if raffle.status is RaffleStatus.SCHEDULED and now >= raffle.start_time:
            return TransitionTrigger.START
        if raffle.status is RaffleStatus.ACTIVE and raffle.end_time - now <= self._ending_threshold:
            return TransitionTrigger.CLOSE_SOON
        return None

    def display_status(self, raffle: Raffle, now: datetime) -> RaffleStatus:
        """Status as it should be shown at ``now``, even if the sweep is behind."""
        current = raffle
        trigger = self.due_trigger(current, now)
        while trigger is not None:
            current = replace(current, status=TRIGGER_TRANSITIONS[trigger][1])
            trigger = self.due_trigger(current, now)
        return current.status

    async def _load(self, raffle_id: str) -> Raffle:
        raffle = await self._raffles.get(raffle_id)
        if raffle is None:
            raise RaffleNotFound(raffle_id)
        return raffle

    async def try_transition(
        self,
        raffle_id: str,
        trigger: TransitionTrigger,
        now: datetime,
        **values: Any,
    ) -> Raffle:
        """Apply ``trigger`` to the raffle.

        Args:
            raffle_id: Raffle to transition.
            trigger: Lifecycle trigger.
            now: Current time used by the guards.
            **values: Extra columns written with the status change.

        Returns:
            The raffle after the transition.

        Raises:
            RaffleNotFound: If the raffle does not exist.
            InvalidStatusTransition: If the trigger does not apply to the
                current status, its guard fails, or a concurrent writer changed
                the status first.
        """
        raffle = await self._load(raffle_id)
        sources, target = TRIGGER_TRANSITIONS[trigger]
        if raffle.status not in sources or not can_transition(raffle.status, target):
            raise InvalidStatusTransition(
                f"Cannot {trigger.value} raffle {raffle_id} in status {raffle.status.value}",
                raffle_id=raffle_id,
                status=raffle.status.value,
                trigger=trigger.value,
            )
        self.check_guard(raffle, trigger, now)

        changed = await self._raffles.compare_and_set_status(
            raffle_id,
            [raffle.status],
            target,
            now=now,
            **values,
        )
        if not changed:
            raise InvalidStatusTransition(
                f"Raffle {raffle_id} left status {raffle.status.value} concurrently",
                raffle_id=raffle_id,
                status=raffle.status.value,
                trigger=trigger.value,
            )
        logger.info(
            "Raffle %s: %s -> %s (%s)",
            raffle_id,
            raffle.status.value,
            target.value,
            trigger.value,
        )
        return await self._load(raffle_id)

    async def advance_time(self, raffle_id: str, now: datetime) -> Raffle:
        """Apply every time-based transition that is due.

        Moves ``scheduled -> active -> ending`` as far as ``now`` allows. A
        transition lost to a concurrent writer is not an error: the raffle is
        reloaded and evaluated again. Never starts a draw.
        """
        raffle = await self._load(raffle_id)
        while True:
            trigger = self.due_trigger(raffle, now)
            if trigger is None:
                return raffle
            try:
                raffle = await self.try_transition(raffle_id, trigger, now)
            except InvalidStatusTransition:
                reloaded = await self._load(raffle_id)
                if reloaded.status is raffle.status:
                    raise
                logger.debug(
                    "Raffle %s advanced concurrently to %s",
                    raffle_id,
                    reloaded.status.value,
                )
                raffle = reloaded