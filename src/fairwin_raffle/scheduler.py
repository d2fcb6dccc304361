"""Lifecycle sweep.

Periodically advances raffles whose start or end time has been reached
and, when enabled, requests draws for raffles that have ended. Runs as a
long-lived task next to the API process, or standalone via
``fairwin-scheduler``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from fairwin_raffle.config import Settings, get_settings
from fairwin_raffle.engine.models import RaffleStatus
from fairwin_raffle.engine.randomness import seed_source_from_settings
from fairwin_raffle.engine.service import RaffleEngine
from fairwin_raffle.errors import ErrorKind
from fairwin_raffle.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """Outcome of one sweep."""

    advanced: list[str] = field(default_factory=list)
    drawn: list[str] = field(default_factory=list)
    recovered: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


@dataclass
class SchedulerStats:
    started_at: datetime | None = None
    ticks: int = 0
    draws: int = 0
    errors: int = 0
    last_tick_at: datetime | None = None
    last_error: str | None = None


class RaffleScheduler:
    """Drives time-based raffle transitions.

    Example:
        ```python
        scheduler = RaffleScheduler(engine, interval_seconds=30, auto_draw=True)
        task = asyncio.create_task(scheduler.run())
        ...
        await scheduler.stop()
        ```
    """

    def __init__(
        self,
        engine: RaffleEngine,
        *,
        interval_seconds: float = 30.0,
        auto_draw: bool = True,
        batch_size: int = 100,
    ) -> None:
        self._engine = engine
        self._interval = interval_seconds
        self._auto_draw = auto_draw
        self._batch_size = batch_size
        self._stop_event: asyncio.Event | None = None
        self._stats = SchedulerStats()

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    async def tick(self, now: datetime | None = None) -> TickReport:
        """Sweep every raffle with a due transition once."""
        ts = now or datetime.now(UTC)
        report = TickReport()
        due = await self._engine.due_raffles(now=ts, limit=self._batch_size)

        seen: set[str] = set()
        for raffle in due:
            if raffle.raffle_id in seen:
                continue
            seen.add(raffle.raffle_id)
            try:
                await self._handle(raffle.raffle_id, raffle.status, ts, report)
            except Exception as e:
                # Per-raffle failures are isolated
                report.errors[raffle.raffle_id] = str(e)
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.warning("Scheduler failed on raffle %s: %s", raffle.raffle_id, e)

        self._stats.ticks += 1
        self._stats.draws += len(report.drawn)
        self._stats.last_tick_at = ts
        if report.advanced or report.drawn or report.recovered:
            logger.info(
                "Scheduler tick: %d advanced, %d drawn, %d recovered",
                len(report.advanced),
                len(report.drawn),
                len(report.recovered),
            )
        return report

    async def _handle(self, raffle_id: str, status: RaffleStatus, now: datetime, report: TickReport) -> None:
        if status is RaffleStatus.DRAWING:
            if not self._auto_draw:
                return
            completed = await self._engine.complete_draw(raffle_id, now=now)
            if completed.ok:
                report.recovered.append(raffle_id)
            else:
                report.skipped[raffle_id] = completed.kind.value if completed.kind else "unknown"
            return

        advanced = await self._engine.advance_time(raffle_id, now=now)
        if not advanced.ok:
            report.skipped[raffle_id] = advanced.kind.value if advanced.kind else "unknown"
            return
        raffle = advanced.unwrap()
        if raffle.status is not status:
            report.advanced.append(raffle_id)

        if self._auto_draw and raffle.status is RaffleStatus.ENDING and now >= raffle.end_time:
            if raffle.total_entries == 0:
                # Left for an operator to cancel
                logger.debug("Raffle %s ended without entries; not drawing", raffle_id)
                report.skipped[raffle_id] = ErrorKind.NO_ENTRIES_FOR_DRAW.value
                return
            drawn = await self._engine.request_draw(raffle_id, now=now)
            if drawn.ok:
                report.drawn.append(raffle_id)
            else:
                report.skipped[raffle_id] = drawn.kind.value if drawn.kind else "unknown"

    async def run(self) -> None:
        """Sweep every ``interval_seconds`` until ``stop()`` is called."""
        self._stop_event = asyncio.Event()
        self._stats.started_at = datetime.now(UTC)
        logger.info("Raffle scheduler started (interval=%ss, auto_draw=%s)", self._interval, self._auto_draw)

        while not self._stop_event.is_set():
            try:
                await self.tick()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                    break
                except TimeoutError:
                    pass
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.warning("Scheduler loop error: %s", e)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                except TimeoutError:
                    pass

        logger.info("Raffle scheduler stopped")

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()


def build_engine(settings: Settings, db: DatabaseManager) -> RaffleEngine:
    return RaffleEngine(
        db.session_factory,
        settings=settings.raffle,
        seed_source=seed_source_from_settings(
            settings.randomness.source,
            rpc_url=settings.randomness.polygon_rpc_url,
        ),
    )


async def _run(settings: Settings, *, once: bool, init_schema: bool) -> None:
    db = DatabaseManager.from_settings(settings.database)
    try:
        if init_schema:
            await db.init_schema_async()
        scheduler = RaffleScheduler(
            build_engine(settings, db),
            interval_seconds=settings.scheduler.interval_seconds,
            auto_draw=settings.scheduler.auto_draw,
            batch_size=settings.scheduler.batch_size,
        )
        if once:
            report = await scheduler.tick()
            logger.info(
                "Single sweep done: advanced=%s drawn=%s recovered=%s skipped=%s errors=%s",
                report.advanced,
                report.drawn,
                report.recovered,
                report.skipped,
                report.errors,
            )
        else:
            await scheduler.run()
    finally:
        await db.dispose_async()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the raffle lifecycle scheduler")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    parser.add_argument("--init-schema", action="store_true", help="Create tables before starting")
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Settings: %s", settings.redacted_summary())

    try:
        asyncio.run(_run(settings, once=args.once, init_schema=args.init_schema))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
