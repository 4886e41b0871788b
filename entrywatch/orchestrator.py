from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Protocol

from entrywatch.domain import AggregatedResult, DateRange, FetchedLocation, FetchOutcome, FetchTask

logger = logging.getLogger(__name__)


class DateFetcher(Protocol):
    async def fetch(self, date: dt.date) -> FetchOutcome: ...


class FetchOrchestrator:
    """Fans a date range out to a bounded pool of fetch workers and merges the outcomes.

    Workers only talk to the run coroutine through queues; the run coroutine is
    the single writer of the accumulated result.
    """

    def __init__(self, fetcher: DateFetcher) -> None:
        self._fetcher = fetcher

    async def _worker(
        self,
        tasks: asyncio.Queue[FetchTask],
        outcomes: asyncio.Queue[tuple[FetchTask, FetchOutcome]],
    ) -> None:
        while True:
            try:
                task = tasks.get_nowait()
            except asyncio.QueueEmpty:
                return

            try:
                outcome = await self._fetcher.fetch(task.date)
            except Exception as e:
                # The fetcher reports failures as outcomes; this only catches bugs.
                logger.error("Fetcher raised for %s (%s: %s)", task.date, type(e).__name__, e, exc_info=True)
                outcome = FetchOutcome.failure(task.date, f"{type(e).__name__}: {e}", attempts=max(task.attempts, 1))

            task.attempts = outcome.attempts
            await outcomes.put((task, outcome))

    async def run(self, date_range: DateRange, max_concurrency: int) -> AggregatedResult:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        tasks: asyncio.Queue[FetchTask] = asyncio.Queue()
        pending: dict[dt.date, FetchTask] = {}
        for date in date_range.dates():
            task = FetchTask(date=date)
            pending[date] = task
            tasks.put_nowait(task)

        outcomes: asyncio.Queue[tuple[FetchTask, FetchOutcome]] = asyncio.Queue()
        pool_size = min(max_concurrency, len(pending))
        logger.info(
            "Fetching %d date(s) %s..%s with %d worker(s)",
            len(pending),
            date_range.start,
            date_range.end,
            pool_size,
        )
        workers = [asyncio.create_task(self._worker(tasks, outcomes)) for _ in range(pool_size)]

        locations: list[FetchedLocation] = []
        failures: dict[dt.date, str] = {}
        fetched: set[dt.date] = set()

        try:
            while pending:
                task, outcome = await outcomes.get()
                # Keyed by the task handed out, not by what the fetcher echoes back.
                date = task.date
                del pending[date]
                if outcome.date != date:
                    logger.warning("Fetcher answered %s for task %s", outcome.date, date)

                if outcome.ok:
                    locations.extend(outcome.locations)
                    fetched.add(date)
                    logger.debug("Date %s: %d location(s)", date, len(outcome.locations))
                else:
                    failures[date] = outcome.error or "unknown error"
                    logger.warning(
                        "Date %s failed after %d attempt(s): %s",
                        date,
                        task.attempts,
                        failures[date],
                    )

            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        logger.info(
            "Fetched %d location(s) total; %d date(s) ok, %d failed.",
            len(locations),
            len(fetched),
            len(failures),
        )
        if failures:
            logger.warning("Failed dates: %s", ", ".join(str(d) for d in sorted(failures)))

        return AggregatedResult(
            locations=tuple(locations),
            failures=failures,
            fetched_dates=frozenset(fetched),
        )
