from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

from entrywatch.domain import AggregatedResult, DateRange, FatalSinkError, FilterCriteria
from entrywatch.orchestrator import FetchOrchestrator
from entrywatch.region_filter import filter_by_region
from entrywatch.sinks import Sink

logger = logging.getLogger(__name__)


async def interruptible_sleep(seconds: float, stop_event: asyncio.Event) -> bool:
    """Sleep up to `seconds`. Returns True if `stop_event` was set meanwhile."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


async def run_cycle(
    orchestrator: FetchOrchestrator,
    date_range: DateRange,
    criteria: FilterCriteria,
    max_concurrency: int,
    sink: Sink,
) -> AggregatedResult:
    logger.info("Starting cycle...")
    fetched = await orchestrator.run(date_range, max_concurrency)
    result = filter_by_region(fetched, criteria)
    logger.info(
        "Cycle result: %d of %d location(s) in %s",
        len(result),
        len(fetched),
        ",".join(sorted(criteria.region_codes)) or "-",
    )
    await sink.deliver(result)
    return result


async def _run_cycle_guarded(
    orchestrator: FetchOrchestrator,
    date_range: DateRange,
    criteria: FilterCriteria,
    max_concurrency: int,
    sink: Sink,
    fatal_sink_errors: bool,
) -> None:
    try:
        await run_cycle(orchestrator, date_range, criteria, max_concurrency, sink)
    except FatalSinkError:
        raise
    except Exception as e:
        if fatal_sink_errors:
            raise
        # No traceback: one line per failed cycle is enough in the log.
        logger.error("Cycle failed (%s: %s)", type(e).__name__, e)


async def _until_stopped(coro: Coroutine[Any, Any, None], stop_event: asyncio.Event) -> bool:
    """Run `coro` unless `stop_event` fires first. Returns True if stopped."""
    work = asyncio.ensure_future(coro)
    stopper = asyncio.ensure_future(stop_event.wait())
    try:
        await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()
        if not work.done():
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)

    if work.cancelled():
        logger.info("Stop requested, current cycle abandoned.")
        return True

    work.result()
    return False


async def drive(
    orchestrator: FetchOrchestrator,
    date_range: DateRange,
    criteria: FilterCriteria,
    max_concurrency: int,
    interval_minutes: float,
    sink: Sink,
    *,
    stop_event: asyncio.Event | None = None,
    fatal_sink_errors: bool = False,
) -> None:
    if interval_minutes < 0:
        raise ValueError("interval_minutes must be >= 0")
    if stop_event is None:
        stop_event = asyncio.Event()

    async def one_cycle() -> None:
        await _run_cycle_guarded(orchestrator, date_range, criteria, max_concurrency, sink, fatal_sink_errors)

    if interval_minutes == 0:
        await _until_stopped(one_cycle(), stop_event)
        return

    logger.info("Worker started. Interval=%sm", interval_minutes)
    while not stop_event.is_set():
        if await _until_stopped(one_cycle(), stop_event):
            break
        logger.info("Sleeping %s minute(s)...", interval_minutes)
        if await interruptible_sleep(interval_minutes * 60, stop_event):
            break

    logger.info("Worker stopped.")
