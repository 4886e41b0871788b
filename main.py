import argparse
import asyncio
import logging
import os
import signal

import httpx

from entrywatch.config import Settings, load_settings
from entrywatch.cycle import drive
from entrywatch.domain import ConfigError
from entrywatch.fetcher import RetryingFetcher
from entrywatch.orchestrator import FetchOrchestrator
from entrywatch.rate_limiter import RateLimiter
from entrywatch.sinks import build_sink

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    raw_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    # getLevelName maps a known name to its number and anything else to a string.
    level = logging.getLevelName(raw_level)
    known = isinstance(level, int)
    logging.basicConfig(
        level=level if known else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    if not known:
        logger.warning("Unknown LOG_LEVEL %r, using INFO", raw_level)
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler; Ctrl+C still raises KeyboardInterrupt.
            logger.debug("Signal handler for %s not installed", sig)


async def run(settings: Settings, *, once: bool = False) -> None:
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    interval = 0 if once else settings.fetch_interval_minutes
    limiter = RateLimiter(settings.api_rate_limit_seconds)

    async with httpx.AsyncClient(timeout=httpx.Timeout(settings.request_timeout_seconds)) as client:
        fetcher = RetryingFetcher(
            client,
            limiter,
            max_retries=settings.max_retries,
            backoff_seconds=settings.retry_backoff_seconds,
            service_name=settings.service_name,
        )
        await drive(
            FetchOrchestrator(fetcher),
            settings.date_range,
            settings.criteria,
            settings.max_concurrent_fetches,
            interval,
            build_sink(settings, client),
            stop_event=stop_event,
            fatal_sink_errors=settings.fatal_sink_errors,
        )


def main() -> int:
    parser = argparse.ArgumentParser(description="EntryWatch: Global Entry appointment watcher")
    parser.add_argument("--once", action="store_true", help="Run single cycle and exit")
    parser.add_argument("--env-file", default=None, help="Path to .env file (default: ./.env)")
    args = parser.parse_args()

    _setup_logging()
    try:
        settings = load_settings(dotenv_path=args.env_file)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2

    logger.info("Loaded config: %s", settings.describe())

    try:
        asyncio.run(run(settings, once=args.once))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    except Exception as e:
        logger.error("EntryWatch stopped with an error (%s: %s)", type(e).__name__, e)
        raise

    logger.info("EntryWatch stopped.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
