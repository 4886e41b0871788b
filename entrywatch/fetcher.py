from __future__ import annotations

import datetime as dt
import json
import logging
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from entrywatch.domain import FetchedLocation, FetchOutcome, LocationRecord, ResponseParseError
from entrywatch.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

BASE_URL = "https://ttp.cbp.dhs.gov/schedulerapi/slots/asLocations"
DEFAULT_SERVICE_NAME = "Global Entry"

# Errors worth another attempt. Anything else is a bug and fails the date at once.
RETRYABLE_ERRORS = (httpx.HTTPError, ResponseParseError)


def build_slots_params(date: dt.date, service_name: str = DEFAULT_SERVICE_NAME) -> dict[str, str]:
    return {
        "minimum": "1",
        "filterTimestampBy": "on",
        "timestamp": date.isoformat(),
        "serviceName": service_name,
    }


def build_slots_url(date: dt.date, service_name: str = DEFAULT_SERVICE_NAME, base_url: str = BASE_URL) -> str:
    return str(httpx.URL(base_url, params=build_slots_params(date, service_name)))


def parse_locations(body: str, date: dt.date) -> tuple[FetchedLocation, ...]:
    """Turn a response body into locations tagged with `date`.

    The body must be a JSON array, otherwise ResponseParseError. Elements that
    do not look like a location are skipped, the rest of the day is kept.
    """
    try:
        data: Any = json.loads(body)
    except (ValueError, RecursionError) as e:
        raise ResponseParseError(f"response is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise ResponseParseError(f"expected a JSON array, got {type(data).__name__}")

    result: list[FetchedLocation] = []
    for elem in data:
        try:
            location = LocationRecord.from_payload(elem)
        except ValueError as e:
            logger.warning("Skipping unparsable location for %s (%s)", date, e)
            continue
        result.append(FetchedLocation(date=date, location=location))
    return tuple(result)


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _date_of(retry_state: RetryCallState) -> object:
    return retry_state.kwargs.get("date", "?")


def _log_before_attempt(retry_state: RetryCallState) -> None:
    logger.debug("Date %s, attempt %s: start", _date_of(retry_state), retry_state.attempt_number)


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        logger.warning(
            "Date %s, attempt %s: failed (%s)",
            _date_of(retry_state),
            retry_state.attempt_number,
            _short_exc(retry_state) or "unknown error",
        )


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    if sleep_seconds is None:
        logger.info("Retrying date %s...", _date_of(retry_state))
        return
    logger.info("Retrying date %s in %.1f s", _date_of(retry_state), sleep_seconds)


class RetryingFetcher:
    """Fetches one date from the scheduler API with bounded retry.

    `fetch()` never raises (short of cancellation): exhausted retries come
    back as a failed FetchOutcome.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: RateLimiter,
        *,
        max_retries: int,
        backoff_seconds: float = 1.0,
        service_name: str = DEFAULT_SERVICE_NAME,
        base_url: str = BASE_URL,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")
        self._client = client
        self._limiter = limiter
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.service_name = service_name
        self.base_url = base_url

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(
                multiplier=self.backoff_seconds,
                min=self.backoff_seconds,
                max=self.backoff_seconds * 8,
            ),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before=_log_before_attempt,
            after=_log_after_attempt,
            before_sleep=_log_before_sleep,
            reraise=True,
        )

    async def _fetch_once(self, *, date: dt.date) -> tuple[FetchedLocation, ...]:
        await self._limiter.acquire()

        params = build_slots_params(date, self.service_name)
        logger.debug("HTTP GET %s %s", self.base_url, params)
        response = await self._client.get(self.base_url, params=params)
        logger.debug("Status code for %s: %s", date, response.status_code)
        response.raise_for_status()

        return parse_locations(response.text, date)

    async def fetch(self, date: dt.date) -> FetchOutcome:
        retrying = self._retrying()
        try:
            locations = await retrying(self._fetch_once, date=date)
        except RETRYABLE_ERRORS as e:
            attempts = retrying.statistics.get("attempt_number", self.max_retries + 1)
            reason = f"{type(e).__name__}: {e}"
            logger.error("Giving up on %s after %s attempt(s) (%s)", date, attempts, reason)
            return FetchOutcome.failure(date, reason, attempts=attempts)
        except Exception as e:
            attempts = retrying.statistics.get("attempt_number", 1)
            reason = f"{type(e).__name__}: {e}"
            logger.error("Unexpected error fetching %s (%s)", date, reason, exc_info=True)
            return FetchOutcome.failure(date, reason, attempts=attempts)

        attempts = retrying.statistics.get("attempt_number", 1)
        logger.debug("Date %s: %d location(s) after %d attempt(s)", date, len(locations), attempts)
        return FetchOutcome.success(date, locations, attempts=attempts)
