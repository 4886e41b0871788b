from __future__ import annotations

import os
import re
from dataclasses import dataclass

from dotenv import load_dotenv

from entrywatch.domain import ConfigError, DateRange, FilterCriteria

_REGION_CODE = re.compile(r"^[A-Z]{2}$")


def _parse_region_codes(raw: str) -> tuple[str, ...]:
    # SEARCH_STATES is a comma-separated list of 2-letter codes.
    # Examples:
    #   SEARCH_STATES=CA
    #   SEARCH_STATES=CA, NY,WA
    parts = [p.strip() for p in raw.split(",")]
    parts = [p for p in parts if p]

    seen: set[str] = set()
    result: list[str] = []
    for p in parts:
        # Matching is case-sensitive and the API sends upper case.
        if not _REGION_CODE.match(p):
            raise ConfigError(f"Invalid SEARCH_STATES value: {p!r}. Expected a 2-letter upper-case code.")

        if p in seen:
            continue
        seen.add(p)
        result.append(p)

    if not result:
        raise ConfigError("SEARCH_STATES is empty. Provide at least one region code.")

    return tuple(result)


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: str, *, minimum: int) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {name} value: {raw!r}. Expected an integer.") from e
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}")
    return value


def _float_env(name: str, default: str, *, minimum: float, strict: bool = False) -> float:
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {name} value: {raw!r}. Expected a number.") from e
    if value < minimum or (strict and value == minimum):
        raise ConfigError(f"{name} must be {'>' if strict else '>='} {minimum:g}")
    return value


@dataclass(frozen=True)
class Settings:
    date_range: DateRange
    search_states: tuple[str, ...]

    # Fetch tuning
    # Minimum spacing between any two API requests, across all workers.
    api_rate_limit_seconds: float = 1.0
    max_concurrent_fetches: int = 4
    # Retries after the first attempt; a date gets at most max_retries + 1 requests.
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0
    request_timeout_seconds: float = 30.0
    service_name: str = "Global Entry"

    # 0 means run a single cycle and exit.
    fetch_interval_minutes: int = 0

    enable_slack: bool = False
    slack_token: str = ""
    slack_channel_id: str = ""
    csv_path: str = "appointments.csv"
    fatal_sink_errors: bool = False

    @property
    def criteria(self) -> FilterCriteria:
        return FilterCriteria(region_codes=frozenset(self.search_states))

    def describe(self) -> str:
        sink = f"slack(channel={self.slack_channel_id})" if self.enable_slack else f"csv({self.csv_path})"
        return (
            f"range={self.date_range.start}..{self.date_range.end} states={','.join(self.search_states)} "
            f"rate_limit={self.api_rate_limit_seconds}s concurrency={self.max_concurrent_fetches} "
            f"retries={self.max_retries} interval={self.fetch_interval_minutes}m sink={sink}"
        )


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigError(f"Missing required environment variable: {name}")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    date_range = DateRange.parse(_require("DATE_RANGE_START"), _require("DATE_RANGE_END"))

    enable_slack = _parse_bool(os.getenv("ENABLE_SLACK", "0"))
    slack_token = os.getenv("SLACK_TOKEN", "")
    slack_channel_id = os.getenv("SLACK_CHANNEL_ID", "")
    if enable_slack:
        slack_token = _require("SLACK_TOKEN")
        slack_channel_id = _require("SLACK_CHANNEL_ID")

    return Settings(
        date_range=date_range,
        search_states=_parse_region_codes(_require("SEARCH_STATES")),
        api_rate_limit_seconds=_float_env("API_RATE_LIMIT_SECONDS", "1.0", minimum=0),
        max_concurrent_fetches=_int_env("MAX_CONCURRENT_FETCHES", "4", minimum=1),
        max_retries=_int_env("MAX_RETRIES", "3", minimum=0),
        retry_backoff_seconds=_float_env("RETRY_BACKOFF_SECONDS", "1.0", minimum=0),
        request_timeout_seconds=_float_env("REQUEST_TIMEOUT_SECONDS", "30", minimum=0, strict=True),
        service_name=os.getenv("SERVICE_NAME", "Global Entry"),
        fetch_interval_minutes=_int_env("FETCH_INTERVAL_MINUTES", "0", minimum=0),
        enable_slack=enable_slack,
        slack_token=slack_token,
        slack_channel_id=slack_channel_id,
        csv_path=os.getenv("CSV_PATH", "appointments.csv"),
        fatal_sink_errors=_parse_bool(os.getenv("FATAL_SINK_ERRORS", "0")),
    )
