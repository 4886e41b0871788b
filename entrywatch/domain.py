from __future__ import annotations

import datetime as dt
import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterator, Mapping


class ConfigError(RuntimeError):
    """Invalid or missing configuration. Fatal at startup."""


class ResponseParseError(ValueError):
    """The API answered, but the body is not a JSON array of locations.

    Retried exactly like a transport error.
    """


class SinkError(RuntimeError):
    """Export/notification failed for one cycle. The loop keeps going."""


class FatalSinkError(SinkError):
    """Sink failure that must stop the process."""


@dataclass(frozen=True)
class DateRange:
    start: dt.date
    end: dt.date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ConfigError(f"Invalid date range: end {self.end} is before start {self.start}")

    @classmethod
    def parse(cls, start: str, end: str) -> DateRange:
        return cls(start=_parse_iso_date(start, "start"), end=_parse_iso_date(end, "end"))

    def dates(self) -> Iterator[dt.date]:
        current = self.start
        while current <= self.end:
            yield current
            current += dt.timedelta(days=1)

    def __len__(self) -> int:
        return (self.end - self.start).days + 1


def _parse_iso_date(raw: str, what: str) -> dt.date:
    try:
        return dt.datetime.strptime(raw.strip(), "%Y-%m-%d").date()
    except ValueError as e:
        raise ConfigError(f"Invalid {what} date: {raw!r}. Expected YYYY-MM-DD.") from e


@dataclass
class FetchTask:
    date: dt.date
    attempts: int = 0


def _require_str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string, got {type(value).__name__}")
    return value


def _optional_str(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string or null, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class LocationRecord:
    """One appointment location as returned by the scheduler API.

    `raw` keeps the complete JSON of the element so exports can carry fields
    we do not model.
    """

    id: int
    name: str
    state: str
    city: str
    address: str
    postal_code: str
    address_additional: str | None = None
    phone_number: str | None = None
    raw: str = field(default="", repr=False, compare=False)

    @classmethod
    def from_payload(cls, payload: Any) -> LocationRecord:
        if not isinstance(payload, Mapping):
            raise ValueError(f"location must be a JSON object, got {type(payload).__name__}")

        location_id = payload.get("id")
        # bool is an int subclass; the API never sends it as an id.
        if not isinstance(location_id, int) or isinstance(location_id, bool):
            raise ValueError(f"field 'id' must be an integer, got {location_id!r}")

        return cls(
            id=location_id,
            name=_require_str(payload, "name"),
            state=_require_str(payload, "state"),
            city=_require_str(payload, "city"),
            address=_require_str(payload, "address"),
            postal_code=_require_str(payload, "postalCode"),
            address_additional=_optional_str(payload, "addressAdditional"),
            phone_number=_optional_str(payload, "phoneNumber"),
            raw=json.dumps(payload, ensure_ascii=False, separators=(",", ":")),
        )


@dataclass(frozen=True)
class FetchedLocation:
    date: dt.date
    location: LocationRecord


@dataclass(frozen=True)
class FetchOutcome:
    date: dt.date
    locations: tuple[FetchedLocation, ...] = ()
    error: str | None = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, date: dt.date, locations: tuple[FetchedLocation, ...], attempts: int = 1) -> FetchOutcome:
        return cls(date=date, locations=tuple(locations), error=None, attempts=attempts)

    @classmethod
    def failure(cls, date: dt.date, error: str, attempts: int) -> FetchOutcome:
        return cls(date=date, locations=(), error=error, attempts=attempts)


@dataclass(frozen=True)
class AggregatedResult:
    locations: tuple[FetchedLocation, ...] = ()
    failures: Mapping[dt.date, str] = field(default_factory=dict)
    fetched_dates: frozenset[dt.date] = frozenset()

    def __post_init__(self) -> None:
        # Read-only copy: the result is immutable once built.
        object.__setattr__(self, "failures", MappingProxyType(dict(self.failures)))

    @property
    def failed_dates(self) -> frozenset[dt.date]:
        return frozenset(self.failures)

    @property
    def is_empty(self) -> bool:
        return not self.locations

    def __len__(self) -> int:
        return len(self.locations)


@dataclass(frozen=True)
class FilterCriteria:
    region_codes: frozenset[str]

    @classmethod
    def of(cls, *codes: str) -> FilterCriteria:
        return cls(region_codes=frozenset(codes))
