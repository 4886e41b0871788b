from __future__ import annotations

import datetime as dt

from fakes import make_location, make_result

from entrywatch.domain import FilterCriteria
from entrywatch.region_filter import filter_by_region

D1 = dt.date(2025, 1, 1)
D2 = dt.date(2025, 1, 2)


def _sample():
    return make_result(
        [
            (D2, make_location(1, "CA")),
            (D1, make_location(2, "NY")),
            (D1, make_location(3, "WA")),
            (D1, make_location(4, "CA")),
        ],
        failures={dt.date(2025, 1, 3): "HTTPStatusError: 503"},
    )


def test_keeps_only_accepted_codes_in_input_order() -> None:
    filtered = filter_by_region(_sample(), FilterCriteria.of("CA", "WA"))

    assert [item.location.id for item in filtered.locations] == [1, 3, 4]


def test_failures_and_fetched_dates_are_carried_over() -> None:
    result = _sample()

    filtered = filter_by_region(result, FilterCriteria.of("TX"))

    assert filtered.is_empty
    assert filtered.failures == result.failures
    assert filtered.fetched_dates == result.fetched_dates


def test_is_idempotent() -> None:
    criteria = FilterCriteria.of("CA")

    once = filter_by_region(_sample(), criteria)
    twice = filter_by_region(once, criteria)

    assert twice == once


def test_match_is_case_sensitive() -> None:
    filtered = filter_by_region(_sample(), FilterCriteria.of("ca"))

    assert filtered.is_empty


def test_empty_criteria_yields_empty_result() -> None:
    filtered = filter_by_region(_sample(), FilterCriteria(region_codes=frozenset()))

    assert len(filtered) == 0


def test_input_is_not_mutated() -> None:
    result = _sample()
    before = result.locations

    filter_by_region(result, FilterCriteria.of("NY"))

    assert result.locations == before
    assert len(result) == 4
