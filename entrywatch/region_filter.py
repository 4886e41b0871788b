from __future__ import annotations

from entrywatch.domain import AggregatedResult, FilterCriteria


def filter_by_region(result: AggregatedResult, criteria: FilterCriteria) -> AggregatedResult:
    """Keep only locations whose state code is accepted. Order and failures are kept as is."""
    accepted = criteria.region_codes
    return AggregatedResult(
        locations=tuple(item for item in result.locations if item.location.state in accepted),
        failures=result.failures,
        fetched_dates=result.fetched_dates,
    )
