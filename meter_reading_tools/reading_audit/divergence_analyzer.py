"""Unit-level divergences between periods for the routes being read now.

Only routes with at least one current-period (P1) unit are audited; a route
that exists only in the previous period (P2) is ignored entirely. Within each
audited route:

- Missing: unit code present in P2, absent in P1.
- New: unit code present in P1, absent in P2.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Final

from meter_reading_tools.reading_audit.csv_decoder import NOT_INFORMED, UnitRecord
from meter_reading_tools.reading_audit.period_merger import DUPLICATE_POLICIES, DuplicatePolicy

logger = logging.getLogger(__name__)

UNSPECIFIED_ROUTE: Final[str] = "Não Informada"
MISSING_STATUS_TEXT: Final[str] = "N/A"

_DIGIT_RUNS = re.compile(r"(\d+)")


class DivergenceStatus(str, Enum):
    MISSING = "Missing"
    NEW = "New"


@dataclass(frozen=True)
class DivergenceEntry:
    """A unit that disappeared from, or newly appeared on, an active route."""

    unit_code: str
    consumer_name: str
    address: str
    route_code: str
    connection_status: str
    micro_generation_flag: str
    status: DivergenceStatus


@dataclass(frozen=True)
class RouteUnitSummary:
    """Record counts per active route."""

    route: str
    total_prior: int
    total_current: int
    difference: int


def route_key(record: UnitRecord) -> str:
    """Route code, else route label, else the unspecified-route sentinel."""
    return record.route_code or record.route_label or UNSPECIFIED_ROUTE


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).casefold()


def natural_sort_key(text: str) -> tuple[tuple[int, int | str], ...]:
    """Numeric-aware sort key that ignores case and accents ("R2" before "R10")."""
    return tuple(
        (0, int(chunk)) if chunk.isdecimal() else (1, _fold(chunk))
        for chunk in _DIGIT_RUNS.split(text)
        if chunk
    )


def _units_by_route(
    records: Sequence[UnitRecord],
    routes: set[str] | None = None,
    keep: DuplicatePolicy = "last",
) -> dict[str, dict[str, UnitRecord]]:
    grouped: dict[str, dict[str, UnitRecord]] = {}
    for record in records:
        key = route_key(record)
        if routes is not None and key not in routes:
            continue
        units = grouped.setdefault(key, {})
        if keep == "first" and record.unit_code in units:
            continue
        units[record.unit_code] = record
    return grouped


def _entry(record: UnitRecord, route: str, status: DivergenceStatus) -> DivergenceEntry:
    return DivergenceEntry(
        unit_code=record.unit_code,
        consumer_name=record.consumer_name,
        address=record.address or NOT_INFORMED,
        route_code=route,
        connection_status=record.connection_status or MISSING_STATUS_TEXT,
        micro_generation_flag=record.micro_generation_flag,
        status=status,
    )


def find_divergences(
    current: Sequence[UnitRecord],
    previous: Sequence[UnitRecord],
    keep: DuplicatePolicy = "last",
) -> list[DivergenceEntry]:
    """List missing and new units per active route, ordered by route.

    Unit-code maps are built per route; *keep* picks which occurrence of a
    repeated code wins ("last" by default). Within a route, missing units
    come before new ones.
    """
    if keep not in DUPLICATE_POLICIES:
        raise ValueError(f"keep must be one of {DUPLICATE_POLICIES}, got {keep!r}")

    active_routes = list(dict.fromkeys(route_key(r) for r in current))
    previous_units = _units_by_route(previous, routes=set(active_routes), keep=keep)
    current_units = _units_by_route(current, keep=keep)

    results: list[DivergenceEntry] = []
    for route in active_routes:
        before = previous_units.get(route, {})
        now = current_units.get(route, {})
        results.extend(
            _entry(record, route, DivergenceStatus.MISSING)
            for code, record in before.items()
            if code not in now
        )
        results.extend(
            _entry(record, route, DivergenceStatus.NEW)
            for code, record in now.items()
            if code not in before
        )

    results.sort(key=lambda entry: natural_sort_key(entry.route_code))
    counts = count_by_status(results)
    logger.info(
        "Divergences across %d active routes: %d missing, %d new.",
        len(active_routes),
        counts[DivergenceStatus.MISSING],
        counts[DivergenceStatus.NEW],
    )
    return results


def count_by_status(entries: Sequence[DivergenceEntry]) -> dict[DivergenceStatus, int]:
    """Number of entries per status (zero for absent statuses)."""
    counts = Counter(entry.status for entry in entries)
    return {status: counts.get(status, 0) for status in DivergenceStatus}


def summarize_active_routes(
    current: Sequence[UnitRecord], previous: Sequence[UnitRecord]
) -> list[RouteUnitSummary]:
    """Count records per active route in both periods, largest current first."""
    current_counts = Counter(route_key(r) for r in current)
    previous_counts = Counter(
        key for key in (route_key(r) for r in previous) if key in current_counts
    )
    summary = [
        RouteUnitSummary(
            route=route,
            total_prior=previous_counts.get(route, 0),
            total_current=total,
            difference=total - previous_counts.get(route, 0),
        )
        for route, total in current_counts.items()
    ]
    summary.sort(key=lambda row: row.total_current, reverse=True)
    return summary
