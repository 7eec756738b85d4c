"""Filters, sorts and option lists for presenting an audit result.

These are the table views a reviewer works through after a run: the unit
table (filter by GD, route, non-reading reason; sort by any column), and the
divergence list (filter by route and micro-generation flag).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import fields
from typing import Final, Literal, TypeVar

from meter_reading_tools.reading_audit.csv_decoder import UnitRecord
from meter_reading_tools.reading_audit.divergence_analyzer import (
    DivergenceEntry,
    natural_sort_key,
)

GDFilter = Literal["all", "gd", "normal"]

GD_FLAG: Final[str] = "S"

MICRO_GENERATION_LABELS: Final[dict[str, str]] = {
    "S": "GD",
    "P": "Participante",
    "X": "Vinculada",
}
DEFAULT_MICRO_GENERATION_LABEL: Final[str] = "Normal"

RecordT = TypeVar("RecordT", bound=UnitRecord)


def micro_generation_label(flag: str) -> str:
    """Display label for a micro-generation flag (unknown flags are "Normal")."""
    return MICRO_GENERATION_LABELS.get(flag, DEFAULT_MICRO_GENERATION_LABEL)


def filter_units(
    records: Sequence[RecordT],
    gd_filter: GDFilter = "all",
    route: str | None = None,
    reason: str | None = None,
) -> list[RecordT]:
    """Filter the unit table.

    Args:
        records: Unit records (usually the enriched current period).
        gd_filter: ``"gd"`` keeps units flagged ``S``, ``"normal"`` keeps the
            rest, ``"all"`` keeps everything.
        route: Keep only this route code.
        reason: Keep only this exact non-reading reason.
    """
    if gd_filter not in ("all", "gd", "normal"):
        raise ValueError(f"Unsupported GD filter: {gd_filter!r}")

    items = list(records)
    if gd_filter == "gd":
        items = [r for r in items if r.micro_generation_flag == GD_FLAG]
    elif gd_filter == "normal":
        items = [r for r in items if r.micro_generation_flag != GD_FLAG]
    if route is not None:
        items = [r for r in items if r.route_code == route]
    if reason is not None:
        items = [r for r in items if r.non_read_reason == reason]
    return items


def sort_units(
    records: Sequence[RecordT], key: str, descending: bool = False
) -> list[RecordT]:
    """Sort by one record attribute; text sorts case-insensitively."""
    if not records:
        return []
    if key not in {f.name for f in fields(records[0])}:
        raise KeyError(f"Unknown sort column: {key!r}")

    def sort_value(record: RecordT) -> object:
        value = getattr(record, key)
        return value.casefold() if isinstance(value, str) else value

    return sorted(records, key=sort_value, reverse=descending)


def unique_routes(records: Sequence[UnitRecord]) -> list[str]:
    """Distinct non-empty route codes in natural order."""
    routes = {r.route_code for r in records if r.route_code}
    return sorted(routes, key=natural_sort_key)


def unique_non_read_reasons(records: Sequence[UnitRecord], route: str | None = None) -> list[str]:
    """Distinct non-reading reasons, optionally within one route."""
    if route is not None:
        records = [r for r in records if r.route_code == route]
    reasons = {r.non_read_reason for r in records if r.non_read_reason}
    return sorted(reasons, key=str.casefold)


def filter_divergences(
    entries: Sequence[DivergenceEntry],
    route: str | None = None,
    micro_generation: str | None = None,
) -> list[DivergenceEntry]:
    """Filter divergence entries by route and/or micro-generation flag."""
    items = list(entries)
    if route is not None:
        items = [e for e in items if e.route_code == route]
    if micro_generation is not None:
        items = [e for e in items if e.micro_generation_flag == micro_generation]
    return items
