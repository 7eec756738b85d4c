"""Join current-period units (P1) against the previous period (P2) by unit code."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, fields
from typing import Final, Literal

from meter_reading_tools.reading_audit.csv_decoder import UnitRecord

logger = logging.getLogger(__name__)

DuplicatePolicy = Literal["first", "last"]

DUPLICATE_POLICIES: Final[tuple[str, ...]] = ("first", "last")


@dataclass(frozen=True)
class EnrichedUnitRecord(UnitRecord):
    """A P1 unit with the values looked up from its P2 counterpart."""

    injected_current: float = 0.0
    injected_prior: float = 0.0
    prior_consumption_resolved: float = 0.0
    consumption_variance_pct: float = 0.0
    injection_variance_pct: float = 0.0


def calculate_variance(now: float, before: float) -> float:
    """Percent change from *before* to *now*.

    A non-positive baseline gives 100 when *now* is positive and 0 otherwise.
    """
    if before <= 0:
        return 100.0 if now > 0 else 0.0
    return (now - before) / before * 100


def build_unit_index(
    records: Iterable[UnitRecord], keep: DuplicatePolicy = "last"
) -> dict[str, UnitRecord]:
    """Index records by unit code.

    Unit codes are not guaranteed unique. With ``keep="last"`` the last
    occurrence of a code wins, with ``keep="first"`` the first one does.
    """
    if keep not in DUPLICATE_POLICIES:
        raise ValueError(f"keep must be one of {DUPLICATE_POLICIES}, got {keep!r}")

    index: dict[str, UnitRecord] = {}
    duplicates: list[str] = []
    for record in records:
        if record.unit_code in index:
            duplicates.append(record.unit_code)
            if keep == "first":
                continue
        index[record.unit_code] = record

    if duplicates:
        logger.warning(
            "Found %s duplicate unit codes; keeping %s occurrence. Sample: %s",
            len(duplicates),
            keep,
            duplicates[:20],
        )
    return index


def merge_periods(
    current: Sequence[UnitRecord],
    previous: Sequence[UnitRecord],
    keep: DuplicatePolicy = "last",
) -> list[EnrichedUnitRecord]:
    """Enrich every P1 record with P2 values and period-over-period variances.

    The output has the same order and length as *current*; unmatched units get
    zero P2 values.
    """
    previous_index = build_unit_index(previous, keep=keep)

    merged: list[EnrichedUnitRecord] = []
    matched = 0
    for record in current:
        prior = previous_index.get(record.unit_code)
        if prior is not None:
            matched += 1

        injected_current = record.injected_generation
        injected_prior = prior.injected_generation if prior is not None else 0.0
        if record.prior_consumption:
            prior_consumption = record.prior_consumption
        else:
            prior_consumption = prior.current_consumption if prior is not None else 0.0

        merged.append(
            EnrichedUnitRecord(
                **{f.name: getattr(record, f.name) for f in fields(UnitRecord)},
                injected_current=injected_current,
                injected_prior=injected_prior,
                prior_consumption_resolved=prior_consumption,
                consumption_variance_pct=calculate_variance(
                    record.current_consumption, prior_consumption
                ),
                injection_variance_pct=calculate_variance(injected_current, injected_prior),
            )
        )

    logger.info("Merged %d current units (%d matched in previous period).", len(merged), matched)
    return merged
