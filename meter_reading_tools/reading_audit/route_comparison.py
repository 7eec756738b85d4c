"""Route-level comparison of billed unit counts between two reading periods.

Every route seen in either period gets one row with the prior/current counts,
their difference and the percent variance. Rows are tagged when a route is
new, discontinued, or swings beyond the critical variance threshold.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Final

from meter_reading_tools.reading_audit.csv_decoder import UnitRecord
from meter_reading_tools.reading_audit.period_merger import calculate_variance

logger = logging.getLogger(__name__)

CRITICAL_VARIANCE_PCT: Final[float] = 50.0
PERCENT_DECIMALS: Final[int] = 2


class AnomalyTag(str, Enum):
    NEW_ROUTE = "NewRoute"
    DISCONTINUED_ROUTE = "DiscontinuedRoute"
    CRITICAL_VARIANCE = "CriticalVariance"


ANOMALY_LABELS: Final[dict[AnomalyTag, str]] = {
    AnomalyTag.NEW_ROUTE: "Rota Nova",
    AnomalyTag.DISCONTINUED_ROUTE: "Rota Descontinuada",
    AnomalyTag.CRITICAL_VARIANCE: "Variação Crítica",
}


@dataclass(frozen=True)
class RouteComparisonRow:
    """One route's unit counts across both periods."""

    route_label: str
    count_prior: int
    count_current: int
    difference: int
    percent_variance: float
    anomaly_tag: AnomalyTag | None = None


def round_percent(percent: float, decimals: int = PERCENT_DECIMALS) -> float:
    """Round half away from zero on the exact binary value (0.125 -> 0.13)."""
    step = Decimal(1).scaleb(-decimals)
    return float(Decimal(percent).quantize(step, rounding=ROUND_HALF_UP))


def classify_anomaly(
    prior: int, current: int, percent: float, critical_threshold: float = CRITICAL_VARIANCE_PCT
) -> AnomalyTag | None:
    """First matching rule wins: new, discontinued, then critical variance."""
    if prior == 0 and current > 0:
        return AnomalyTag.NEW_ROUTE
    if current == 0 and prior > 0:
        return AnomalyTag.DISCONTINUED_ROUTE
    if abs(percent) > critical_threshold:
        return AnomalyTag.CRITICAL_VARIANCE
    return None


def display_labels(*periods: Sequence[UnitRecord]) -> dict[str, str]:
    """Lower-cased route key -> first original-case label, earlier periods first."""
    labels: dict[str, str] = {}
    for records in periods:
        for record in records:
            labels.setdefault(record.route_label.lower(), record.route_label)
    return labels


def build_comparison(
    current_totals: Mapping[str, int],
    previous_totals: Mapping[str, int],
    current_records: Sequence[UnitRecord],
    previous_records: Sequence[UnitRecord],
    critical_threshold: float = CRITICAL_VARIANCE_PCT,
) -> list[RouteComparisonRow]:
    """Build one comparison row per route key found in either period.

    Args:
        current_totals: Route key -> billed count for the current period.
        previous_totals: Route key -> billed count for the previous period.
        current_records: Current-period records, used for display labels.
        previous_records: Previous-period records, used for display labels.
        critical_threshold: Absolute percent beyond which a route is flagged.

    Returns:
        Rows sorted by current count, highest first; ties keep key order
        (current-period keys, then previous-only keys).
    """
    keys = list(dict.fromkeys([*current_totals, *previous_totals]))
    labels = display_labels(current_records, previous_records)

    rows: list[RouteComparisonRow] = []
    for key in keys:
        prior = previous_totals.get(key, 0)
        current = current_totals.get(key, 0)
        percent = calculate_variance(current, prior)
        rows.append(
            RouteComparisonRow(
                route_label=labels.get(key, key),
                count_prior=prior,
                count_current=current,
                difference=current - prior,
                percent_variance=round_percent(percent),
                anomaly_tag=classify_anomaly(prior, current, percent, critical_threshold),
            )
        )

    rows.sort(key=lambda row: row.count_current, reverse=True)
    logger.info("Compared %d routes.", len(rows))
    return rows


def find_inconsistencies(rows: Sequence[RouteComparisonRow]) -> list[RouteComparisonRow]:
    """Rows carrying an anomaly tag, in their original order."""
    return [row for row in rows if row.anomaly_tag is not None]
