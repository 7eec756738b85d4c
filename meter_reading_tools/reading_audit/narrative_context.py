"""Inputs for an externally generated audit narrative.

The narrative text itself comes from an outside text-generation service. This
module only condenses the computed comparison into the figures that service
needs, builds the request text, and makes sure a failed call degrades to a
placeholder instead of affecting the numeric report.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Final

from meter_reading_tools.reading_audit.period_merger import EnrichedUnitRecord
from meter_reading_tools.reading_audit.route_comparison import RouteComparisonRow

logger = logging.getLogger(__name__)

HIGHLIGHT_VARIANCE_PCT: Final[float] = 15.0
MAX_HIGHLIGHTS: Final[int] = 10
NARRATIVE_PLACEHOLDER: Final[str] = "Não foi possível gerar o laudo automático no momento."
MAX_FRACTION_DIGITS: Final[int] = 3


@dataclass(frozen=True)
class NarrativeContext:
    """Current-period totals and the route swings worth commenting on."""

    total_consumption_current: float
    total_consumption_prior: float
    total_injected_current: float
    total_injected_prior: float
    route_highlights: tuple[RouteComparisonRow, ...]


def build_narrative_context(
    current_month: Sequence[EnrichedUnitRecord],
    comparison: Sequence[RouteComparisonRow],
    highlight_threshold: float = HIGHLIGHT_VARIANCE_PCT,
    max_highlights: int = MAX_HIGHLIGHTS,
) -> NarrativeContext:
    """Sum the current period and pick routes still billed that moved sharply.

    Only routes with current units are highlighted, in comparison order.
    """
    highlights = [
        row
        for row in comparison
        if row.count_current > 0 and abs(row.percent_variance) > highlight_threshold
    ]
    return NarrativeContext(
        total_consumption_current=sum(r.current_consumption for r in current_month),
        total_consumption_prior=sum(r.prior_consumption_resolved for r in current_month),
        total_injected_current=sum(r.injected_current for r in current_month),
        total_injected_prior=sum(r.injected_prior for r in current_month),
        route_highlights=tuple(highlights[:max_highlights]),
    )


def format_pt_br(value: float, max_fraction_digits: int = MAX_FRACTION_DIGITS) -> str:
    """Brazilian number format: "." groups thousands, "," marks decimals (1234.5 -> "1.234,5").

    Up to *max_fraction_digits* decimals are shown, without trailing zeros.
    """
    text = f"{value:,.{max_fraction_digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text.translate(str.maketrans(",.", ".,"))


def build_prompt(context: NarrativeContext) -> str:
    """Request text for the narrative service."""
    if context.route_highlights:
        highlights = "; ".join(
            f"Route {row.route_label}: {row.count_current} units billed "
            f"({row.percent_variance}% vs previous period)"
            for row in context.route_highlights
        )
    else:
        highlights = "No critical variation on the routes billed this period."

    return "\n".join(
        [
            "Write a billing audit report in Portuguese for the CURRENT reading period (P1),",
            "comparing the routes read now against the same units in the previous period (P2).",
            "Ignore routes that have no readings in the current period.",
            "",
            f"Billed consumption (P1): {format_pt_br(context.total_consumption_current)} kWh",
            "Previous consumption of the same units (P2): "
            f"{format_pt_br(context.total_consumption_prior)} kWh",
            f"Injected GD (P1): {format_pt_br(context.total_injected_current)} kWh",
            f"Injected GD (P2): {format_pt_br(context.total_injected_prior)} kWh",
            "",
            f"Route variations (top {len(context.route_highlights)}): {highlights}",
            "",
            "Sections: 1. Billing summary 2. GD analysis 3. Points of attention 4. Conclusion",
        ]
    )


def request_narrative(
    context: NarrativeContext,
    generate: Callable[[str], str | None],
    placeholder: str = NARRATIVE_PLACEHOLDER,
) -> str:
    """Call *generate* with the prompt; any failure returns *placeholder*."""
    try:
        text = generate(build_prompt(context))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Narrative generation failed: %s", exc)
        return placeholder
    return text or ""
