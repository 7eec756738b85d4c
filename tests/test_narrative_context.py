import logging
from pathlib import Path

import pytest

from meter_reading_tools.reading_audit.csv_decoder import decode_csv
from meter_reading_tools.reading_audit.narrative_context import (
    NARRATIVE_PLACEHOLDER,
    NarrativeContext,
    build_narrative_context,
    build_prompt,
    format_pt_br,
    request_narrative,
)
from meter_reading_tools.reading_audit.period_merger import merge_periods
from meter_reading_tools.reading_audit.route_aggregator import aggregate_by_route
from meter_reading_tools.reading_audit.route_comparison import RouteComparisonRow, build_comparison

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def context() -> NarrativeContext:
    current = decode_csv((FIXTURES / "1_leituras_atual.csv").read_text(encoding="utf-8"))
    previous = decode_csv((FIXTURES / "2_leituras_anterior.csv").read_text(encoding="utf-8"))
    merged = merge_periods(current, previous)
    comparison = build_comparison(
        aggregate_by_route(merged), aggregate_by_route(previous), merged, previous
    )
    return build_narrative_context(merged, comparison)


def test_totals_cover_the_current_period(context: NarrativeContext) -> None:
    assert context.total_consumption_current == pytest.approx(490.5)
    assert context.total_consumption_prior == pytest.approx(545.0)
    assert context.total_injected_current == pytest.approx(35.2)
    assert context.total_injected_prior == pytest.approx(30.0)


def test_highlights_skip_routes_without_current_units(context: NarrativeContext) -> None:
    assert [row.route_label for row in context.route_highlights] == ["Rota Centro", "Rota Sul"]


def test_highlights_are_capped() -> None:
    rows = [RouteComparisonRow(f"R{i}", 10, 20, 10, 100.0) for i in range(12)]

    context = build_narrative_context([], rows)

    assert len(context.route_highlights) == 10
    assert context.route_highlights[0].route_label == "R0"


def test_prompt_mentions_totals_and_highlights(context: NarrativeContext) -> None:
    prompt = build_prompt(context)

    assert "Billed consumption (P1): 490,5 kWh" in prompt
    assert "Previous consumption of the same units (P2): 545 kWh" in prompt
    assert "Injected GD (P1): 35,2 kWh" in prompt
    assert "Route Rota Sul: 1 units billed (100.0% vs previous period)" in prompt
    assert "Portuguese" in prompt


def test_prompt_without_highlights() -> None:
    prompt = build_prompt(NarrativeContext(0.0, 0.0, 0.0, 0.0, ()))

    assert "No critical variation" in prompt


def test_request_narrative_returns_generated_text(context: NarrativeContext) -> None:
    prompts: list[str] = []

    def generate(prompt: str) -> str:
        prompts.append(prompt)
        return "Laudo"

    assert request_narrative(context, generate) == "Laudo"
    assert prompts == [build_prompt(context)]


def test_request_narrative_failure_returns_placeholder(
    context: NarrativeContext, caplog: pytest.LogCaptureFixture
) -> None:
    def generate(prompt: str) -> str:
        raise ConnectionError("service unavailable")

    with caplog.at_level(logging.WARNING):
        text = request_narrative(context, generate)

    assert text == NARRATIVE_PLACEHOLDER
    assert "service unavailable" in caplog.text


def test_request_narrative_empty_answer(context: NarrativeContext) -> None:
    assert request_narrative(context, lambda prompt: None) == ""


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (490.5, "490,5"),
        (545.0, "545"),
        (1234.5, "1.234,5"),
        (1234567.891, "1.234.567,891"),
        (-1234.25, "-1.234,25"),
        (0.1234, "0,123"),
        (0.0, "0"),
    ],
)
def test_format_pt_br(value: float, expected: str) -> None:
    assert format_pt_br(value) == expected
