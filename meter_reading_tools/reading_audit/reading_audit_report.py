"""Meter reading route audit: current period (P1) vs previous period (P2).

Reads two route exports (CSV, ``;`` or ``,`` delimited), reconciles them by
unit code (UC) and reports, per route, how the billed unit count moved
between periods. Routes are flagged as new, discontinued, or critical
(absolute variance above CRITICAL_VARIANCE_PCT).

Input files can be given explicitly or picked from INPUT_DIR by name: a file
whose name starts with ``1`` is the current period, ``2`` the previous one.

Outputs (CSV):
- units_current.csv          : P1 units enriched with P2 values and variances
- units_previous.csv         : P2 units as decoded
- route_comparison.csv       : one row per route seen in either period
- inconsistencies.csv        : flagged subset of route_comparison.csv
- route_unit_summary.csv     : unit counts for the routes read in P1
- divergences.csv            : missing/new units on the routes read in P1
- recurring_occurrences.csv  : units with the same non-reading reason twice
- summary.json

Also outputs (optional):
- reading_audit.xlsx (one sheet per CSV above)
- plots/route_comparison.png
- narrative_prompt.txt, narrative.txt (when a narrative generator is supplied)
- reading_audit.log (CLI runs)
"""

from __future__ import annotations

import argparse
import json
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Final

import matplotlib.pyplot as plt
import pandas as pd

from meter_reading_tools.reading_audit.csv_decoder import (
    FileEncodingError,
    ParseError,
    UnitRecord,
    decode_csv,
)
from meter_reading_tools.reading_audit.divergence_analyzer import (
    DivergenceEntry,
    DivergenceStatus,
    RouteUnitSummary,
    count_by_status,
    find_divergences,
    summarize_active_routes,
)
from meter_reading_tools.reading_audit.narrative_context import (
    build_narrative_context,
    build_prompt,
    request_narrative,
)
from meter_reading_tools.reading_audit.period_merger import (
    DUPLICATE_POLICIES,
    DuplicatePolicy,
    EnrichedUnitRecord,
    merge_periods,
)
from meter_reading_tools.reading_audit.recurrence_analyzer import (
    RecurringOccurrence,
    find_recurring_occurrences,
)
from meter_reading_tools.reading_audit.report_views import micro_generation_label
from meter_reading_tools.reading_audit.route_aggregator import aggregate_by_route
from meter_reading_tools.reading_audit.route_comparison import (
    ANOMALY_LABELS,
    CRITICAL_VARIANCE_PCT,
    AnomalyTag,
    RouteComparisonRow,
    build_comparison,
    find_inconsistencies,
)
from meter_reading_tools.utils.logging_helper import setup_logging

# =============================================================================
# CONFIGURATION
# =============================================================================

INPUT_DIR: Final[Path] = Path(r"Path\To\Your\Input_Folder")
OUTPUT_DIR: Final[Path] = Path(r"Path\To\Your\Output_Folder")

# Leave as None to pick files from INPUT_DIR by name prefix ("1..." / "2...").
CURRENT_CSV: Final[Path | None] = None
PREVIOUS_CSV: Final[Path | None] = None

CURRENT_PREFIX: Final[str] = "1"
PREVIOUS_PREFIX: Final[str] = "2"

FILE_ENCODING: Final[str] = "utf-8-sig"

# Which row wins when a unit code repeats within a file.
DUPLICATE_UNIT_POLICY: Final[DuplicatePolicy] = "last"

# Non-reading reasons left out of the recurrence report, e.g. ["Leitura Realizada"].
RECURRENCE_IGNORE_REASONS: Final[list[str]] = []

WRITE_EXCEL: Final[bool] = True
WRITE_PLOTS: Final[bool] = True

LOG_LEVEL: Final[int] = logging.INFO

PLOT_STYLE: Final[dict[str, Any]] = {
    "figsize": (12, 6),
    "bar_width": 0.4,
    "rotation": 45,
    "dpi": 150,
    "max_routes": 30,
}

# =============================================================================
# DATA MODEL
# =============================================================================


@dataclass(frozen=True)
class AnalysisResult:
    """Everything computed from one pair of exports."""

    current_month: tuple[EnrichedUnitRecord, ...]
    previous_month: tuple[UnitRecord, ...]
    comparison: tuple[RouteComparisonRow, ...]
    inconsistencies: tuple[RouteComparisonRow, ...]


@dataclass(frozen=True)
class AuditSummary:
    """Headline figures for one audit run."""

    units_current: int
    units_previous: int
    routes_compared: int
    inconsistency_count: int
    new_routes: int
    discontinued_routes: int
    critical_routes: int
    missing_units: int
    new_units: int
    recurring_occurrences: int
    total_consumption_current: float
    total_consumption_prior: float


# =============================================================================
# PIPELINE
# =============================================================================


def _decode_period(text: str, label: str) -> list[UnitRecord]:
    try:
        return decode_csv(text)
    except ParseError as exc:
        raise type(exc)(f"{label} period file: {exc}") from exc


def compare(
    current_text: str,
    previous_text: str,
    keep: DuplicatePolicy = DUPLICATE_UNIT_POLICY,
    critical_threshold: float = CRITICAL_VARIANCE_PCT,
) -> AnalysisResult:
    """Decode both exports and build the route comparison.

    Args:
        current_text: Contents of the current-period (P1) export.
        previous_text: Contents of the previous-period (P2) export.
        keep: Which occurrence wins when a unit code repeats ("first"/"last").
        critical_threshold: Absolute percent variance that flags a route.

    Returns:
        The full analysis; nothing is retained between calls.

    Raises:
        ParseError: Either export is empty or lacks a quantity/value column.
    """
    current_raw = _decode_period(current_text, "Current")
    previous_raw = _decode_period(previous_text, "Previous")

    current_month = merge_periods(current_raw, previous_raw, keep=keep)
    comparison = build_comparison(
        aggregate_by_route(current_month),
        aggregate_by_route(previous_raw),
        current_month,
        previous_raw,
        critical_threshold=critical_threshold,
    )
    return AnalysisResult(
        current_month=tuple(current_month),
        previous_month=tuple(previous_raw),
        comparison=tuple(comparison),
        inconsistencies=tuple(find_inconsistencies(comparison)),
    )


def build_summary(
    result: AnalysisResult,
    divergences: Sequence[DivergenceEntry],
    recurring: Sequence[RecurringOccurrence],
) -> AuditSummary:
    """Condense an analysis into headline counts and totals."""
    tags = [row.anomaly_tag for row in result.inconsistencies]
    status_counts = count_by_status(divergences)
    return AuditSummary(
        units_current=len(result.current_month),
        units_previous=len(result.previous_month),
        routes_compared=len(result.comparison),
        inconsistency_count=len(result.inconsistencies),
        new_routes=tags.count(AnomalyTag.NEW_ROUTE),
        discontinued_routes=tags.count(AnomalyTag.DISCONTINUED_ROUTE),
        critical_routes=tags.count(AnomalyTag.CRITICAL_VARIANCE),
        missing_units=status_counts[DivergenceStatus.MISSING],
        new_units=status_counts[DivergenceStatus.NEW],
        recurring_occurrences=len(recurring),
        total_consumption_current=float(sum(r.current_consumption for r in result.current_month)),
        total_consumption_prior=float(
            sum(r.prior_consumption_resolved for r in result.current_month)
        ),
    )


# =============================================================================
# IO HELPERS
# =============================================================================


def select_period_files(paths: Iterable[Path]) -> tuple[Path, Path]:
    """Pick (current, previous) files by name prefix; a later match replaces an earlier one."""
    current: Path | None = None
    previous: Path | None = None
    for path in paths:
        if path.name.startswith(CURRENT_PREFIX):
            current = path
        elif path.name.startswith(PREVIOUS_PREFIX):
            previous = path
        else:
            logging.debug("Skipping file without a period prefix: %s", path.name)

    if current is None or previous is None:
        raise FileNotFoundError(
            f"Both period files are required: name one starting with '{CURRENT_PREFIX}' "
            f"(current) and one starting with '{PREVIOUS_PREFIX}' (previous)."
        )
    return current, previous


def read_period_texts(
    current_path: Path, previous_path: Path, encoding: str = FILE_ENCODING
) -> tuple[str, str]:
    """Read both exports completely before any parsing starts."""
    texts: list[str] = []
    for path in (current_path, previous_path):
        try:
            texts.append(path.read_text(encoding=encoding))
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"Input CSV not found: {path}") from exc
        except UnicodeDecodeError as exc:
            raise FileEncodingError(
                f"{path} is not valid {encoding} ({exc.reason} at byte {exc.start}); "
                "re-run with --encoding matching the export, e.g. --encoding cp1252"
            ) from exc
        logging.info("Read %s (%d characters).", path, len(texts[-1]))
    return texts[0], texts[1]


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def rows_to_frame(rows: Sequence[Any], row_type: type) -> pd.DataFrame:
    """Dataclass rows -> DataFrame with one column per field (enums as values)."""
    columns = [f.name for f in fields(row_type)]
    return pd.DataFrame(
        [[_plain(getattr(row, c)) for c in columns] for row in rows], columns=columns
    )


def comparison_frame(rows: Sequence[RouteComparisonRow]) -> pd.DataFrame:
    """Route comparison table with a readable anomaly column."""
    df = rows_to_frame(rows, RouteComparisonRow)
    df["anomaly_label"] = [
        ANOMALY_LABELS[row.anomaly_tag] if row.anomaly_tag is not None else ""
        for row in rows
    ]
    return df


def units_frame(rows: Sequence[UnitRecord], row_type: type) -> pd.DataFrame:
    """Unit table with a readable micro-generation column."""
    df = rows_to_frame(rows, row_type)
    df["micro_generation_label"] = [micro_generation_label(r.micro_generation_flag) for r in rows]
    return df


# =============================================================================
# EXPORT
# =============================================================================


def plot_route_comparison(rows: Sequence[RouteComparisonRow], out_path: Path) -> None:
    """Grouped bar chart of prior vs current unit counts for the largest routes."""
    top = list(rows[: PLOT_STYLE["max_routes"]])
    if not top:
        logging.info("No routes to plot.")
        return

    out_path.parent.mkdir(parents=True, exist_ok=True)
    width = PLOT_STYLE["bar_width"]
    positions = list(range(len(top)))

    plt.figure(figsize=PLOT_STYLE["figsize"])
    plt.bar(
        [p - width / 2 for p in positions],
        [row.count_prior for row in top],
        width,
        label="Previous (P2)",
    )
    plt.bar(
        [p + width / 2 for p in positions],
        [row.count_current for row in top],
        width,
        label="Current (P1)",
    )
    plt.xticks(positions, [row.route_label for row in top], rotation=PLOT_STYLE["rotation"])
    plt.title("Billed Units per Route – Current vs Previous Period")
    plt.xlabel("Route")
    plt.ylabel("Billed units")
    plt.legend()
    plt.tight_layout()
    plt.savefig(out_path, dpi=PLOT_STYLE["dpi"])
    plt.close()


def write_outputs(
    output_dir: Path,
    result: AnalysisResult,
    route_summary: Sequence[RouteUnitSummary],
    divergences: Sequence[DivergenceEntry],
    recurring: Sequence[RecurringOccurrence],
    summary: AuditSummary,
    write_excel: bool = WRITE_EXCEL,
    write_plots: bool = WRITE_PLOTS,
) -> dict[str, Path]:
    """Write CSVs, summary.json and the optional workbook/plot; return written paths."""
    output_dir.mkdir(parents=True, exist_ok=True)

    tables: dict[str, pd.DataFrame] = {
        "units_current": units_frame(result.current_month, EnrichedUnitRecord),
        "units_previous": units_frame(result.previous_month, UnitRecord),
        "route_comparison": comparison_frame(result.comparison),
        "inconsistencies": comparison_frame(result.inconsistencies),
        "route_unit_summary": rows_to_frame(route_summary, RouteUnitSummary),
        "divergences": rows_to_frame(divergences, DivergenceEntry),
        "recurring_occurrences": rows_to_frame(recurring, RecurringOccurrence),
    }

    written: dict[str, Path] = {}
    for name, df in tables.items():
        path = output_dir / f"{name}.csv"
        df.to_csv(path, index=False, encoding="utf-8")
        written[name] = path

    summary_json = output_dir / "summary.json"
    with summary_json.open("w", encoding="utf-8") as f:
        json.dump(asdict(summary), f, indent=2)
    written["summary"] = summary_json

    if write_excel:
        xlsx_path = output_dir / "reading_audit.xlsx"
        with pd.ExcelWriter(xlsx_path, engine="openpyxl") as writer:
            for name, df in tables.items():
                # Excel caps sheet names at 31 characters.
                df.to_excel(writer, sheet_name=name[:31], index=False)
            pd.DataFrame([asdict(summary)]).to_excel(writer, sheet_name="summary", index=False)
        written["excel"] = xlsx_path

    if write_plots:
        plot_path = output_dir / "plots" / "route_comparison.png"
        plot_route_comparison(result.comparison, plot_path)
        if plot_path.exists():
            written["plot"] = plot_path

    for path in written.values():
        logging.info("Wrote: %s", path)
    return written


# =============================================================================
# NOTEBOOK-FRIENDLY ENTRY POINT
# =============================================================================


def run_audit(
    current_path: Path | None = CURRENT_CSV,
    previous_path: Path | None = PREVIOUS_CSV,
    input_dir: Path = INPUT_DIR,
    out_dir: Path = OUTPUT_DIR,
    encoding: str = FILE_ENCODING,
    critical_threshold: float = CRITICAL_VARIANCE_PCT,
    keep: DuplicatePolicy = DUPLICATE_UNIT_POLICY,
    ignore_reasons: Sequence[str] = tuple(RECURRENCE_IGNORE_REASONS),
    write_excel: bool = WRITE_EXCEL,
    write_plots: bool = WRITE_PLOTS,
    narrative_generator: Callable[[str], str | None] | None = None,
) -> AuditSummary:
    """Run the audit end to end and write outputs to *out_dir*.

    The narrative request text is always written to ``narrative_prompt.txt``.
    When *narrative_generator* is given it is called with that text and its
    answer (or a placeholder, if it fails) goes to ``narrative.txt``; the
    numeric outputs are written first and never depend on it.
    """
    if current_path is None or previous_path is None:
        candidates = sorted(p for p in input_dir.iterdir() if p.is_file())
        picked_current, picked_previous = select_period_files(candidates)
        current_path = current_path or picked_current
        previous_path = previous_path or picked_previous

    logging.info("Current period:  %s", current_path)
    logging.info("Previous period: %s", previous_path)
    logging.info("Output dir:      %s", out_dir)
    logging.info("Critical variance threshold: %.1f%%", critical_threshold)

    current_text, previous_text = read_period_texts(current_path, previous_path, encoding)
    result = compare(current_text, previous_text, keep=keep, critical_threshold=critical_threshold)

    route_summary = summarize_active_routes(result.current_month, result.previous_month)
    divergences = find_divergences(result.current_month, result.previous_month, keep=keep)
    recurring = find_recurring_occurrences(
        result.current_month, result.previous_month, ignore_reasons=ignore_reasons, keep=keep
    )
    summary = build_summary(result, divergences, recurring)

    write_outputs(
        output_dir=out_dir,
        result=result,
        route_summary=route_summary,
        divergences=divergences,
        recurring=recurring,
        summary=summary,
        write_excel=write_excel,
        write_plots=write_plots,
    )

    context = build_narrative_context(result.current_month, result.comparison)
    prompt_path = out_dir / "narrative_prompt.txt"
    prompt_path.write_text(build_prompt(context), encoding="utf-8")
    logging.info("Wrote: %s", prompt_path)
    if narrative_generator is not None:
        narrative_path = out_dir / "narrative.txt"
        narrative_path.write_text(
            request_narrative(context, narrative_generator), encoding="utf-8"
        )
        logging.info("Wrote: %s", narrative_path)

    logging.info(
        "Done. Routes=%s (flagged=%s: new=%s, discontinued=%s, critical=%s). "
        "Units missing=%s, new=%s. Recurring=%s.",
        summary.routes_compared,
        summary.inconsistency_count,
        summary.new_routes,
        summary.discontinued_routes,
        summary.critical_routes,
        summary.missing_units,
        summary.new_units,
        summary.recurring_occurrences,
    )
    return summary


# =============================================================================
# CLI
# =============================================================================


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    p = argparse.ArgumentParser(description="Compare two meter reading route exports.")
    p.add_argument("--current", type=Path, default=CURRENT_CSV, help="Current period CSV (P1).")
    p.add_argument(
        "--previous", type=Path, default=PREVIOUS_CSV, help="Previous period CSV (P2)."
    )
    p.add_argument(
        "--input-dir",
        type=Path,
        default=INPUT_DIR,
        help="Folder to pick '1*'/'2*' files from when --current/--previous are omitted.",
    )
    p.add_argument("--out", type=Path, default=OUTPUT_DIR, help="Output directory.")
    p.add_argument("--encoding", default=FILE_ENCODING, help="Input file encoding.")
    p.add_argument(
        "--critical-threshold",
        type=float,
        default=CRITICAL_VARIANCE_PCT,
        help="Absolute percent variance that flags a route as critical.",
    )
    p.add_argument(
        "--duplicate-policy",
        choices=DUPLICATE_POLICIES,
        default=DUPLICATE_UNIT_POLICY,
        help="Which row wins when a unit code repeats within a file.",
    )
    p.add_argument(
        "--ignore-reason",
        action="append",
        default=list(RECURRENCE_IGNORE_REASONS),
        help="Non-reading reason to leave out of the recurrence report (repeatable).",
    )
    p.add_argument("--no-excel", action="store_true", help="Skip the Excel workbook.")
    p.add_argument("--no-plots", action="store_true", help="Skip the route comparison plot.")
    return p


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point (notebook-safe)."""
    parser = build_arg_parser()
    # Unknown args are tolerated so IPython's "-f <kernel.json>" does not break runs.
    args, unknown = parser.parse_known_args(list(argv) if argv is not None else None)

    setup_logging(LOG_LEVEL, log_file=args.out / "reading_audit.log")
    if unknown:
        logging.warning("Ignoring unknown CLI args (likely from IPython): %s", unknown)

    try:
        run_audit(
            current_path=args.current,
            previous_path=args.previous,
            input_dir=args.input_dir,
            out_dir=args.out,
            encoding=args.encoding,
            critical_threshold=args.critical_threshold,
            keep=args.duplicate_policy,
            ignore_reasons=args.ignore_reason,
            write_excel=not args.no_excel,
            write_plots=not args.no_plots,
        )
    except (ParseError, OSError) as exc:
        logging.error("Audit failed: %s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
