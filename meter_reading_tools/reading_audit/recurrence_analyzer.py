"""Units whose non-reading reason repeats from the previous period."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from meter_reading_tools.reading_audit.csv_decoder import UnitRecord
from meter_reading_tools.reading_audit.period_merger import DuplicatePolicy, build_unit_index

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecurringOccurrence:
    unit_code: str
    consumer_name: str
    route_code: str
    reason_text: str


def normalize_reason(text: str | None) -> str:
    return (text or "").strip().upper()


def find_recurring_occurrences(
    current: Sequence[UnitRecord],
    previous: Sequence[UnitRecord],
    ignore_reasons: Iterable[str] = (),
    keep: DuplicatePolicy = "last",
) -> list[RecurringOccurrence]:
    """Current-period units with the same non-empty reason as in the previous period.

    Reasons compare trimmed and upper-cased. For a unit code listed more than
    once in the previous period *keep* picks the listing used ("last" by
    default, as in the period merge). *ignore_reasons* drops occurrences by
    reason; nothing is excluded by default.
    """
    previous_reasons = {
        code: normalize_reason(record.non_read_reason)
        for code, record in build_unit_index(previous, keep=keep).items()
    }
    ignored = {normalize_reason(reason) for reason in ignore_reasons}

    occurrences = []
    for record in current:
        reason = normalize_reason(record.non_read_reason)
        if not reason or reason in ignored:
            continue
        if reason == previous_reasons.get(record.unit_code):
            occurrences.append(
                RecurringOccurrence(
                    unit_code=record.unit_code,
                    consumer_name=record.consumer_name,
                    route_code=record.route_code,
                    reason_text=record.non_read_reason,
                )
            )

    logger.info("Found %d recurring occurrences.", len(occurrences))
    return occurrences


def recurring_reason_options(occurrences: Sequence[RecurringOccurrence]) -> list[str]:
    """Distinct reason texts, sorted, for building a reason filter."""
    return sorted({o.reason_text for o in occurrences}, key=str.casefold)


def filter_by_reason(
    occurrences: Sequence[RecurringOccurrence], reason: str | None = None
) -> list[RecurringOccurrence]:
    """Keep occurrences with exactly *reason*; ``None`` keeps everything."""
    if reason is None:
        return list(occurrences)
    return [o for o in occurrences if o.reason_text == reason]
