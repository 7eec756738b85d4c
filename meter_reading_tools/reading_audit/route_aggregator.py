"""Sum billed unit quantities per route label."""

from __future__ import annotations

from collections.abc import Sequence

import pandas as pd

from meter_reading_tools.reading_audit.csv_decoder import UnitRecord


def aggregate_by_route(records: Sequence[UnitRecord]) -> dict[str, int]:
    """Return lower-cased route label -> summed ``billed_quantity``.

    Keys keep the order in which each route first appears.
    """
    if not records:
        return {}

    frame = pd.DataFrame(
        {
            "route_key": [r.route_label.lower() for r in records],
            "billed_quantity": [r.billed_quantity for r in records],
        }
    )
    totals = frame.groupby("route_key", sort=False)["billed_quantity"].sum()
    return {str(key): int(total) for key, total in totals.items()}
