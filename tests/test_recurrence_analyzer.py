from pathlib import Path

from meter_reading_tools.reading_audit.csv_decoder import UnitRecord, decode_csv
from meter_reading_tools.reading_audit.recurrence_analyzer import (
    RecurringOccurrence,
    filter_by_reason,
    find_recurring_occurrences,
    recurring_reason_options,
)

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def _unit(code: str, reason: str, route: str = "R1") -> UnitRecord:
    return UnitRecord(unit_code=code, route_code=route, consumer_name=f"Name {code}", non_read_reason=reason)


def test_only_identical_non_empty_reasons_recur() -> None:
    previous = [
        _unit("U3", "SEM ACESSO"),
        _unit("U4", "SEM ACESSO"),
        _unit("U5", "CASA FECHADA"),
    ]
    current = [
        _unit("U3", "SEM ACESSO"),
        _unit("U4", ""),
        _unit("U5", "CAO BRAVO"),
    ]

    occurrences = find_recurring_occurrences(current, previous)

    assert occurrences == [
        RecurringOccurrence(
            unit_code="U3", consumer_name="Name U3", route_code="R1", reason_text="SEM ACESSO"
        )
    ]


def test_reasons_compare_trimmed_and_case_insensitive() -> None:
    previous = [_unit("U1", "  sem acesso ")]
    current = [_unit("U1", "Sem Acesso")]

    occurrences = find_recurring_occurrences(current, previous)

    assert [o.reason_text for o in occurrences] == ["Sem Acesso"]


def test_last_previous_listing_is_used() -> None:
    previous = [_unit("U1", "SEM ACESSO"), _unit("U1", "CASA FECHADA")]

    assert find_recurring_occurrences([_unit("U1", "SEM ACESSO")], previous) == []
    assert len(find_recurring_occurrences([_unit("U1", "CASA FECHADA")], previous)) == 1


def test_fixture_recurrences_include_read_success_sentinel() -> None:
    current = decode_csv((FIXTURES / "1_leituras_atual.csv").read_text(encoding="utf-8"))
    previous = decode_csv((FIXTURES / "2_leituras_anterior.csv").read_text(encoding="utf-8"))

    occurrences = find_recurring_occurrences(current, previous)

    assert [o.unit_code for o in occurrences] == ["1001", "1002", "1003", "1005"]
    assert occurrences[2].reason_text == "SEM ACESSO"


def test_ignore_reasons() -> None:
    current = decode_csv((FIXTURES / "1_leituras_atual.csv").read_text(encoding="utf-8"))
    previous = decode_csv((FIXTURES / "2_leituras_anterior.csv").read_text(encoding="utf-8"))

    occurrences = find_recurring_occurrences(
        current, previous, ignore_reasons=["leitura realizada"]
    )

    assert [o.unit_code for o in occurrences] == ["1003"]


def test_reason_options_and_filter() -> None:
    occurrences = [
        RecurringOccurrence("U1", "A", "R1", "SEM ACESSO"),
        RecurringOccurrence("U2", "B", "R1", "CASA FECHADA"),
        RecurringOccurrence("U3", "C", "R2", "SEM ACESSO"),
    ]

    assert recurring_reason_options(occurrences) == ["CASA FECHADA", "SEM ACESSO"]
    assert [o.unit_code for o in filter_by_reason(occurrences, "SEM ACESSO")] == ["U1", "U3"]
    assert filter_by_reason(occurrences) == occurrences


def test_first_previous_listing_with_first_policy() -> None:
    previous = [_unit("U1", "SEM ACESSO"), _unit("U1", "CASA FECHADA")]

    occurrences = find_recurring_occurrences([_unit("U1", "SEM ACESSO")], previous, keep="first")

    assert [o.reason_text for o in occurrences] == ["SEM ACESSO"]
    assert find_recurring_occurrences([_unit("U1", "CASA FECHADA")], previous, keep="first") == []
