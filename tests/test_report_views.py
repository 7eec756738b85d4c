import pytest

from meter_reading_tools.reading_audit.csv_decoder import UnitRecord
from meter_reading_tools.reading_audit.divergence_analyzer import (
    DivergenceEntry,
    DivergenceStatus,
)
from meter_reading_tools.reading_audit.report_views import (
    filter_divergences,
    filter_units,
    micro_generation_label,
    sort_units,
    unique_non_read_reasons,
    unique_routes,
)


@pytest.fixture
def units() -> list[UnitRecord]:
    return [
        UnitRecord(unit_code="1", route_code="R10", micro_generation_flag="S", current_consumption=50.0),
        UnitRecord(unit_code="2", route_code="R2", non_read_reason="SEM ACESSO", consumer_name="bruno"),
        UnitRecord(unit_code="3", route_code="R2", micro_generation_flag="P", consumer_name="Ana"),
        UnitRecord(unit_code="4", route_code="R1", current_consumption=120.0, consumer_name="Carla"),
    ]


@pytest.mark.parametrize(
    ("flag", "label"),
    [("S", "GD"), ("P", "Participante"), ("X", "Vinculada"), ("N", "Normal"), ("?", "Normal")],
)
def test_micro_generation_label(flag: str, label: str) -> None:
    assert micro_generation_label(flag) == label


def test_filter_units_by_gd(units) -> None:
    assert [u.unit_code for u in filter_units(units, gd_filter="gd")] == ["1"]
    assert [u.unit_code for u in filter_units(units, gd_filter="normal")] == ["2", "3", "4"]
    assert filter_units(units) == units


def test_filter_units_by_route_and_reason(units) -> None:
    assert [u.unit_code for u in filter_units(units, route="R2")] == ["2", "3"]
    assert [u.unit_code for u in filter_units(units, route="R2", reason="SEM ACESSO")] == ["2"]


def test_filter_units_rejects_unknown_gd_filter(units) -> None:
    with pytest.raises(ValueError, match="Unsupported GD filter"):
        filter_units(units, gd_filter="solar")  # type: ignore[arg-type]


def test_sort_units(units) -> None:
    by_consumption = sort_units(units, "current_consumption", descending=True)
    assert [u.unit_code for u in by_consumption] == ["4", "1", "2", "3"]

    by_name = sort_units(units, "consumer_name")
    assert [u.consumer_name for u in by_name] == ["-", "Ana", "bruno", "Carla"]

    assert sort_units([], "consumer_name") == []
    with pytest.raises(KeyError):
        sort_units(units, "not_a_column")


def test_unique_routes_natural_order(units) -> None:
    assert unique_routes(units) == ["R1", "R2", "R10"]


def test_unique_non_read_reasons(units) -> None:
    assert unique_non_read_reasons(units) == ["Leitura Realizada", "SEM ACESSO"]
    assert unique_non_read_reasons(units, route="R1") == ["Leitura Realizada"]


def test_filter_divergences() -> None:
    entries = [
        DivergenceEntry("1", "A", "Rua 1", "R1", "Ligado", "S", DivergenceStatus.MISSING),
        DivergenceEntry("2", "B", "Rua 2", "R1", "Ligado", "N", DivergenceStatus.NEW),
        DivergenceEntry("3", "C", "Rua 3", "R2", "Ligado", "S", DivergenceStatus.NEW),
    ]

    assert [e.unit_code for e in filter_divergences(entries, route="R1")] == ["1", "2"]
    assert [e.unit_code for e in filter_divergences(entries, micro_generation="S")] == ["1", "3"]
    assert [e.unit_code for e in filter_divergences(entries, "R2", "S")] == ["3"]
