"""Decode a meter-reading route export (CSV) into unit records.

The export is a delimited text file with one header line followed by one line
per billed unit (UC). Column names vary between exports, so each column role
is inferred from the header with a small set of exact/substring rules.

Parsing is permissive: a bad cell becomes ``0`` or a default
string and never rejects the row or the file. Only two conditions abort:

- fewer than two non-empty lines (``EmptyOrMalformedFileError``)
- no quantity/value column in the header (``MissingRequiredColumnError``)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Final

logger = logging.getLogger(__name__)

# =============================================================================
# CONFIGURATION
# =============================================================================

READ_OK_REASON: Final[str] = "Leitura Realizada"
NOT_INFORMED: Final[str] = "N/I"
MISSING_TEXT: Final[str] = "-"
MISSING_ROUTE: Final[str] = "N/A"
DEFAULT_MICRO_GENERATION: Final[str] = "N"

QUANTITY_ROLE: Final[str] = "quantity"

_LINE_SPLIT = re.compile(r"\r?\n")
_EDGE_QUOTES = re.compile(r"^[\"']|[\"']$")
_FLOAT_PREFIX = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_NON_DIGITS = re.compile(r"\D", re.ASCII)

# =============================================================================
# ERRORS
# =============================================================================


class ParseError(ValueError):
    """Raised when an export cannot be decoded at all."""


class EmptyOrMalformedFileError(ParseError):
    """The export has fewer than two non-empty lines."""


class MissingRequiredColumnError(ParseError):
    """No header resolves to the quantity/value role."""


class FileEncodingError(ParseError):
    """The export bytes do not decode with the configured encoding."""


# =============================================================================
# DATA MODEL
# =============================================================================


@dataclass(frozen=True)
class UnitRecord:
    """One billed unit in one reading period."""

    route_label: str = MISSING_ROUTE
    unit_code: str = MISSING_TEXT
    consumer_name: str = MISSING_TEXT
    route_code: str = MISSING_ROUTE
    current_consumption: float = 0.0
    prior_consumption: float = 0.0
    injected_generation: float = 0.0
    micro_generation_flag: str = DEFAULT_MICRO_GENERATION
    billed_quantity: int = 0
    non_read_reason: str = READ_OK_REASON
    connection_status: str = NOT_INFORMED
    address: str = NOT_INFORMED


# =============================================================================
# HEADER RULES
# =============================================================================

HeaderPredicate = Callable[[str], bool]

# Evaluated once per header list; each role takes the first header that matches.
COLUMN_RULES: Final[tuple[tuple[str, HeaderPredicate], ...]] = (
    ("unit_code", lambda h: h == "codigouc" or "uc" in h),
    ("consumer_name", lambda h: h == "consumidornome" or "consumidor" in h),
    (
        "route_code",
        lambda h: h in ("codigorota", "codigo rota") or ("rota" in h and "cod" in h),
    ),
    ("route_label", lambda h: h == "rota" or ("rota" in h and "cod" not in h)),
    (QUANTITY_ROLE, lambda h: "quant" in h or "qtd" in h or h == "valor"),
    ("current_consumption", lambda h: h == "consumomes" or "consumo atual" in h),
    ("prior_consumption", lambda h: h == "consumomes1" or "consumo anterior" in h),
    ("injected_generation", lambda h: h == "consumomg" or "injetada" in h),
    ("micro_generation", lambda h: h in ("microgeracao", "gd") or "microger" in h),
    (
        "non_read_reason",
        lambda h: h == "descricaonaoleitura" or "nao leitura" in h or "não leitura" in h,
    ),
    (
        "connection_status",
        lambda h: h in ("ligado", "status") or "ligado" in h or "situação" in h,
    ),
    ("address", lambda h: h in ("endereco", "endereço") or "logradouro" in h),
)


def clean_field(value: str) -> str:
    """Trim a cell and strip one surrounding quote character on each side."""
    return _EDGE_QUOTES.sub("", value.strip())


def detect_delimiter(header_line: str) -> str:
    """Semicolon if the header carries one, otherwise comma."""
    return ";" if ";" in header_line else ","


def normalize_headers(header_line: str, delimiter: str) -> list[str]:
    """Lower-case, trim and de-quote every header name."""
    return [clean_field(h) for h in header_line.lower().split(delimiter)]


def find_column(headers: Sequence[str], predicate: HeaderPredicate) -> int:
    """Index of the first header satisfying *predicate*, or -1."""
    for idx, header in enumerate(headers):
        if predicate(header):
            return idx
    return -1


def infer_column_roles(headers: Sequence[str]) -> dict[str, int]:
    """Map every role in ``COLUMN_RULES`` to a header index (-1 when absent)."""
    return {role: find_column(headers, predicate) for role, predicate in COLUMN_RULES}


# =============================================================================
# CELL PARSING
# =============================================================================


def parse_number_or_default(text: str | None, default: float = 0.0) -> float:
    """Parse a decimal-comma tolerant number; anything unparseable gives *default*.

    Only the first comma is treated as the decimal separator and, like a
    leading-prefix parse, trailing garbage is ignored (``"12,5 kWh"`` -> 12.5).
    """
    if not text:
        return default
    match = _FLOAT_PREFIX.match(text.replace(",", ".", 1).strip())
    if match is None:
        return default
    return float(match.group(0))


def parse_quantity(text: str | None) -> int:
    """Digits-only integer parse (``"1 un"`` -> 1); no digits gives 0."""
    digits = _NON_DIGITS.sub("", text or "")
    return int(digits) if digits else 0


def _cell(values: Sequence[str], index: int) -> str | None:
    if 0 <= index < len(values):
        return values[index]
    return None


# =============================================================================
# DECODER
# =============================================================================


def decode_line(values: Sequence[str], roles: dict[str, int]) -> UnitRecord:
    """Build a ``UnitRecord`` from one split, cleaned body line."""
    label_idx = roles["route_label"]
    if label_idx == -1:
        label_idx = roles["route_code"] if roles["route_code"] != -1 else 0
    route_label = _cell(values, label_idx) or MISSING_ROUTE

    status_idx = roles["connection_status"]
    address_idx = roles["address"]

    return UnitRecord(
        route_label=route_label,
        unit_code=_cell(values, roles["unit_code"]) or MISSING_TEXT,
        consumer_name=_cell(values, roles["consumer_name"]) or MISSING_TEXT,
        route_code=_cell(values, roles["route_code"]) or route_label,
        current_consumption=parse_number_or_default(_cell(values, roles["current_consumption"])),
        prior_consumption=parse_number_or_default(_cell(values, roles["prior_consumption"])),
        injected_generation=parse_number_or_default(_cell(values, roles["injected_generation"])),
        micro_generation_flag=(_cell(values, roles["micro_generation"]) or "").upper()
        or DEFAULT_MICRO_GENERATION,
        billed_quantity=parse_quantity(_cell(values, roles[QUANTITY_ROLE])),
        non_read_reason=_cell(values, roles["non_read_reason"]) or READ_OK_REASON,
        connection_status=(_cell(values, status_idx) or "") if status_idx != -1 else NOT_INFORMED,
        address=(_cell(values, address_idx) or "") if address_idx != -1 else NOT_INFORMED,
    )


def decode_csv(text: str) -> list[UnitRecord]:
    """Decode one export into unit records, in file order.

    Args:
        text: Full file contents.

    Returns:
        One ``UnitRecord`` per non-blank body line.

    Raises:
        EmptyOrMalformedFileError: Fewer than two non-empty lines.
        MissingRequiredColumnError: No quantity/value column in the header.
    """
    lines = _LINE_SPLIT.split(text.lstrip("\ufeff"))
    if sum(1 for line in lines if line.strip()) < 2:
        raise EmptyOrMalformedFileError("CSV file is empty or malformed.")

    delimiter = detect_delimiter(lines[0])
    headers = normalize_headers(lines[0], delimiter)
    roles = infer_column_roles(headers)

    if roles[QUANTITY_ROLE] == -1:
        raise MissingRequiredColumnError("Quantity/value column not found.")

    unmapped = sorted(role for role, idx in roles.items() if idx == -1)
    if unmapped:
        logger.info("Columns not found (defaults applied): %s", ", ".join(unmapped))

    records = [
        decode_line([clean_field(v) for v in line.split(delimiter)], roles)
        for line in lines[1:]
        if line.strip()
    ]
    logger.info("Decoded %d unit records (delimiter=%r).", len(records), delimiter)
    return records
