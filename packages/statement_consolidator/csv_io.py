"""Canonical transaction CSV: validator, parser and consolidated-file writer.

Columns (header names are case-insensitive on input)::

    Date, ValueDate, Amount, Currency, PartyName, IsDebtor, Description,
    Category, SubCategory, IBAN

Only ``Date``, ``Amount`` and ``PartyName`` are required. Dates are read as
``YYYY-MM-DD`` or ``DD.MM.YYYY`` and written as ``YYYY-MM-DD``. When
``IsDebtor`` is absent the sign of ``Amount`` decides (negative = money out).

Lines starting with ``#`` before the header are treated as comments, so the
consolidated files written here can be read back as input.
"""

from __future__ import annotations

import contextlib
import csv
import io
import os
import re
from collections.abc import Iterator, Sequence
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

from .errors import ParseError
from .logging_setup import get_logger
from .models import Transaction

COLUMNS: tuple[str, ...] = (
    "Date",
    "ValueDate",
    "Amount",
    "Currency",
    "PartyName",
    "IsDebtor",
    "Description",
    "Category",
    "SubCategory",
    "IBAN",
)
REQUIRED_COLUMNS: frozenset[str] = frozenset({"date", "amount", "partyname"})

_DATE_FORMATS: tuple[str, ...] = ("%Y-%m-%d", "%d.%m.%Y")
_TRUE_VALUES = frozenset({"true", "1", "yes", "y", "debit", "dbit"})
_FALSE_VALUES = frozenset({"false", "0", "no", "n", "credit", "crdt"})
_DEFAULT_CURRENCY = "CHF"

_logger = get_logger("statement_consolidator.csv_io")


def _parse_date(value: str) -> date:
    value = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unrecognized date {value!r}")


def _grouped(digits: str, sep: str) -> bool:
    return re.fullmatch(rf"[+-]?\d{{1,3}}(?:{re.escape(sep)}\d{{3}})+", digits) is not None


def _parse_amount(value: str) -> Decimal:
    """Parse ``value`` accepting ``1234.50``, ``1'234.50``, ``1.234,50`` and ``-7,80``.

    With both separators present the last one is the decimal mark and the
    other must group thousands; anything else is rejected rather than guessed.
    """

    cleaned = value.strip().replace("'", "").replace(" ", "")
    has_comma, has_point = "," in cleaned, "." in cleaned
    if has_comma and has_point:
        mark = "," if cleaned.rfind(",") > cleaned.rfind(".") else "."
        thousands = "." if mark == "," else ","
        whole, _, frac = cleaned.rpartition(mark)
        if thousands in frac or not _grouped(whole, thousands):
            raise ValueError(f"ambiguous amount {value!r}")
        cleaned = f"{whole.replace(thousands, '')}.{frac}"
    elif cleaned.count(",") == 1:
        cleaned = cleaned.replace(",", ".")
    elif has_comma or cleaned.count(".") > 1:
        sep = "," if has_comma else "."
        if not _grouped(cleaned, sep):
            raise ValueError(f"ambiguous amount {value!r}")
        cleaned = cleaned.replace(sep, "")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation as e:
        raise ValueError(f"unrecognized amount {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"non-finite amount {value!r}")
    return amount


def _parse_bool(value: str, amount: Decimal) -> bool:
    v = value.strip().lower()
    if v in _TRUE_VALUES:
        return True
    if v in _FALSE_VALUES:
        return False
    return amount < 0


def _data_lines(f: io.TextIOBase) -> Iterator[str]:
    """Yield lines after any leading ``#`` comment block."""

    in_preamble = True
    for line in f:
        if in_preamble and (line.startswith("#") or not line.strip()):
            continue
        in_preamble = False
        yield line


def _open_reader(f: io.TextIOBase, delimiter: str) -> csv.DictReader:
    reader = csv.DictReader(_data_lines(f), delimiter=delimiter)
    if reader.fieldnames is not None:
        reader.fieldnames = [h.strip().lower() for h in reader.fieldnames]
    return reader


def validate_format(path: str | os.PathLike[str], *, delimiter: str = ",") -> bool:
    """Return True when ``path`` has a header with the required columns.

    I/O errors propagate to the caller.
    """

    with open(path, encoding="utf-8-sig", newline="") as f:
        try:
            reader = _open_reader(f, delimiter)
            headers = set(reader.fieldnames or ())
        except csv.Error:
            return False
    return REQUIRED_COLUMNS <= headers


def parse_file(path: str | os.PathLike[str], *, delimiter: str = ",") -> list[Transaction]:
    """Read canonical rows from ``path``.

    Rows with an unreadable date or amount are skipped with a warning. A file
    without the required header, or one the ``csv`` module cannot tokenize,
    raises :class:`ParseError`.
    """

    spath = os.fspath(path)
    out: list[Transaction] = []
    with open(path, encoding="utf-8-sig", newline="") as f:
        reader = _open_reader(f, delimiter)
        missing = REQUIRED_COLUMNS - set(reader.fieldnames or ())
        if missing:
            raise ParseError(spath, f"missing columns: {', '.join(sorted(missing))}")
        try:
            for row in reader:
                line = reader.line_num

                def col(name: str, row: dict[str, str | None] = row) -> str:
                    return (row.get(name) or "").strip()

                try:
                    amount = _parse_amount(col("amount"))
                    tx_date = _parse_date(col("date"))
                    value_date = _parse_date(col("valuedate")) if col("valuedate") else None
                except ValueError as e:
                    _logger.warning("csv:row_skipped path=%s line=%d error=%s", spath, line, e)
                    continue
                out.append(
                    Transaction(
                        date=tx_date,
                        value_date=value_date,
                        amount=amount,
                        currency=col("currency") or _DEFAULT_CURRENCY,
                        party_name=col("partyname"),
                        is_debtor=_parse_bool(col("isdebtor"), amount),
                        description=col("description"),
                        category=col("category"),
                        sub_category=col("subcategory"),
                        iban=col("iban"),
                    )
                )
        except csv.Error as e:
            raise ParseError(spath, str(e), line=reader.line_num) from e
    _logger.debug("csv:parsed path=%s transactions=%d", spath, len(out))
    return out


def write_transactions(
    transactions: Sequence[Transaction],
    output_path: str | os.PathLike[str],
    header_comment: str = "",
    *,
    delimiter: str = ",",
) -> None:
    """Write ``transactions`` to ``output_path`` with an optional comment block."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp, "w", encoding="utf-8", newline="") as f:
            if header_comment:
                f.write(header_comment)
            writer = csv.writer(f, delimiter=delimiter)
            writer.writerow(COLUMNS)
            for tx in transactions:
                writer.writerow(
                    [
                        tx.date.isoformat(),
                        tx.value_date.isoformat() if tx.value_date else "",
                        str(tx.amount),
                        tx.currency,
                        tx.party_name,
                        "true" if tx.is_debtor else "false",
                        tx.description,
                        tx.category,
                        tx.sub_category,
                        tx.iban,
                    ]
                )
        os.replace(tmp, path)
    except Exception:
        with contextlib.suppress(FileNotFoundError):
            tmp.unlink()
        raise


__all__ = ["COLUMNS", "parse_file", "validate_format", "write_transactions"]
