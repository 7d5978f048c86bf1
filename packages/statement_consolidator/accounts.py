"""Account identifiers from statement filenames or transaction content.

Statement exports follow ``{PREFIX}_{ACCOUNT}_{START}_{END}_{SEQ}.{ext}``,
e.g. ``CAMT.053_54293249_2025-04-01_2025-04-30_1.xml``. Files that do not
follow it are identified by their sanitized base name.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable
from datetime import date, datetime

from .models import AccountIdentifier, DateRange, Transaction

UNKNOWN_ACCOUNT = "UNKNOWN"

_STATEMENT_NAME_RE = re.compile(
    r"^(?P<prefix>[^_]+)_(?P<account>[^_]+)_"
    r"(?P<start>\d{4}-\d{2}-\d{2})_(?P<end>\d{4}-\d{2}-\d{2})_"
    r"(?P<seq>\d+)\.(?P<ext>[A-Za-z0-9]+)$"
)
_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_.\-]")
_IBAN_SUFFIX_LEN = 8


def _parse_iso(value: str) -> date | None:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None


def _match(path: str | os.PathLike[str]) -> re.Match[str] | None:
    m = _STATEMENT_NAME_RE.match(os.path.basename(os.fspath(path)))
    if m is None:
        return None
    # Reject impossible calendar dates such as 2025-02-30.
    if _parse_iso(m["start"]) is None or _parse_iso(m["end"]) is None:
        return None
    return m


def sanitize_account_id(value: str) -> str:
    """Make ``value`` safe to use as a filename component."""

    s = value.strip().replace(" ", "_")
    s = _UNSAFE_CHARS_RE.sub("_", s)
    s = s.replace("..", "")
    while "__" in s:
        s = s.replace("__", "_")
    s = s.strip("_.")
    return s or UNKNOWN_ACCOUNT


def account_from_filename(path: str | os.PathLike[str]) -> AccountIdentifier:
    m = _match(path)
    if m is not None:
        return AccountIdentifier(m["account"], "filename")
    stem, _ext = os.path.splitext(os.path.basename(os.fspath(path)))
    return AccountIdentifier(sanitize_account_id(stem), "default")


def date_range_from_filename(path: str | os.PathLike[str]) -> DateRange:
    m = _match(path)
    if m is None:
        return DateRange()
    return DateRange(_parse_iso(m["start"]), _parse_iso(m["end"]))


def account_from_transactions(transactions: Iterable[Transaction]) -> AccountIdentifier | None:
    """Derive an account id from the first IBAN found in ``transactions``.

    The id is the last eight characters of the compacted IBAN; ``None`` when no
    transaction carries one.
    """

    for tx in transactions:
        iban = "".join(tx.iban.split()).upper()
        if iban:
            return AccountIdentifier(sanitize_account_id(iban[-_IBAN_SUFFIX_LEN:]), "content")
    return None


__all__ = [
    "UNKNOWN_ACCOUNT",
    "account_from_filename",
    "account_from_transactions",
    "date_range_from_filename",
    "sanitize_account_id",
]
