"""Data models and type aliases for ``statement_consolidator``.

Domain values are frozen, slotted dataclasses: a categorized transaction is a
new value produced with ``dataclasses.replace`` and never an in-place edit.
Pydantic models validate the human-edited YAML rule files at the boundary.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, field_validator

from .logging_setup import get_logger

UNCATEGORIZED: str = "Uncategorized"

TierSource: TypeAlias = Literal["direct", "keyword", "ai", "none"]
"""Which tier produced a categorization (``"none"`` when nothing matched)."""

AccountSource: TypeAlias = Literal["filename", "content", "default"]

_logger = get_logger("statement_consolidator.models")


# ---------------------------------------------------------------------------
# Transactions and categories
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Transaction:
    """A single normalized statement line.

    ``is_debtor`` is true when the account holder paid the party (money out)
    and false when the party paid the account holder. ``iban`` is the account
    IBAN when the source statement carries one.
    """

    date: date
    amount: Decimal
    currency: str
    party_name: str
    is_debtor: bool
    description: str = ""
    value_date: date | None = None
    category: str = ""
    sub_category: str = ""
    iban: str = ""

    @property
    def sort_key(self) -> tuple[date, date, Decimal]:
        # A missing value date sorts as the booking date.
        return (self.date, self.value_date or self.date, self.amount)

    @property
    def duplicate_key(self) -> tuple[date, Decimal, str, str]:
        return (self.date, self.amount, self.party_name.strip().casefold(), self.currency)


@dataclass(frozen=True, slots=True)
class Category:
    name: str
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CategorizationResult:
    category: str
    source: TierSource
    error: Exception | None = None

    @property
    def matched(self) -> bool:
        return self.source != "none"


class CategorizationStats:
    """Thread-safe counters over one categorization run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.total = 0
        self.direct = 0
        self.keyword = 0
        self.ai = 0
        self.uncategorized = 0
        self.failed = 0

    def record(self, result: CategorizationResult) -> None:
        with self._lock:
            self.total += 1
            if result.source == "none":
                self.uncategorized += 1
            else:
                setattr(self, result.source, getattr(self, result.source) + 1)
            if result.error is not None:
                self.failed += 1

    @property
    def success_rate(self) -> float:
        with self._lock:
            if self.total == 0:
                return 0.0
            return (self.direct + self.keyword + self.ai) * 100.0 / self.total

    def log_summary(self) -> None:
        _logger.info(
            (
                "categorize:summary total=%d direct=%d keyword=%d ai=%d "
                "uncategorized=%d failed=%d success_rate=%.1f"
            ),
            self.total,
            self.direct,
            self.keyword,
            self.ai,
            self.uncategorized,
            self.failed,
            self.success_rate,
        )


# ---------------------------------------------------------------------------
# Batch aggregation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DateRange:
    """Inclusive span of dates; either bound may be unknown (``None``)."""

    start: date | None = None
    end: date | None = None

    @property
    def is_complete(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def is_empty(self) -> bool:
        return self.start is None and self.end is None

    def merge(self, other: DateRange) -> DateRange:
        """Return the union span; unknown bounds never win over known ones."""

        starts = [d for d in (self.start, other.start) if d is not None]
        ends = [d for d in (self.end, other.end) if d is not None]
        return DateRange(min(starts) if starts else None, max(ends) if ends else None)

    @classmethod
    def covering(cls, dates: Sequence[date]) -> DateRange:
        if not dates:
            return cls()
        return cls(min(dates), max(dates))

    def __str__(self) -> str:
        if not self.is_complete:
            return ""
        return f"{self.start:%Y-%m-%d}_{self.end:%Y-%m-%d}"


@dataclass(frozen=True, slots=True)
class AccountIdentifier:
    id: str
    source: AccountSource


@dataclass(frozen=True, slots=True)
class FileGroup:
    account_id: str
    files: tuple[str, ...]
    date_range: DateRange = DateRange()
    account_source: AccountSource = "filename"


@dataclass(frozen=True, slots=True)
class DuplicateCluster:
    key: tuple[date, Decimal, str, str]
    count: int


@dataclass(frozen=True, slots=True)
class Aggregation:
    """Union of all parsed transactions of one account group, sorted."""

    account_id: str
    transactions: tuple[Transaction, ...]
    source_files: tuple[str, ...] = ()
    skipped_files: tuple[str, ...] = ()
    duplicates: tuple[DuplicateCluster, ...] = ()


@dataclass(slots=True)
class BatchReport:
    groups_total: int = 0
    groups_consolidated: int = 0
    outputs: list[str] = field(default_factory=list)
    failed_groups: list[str] = field(default_factory=list)
    cancelled: bool = False


# ---------------------------------------------------------------------------
# Rule-file DTOs (validated at the YAML boundary)
# ---------------------------------------------------------------------------


class CategoryRule(BaseModel):
    """One entry of the categories file: a name and its match keywords."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    name: str
    keywords: list[str] = []

    @field_validator("name")
    @classmethod
    def _non_empty_name(cls, v: str) -> str:
        if not v:
            raise ValueError("category name must be a non-empty string")
        return v

    @field_validator("keywords", mode="before")
    @classmethod
    def _coerce_keywords(cls, v: object) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(k) for k in v]  # type: ignore[union-attr]

    def to_category(self) -> Category:
        return Category(self.name, tuple(k for k in self.keywords if k.strip()))


class CategoriesFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    categories: list[CategoryRule] = []


__all__ = [
    "UNCATEGORIZED",
    "AccountIdentifier",
    "AccountSource",
    "Aggregation",
    "BatchReport",
    "CategoriesFile",
    "CategorizationResult",
    "CategorizationStats",
    "Category",
    "CategoryRule",
    "DateRange",
    "DuplicateCluster",
    "FileGroup",
    "TierSource",
    "Transaction",
]
