"""Local categorization tiers: direct party mapping and keyword rules.

Every tier, including :class:`~statement_consolidator.ai.AIStrategy`,
satisfies :class:`CategorizationStrategy`: ``try_match`` returns a category
name, or ``None`` when the tier has nothing to say about the transaction.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from .models import Transaction, TierSource
from .store import CategoryStore


@runtime_checkable
class CategorizationStrategy(Protocol):
    name: TierSource

    def try_match(self, tx: Transaction) -> str | None: ...


class DirectMappingStrategy:
    """Exact (case-insensitive) party lookup in the creditor/debtor tables."""

    name: TierSource = "direct"

    def __init__(self, store: CategoryStore) -> None:
        self._store = store

    def try_match(self, tx: Transaction) -> str | None:
        if not tx.party_name.strip():
            return None
        return self._store.lookup(tx.party_name, is_debtor=tx.is_debtor)


class KeywordStrategy:
    """First category (in load order) with a keyword found in the transaction.

    Description and party name are searched as case-insensitive substrings.
    """

    name: TierSource = "keyword"

    def __init__(self, store: CategoryStore) -> None:
        self._store = store

    def try_match(self, tx: Transaction) -> str | None:
        haystacks = [s.casefold() for s in (tx.description, tx.party_name) if s]
        if not haystacks:
            return None
        for category in self._store.keywords():
            for keyword in category.keywords:
                needle = keyword.strip().casefold()
                if needle and any(needle in h for h in haystacks):
                    return category.name
        return None


__all__ = ["CategorizationStrategy", "DirectMappingStrategy", "KeywordStrategy"]
