"""Hybrid categorization engine: direct mapping → keywords → AI.

Tiers run in that fixed order and the first one to return a category wins.
A category found by the AI tier is written back into the
:class:`~statement_consolidator.store.CategoryStore` before the result is
returned, so later transactions from the same party are served by the direct
tier without another network call.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence

from .ai import AIClient, AIStrategy
from .errors import CategorizationError, PersistenceError
from .logging_setup import get_logger
from .models import UNCATEGORIZED, CategorizationResult, CategorizationStats, Transaction
from .pmap import p_map
from .rate_limit import RateLimiter
from .store import CategoryStore
from .strategies import CategorizationStrategy, DirectMappingStrategy, KeywordStrategy

# ---- Tunables (private) ------------------------------------------------------

_PARALLEL_THRESHOLD: int = 100
_MAX_WORKERS: int = 8

_logger = get_logger("statement_consolidator.engine")


class CategorizationEngine:
    """Run transactions through the tier chain and learn from AI answers.

    Parameters
    ----------
    store:
        Shared rules and mapping tables. All learning goes through it.
    rate_limiter:
        Budget for the AI tier. Ignored when no ``ai_client`` is given.
    ai_client:
        Optional :class:`~statement_consolidator.ai.AIClient`; without one the
        chain stops after the keyword tier.
    auto_learn:
        Write AI answers back into the store (on by default).
    auto_save:
        Also persist the store right after each learned entry.
    strategies:
        Replace the default tier chain entirely (order is preserved).
    """

    def __init__(
        self,
        store: CategoryStore,
        *,
        rate_limiter: RateLimiter | None = None,
        ai_client: AIClient | None = None,
        auto_learn: bool = True,
        auto_save: bool = False,
        strategies: Sequence[CategorizationStrategy] | None = None,
        max_workers: int = _MAX_WORKERS,
        parallel_threshold: int = _PARALLEL_THRESHOLD,
    ) -> None:
        self.store = store
        self.auto_learn = auto_learn
        self.auto_save = auto_save
        self.max_workers = max_workers
        self.parallel_threshold = parallel_threshold
        if strategies is None:
            chain: list[CategorizationStrategy] = [
                DirectMappingStrategy(store),
                KeywordStrategy(store),
            ]
            if ai_client is not None:
                limiter = rate_limiter if rate_limiter is not None else RateLimiter(10, 60.0)
                chain.append(AIStrategy(ai_client, limiter, store.category_names))
            strategies = chain
        self.strategies: tuple[CategorizationStrategy, ...] = tuple(strategies)

    def categorize(self, tx: Transaction) -> CategorizationResult:
        """Return the first tier's answer, or "Uncategorized" (source ``none``).

        Never raises for tier failures: a ``CategorizationError`` is recorded
        on the result and the next tier is tried.
        """

        if not tx.party_name.strip():
            return CategorizationResult(UNCATEGORIZED, "none")

        error: CategorizationError | None = None
        for strategy in self.strategies:
            try:
                category = strategy.try_match(tx)
            except CategorizationError as e:
                error = e
                continue
            if not category:
                continue
            if strategy.name == "ai" and self.auto_learn:
                self._learn(tx, category)
            _logger.debug(
                "categorize:matched party=%s tier=%s category=%s",
                tx.party_name,
                strategy.name,
                category,
            )
            return CategorizationResult(category, strategy.name, error)
        return CategorizationResult(UNCATEGORIZED, "none", error)

    def _learn(self, tx: Transaction, category: str) -> None:
        self.store.learn(tx.party_name, category, is_debtor=tx.is_debtor)
        if self.auto_save:
            self.save()

    def categorize_transaction(self, tx: Transaction) -> Transaction:
        result = self.categorize(tx)
        return dataclasses.replace(tx, category=result.category)

    def categorize_all(
        self,
        transactions: Sequence[Transaction],
        *,
        stats: CategorizationStats | None = None,
    ) -> list[Transaction]:
        """Categorize ``transactions``, preserving their order.

        Runs sequentially below ``parallel_threshold`` items and through a
        bounded worker pool at or above it.
        """

        stats = stats if stats is not None else CategorizationStats()

        def _one(tx: Transaction) -> Transaction:
            result = self.categorize(tx)
            stats.record(result)
            return dataclasses.replace(tx, category=result.category)

        if len(transactions) >= self.parallel_threshold and self.max_workers > 1:
            _logger.info(
                "categorize:parallel count=%d workers=%d", len(transactions), self.max_workers
            )
            out = p_map(transactions, _one, concurrency=self.max_workers)
        else:
            out = [_one(tx) for tx in transactions]
        stats.log_summary()
        return out

    def save(self) -> bool:
        """Flush learned mappings; failures are logged, never raised."""

        try:
            self.store.save()
        except PersistenceError as e:
            _logger.warning("categorize:save_failed error=%s", e)
            return False
        return True


__all__ = ["CategorizationEngine"]
