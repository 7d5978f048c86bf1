"""Rate-limited AI fallback tier backed by the OpenAI Responses API.

:class:`AIStrategy` is the last tier of the chain. It asks the rate limiter
first and only then talks to the network through an :class:`AIClient`; any
failure on the way (timeout, transport error, empty or unusable reply) is
raised as :class:`~statement_consolidator.errors.CategorizationError` so the
engine can record it and fall through to "Uncategorized".

No side effects occur at import time; the OpenAI client is created on first
use.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from openai import OpenAI

from . import prompting
from .errors import CategorizationError
from .logging_setup import get_logger
from .models import Transaction, TierSource
from .prompting import AIRequest
from .rate_limit import RateLimiter

# ---- Tunables (private) ------------------------------------------------------

_MODEL: str = "gpt-4o-mini"
_TIMEOUT_SEC: float = 30.0

# Replies that name no category at all.
_PLACEHOLDER_LABELS: frozenset[str] = frozenset(
    {"category", "categories", "unknown", "none", "n/a", "uncategorized"}
)
_LABEL_PREFIXES: tuple[str, ...] = ("category:", "the category is", "categorie:")

_logger = get_logger("statement_consolidator.ai")


class AIClient(Protocol):
    def categorize(self, request: AIRequest, categories: Sequence[str]) -> str: ...


def _extract_response_text(resp: Any) -> str:
    """Return the text of a Responses API result.

    Prefers ``resp.output_text``; falls back to
    ``resp.output[0].content[0].text``. Raises ``ValueError`` when no text can
    be located.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
                else:
                    maybe_val = getattr(txt_obj, "value", None)
                    if isinstance(maybe_val, str):
                        text = maybe_val
        except (AttributeError, IndexError, TypeError):
            text = None
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    return text


class OpenAICategorizer:
    """:class:`AIClient` sending one Responses API request per transaction.

    Retries are disabled on the SDK client: a failed call simply leaves the
    transaction to the next run.
    """

    def __init__(self, *, model: str = _MODEL, timeout: float = _TIMEOUT_SEC) -> None:
        self.model = model
        self.timeout = timeout
        self._client: OpenAI | None = None
        self._client_lock = threading.Lock()

    def _create_client(self) -> OpenAI:
        return OpenAI(timeout=self.timeout, max_retries=0)

    def _get_client(self) -> OpenAI:
        with self._client_lock:
            if self._client is None:
                self._client = self._create_client()
            return self._client

    def categorize(self, request: AIRequest, categories: Sequence[str]) -> str:
        resp = self._get_client().responses.create(
            model=self.model,
            instructions=prompting.build_system_instructions(categories),
            input=prompting.build_user_content(request),
        )
        return _extract_response_text(resp)


def _strip_decoration(text: str) -> str:
    # Quotes, markdown emphasis and a trailing full stop, in any nesting.
    prev = None
    while prev != text:
        prev = text
        text = text.strip().strip("\"'`*").rstrip(".")
    return text


def clean_label(raw: str) -> str:
    """Reduce a model reply to a bare category label ("" when unusable)."""

    for line in raw.splitlines():
        label = _strip_decoration(line)
        if label:
            break
    else:
        return ""
    lowered = label.casefold()
    for prefix in _LABEL_PREFIXES:
        if lowered.startswith(prefix):
            label = _strip_decoration(label[len(prefix) :])
            break
    if label.casefold() in _PLACEHOLDER_LABELS:
        return ""
    return label


def match_category(label: str, categories: Sequence[str]) -> str | None:
    """Map a cleaned label onto one of ``categories``.

    Exact case-insensitive matches win; otherwise the longest category name
    contained in the label. With no categories loaded the label is accepted
    as-is.
    """

    if not label:
        return None
    if not categories:
        return label
    folded = label.casefold()
    for name in categories:
        if name.casefold() == folded:
            return name
    contained = [name for name in categories if name.casefold() in folded]
    if contained:
        return max(contained, key=len)
    return None


class AIStrategy:
    """Third tier: ask an external model, at most ``limiter`` times per window."""

    name: TierSource = "ai"

    def __init__(
        self,
        client: AIClient,
        limiter: RateLimiter,
        categories: Callable[[], Sequence[str]] = tuple,
    ) -> None:
        self._client = client
        self._limiter = limiter
        self._categories = categories

    def try_match(self, tx: Transaction) -> str | None:
        if not tx.party_name.strip():
            return None
        if not self._limiter.allow():
            _logger.debug("ai:rate_limited party=%s", tx.party_name)
            return None

        allowed = tuple(self._categories())
        request = AIRequest(
            party_name=tx.party_name,
            description=tx.description,
            amount=tx.amount,
            currency=tx.currency,
            is_debtor=tx.is_debtor,
        )
        t0 = time.perf_counter()
        try:
            raw = self._client.categorize(request, allowed)
        except Exception as e:
            dt_ms = (time.perf_counter() - t0) * 1000.0
            _logger.warning(
                "ai:request_failed party=%s latency_ms=%.2f error=%s",
                tx.party_name,
                dt_ms,
                e.__class__.__name__,
            )
            raise CategorizationError(f"AI categorization failed for {tx.party_name!r}: {e}") from e

        label = clean_label(raw or "")
        if not label:
            _logger.warning("ai:unusable_response party=%s raw=%r", tx.party_name, raw)
            raise CategorizationError(f"AI returned no usable category for {tx.party_name!r}")

        category = match_category(label, allowed)
        dt_ms = (time.perf_counter() - t0) * 1000.0
        if category is None:
            _logger.info(
                "ai:unknown_category party=%s label=%s latency_ms=%.2f",
                tx.party_name,
                label,
                dt_ms,
            )
            return None
        _logger.info(
            "ai:categorized party=%s category=%s latency_ms=%.2f",
            tx.party_name,
            category,
            dt_ms,
        )
        return category


__all__ = ["AIClient", "AIStrategy", "OpenAICategorizer", "clean_label", "match_category"]
