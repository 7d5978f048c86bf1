"""Prompt construction for single-transaction AI categorization.

The model sees a short system instruction listing the allowed categories and
a user message embedding one transaction as JSON with a fixed field order.
It is asked for the bare category label, nothing else.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

REQUEST_FIELD_ORDER: tuple[str, ...] = (
    "party_name",
    "direction",
    "amount",
    "currency",
    "description",
)


@dataclass(frozen=True, slots=True)
class AIRequest:
    party_name: str
    description: str
    amount: Decimal
    currency: str
    is_debtor: bool


def serialize_request(request: AIRequest) -> str:
    """Serialize ``request`` to a JSON object with a fixed key order."""

    values = {
        "party_name": request.party_name,
        # Which side of the transaction the party is on.
        "direction": "outgoing payment" if request.is_debtor else "incoming payment",
        "amount": str(request.amount),
        "currency": request.currency,
        "description": request.description,
    }
    return json.dumps({k: values[k] for k in REQUEST_FIELD_ORDER}, ensure_ascii=False)


def build_system_instructions(categories: Sequence[str]) -> str:
    base = (
        "You categorize bank statement transactions. Answer with exactly one category "
        "name and nothing else: no punctuation, no explanation."
    )
    if not categories:
        return base + " Use a short, general spending category such as 'Groceries'."
    listing = "\n".join(f"- {name}" for name in categories)
    return (
        f"{base} Choose only from these categories and never invent new ones:\n{listing}"
    )


def build_user_content(request: AIRequest) -> str:
    return (
        "Categorize this transaction.\n"
        "BEGIN_TRANSACTION_JSON\n"
        f"{serialize_request(request)}\n"
        "END_TRANSACTION_JSON"
    )


__all__ = [
    "AIRequest",
    "build_system_instructions",
    "build_user_content",
    "serialize_request",
]
