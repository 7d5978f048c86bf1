"""Runtime settings resolved from environment variables.

Every knob has a default so the tool runs with no configuration at all. The
CLI loads a local ``.env`` (python-dotenv) before calling
:func:`load_settings`; library callers may build :class:`Settings` directly.

Variables
---------
- ``SC_DATA_DIR``: directory holding the mapping files (optional).
- ``SC_CATEGORIES_FILE`` / ``SC_CREDITORS_FILE`` / ``SC_DEBTORS_FILE``.
- ``SC_BACKUP_ENABLED`` / ``SC_BACKUP_DIR``.
- ``SC_AI_ENABLED`` / ``SC_AI_MODEL`` / ``SC_AI_REQUESTS_PER_MINUTE`` /
  ``SC_AI_TIMEOUT_SECONDS``.
- ``SC_AUTO_LEARN``.
- ``SC_MAX_WORKERS`` / ``SC_PARALLEL_THRESHOLD``.
- ``SC_CSV_DELIMITER``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

_ENV_PREFIX = "SC_"
# Values that may consist of whitespace only.
_WHITESPACE_FIELDS = frozenset({"csv_delimiter"})


def _default_max_workers() -> int:
    return max(1, min(os.cpu_count() or 1, 32))


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    data_dir: Path | None = None
    categories_file: str = "categories.yaml"
    creditors_file: str = "creditors.yaml"
    debtors_file: str = "debtors.yaml"

    backup_enabled: bool = True
    backup_dir: Path | None = None

    ai_enabled: bool = False
    ai_model: str = "gpt-4o-mini"
    ai_requests_per_minute: int = Field(default=10, ge=0)
    ai_timeout_seconds: float = Field(default=30.0, gt=0)

    auto_learn: bool = True

    max_workers: int = Field(default_factory=_default_max_workers, ge=1)
    parallel_threshold: int = Field(default=100, ge=1)

    csv_delimiter: str = ","

    @field_validator("csv_delimiter")
    @classmethod
    def _single_char(cls, v: str) -> str:
        if v == "\\t":
            return "\t"
        if len(v) != 1:
            raise ValueError("csv delimiter must be a single character")
        return v


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from ``SC_*`` variables in ``env``.

    Values are stripped and blank ones fall back to the defaults, except that
    a whitespace delimiter such as a literal tab is kept. Invalid values raise
    ``ValueError`` naming the offending variable.
    """

    source = os.environ if env is None else env
    values: dict[str, str] = {}
    for name in Settings.model_fields:
        raw = source.get(_ENV_PREFIX + name.upper())
        if raw is None:
            continue
        value = raw.strip()
        if not value and name in _WHITESPACE_FIELDS:
            value = raw
        if value:
            values[name] = value
    try:
        return Settings.model_validate(values)
    except ValidationError as e:
        first = e.errors()[0]
        loc = first["loc"][0] if first["loc"] else ""
        var = _ENV_PREFIX + str(loc).upper()
        raise ValueError(f"invalid value for {var}: {first['msg']}") from e


__all__ = ["Settings", "load_settings"]
