"""YAML-backed category rules and party→category mapping tables.

Three human-editable files back the store:

- ``categories.yaml``: ``categories: [{name, keywords}]`` (a bare list of
  the same entries is accepted too);
- ``creditors.yaml``: ``party name: category`` for parties paying the
  account holder;
- ``debtors.yaml``: ``party name: category`` for parties the account holder
  pays.

Lookups are case-insensitive and ignore surrounding whitespace. Learned
entries are merged into whatever is on disk at save time, so entries edited
by hand while the process runs are never clobbered. Every write is preceded
by a timestamped backup and lands atomically (``.tmp`` then ``os.replace``).
"""

from __future__ import annotations

import contextlib
import os
import shutil
import threading
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import Settings
from .errors import PersistenceError
from .logging_setup import get_logger
from .models import CategoriesFile, Category, CategoryRule

_APP_CONFIG_DIR = Path("~/.config/statement-consolidator")
_DEFAULT_DATA_DIR = Path("database")
_BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"

_logger = get_logger("statement_consolidator.store")


def normalize_party(name: str) -> str:
    """Return the lookup key for a party name (trimmed, casefolded)."""

    return " ".join(name.split()).casefold()


def resolve_mapping_path(filename: str | os.PathLike[str], data_dir: Path | None = None) -> Path:
    """Locate a mapping file, or pick where a new one should be created.

    Absolute paths are returned unchanged. Relative names are searched in
    ``data_dir`` (when given), the working directory, ``./config``,
    ``./database`` and ``~/.config/statement-consolidator``. When none exists,
    the file belongs under ``data_dir`` (or ``./database``).
    """

    path = Path(filename).expanduser()
    if path.is_absolute():
        return path

    candidates: list[Path] = []
    if data_dir is not None:
        candidates.append(Path(data_dir).expanduser() / path)
    candidates += [
        path,
        Path("config") / path,
        _DEFAULT_DATA_DIR / path,
        _APP_CONFIG_DIR.expanduser() / path,
    ]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return (Path(data_dir).expanduser() if data_dir is not None else _DEFAULT_DATA_DIR) / path


class _StringScalarLoader(yaml.SafeLoader):
    """Safe loader that reads every plain scalar as a string (``yes``, ``on``, ``null``...)."""

    yaml_implicit_resolvers: dict = {}


def _read_yaml(path: Path, loader: type[yaml.SafeLoader] = yaml.SafeLoader) -> Any:
    with open(path, encoding="utf-8") as f:
        return yaml.load(f, Loader=loader)  # noqa: S506 - always a SafeLoader



def _parse_mapping(raw: Any, path: Path) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise PersistenceError(str(path), "expected a mapping of party name to category")
    out: dict[str, str] = {}
    for key, value in raw.items():
        if key is None or value is None:
            continue
        name, category = str(key).strip(), str(value).strip()
        if name and category:
            out[name] = category
    return out


def _parse_categories(raw: Any, path: Path) -> tuple[Category, ...]:
    if raw is None:
        return ()
    try:
        if isinstance(raw, list):
            rules = [CategoryRule.model_validate(item) for item in raw]
        else:
            rules = CategoriesFile.model_validate(raw).categories
    except ValidationError as e:
        raise PersistenceError(str(path), f"invalid category rules: {e}") from e

    # Names are unique; a repeated name contributes its keywords to the first.
    merged: dict[str, list[str]] = {}
    display: dict[str, str] = {}
    for rule in rules:
        cat = rule.to_category()
        key = cat.name.casefold()
        if key in merged:
            _logger.warning(
                "store:duplicate_category name=%s path=%s (keywords merged)", cat.name, path
            )
            merged[key].extend(k for k in cat.keywords if k not in merged[key])
            continue
        merged[key] = list(cat.keywords)
        display[key] = cat.name
    return tuple(Category(display[k], tuple(v)) for k, v in merged.items())


class _MappingTable:
    """One party→category table plus the entries learned since the last save."""

    def __init__(self, kind: str, path: Path) -> None:
        self.kind = kind
        self.path = path
        self.entries: dict[str, tuple[str, str]] = {}
        self.learned: dict[str, tuple[str, str]] = {}
        self.malformed = False

    def load(self) -> None:
        self.entries.clear()
        self.learned.clear()
        self.malformed = False
        if not self.path.is_file():
            _logger.debug("store:mapping_missing kind=%s path=%s", self.kind, self.path)
            return
        try:
            mapping = _parse_mapping(_read_yaml(self.path, _StringScalarLoader), self.path)
        except (OSError, yaml.YAMLError, PersistenceError) as e:
            self.malformed = True
            _logger.warning(
                "store:mapping_unreadable kind=%s path=%s error=%s", self.kind, self.path, e
            )
            return
        for name, category in mapping.items():
            self.entries[normalize_party(name)] = (name, category)
        _logger.info(
            "store:mapping_loaded kind=%s path=%s entries=%d",
            self.kind,
            self.path,
            len(self.entries),
        )

    def lookup(self, name: str) -> str | None:
        hit = self.entries.get(normalize_party(name))
        return hit[1] if hit else None

    def learn(self, name: str, category: str) -> None:
        key = normalize_party(name)
        entry = (name.strip(), category)
        self.entries[key] = entry
        self.learned[key] = entry

    def snapshot(self) -> dict[str, str]:
        return {name: category for name, category in self.entries.values()}

    def merged_with_disk(self) -> dict[str, str]:
        """Overlay the learned entries onto the current on-disk mapping."""

        if self.path.is_file():
            try:
                on_disk = _parse_mapping(_read_yaml(self.path, _StringScalarLoader), self.path)
            except yaml.YAMLError as e:
                raise PersistenceError(str(self.path), f"refusing to overwrite: {e}") from e
            except OSError as e:
                raise PersistenceError(str(self.path), str(e)) from e
        else:
            on_disk = {}

        index = {normalize_party(name): name for name in on_disk}
        for key, (name, category) in self.learned.items():
            # Update in place under the spelling already on disk, else append.
            on_disk[index.get(key, name)] = category
        return on_disk


class CategoryStore:
    """Category rules and creditor/debtor mapping tables behind one lock.

    The store is loaded once at construction. ``learn_*`` calls mutate the
    in-memory tables; :meth:`save` persists them. All public methods are safe
    to call from several threads.
    """

    def __init__(
        self,
        categories_path: str | os.PathLike[str],
        creditors_path: str | os.PathLike[str],
        debtors_path: str | os.PathLike[str],
        *,
        backup_enabled: bool = True,
        backup_dir: str | os.PathLike[str] | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._categories_path = Path(categories_path)
        self._categories: tuple[Category, ...] = ()
        self._creditors = _MappingTable("creditor", Path(creditors_path))
        self._debtors = _MappingTable("debtor", Path(debtors_path))
        self.backup_enabled = backup_enabled
        self.backup_dir = Path(backup_dir) if backup_dir is not None else None
        self.load()

    @classmethod
    def from_settings(cls, settings: Settings) -> CategoryStore:
        return cls(
            resolve_mapping_path(settings.categories_file, settings.data_dir),
            resolve_mapping_path(settings.creditors_file, settings.data_dir),
            resolve_mapping_path(settings.debtors_file, settings.data_dir),
            backup_enabled=settings.backup_enabled,
            backup_dir=settings.backup_dir,
        )

    # ---- Loading -----------------------------------------------------------

    def load(self) -> None:
        """(Re)load all three files, discarding unsaved learned entries."""

        with self._lock:
            self._categories = self._load_categories()
            self._creditors.load()
            self._debtors.load()

    def _load_categories(self) -> tuple[Category, ...]:
        path = self._categories_path
        if not path.is_file():
            _logger.debug("store:categories_missing path=%s", path)
            return ()
        try:
            categories = _parse_categories(_read_yaml(path), path)
        except (OSError, yaml.YAMLError, PersistenceError) as e:
            _logger.warning("store:categories_unreadable path=%s error=%s", path, e)
            return ()
        _logger.info("store:categories_loaded path=%s count=%d", path, len(categories))
        return categories

    # ---- Reads -------------------------------------------------------------

    def keywords(self) -> tuple[Category, ...]:
        """Category rules in load order."""

        with self._lock:
            return self._categories

    def category_names(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(c.name for c in self._categories)

    def lookup_creditor(self, name: str) -> str | None:
        with self._lock:
            return self._creditors.lookup(name)

    def lookup_debtor(self, name: str) -> str | None:
        with self._lock:
            return self._debtors.lookup(name)

    def lookup(self, name: str, *, is_debtor: bool) -> str | None:
        return self.lookup_debtor(name) if is_debtor else self.lookup_creditor(name)

    def creditors(self) -> dict[str, str]:
        with self._lock:
            return self._creditors.snapshot()

    def debtors(self) -> dict[str, str]:
        with self._lock:
            return self._debtors.snapshot()

    @property
    def dirty(self) -> bool:
        with self._lock:
            return bool(self._creditors.learned or self._debtors.learned)

    # ---- Writes ------------------------------------------------------------

    def learn(self, name: str, category: str, *, is_debtor: bool) -> None:
        """Record ``name → category`` in the debtor or creditor table."""

        if not name.strip() or not category.strip():
            raise ValueError("party name and category must be non-empty")
        with self._lock:
            table = self._debtors if is_debtor else self._creditors
            table.learn(name, category.strip())
        _logger.debug(
            "store:learned kind=%s party=%s category=%s",
            "debtor" if is_debtor else "creditor",
            name,
            category,
        )

    def learn_creditor(self, name: str, category: str) -> None:
        self.learn(name, category, is_debtor=False)

    def learn_debtor(self, name: str, category: str) -> None:
        self.learn(name, category, is_debtor=True)

    def save(self, *, overwrite: bool = False) -> list[Path]:
        """Persist learned entries and return the paths written.

        By default learned entries are merged into the current file contents:
        existing keys are updated in place, new keys are appended, unrelated
        entries keep their position. ``overwrite=True`` instead replaces both
        files with the in-memory tables (after a backup). Raises
        :class:`PersistenceError` when a file cannot be read or written.
        """

        written: list[Path] = []
        with self._lock:
            for table in (self._creditors, self._debtors):
                if overwrite:
                    content = table.snapshot()
                elif table.learned:
                    if table.malformed:
                        raise PersistenceError(
                            str(table.path), "refusing to overwrite an unreadable mapping file"
                        )
                    content = table.merged_with_disk()
                else:
                    continue
                self._write_mapping(table.path, content)
                table.learned.clear()
                written.append(table.path)
                _logger.info(
                    "store:mapping_saved kind=%s path=%s entries=%d",
                    table.kind,
                    table.path,
                    len(content),
                )
        return written

    def _write_mapping(self, path: Path, content: Mapping[str, str]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if self.backup_enabled and path.is_file():
                self._backup(path)
        except OSError as e:
            raise PersistenceError(str(path), f"backup failed: {e}") from e

        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                yaml.safe_dump(
                    dict(content),
                    f,
                    sort_keys=False,
                    allow_unicode=True,
                    default_flow_style=False,
                )
            os.replace(tmp, path)
        except OSError as e:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            raise PersistenceError(str(path), str(e)) from e

    def _backup(self, path: Path) -> Path:
        stamp = datetime.now().strftime(_BACKUP_TIMESTAMP_FORMAT)
        target_dir = self.backup_dir if self.backup_dir is not None else path.parent
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{path.name}.{stamp}.backup"
        n = 1
        while target.exists():
            n += 1
            target = target_dir / f"{path.name}.{stamp}_{n}.backup"
        shutil.copy2(path, target)
        _logger.info("store:backup_created path=%s backup=%s", path, target)
        return target


__all__ = ["CategoryStore", "normalize_party", "resolve_mapping_path"]
