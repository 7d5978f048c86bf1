from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import pytest
import yaml

import statement_consolidator.store as store_mod
from statement_consolidator.config import Settings
from statement_consolidator.errors import PersistenceError
from statement_consolidator.store import CategoryStore, normalize_party, resolve_mapping_path

CATEGORIES_YAML = """\
categories:
  - name: Groceries
    keywords: [migros, coop]
  - name: Transport
    keywords:
      - sbb
      - uber
  - name: Groceries
    keywords: [aldi]
"""


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _store(root: Path, **kw) -> CategoryStore:
    return CategoryStore(
        root / "categories.yaml",
        root / "creditors.yaml",
        root / "debtors.yaml",
        **kw,
    )


def test_missing_files_load_as_empty(tmp_path: Path):
    store = _store(tmp_path)

    assert store.keywords() == ()
    assert store.creditors() == {}
    assert store.debtors() == {}
    assert store.lookup_creditor("anyone") is None


def test_categories_load_in_order_and_merge_duplicate_names(tmp_path: Path):
    _write(tmp_path / "categories.yaml", CATEGORIES_YAML)

    store = _store(tmp_path)

    cats = store.keywords()
    assert [c.name for c in cats] == ["Groceries", "Transport"]
    assert cats[0].keywords == ("migros", "coop", "aldi")
    assert cats[1].keywords == ("sbb", "uber")


def test_categories_accept_bare_list(tmp_path: Path):
    _write(tmp_path / "categories.yaml", "- name: Rent\n  keywords: [landlord]\n")

    store = _store(tmp_path)

    assert store.category_names() == ("Rent",)


def test_lookup_is_case_insensitive_and_trimmed(tmp_path: Path):
    _write(tmp_path / "debtors.yaml", "Migros Zurich: Groceries\n")
    _write(tmp_path / "creditors.yaml", "ACME Corp: Salary\n")

    store = _store(tmp_path)

    assert store.lookup_debtor("  migros   ZURICH ") == "Groceries"
    assert store.lookup_creditor("acme corp") == "Salary"
    # Tables are separate
    assert store.lookup_creditor("Migros Zurich") is None
    assert store.lookup("acme corp", is_debtor=False) == "Salary"


def test_malformed_mapping_loads_empty_and_refuses_merge_save(tmp_path: Path, caplog):
    bad = _write(tmp_path / "creditors.yaml", "{malformed: yaml: content")
    original = bad.read_text(encoding="utf-8")

    with caplog.at_level(logging.WARNING, logger="statement_consolidator"):
        store = _store(tmp_path)
    assert store.creditors() == {}
    assert any("mapping_unreadable" in r.getMessage() for r in caplog.records)

    store.learn_creditor("Employer", "Salary")
    with pytest.raises(PersistenceError):
        store.save()
    assert bad.read_text(encoding="utf-8") == original


def test_round_trip_keeps_existing_entries_and_adds_learned(tmp_path: Path):
    _write(
        tmp_path / "debtors.yaml",
        "Coop: Groceries\nSBB: Transport\nNetflix: Entertainment\n",
    )
    store = _store(tmp_path, backup_enabled=False)

    store.learn_debtor("Spotify", "Entertainment")
    store.learn_debtor("Dentist Dr. Muster", "Health")
    store.learn_debtor("Landlord AG", "Housing")
    written = store.save()

    assert written == [tmp_path / "debtors.yaml"]
    reloaded = _store(tmp_path)
    assert list(reloaded.debtors().items()) == [
        ("Coop", "Groceries"),
        ("SBB", "Transport"),
        ("Netflix", "Entertainment"),
        ("Spotify", "Entertainment"),
        ("Dentist Dr. Muster", "Health"),
        ("Landlord AG", "Housing"),
    ]
    # The creditor file was untouched
    assert not (tmp_path / "creditors.yaml").exists()


def test_save_merges_with_entries_added_on_disk_meanwhile(tmp_path: Path):
    path = _write(tmp_path / "creditors.yaml", "Employer: Salary\n")
    store = _store(tmp_path, backup_enabled=False)

    # Someone edits the file while the process runs
    _write(path, "Employer: Salary\nTax Office: Refunds\n")
    store.learn_creditor("Insurance", "Refunds")
    store.save()

    on_disk = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert on_disk == {"Employer": "Salary", "Tax Office": "Refunds", "Insurance": "Refunds"}


def test_party_names_that_look_like_yaml_literals_stay_strings(tmp_path: Path):
    path = _write(tmp_path / "debtors.yaml", "yes: Groceries\non: Transport\nnull: Other\n")
    store = _store(tmp_path, backup_enabled=False)

    assert list(store.debtors()) == ["yes", "on", "null"]
    store.learn_debtor("Migros", "Groceries")
    store.save()

    reloaded = _store(tmp_path)
    assert list(reloaded.debtors().items()) == [
        ("yes", "Groceries"),
        ("on", "Transport"),
        ("null", "Other"),
        ("Migros", "Groceries"),
    ]
    assert yaml.safe_load(path.read_text(encoding="utf-8"))["yes"] == "Groceries"



def test_learned_entry_updates_existing_key_in_place(tmp_path: Path):
    path = _write(tmp_path / "debtors.yaml", "First: A\nCoop: Other\nLast: B\n")
    store = _store(tmp_path, backup_enabled=False)

    store.learn_debtor("  COOP ", "Groceries")
    store.save()

    assert list(yaml.safe_load(path.read_text(encoding="utf-8")).items()) == [
        ("First", "A"),
        ("Coop", "Groceries"),
        ("Last", "B"),
    ]


def test_save_creates_timestamped_backup(tmp_path: Path):
    path = _write(tmp_path / "debtors.yaml", "Coop: Groceries\n")
    backups = tmp_path / "backups"
    store = _store(tmp_path, backup_dir=backups)

    store.learn_debtor("Migros", "Groceries")
    store.save()

    files = list(backups.glob("debtors.yaml.*.backup"))
    assert len(files) == 1
    assert files[0].read_text(encoding="utf-8") == "Coop: Groceries\n"
    assert "Migros" in path.read_text(encoding="utf-8")


def test_backups_within_one_clock_tick_do_not_overwrite(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
):
    class _FrozenClock:
        @staticmethod
        def now() -> datetime:
            return datetime(2025, 6, 1, 9, 30, 5, 123456)

    monkeypatch.setattr(store_mod, "datetime", _FrozenClock)
    _write(tmp_path / "debtors.yaml", "Coop: Groceries\n")
    backups = tmp_path / "backups"
    store = _store(tmp_path, backup_dir=backups)

    store.learn_debtor("Migros", "Groceries")
    store.save()
    store.learn_debtor("Aldi", "Groceries")
    store.save()

    assert sorted(p.name for p in backups.iterdir()) == [
        "debtors.yaml.20250601_093005_123456.backup",
        "debtors.yaml.20250601_093005_123456_2.backup",
    ]
    second = backups / "debtors.yaml.20250601_093005_123456_2.backup"
    assert "Migros" in second.read_text(encoding="utf-8")



def test_save_without_learned_entries_writes_nothing(tmp_path: Path):
    _write(tmp_path / "debtors.yaml", "Coop: Groceries\n")
    store = _store(tmp_path)

    assert store.save() == []
    assert not store.dirty
    assert list(tmp_path.glob("*.backup")) == []


def test_overwrite_replaces_file_with_memory_after_backup(tmp_path: Path):
    path = _write(tmp_path / "debtors.yaml", "Coop: Groceries\n")
    store = _store(tmp_path)
    _write(path, "Coop: Groceries\nAdded Later: Other\n")

    store.save(overwrite=True)

    assert yaml.safe_load(path.read_text(encoding="utf-8")) == {"Coop": "Groceries"}
    backups = list(tmp_path.glob("debtors.yaml.*.backup"))
    assert len(backups) == 1
    assert "Added Later" in backups[0].read_text(encoding="utf-8")


def test_learn_rejects_blank_values(tmp_path: Path):
    store = _store(tmp_path)
    with pytest.raises(ValueError):
        store.learn_creditor("  ", "Salary")
    with pytest.raises(ValueError):
        store.learn_creditor("Employer", "")


def test_normalize_party_collapses_whitespace_and_case():
    assert normalize_party("  Migros\tZÜRICH  ") == "migros zürich"


def test_resolve_mapping_path_search_order(tmp_path: Path, data_dir: Path):
    # Not found anywhere: new file goes to the data dir
    assert resolve_mapping_path("creditors.yaml", data_dir) == data_dir / "creditors.yaml"

    _write(tmp_path / "config" / "creditors.yaml", "")
    assert resolve_mapping_path("creditors.yaml", data_dir) == Path("config") / "creditors.yaml"

    _write(data_dir / "creditors.yaml", "")
    assert resolve_mapping_path("creditors.yaml", data_dir) == data_dir / "creditors.yaml"

    absolute = tmp_path / "elsewhere.yaml"
    assert resolve_mapping_path(absolute, data_dir) == absolute


def test_resolve_mapping_path_defaults_to_database_dir():
    assert resolve_mapping_path("debtors.yaml") == Path("database") / "debtors.yaml"


def test_from_settings_uses_data_dir(data_dir: Path):
    _write(data_dir / "debtors.yaml", "Coop: Groceries\n")

    store = CategoryStore.from_settings(Settings(data_dir=data_dir))

    assert store.lookup_debtor("coop") == "Groceries"
