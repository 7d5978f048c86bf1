from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml
from typer.testing import CliRunner

import statement_consolidator.ai as ai_mod
import statement_consolidator.cli as cli_mod
from statement_consolidator.cli import app
from tests.helpers.openai_stub import make_openai_factory

runner = CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    # The real handler disables propagation, which would hide records from caplog
    monkeypatch.setattr(cli_mod, "configure_logging", lambda *a, **kw: None)


@pytest.fixture
def mappings(data_dir: Path) -> Path:
    (data_dir / "categories.yaml").write_text(
        "categories:\n"
        "  - name: Groceries\n    keywords: [supermarket]\n"
        "  - name: Transport\n    keywords: [sbb, train]\n",
        encoding="utf-8",
    )
    (data_dir / "debtors.yaml").write_text("Migros: Groceries\n", encoding="utf-8")
    return data_dir


def _statement(path: Path, rows: list[str]) -> None:
    header = "Date,Amount,PartyName,Description\n"
    path.write_text(header + "\n".join(rows) + "\n", encoding="utf-8")


def test_batch_consolidates_each_account(tmp_path: Path, mappings: Path):
    inbox = tmp_path / "in"
    inbox.mkdir()
    _statement(
        inbox / "CAMT.053_54293249_2025-05-01_2025-05-31_1.csv",
        ["2025-05-20,-9.90,Migros,", "2025-05-02,-3.00,Kiosk,SBB ticket"],
    )
    _statement(
        inbox / "CAMT.053_54293249_2025-04-01_2025-04-30_1.csv",
        ["2025-04-10,-4.50,Somebody,"],
    )
    (inbox / "notes.txt").write_text("ignored", encoding="utf-8")
    outbox = tmp_path / "out"

    result = runner.invoke(
        app, ["batch", "--input-dir", str(inbox), "--output-dir", str(outbox), "--no-ai"]
    )

    assert result.exit_code == 0, result.output
    assert "Consolidated 1 of 1 account groups" in result.output
    out = outbox / "54293249_2025-04-01_2025-05-31.csv"
    assert out.is_file()
    lines = out.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "# Consolidated from source files:"
    data = [line for line in lines if line and not line.startswith("#")]
    assert data[0].startswith("Date,")
    # Chronological, categorized
    assert [row.split(",")[0] for row in data[1:]] == ["2025-04-10", "2025-05-02", "2025-05-20"]
    assert [row.split(",")[7] for row in data[1:]] == ["Uncategorized", "Transport", "Groceries"]


def test_batch_missing_input_dir_fails(tmp_path: Path):
    result = runner.invoke(
        app,
        ["batch", "--input-dir", str(tmp_path / "nope"), "--output-dir", str(tmp_path / "out")],
    )

    assert result.exit_code == 1
    assert "input directory not found" in result.output


def test_batch_empty_input_dir_fails(tmp_path: Path):
    (tmp_path / "in").mkdir()

    result = runner.invoke(
        app,
        ["batch", "--input-dir", str(tmp_path / "in"), "--output-dir", str(tmp_path / "out")],
    )

    assert result.exit_code == 1
    assert "no input files" in result.output


def test_categorize_prints_category_and_tier(mappings: Path):
    result = runner.invoke(app, ["categorize", "--party", " migros ", "--no-ai"])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "Groceries\tdirect"


def test_categorize_without_match_is_uncategorized(mappings: Path):
    result = runner.invoke(app, ["categorize", "--party", "Nobody", "--creditor"])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "Uncategorized\tnone"


def test_ai_requires_api_key(mappings: Path):
    result = runner.invoke(app, ["categorize", "--party", "Nobody", "--ai"])

    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output


def test_ai_answer_is_printed_and_learned(
    mappings: Path, monkeypatch: pytest.MonkeyPatch
):
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(ai_mod, "OpenAI", make_openai_factory(lambda req: "Transport", calls))
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("SC_BACKUP_ENABLED", "false")

    result = runner.invoke(app, ["categorize", "--party", "Bike Rental", "--ai"])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "Transport\tai"
    assert len(calls) == 1
    on_disk = yaml.safe_load((mappings / "debtors.yaml").read_text(encoding="utf-8"))
    assert on_disk == {"Migros": "Groceries", "Bike Rental": "Transport"}
    assert not list(mappings.glob("*.backup"))


def test_invalid_setting_is_reported(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SC_MAX_WORKERS", "many")

    result = runner.invoke(app, ["categorize", "--party", "X"])

    assert result.exit_code == 1
    assert "SC_MAX_WORKERS" in result.output
