"""Pytest configuration for test isolation.

The store searches for mapping files relative to the working directory and
reads ``SC_*`` settings from the environment. To keep tests hermetic every
test runs inside its own temporary directory with all ``SC_*`` variables
cleared and ``SC_DATA_DIR`` pointing at a per-test data directory.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Make the workspace `packages/` dir importable without an installed dist.
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]


@pytest.fixture(autouse=True)
def _isolate_workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("SC_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("SC_DATA_DIR", os.fspath(data_dir))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"
