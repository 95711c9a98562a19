"""Shared test fixtures."""

from __future__ import annotations

import shlex
import sys
from pathlib import Path

import pytest

from pragma.config import Settings

STUB_WORKER_COMMAND = f"{shlex.quote(sys.executable)} -m pragma.runtime.stub_worker"

_PRAGMA_ENV = (
    "PRAGMA_SPILL_STDOUT",
    "PRAGMA_SPILL_STDERR",
    "PRAGMA_RUN_HISTORY",
    "PRAGMA_RUN_ROOT",
    "PRAGMA_CODEX_BIN",
    "PRAGMA_DIRECTIVES_DIR",
    "PRAGMA_KEEP_RUN",
    "PRAGMA_DISABLE_PARALLEL",
    "PRAGMA_MAX_PARALLEL",
    "PRAGMA_MAX_STDOUT",
    "PRAGMA_MAX_STDERR",
    "PRAGMA_LOG_LEVEL",
    "PRAGMA_STUB_REPLY",
    "PRAGMA_STUB_TRACE_DIR",
)


@pytest.fixture(autouse=True)
def clean_pragma_env(monkeypatch):
    """Isolate every test from PRAGMA_* variables of the calling shell."""
    for name in _PRAGMA_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def run_root(tmp_path: Path) -> Path:
    return tmp_path / "runs"


@pytest.fixture()
def stub_worker(monkeypatch, run_root: Path) -> Settings:
    """Route worker invocations to the stub worker module and return matching settings."""
    monkeypatch.setenv("PRAGMA_CODEX_BIN", STUB_WORKER_COMMAND)
    monkeypatch.setenv("PRAGMA_RUN_ROOT", str(run_root))
    return Settings.from_env()


@pytest.fixture()
def trace_dir(monkeypatch, tmp_path: Path) -> Path:
    """Directory where the stub worker records start/end times per process."""
    path = tmp_path / "trace"
    path.mkdir()
    monkeypatch.setenv("PRAGMA_STUB_TRACE_DIR", str(path))
    return path


@pytest.fixture()
def directives_dir(tmp_path: Path) -> Path:
    """Directive directory with a couple of ready-to-use directives."""
    path = tmp_path / "directives"
    path.mkdir()
    (path / "review.md").write_text("Review the change carefully.\n", "utf-8")
    (path / "audit.md").write_text(
        "---\noutput_contract: json\n---\nAudit the module.\n",
        "utf-8",
    )
    return path
