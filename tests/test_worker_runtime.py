from __future__ import annotations

import io
from dataclasses import replace
from pathlib import Path

import allure
import pytest

from pragma.config import Settings
from pragma.errors import WorkerFailed, WorkerOutputTooLarge
from pragma.runtime.artifacts import RunContext
from pragma.runtime.worker import WORKER_FLAGS, build_worker_command, run_worker

pytestmark = [
    allure.epic("Worker Runtime"),
    allure.feature("Single Worker Invocation"),
]


def _run_ctx(settings: Settings) -> tuple[RunContext, io.StringIO]:
    stream = io.StringIO()
    return RunContext.from_settings(settings, stream=stream), stream


def test_build_worker_command_puts_prompt_last() -> None:
    settings = Settings()
    settings.worker.command = ("/usr/bin/codex", "--profile", "ci")

    argv = build_worker_command("Do the thing", settings)

    assert argv == ["/usr/bin/codex", "--profile", "ci", *WORKER_FLAGS, "Do the thing"]
    assert WORKER_FLAGS == (
        "--search",
        "--yolo",
        "exec",
        "--skip-git-repo-check",
        "--json",
        "-c",
        "mcp_servers={}",
    )


def test_run_worker_returns_agent_message(stub_worker: Settings, monkeypatch) -> None:
    monkeypatch.setenv("PRAGMA_STUB_REPLY", "All checks passed.")
    ctx, stream = _run_ctx(stub_worker)

    with ctx:
        answer = run_worker(ctx, "review", "Please review", stub_worker)

    assert answer == "All checks passed."
    assert stream.getvalue() == ""


def test_run_worker_echoes_small_stderr(stub_worker: Settings) -> None:
    ctx, stream = _run_ctx(stub_worker)

    with ctx:
        answer = run_worker(ctx, "review", "stub:stderr=20", stub_worker)

    assert answer == "OK"
    assert stream.getvalue() == "e" * 20


def test_run_worker_spills_large_stdout(stub_worker: Settings) -> None:
    settings = replace(stub_worker, spill=replace(stub_worker.spill, stdout_limit=1024))
    ctx, stream = _run_ctx(settings)

    with ctx:
        answer = run_worker(ctx, "Big Task", "stub:stdout=4000", settings)
        artifacts = list(ctx.artifacts)

    assert answer == "OK"
    assert len(artifacts) == 1
    assert artifacts[0].name == "001-big_task.stdout.log"
    assert artifacts[0].read_bytes().startswith(b"o" * 79 + b"\n")
    assert "pragma: stdout for Big Task exceeded" in stream.getvalue()


def test_run_worker_reports_non_zero_exit(stub_worker: Settings) -> None:
    ctx, _ = _run_ctx(stub_worker)

    with ctx, pytest.raises(WorkerFailed, match="exited with code 3") as excinfo:
        run_worker(ctx, "review", "stub:fail", stub_worker)

    assert excinfo.value.label == "review"
    assert excinfo.value.exit_code == 3
    assert b"stub worker failure requested" in excinfo.value.stderr


def test_run_worker_reports_missing_binary(stub_worker: Settings, tmp_path: Path) -> None:
    settings = replace(
        stub_worker,
        worker=replace(stub_worker.worker, command=(str(tmp_path / "no-such-codex"),)),
    )
    ctx, _ = _run_ctx(settings)

    with ctx, pytest.raises(WorkerFailed, match="command not found"):
        run_worker(ctx, "review", "hello", settings)


def test_run_worker_enforces_capture_cap(stub_worker: Settings) -> None:
    settings = replace(stub_worker, worker=replace(stub_worker.worker, max_stdout=2048))
    ctx, _ = _run_ctx(settings)

    with ctx, pytest.raises(WorkerOutputTooLarge, match="stdout exceeded the 2048 byte"):
        run_worker(ctx, "review", "stub:stdout=100000", settings)



def test_run_worker_echoes_stderr_of_failed_worker(stub_worker: Settings) -> None:
    ctx, stream = _run_ctx(stub_worker)

    with ctx, pytest.raises(WorkerFailed):
        run_worker(ctx, "review", "stub:fail", stub_worker)

    assert stream.getvalue() == "stub worker failure requested\n"
