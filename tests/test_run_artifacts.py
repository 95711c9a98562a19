from __future__ import annotations

import io
import os
import stat
import threading
from pathlib import Path

import allure
import pytest

from pragma.config import Settings, SpillSettings
from pragma.runtime.artifacts import RunContext, format_bytes, prune_old_runs, slugify_label

pytestmark = [
    allure.epic("Worker Runtime"),
    allure.feature("Output Spill & Run Retention"),
]


def _context(root: Path, **overrides) -> tuple[RunContext, io.StringIO]:
    stream = io.StringIO()
    options = {"stdout_limit": 16, "stderr_limit": 16, "preview_limit": 4, "retain_limit": 5}
    options.update(overrides)
    return RunContext(root, stream=stream, **options), stream


def test_stdout_at_threshold_stays_in_memory(run_root: Path) -> None:
    ctx, stream = _context(run_root)

    assert ctx.handle_stdout("task", b"x" * 16) is None
    assert stream.getvalue() == ""
    assert ctx.run_dir is None
    assert not run_root.exists()


def test_stdout_above_threshold_spills_exact_bytes(run_root: Path) -> None:
    ctx, stream = _context(run_root)
    payload = bytes(range(17))

    path = ctx.handle_stdout("Check A", payload)

    assert path is not None
    assert path.read_bytes() == payload
    assert path.name == "001-check_a.stdout.log"
    assert path.parent == ctx.run_dir
    assert f"pragma: stdout for Check A exceeded 17 B; full log: {path}" in stream.getvalue()


def test_stderr_below_threshold_is_echoed(run_root: Path) -> None:
    ctx, stream = _context(run_root)

    assert ctx.handle_stderr("task", b"warning\n") is None
    assert stream.getvalue() == "warning\n"


def test_stderr_at_threshold_prints_preview_and_spills(run_root: Path) -> None:
    ctx, stream = _context(run_root)
    payload = b"abcdefghijklmnop"

    path = ctx.handle_stderr("task", payload)

    assert path is not None
    assert path.read_bytes() == payload
    assert path.name == "001-task.stderr.log"
    lines = stream.getvalue().splitlines()
    assert lines[0] == "abcd"
    assert lines[1] == (
        f"pragma: stderr for task truncated to 4 byte preview (16 B total); full log: {path}"
    )


def test_empty_stderr_is_ignored(run_root: Path) -> None:
    ctx, stream = _context(run_root)

    assert ctx.handle_stderr("task", b"") is None
    assert stream.getvalue() == ""


def test_zero_limits_disable_spilling(run_root: Path) -> None:
    ctx, stream = _context(run_root, stdout_limit=0, stderr_limit=0)

    assert ctx.handle_stdout("task", b"o" * 100) is None
    assert ctx.handle_stderr("task", b"e" * 100) is None
    assert stream.getvalue() == "e" * 100
    assert ctx.run_dir is None


def test_artifact_counter_is_shared_across_kinds(run_root: Path) -> None:
    ctx, _ = _context(run_root)

    first = ctx.handle_stdout("one", b"o" * 20)
    second = ctx.handle_stderr("two", b"e" * 20)

    assert first is not None and second is not None
    assert first.name.startswith("001-")
    assert second.name.startswith("002-")
    assert ctx.artifacts == [first, second]


def test_concurrent_spills_with_shared_label_get_unique_names(run_root: Path) -> None:
    ctx, _ = _context(run_root)
    barrier = threading.Barrier(8)

    def _spill() -> None:
        barrier.wait()
        ctx.handle_stdout("same task", b"o" * 64)

    threads = [threading.Thread(target=_spill) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    names = sorted(path.name for path in ctx.artifacts)
    assert names == [f"{index:03d}-same_task.stdout.log" for index in range(1, 9)]
    assert len(list(run_root.iterdir())) == 1


@pytest.mark.skipif(os.name == "nt", reason="POSIX file modes")
def test_artifacts_are_private_to_the_owner(run_root: Path) -> None:
    ctx, _ = _context(run_root)

    path = ctx.handle_stdout("task", b"x" * 32)

    assert path is not None
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_close_keeps_run_dir_with_artifacts(run_root: Path) -> None:
    with _context(run_root)[0] as ctx:
        ctx.handle_stdout("task", b"x" * 32)
        run_dir = ctx.run_dir

    assert run_dir is not None
    assert run_dir.is_dir()


def test_run_dir_name_has_timestamp_and_hex_suffix(run_root: Path) -> None:
    ctx, _ = _context(run_root)
    ctx.handle_stdout("task", b"x" * 32)

    assert ctx.run_dir is not None
    timestamp, suffix = ctx.run_dir.name.split("-")
    assert timestamp.isdigit()
    assert len(suffix) == 8
    int(suffix, 16)


def test_new_run_prunes_oldest_directories(run_root: Path) -> None:
    run_root.mkdir(parents=True)
    for index in range(6):
        (run_root / f"100000000{index}-0000000{index}").mkdir()
    ctx, _ = _context(run_root, retain_limit=3)

    ctx.handle_stdout("task", b"x" * 32)

    remaining = sorted(entry.name for entry in run_root.iterdir())
    assert len(remaining) == 3
    assert "1000000004-00000004" in remaining
    assert "1000000005-00000005" in remaining
    assert ctx.run_dir is not None
    assert ctx.run_dir.name in remaining


def test_prune_old_runs_without_root_is_noop(tmp_path: Path) -> None:
    assert prune_old_runs(tmp_path / "missing", 3) == []


def test_from_settings_honours_keep_flag(tmp_path: Path) -> None:
    settings = Settings(spill=SpillSettings(run_root=tmp_path, keep_run=True))

    ctx = RunContext.from_settings(settings)

    assert ctx.keep_artifacts is True
    assert ctx.root == tmp_path


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Check A", "check_a"),
        ("  review: auth/API  ", "review_auth_api"),
        ("***", "_"),
        ("", "task"),
        ("Ünïcode ok", "_n_code_ok"),
        ("x" * 60, "x" * 48),
    ],
)
def test_slugify_label(raw: str, expected: str) -> None:
    assert slugify_label(raw) == expected


@pytest.mark.parametrize(
    ("size", "expected"),
    [(0, "0 B"), (1023, "1023 B"), (1536, "1.5 KB"), (3 * 1024 * 1024, "3.0 MB")],
)
def test_format_bytes(size: int, expected: str) -> None:
    assert format_bytes(size) == expected
