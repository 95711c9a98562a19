"""Per-invocation run directory holding worker output that is too large to show."""

from __future__ import annotations

import logging
import os
import secrets
import shutil
import sys
import threading
import time
from pathlib import Path
from typing import TextIO

from pragma.config import Settings

logger = logging.getLogger(__name__)

STDOUT = "stdout"
STDERR = "stderr"
SLUG_MAX_CHARS = 48
ARTIFACT_MODE = 0o600


class RunContext:
    """Decides when worker output spills to disk and owns the run directory.

    The run directory is created lazily before the first artifact write, after
    pruning old runs down to the retention limit. One lock serializes directory
    creation, counter advance and file creation, so concurrent task completions
    never collide on a file name. The manifest runner finishes tasks on one
    thread; the lock is for callers that hand results in from worker threads.
    """

    def __init__(  # noqa: PLR0913
        self,
        root: Path,
        *,
        stdout_limit: int = 1024 * 1024,
        stderr_limit: int = 512 * 1024,
        preview_limit: int = 4 * 1024,
        retain_limit: int = 20,
        keep_artifacts: bool = False,
        stream: TextIO | None = None,
    ) -> None:
        self.root = root
        self.stdout_limit = stdout_limit
        self.stderr_limit = stderr_limit
        self.preview_limit = preview_limit
        self.retain_limit = retain_limit
        self.keep_artifacts = keep_artifacts
        self.artifacts: list[Path] = []
        self._stream = stream
        self._run_dir: Path | None = None
        self._counter = 0
        self._prune_done = False
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        keep_artifacts: bool = False,
        stream: TextIO | None = None,
    ) -> RunContext:
        spill = settings.spill
        return cls(
            spill.run_root or Path.cwd() / ".pragma" / "runs",
            stdout_limit=spill.stdout_limit,
            stderr_limit=spill.stderr_limit,
            preview_limit=spill.preview_limit,
            retain_limit=spill.retain_runs,
            keep_artifacts=keep_artifacts or spill.keep_run,
            stream=stream,
        )

    @property
    def run_dir(self) -> Path | None:
        return self._run_dir

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stderr

    def __enter__(self) -> RunContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def handle_stdout(self, label: str, content: bytes | str) -> Path | None:
        """Spill stdout above the threshold; returns the artifact path if written."""

        data = _as_bytes(content)
        if self.stdout_limit == 0 or len(data) <= self.stdout_limit:
            return None

        path = self._write_artifact(label, STDOUT, data)
        self._emit(
            f"pragma: stdout for {label} exceeded {format_bytes(len(data))}; full log: {path}\n",
        )
        return path

    def handle_stderr(self, label: str, content: bytes | str) -> Path | None:
        """Echo stderr, or a preview of it plus an artifact once it reaches the threshold."""

        data = _as_bytes(content)
        if not data:
            return None
        if self.stderr_limit == 0 or len(data) < self.stderr_limit:
            self._emit(_decode(data))
            return None

        preview = data[: self.preview_limit]
        if preview:
            text = _decode(preview)
            self._emit(text if preview.endswith(b"\n") else text + "\n")

        path = self._write_artifact(label, STDERR, data)
        self._emit(
            f"pragma: stderr for {label} truncated to {len(preview)} byte preview "
            f"({format_bytes(len(data))} total); full log: {path}\n",
        )
        return path

    def close(self) -> None:
        """Remove the run directory unless artifacts were written or retention requested."""

        run_dir = self._run_dir
        if run_dir is None:
            return
        if self.keep_artifacts or self.artifacts:
            logger.info("Keeping run directory %s", run_dir)
            return
        shutil.rmtree(run_dir, ignore_errors=True)
        self._run_dir = None

    def _write_artifact(self, label: str, kind: str, data: bytes) -> Path:
        with self._lock:
            run_dir = self._ensure_run_dir()
            self._counter += 1
            path = run_dir / f"{self._counter:03d}-{slugify_label(label)}.{kind}.log"
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, ARTIFACT_MODE)
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            self.artifacts.append(path)
        logger.info("Spilled %s for %s to %s (%d bytes)", kind, label, path, len(data))
        return path

    def _ensure_run_dir(self) -> Path:
        if self._run_dir is not None:
            return self._run_dir

        self.root.mkdir(parents=True, exist_ok=True)
        if not self._prune_done:
            prune_old_runs(self.root, self.retain_limit)
            self._prune_done = True

        while True:
            candidate = self.root / f"{int(time.time())}-{secrets.token_hex(4)}"
            try:
                candidate.mkdir()
            except FileExistsError:
                continue
            break
        self._run_dir = candidate
        self._counter = 0
        logger.debug("Created run directory %s", candidate)
        return candidate

    def _emit(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()


def prune_old_runs(root: Path, retain_limit: int) -> list[Path]:
    """Delete the oldest run directories so a new one keeps the total at `retain_limit`."""

    try:
        entries = sorted(entry for entry in root.iterdir() if entry.is_dir())
    except FileNotFoundError:
        return []

    keep_existing = max(retain_limit - 1, 0)
    if len(entries) <= keep_existing:
        return []

    removed = entries[: len(entries) - keep_existing]
    for entry in removed:
        shutil.rmtree(entry, ignore_errors=True)
    logger.debug("Pruned %d old run directories under %s", len(removed), root)
    return removed


def slugify_label(raw: str) -> str:
    """File-name-safe form of a task label, built from its first 48 characters."""

    trimmed = raw.strip(" \r\n\t")
    chars: list[str] = []
    last_was_sep = False
    for char in trimmed[:SLUG_MAX_CHARS]:
        if char.isascii() and char.isalnum():
            chars.append(char.lower())
            last_was_sep = False
        elif not last_was_sep:
            chars.append("_")
            last_was_sep = True
    return "".join(chars) or "task"


def format_bytes(size: int) -> str:
    kb = 1024
    mb = kb * 1024
    if size >= mb:
        return f"{size // mb}.{(size % mb) * 10 // mb} MB"
    if size >= kb:
        return f"{size // kb}.{(size % kb) * 10 // kb} KB"
    return f"{size} B"


def _as_bytes(content: bytes | str) -> bytes:
    if isinstance(content, str):
        return content.encode("utf-8")
    return bytes(content)


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")
