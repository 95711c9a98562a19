"""Runtime configuration for manifest runs and worker invocation."""

from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from pragma.errors import ConfigError

logger = logging.getLogger(__name__)

KIB = 1024
MIB = 1024 * KIB
MIN_PARALLEL = 4


@dataclass(slots=True)
class SpillSettings:
    """Thresholds deciding when worker output is written to run artifacts."""

    stdout_limit: int = 1 * MIB
    stderr_limit: int = 512 * KIB
    preview_limit: int = 4 * KIB
    retain_runs: int = 20
    run_root: Path | None = None
    keep_run: bool = False


@dataclass(slots=True)
class WorkerSettings:
    """How the codex worker is launched and how much output is buffered."""

    command: tuple[str, ...] = ("codex",)
    max_stdout: int = 100 * MIB
    max_stderr: int = 10 * MIB
    max_parallel: int = MIN_PARALLEL
    disable_parallel: bool = False


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    spill: SpillSettings = field(default_factory=SpillSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    directives_dir: str | None = None

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from `PRAGMA_*` environment variables."""

        return cls(
            spill=SpillSettings(
                stdout_limit=_env_size("PRAGMA_SPILL_STDOUT", 1 * MIB),
                stderr_limit=_env_size("PRAGMA_SPILL_STDERR", 512 * KIB),
                retain_runs=_env_size("PRAGMA_RUN_HISTORY", 20),
                run_root=resolve_run_root(),
                keep_run=_env_bool("PRAGMA_KEEP_RUN", default=False),
            ),
            worker=WorkerSettings(
                command=_worker_command(),
                max_stdout=_env_size("PRAGMA_MAX_STDOUT", 100 * MIB),
                max_stderr=_env_size("PRAGMA_MAX_STDERR", 10 * MIB),
                max_parallel=parse_max_parallel(os.getenv("PRAGMA_MAX_PARALLEL")),
                disable_parallel=_env_bool("PRAGMA_DISABLE_PARALLEL", default=False),
            ),
            directives_dir=os.getenv("PRAGMA_DIRECTIVES_DIR") or None,
        )


def parse_size(raw: str | None, default: int) -> int:
    """Parse a non-negative byte/count knob, falling back to `default`."""

    if raw is None:
        return default
    value = raw.strip()
    if not value:
        return default
    try:
        parsed = int(value, 10)
    except ValueError:
        return default
    if parsed < 0:
        return default
    return parsed


def parse_max_parallel(raw: str | None, cpu_count: int | None = None) -> int:
    """Return the concurrency ceiling, never lower than `MIN_PARALLEL`."""

    if raw is None or not raw.strip():
        detected = cpu_count if cpu_count is not None else os.cpu_count()
        return max(detected or MIN_PARALLEL, MIN_PARALLEL)
    try:
        value = int(raw.strip(), 10)
    except ValueError as error:
        raise ConfigError(
            f"PRAGMA_MAX_PARALLEL must be a positive integer, got {raw!r}",
        ) from error
    if value < 1:
        raise ConfigError(f"PRAGMA_MAX_PARALLEL must be >= 1, got {value}")
    return max(value, MIN_PARALLEL)


def resolve_run_root() -> Path:
    """Locate the directory holding per-invocation run directories."""

    raw = os.getenv("PRAGMA_RUN_ROOT", "").strip()
    if raw:
        candidate = Path(raw)
        return candidate if candidate.is_absolute() else Path.cwd() / candidate
    home = os.getenv("HOME")
    if home:
        return Path(home) / ".pragma" / "runs"
    return Path.cwd() / ".pragma" / "runs"


def _worker_command() -> tuple[str, ...]:
    raw = os.getenv("PRAGMA_CODEX_BIN", "").strip()
    if not raw:
        return ("codex",)
    argv = shlex.split(raw, posix=os.name != "nt")
    if not argv:
        raise ConfigError("PRAGMA_CODEX_BIN rendered an empty command.")
    return tuple(argv)


def _env_size(name: str, default: int) -> int:
    raw = os.getenv(name)
    value = parse_size(raw, -1)
    if value >= 0:
        return value
    if raw is not None and raw.strip():
        logger.warning("Ignoring invalid %s=%r, using %d", name, raw, default)
    return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if not normalized:
        return default
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Invalid boolean value for {name}: {value!r}")
