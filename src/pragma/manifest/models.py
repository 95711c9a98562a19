"""Typed manifest document and the JSON reader that builds it."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pragma.errors import InvalidManifest

MAX_MANIFEST_BYTES = 4 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class ManifestTask:
    """One entry of a parallel step's `tasks` array."""

    name: str | None = None
    directive: str | None = None
    prompt: str | None = None


@dataclass(frozen=True, slots=True)
class ManifestStep:
    """One step; either a single implicit task or an explicit parallel task list."""

    name: str | None = None
    directive: str | None = None
    prompt: str | None = None
    parallel: bool = False
    tasks: tuple[ManifestTask, ...] | None = None


@dataclass(frozen=True, slots=True)
class ManifestDocument:
    """Parsed manifest with shared prompt, default directive and ordered steps."""

    steps: tuple[ManifestStep, ...]
    core_prompt: str | None = None
    directive: str | None = None


@dataclass(frozen=True, slots=True)
class TaskView:
    """Execution-ready unit produced by step resolution."""

    step_name: str | None
    label: str
    directive: str
    prompt: str | None


def read_manifest(path: Path) -> ManifestDocument:
    """Read and validate a manifest JSON file."""

    try:
        size = path.stat().st_size
        if size > MAX_MANIFEST_BYTES:
            raise InvalidManifest(f"manifest {path} exceeds {MAX_MANIFEST_BYTES} bytes")
        raw = path.read_text("utf-8")
    except (OSError, UnicodeDecodeError) as error:
        raise InvalidManifest(f"cannot read manifest {path}: {error}") from error
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        raise InvalidManifest(f"manifest {path} is not valid JSON: {error}") from error
    return parse_manifest_document(payload)


def parse_manifest_document(payload: Any) -> ManifestDocument:
    """Build a `ManifestDocument` from decoded JSON, rejecting wrong field types."""

    if not isinstance(payload, dict):
        raise InvalidManifest("manifest root must be a JSON object")

    raw_steps = payload.get("steps")
    if raw_steps is None:
        raise InvalidManifest("manifest is missing required `steps` array")
    if not isinstance(raw_steps, list):
        raise InvalidManifest("manifest `steps` must be an array")
    if not raw_steps:
        raise InvalidManifest("manifest must define at least one step")

    steps = tuple(_parse_step(item, index) for index, item in enumerate(raw_steps, start=1))
    return ManifestDocument(
        steps=steps,
        core_prompt=_optional_str(payload, "core_prompt", "manifest"),
        directive=_optional_str(payload, "directive", "manifest"),
    )


def _parse_step(item: Any, index: int) -> ManifestStep:
    where = f"step {index}"
    if not isinstance(item, dict):
        raise InvalidManifest(f"{where} must be a JSON object")

    parallel = item.get("parallel", False)
    if not isinstance(parallel, bool):
        raise InvalidManifest(f"{where} field `parallel` must be a boolean")

    tasks: tuple[ManifestTask, ...] | None = None
    raw_tasks = item.get("tasks")
    if raw_tasks is not None:
        if not isinstance(raw_tasks, list):
            raise InvalidManifest(f"{where} field `tasks` must be an array")
        tasks = tuple(
            _parse_task(task, f"{where} task {task_index}")
            for task_index, task in enumerate(raw_tasks, start=1)
        )

    return ManifestStep(
        name=_optional_str(item, "name", where),
        directive=_optional_str(item, "directive", where),
        prompt=_optional_str(item, "prompt", where),
        parallel=parallel,
        tasks=tasks,
    )


def _parse_task(item: Any, where: str) -> ManifestTask:
    if not isinstance(item, dict):
        raise InvalidManifest(f"{where} must be a JSON object")
    return ManifestTask(
        name=_optional_str(item, "name", where),
        directive=_optional_str(item, "directive", where),
        prompt=_optional_str(item, "prompt", where),
    )


def _optional_str(obj: dict[str, Any], key: str, where: str) -> str | None:
    value = obj.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidManifest(f"{where} field `{key}` must be a string")
    return value
