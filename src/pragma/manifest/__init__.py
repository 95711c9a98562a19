"""Manifest parsing, task resolution and step execution."""

from pragma.manifest.models import (
    ManifestDocument,
    ManifestStep,
    ManifestTask,
    TaskView,
    parse_manifest_document,
    read_manifest,
)
from pragma.manifest.resolver import TaskCollection, build_inline_prompt, resolve_step, step_label

__all__ = [
    "ManifestDocument",
    "ManifestStep",
    "ManifestTask",
    "TaskCollection",
    "TaskView",
    "build_inline_prompt",
    "parse_manifest_document",
    "read_manifest",
    "resolve_step",
    "step_label",
]
