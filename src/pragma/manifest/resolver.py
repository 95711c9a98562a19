"""Expand manifest steps into execution-ready task views."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from pragma.errors import InvalidManifest, MissingDirective
from pragma.manifest.models import ManifestDocument, ManifestStep, TaskView


@dataclass(slots=True)
class TaskCollection:
    """Task views of one step and whether they run through the parallel path."""

    tasks: list[TaskView]
    parallel: bool


def resolve_step(document: ManifestDocument, step: ManifestStep) -> TaskCollection:
    """Resolve one step into task views.

    Directives resolve task -> step -> document. Labels resolve task name ->
    step name -> directive, so every view carries a non-blank label. A parallel
    step keeps the parallel path even when it lists a single task.
    """

    label = step_label(document, step)
    if not step.parallel and step.tasks is not None:
        raise InvalidManifest(
            f"manifest step {label} defines tasks but is missing `parallel: true`",
            label=label,
        )

    if not step.parallel:
        directive = _first_present(step.directive, document.directive)
        if directive is None:
            raise MissingDirective(f"manifest step {label} has no directive", label=label)
        view = TaskView(
            step_name=step.name,
            label=_first_present(step.name) or directive,
            directive=directive,
            prompt=step.prompt,
        )
        return TaskCollection(tasks=[view], parallel=False)

    if not step.tasks:
        raise InvalidManifest(
            f"manifest step {label} is parallel but lists no tasks",
            label=label,
        )

    views: list[TaskView] = []
    for index, task in enumerate(step.tasks, start=1):
        directive = _first_present(task.directive, step.directive, document.directive)
        if directive is None:
            task_label = _first_present(task.name) or f"{label} task {index}"
            raise MissingDirective(
                f"manifest task {task_label} has no directive",
                label=task_label,
            )
        views.append(
            TaskView(
                step_name=step.name,
                label=_first_present(task.name, step.name) or directive,
                directive=directive,
                prompt=task.prompt,
            ),
        )
    return TaskCollection(tasks=views, parallel=True)


def step_label(document: ManifestDocument, step: ManifestStep) -> str:
    return _first_present(step.name, step.directive, document.directive) or "step"


def build_inline_prompt(segments: Iterable[str | None]) -> str | None:
    """Join non-empty prompt fragments with a blank line; `None` if all are empty."""

    parts = [segment.strip(" \r\n\t") for segment in segments if segment is not None]
    kept = [part for part in parts if part]
    if not kept:
        return None
    return "\n\n".join(kept)


def task_prompt_segments(
    document: ManifestDocument,
    step: ManifestStep,
    view: TaskView,
) -> tuple[str | None, ...]:
    """Prompt fragments for one task in document, step, task order."""

    if step.parallel:
        return (document.core_prompt, step.prompt, view.prompt)
    # serial views already carry the step prompt
    return (document.core_prompt, view.prompt)


def _first_present(*values: str | None) -> str | None:
    for value in values:
        if value is not None and value.strip():
            return value
    return None
