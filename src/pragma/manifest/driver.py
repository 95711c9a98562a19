"""Step-by-step execution of a manifest against the codex worker."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from pragma.config import Settings
from pragma.directives import load_directive
from pragma.errors import DirectiveNotFound, InvalidDirective, PragmaError, WorkerFailed
from pragma.manifest.models import ManifestDocument, ManifestStep, TaskView, read_manifest
from pragma.manifest.resolver import (
    build_inline_prompt,
    resolve_step,
    step_label,
    task_prompt_segments,
)
from pragma.prompts import assemble_prompt
from pragma.runtime.artifacts import RunContext
from pragma.runtime.parallel import DirectiveLoader, ParallelExecutor, PromptAssembler
from pragma.runtime.worker import run_worker

logger = logging.getLogger(__name__)

WorkerRunner = Callable[[RunContext, str, str], str]

SERIAL_HEADER = "--- Task"
PARALLEL_HEADER = "--- Parallel Task"


@dataclass(slots=True)
class TaskOutcome:
    """Decoded answer of one executed task."""

    step_index: int
    label: str
    directive: str
    answer: str
    parallel: bool


class ManifestRunner:
    """Runs manifest steps in order: serial steps inline, parallel steps via the executor."""

    def __init__(  # noqa: PLR0913
        self,
        run_ctx: RunContext,
        settings: Settings,
        *,
        search_dirs: Sequence[str] = (),
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        loader: DirectiveLoader = load_directive,
        assembler: PromptAssembler = assemble_prompt,
        worker: WorkerRunner | None = None,
        executor: ParallelExecutor | None = None,
    ) -> None:
        self.run_ctx = run_ctx
        self.settings = settings
        self.search_dirs = tuple(search_dirs)
        self._stdout = stdout
        self._stderr = stderr
        self._loader = loader
        self._assembler = assembler
        self._worker = worker or self._run_worker
        self._executor = executor or ParallelExecutor(
            run_ctx,
            settings,
            search_dirs=self.search_dirs,
            stdout=stdout,
            stderr=stderr,
            loader=loader,
            assembler=assembler,
        )

    @property
    def out(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def err(self) -> TextIO:
        return self._stderr if self._stderr is not None else sys.stderr

    def run(self, manifest_path: Path) -> list[TaskOutcome]:
        try:
            document = read_manifest(manifest_path)
        except PragmaError as error:
            self._diagnose(f"pragma: {error}")
            raise
        return self.run_document(document)

    def run_document(self, document: ManifestDocument) -> list[TaskOutcome]:
        """Execute every step; the first failure stops the manifest at that step."""

        outcomes: list[TaskOutcome] = []
        for index, step in enumerate(document.steps, start=1):
            label = step_label(document, step)
            self.out.write(f"=== Step {index}: {label}\n")
            self.out.flush()
            try:
                collection = resolve_step(document, step)
            except PragmaError as error:
                self._diagnose(f"pragma: {error}")
                raise

            logger.info(
                "Step %d (%s): %d task(s), parallel=%s",
                index,
                label,
                len(collection.tasks),
                collection.parallel,
            )
            if collection.parallel and not self.settings.worker.disable_parallel:
                results = self._executor.run(document, step, collection.tasks)
                outcomes.extend(
                    TaskOutcome(
                        step_index=index,
                        label=result.label,
                        directive=result.directive,
                        answer=result.answer,
                        parallel=True,
                    )
                    for result in results
                )
                continue

            header = PARALLEL_HEADER if collection.parallel else SERIAL_HEADER
            for view in collection.tasks:
                answer = self.run_serial_task(document, step, view, header=header)
                outcomes.append(
                    TaskOutcome(
                        step_index=index,
                        label=view.label,
                        directive=view.directive,
                        answer=answer,
                        parallel=collection.parallel,
                    ),
                )
        return outcomes

    def run_serial_task(
        self,
        document: ManifestDocument,
        step: ManifestStep,
        view: TaskView,
        *,
        header: str = SERIAL_HEADER,
    ) -> str:
        """Run one task directly against the worker and print its labeled answer."""

        extra = build_inline_prompt(task_prompt_segments(document, step, view))
        try:
            directive_doc = self._loader(view.directive, self.search_dirs, extra)
        except (DirectiveNotFound, InvalidDirective) as error:
            self._diagnose(
                f"pragma: step {view.label} failed to load directive ({type(error).__name__})",
            )
            if error.label is None:
                error.label = view.label
            raise

        assembled = self._assembler(directive_doc.prompt, directive_doc.contract)
        try:
            answer = self._worker(self.run_ctx, view.label, assembled)
        except WorkerFailed as error:
            self._diagnose(f"pragma: step {view.label} worker error ({error})")
            if error.label is None:
                error.label = view.label
            raise
        except OSError as error:
            self._diagnose(f"pragma: step {view.label} failed to write run artifact ({error})")
            raise

        self.out.write(f"{header}: {view.label} (directive: {view.directive})\n")
        self.out.write(answer)
        self.out.write("\n")
        self.out.flush()
        return answer

    def _run_worker(self, run_ctx: RunContext, label: str, prompt: str) -> str:
        return run_worker(run_ctx, label, prompt, self.settings)

    def _diagnose(self, line: str) -> None:
        self.err.write(line + "\n")
        self.err.flush()
