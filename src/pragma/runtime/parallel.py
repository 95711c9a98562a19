"""Batched fan-out of parallel manifest tasks to concurrent worker processes."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TextIO, TypeVar

from pragma.config import Settings
from pragma.directives import DirectiveDocument, OutputContract, load_directive
from pragma.errors import DirectiveNotFound, InvalidDirective, WorkerFailed
from pragma.manifest.models import ManifestDocument, ManifestStep, TaskView
from pragma.manifest.resolver import build_inline_prompt, task_prompt_segments
from pragma.prompts import assemble_prompt
from pragma.runtime.artifacts import RunContext
from pragma.runtime.protocol import extract_agent_message
from pragma.runtime.streams import ProcessRecord, drain_streams
from pragma.runtime.worker import (
    build_worker_command,
    check_exit,
    spawn_worker,
    terminate_record,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DirectiveLoader = Callable[[str, Sequence[str], str | None], DirectiveDocument]
PromptAssembler = Callable[[str, OutputContract], str]


@dataclass(slots=True, eq=False)
class ParallelProcess(ProcessRecord):
    """One task of a batch: its view, command, child handle and captured output."""

    view: TaskView | None = None
    argv: list[str] = field(default_factory=list)
    spawned: bool = False

    @property
    def directive(self) -> str:
        return self.view.directive if self.view is not None else ""

    def close(self) -> None:
        """Kill if still running, close pipes and drop buffers."""

        if self.spawned:
            terminate_record(self)
            self.spawned = False
        else:
            self.close_pipes()
        self.release()


@dataclass(slots=True)
class TaskResult:
    """Captured output and decoded answer of one finished task."""

    label: str
    directive: str
    stdout: bytes
    stderr: bytes
    answer: str


def batches(items: Sequence[T], size: int) -> list[list[T]]:
    """Split `items` into consecutive chunks of at most `size` elements."""

    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


class ParallelExecutor:
    """Runs the task views of a parallel step, one child process per task.

    Tasks are split into batches no larger than the concurrency limit. Within a
    batch every child runs at once and all pipes are drained together; the next
    batch starts only after every child of the previous one has exited. The
    first failing task tears down the whole batch.
    """

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
        concurrency_limit: int | None = None,
    ) -> None:
        self.run_ctx = run_ctx
        self.settings = settings
        self.search_dirs = tuple(search_dirs)
        self.concurrency_limit = concurrency_limit or settings.worker.max_parallel
        self._stdout = stdout
        self._stderr = stderr
        self._loader = loader
        self._assembler = assembler

    @property
    def out(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def err(self) -> TextIO:
        return self._stderr if self._stderr is not None else sys.stderr

    def run(
        self,
        document: ManifestDocument,
        step: ManifestStep,
        tasks: Sequence[TaskView],
    ) -> list[TaskResult]:
        """Execute all tasks batch by batch and return results in task order."""

        groups = batches(tasks, self.concurrency_limit)
        if len(groups) > 1:
            self.err.write(
                f"pragma: {len(tasks)} parallel tasks exceed the limit of "
                f"{self.concurrency_limit}; running in {len(groups)} batches\n",
            )
            logger.info(
                "Splitting %d tasks into %d batches (limit %d)",
                len(tasks),
                len(groups),
                self.concurrency_limit,
            )

        results: list[TaskResult] = []
        for group in groups:
            results.extend(self.run_batch(document, step, group))
        return results

    def run_batch(
        self,
        document: ManifestDocument,
        step: ManifestStep,
        batch: Sequence[TaskView],
    ) -> list[TaskResult]:
        """Spawn, drain and reap one batch; emit outputs only if every task succeeded."""

        processes: list[ParallelProcess] = []
        try:
            for view in batch:
                processes.append(self._spawn(document, step, view))
            drain_streams(
                processes,
                max_stdout=self.settings.worker.max_stdout,
                max_stderr=self.settings.worker.max_stderr,
                on_finished=self._check_early_exit,
            )
            for proc in processes:
                returncode = proc.process.wait() if proc.process is not None else 0
                proc.spawned = False
                check_exit(proc, returncode)
            results = [self._finish(proc) for proc in processes]
        except WorkerFailed as error:
            self._report_failure(error)
            raise
        finally:
            for proc in processes:
                proc.close()

        for result in results:
            self.out.write(f"--- Parallel Task: {result.label} (directive: {result.directive})\n")
            self.out.write(result.answer)
            self.out.write("\n")
        self.out.flush()
        return results

    def _spawn(
        self,
        document: ManifestDocument,
        step: ManifestStep,
        view: TaskView,
    ) -> ParallelProcess:
        extra = build_inline_prompt(task_prompt_segments(document, step, view))
        try:
            directive_doc = self._loader(view.directive, self.search_dirs, extra)
        except (DirectiveNotFound, InvalidDirective) as error:
            self.err.write(
                f"pragma: parallel task {view.label} failed to load directive "
                f"({type(error).__name__})\n",
            )
            if error.label is None:
                error.label = view.label
            raise

        assembled = self._assembler(directive_doc.prompt, directive_doc.contract)
        argv = build_worker_command(assembled, self.settings)
        proc = ParallelProcess(label=view.label, view=view, argv=argv)
        proc.process = spawn_worker(view.label, argv)
        proc.spawned = True
        return proc

    def _check_early_exit(self, record: ProcessRecord) -> bool:
        # a child that already exited non-zero aborts the batch before siblings finish
        if record.process is None:
            return True
        returncode = record.process.poll()
        if returncode is None:
            return False
        check_exit(record, returncode)
        return True

    def _finish(self, proc: ParallelProcess) -> TaskResult:
        stdout = bytes(proc.stdout)
        stderr = bytes(proc.stderr)
        try:
            self.run_ctx.handle_stderr(proc.label, stderr)
            answer = extract_agent_message(stdout)
            self.run_ctx.handle_stdout(proc.label, stdout)
        except OSError as error:
            self.err.write(
                f"pragma: parallel task {proc.label} failed to write run artifact ({error})\n",
            )
            raise
        return TaskResult(
            label=proc.label,
            directive=proc.directive,
            stdout=stdout,
            stderr=stderr,
            answer=answer,
        )

    def _report_failure(self, error: WorkerFailed) -> None:
        label = error.label or ""
        try:
            self.run_ctx.handle_stderr(label, error.stderr)
        except OSError as write_error:
            self.err.write(
                f"pragma: parallel task {label} failed to write run artifact ({write_error})\n",
            )
        self.err.write(f"pragma: parallel task {label} {error}\n")
        self.err.flush()
