"""Concurrent draining of child stdout/stderr pipes into per-process buffers."""

from __future__ import annotations

import logging
import os
import selectors
import subprocess
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import IO

from pragma.errors import WorkerOutputTooLarge

logger = logging.getLogger(__name__)

READ_CHUNK = 4096
EXIT_POLL_SECONDS = 0.05
STDOUT = "stdout"
STDERR = "stderr"


@dataclass(slots=True, eq=False)
class ProcessRecord:
    """A spawned child together with everything captured from it."""

    label: str
    process: subprocess.Popen[bytes] | None = None
    stdout: bytearray = field(default_factory=bytearray)
    stderr: bytearray = field(default_factory=bytearray)

    def buffer(self, kind: str) -> bytearray:
        return self.stdout if kind == STDOUT else self.stderr

    def pipes(self) -> list[tuple[str, IO[bytes]]]:
        if self.process is None:
            return []
        opened: list[tuple[str, IO[bytes]]] = []
        if self.process.stdout is not None and not self.process.stdout.closed:
            opened.append((STDOUT, self.process.stdout))
        if self.process.stderr is not None and not self.process.stderr.closed:
            opened.append((STDERR, self.process.stderr))
        return opened

    def close_pipes(self) -> None:
        for _, pipe in self.pipes():
            try:
                pipe.close()
            except OSError:
                logger.debug("Failed to close pipe of %s", self.label, exc_info=True)

    def release(self) -> None:
        self.stdout = bytearray()
        self.stderr = bytearray()


def drain_streams(
    records: Sequence[ProcessRecord],
    *,
    max_stdout: int,
    max_stderr: int,
    on_finished: Callable[[ProcessRecord], bool] | None = None,
) -> None:
    """Read every open pipe of `records` until all of them reach EOF.

    All pipes are serviced at once, so a child blocked on a full stderr pipe
    never stalls reads from its siblings. Pipes are closed as they finish.
    `on_finished` runs after a record's last pipe closed and must not block.
    It returns False while the child has not exited yet; such records are
    checked again every `EXIT_POLL_SECONDS` until it returns True. Anything
    it raises aborts the drain.
    """

    limits = {STDOUT: max_stdout, STDERR: max_stderr}
    if os.name == "nt":
        _drain_with_threads(records, limits)
        if on_finished is not None:
            for record in records:
                on_finished(record)
    else:
        _drain_with_selector(records, limits, on_finished)


def _drain_with_selector(
    records: Sequence[ProcessRecord],
    limits: dict[str, int],
    on_finished: Callable[[ProcessRecord], bool] | None,
) -> None:
    selector = selectors.DefaultSelector()
    exiting: list[ProcessRecord] = []
    try:
        for record in records:
            for kind, pipe in record.pipes():
                selector.register(pipe, selectors.EVENT_READ, (record, kind))

        while selector.get_map() or exiting:
            timeout = EXIT_POLL_SECONDS if exiting else None
            if selector.get_map():
                events = selector.select(timeout)
            else:
                time.sleep(EXIT_POLL_SECONDS)
                events = []
            for key, _ in events:
                record, kind = key.data
                try:
                    chunk = os.read(key.fd, READ_CHUNK)
                except (BrokenPipeError, ConnectionResetError):
                    chunk = b""
                if not chunk:
                    selector.unregister(key.fileobj)
                    key.fileobj.close()
                    if on_finished is not None and not record.pipes():
                        exiting.append(record)
                    continue
                buffer = record.buffer(kind)
                buffer.extend(chunk)
                _check_limit(record, kind, limits[kind])
            if on_finished is not None:
                exiting = [record for record in exiting if not on_finished(record)]
    finally:
        selector.close()


def _drain_with_threads(records: Sequence[ProcessRecord], limits: dict[str, int]) -> None:
    errors: list[WorkerOutputTooLarge] = []
    threads: list[threading.Thread] = []
    for record in records:
        for kind, pipe in record.pipes():
            thread = threading.Thread(
                target=_pump_pipe,
                args=(record, kind, pipe, limits[kind], errors),
                name=f"pragma-{kind}-{record.label}",
                daemon=True,
            )
            thread.start()
            threads.append(thread)
    for thread in threads:
        thread.join()
    if errors:
        raise errors[0]


def _pump_pipe(
    record: ProcessRecord,
    kind: str,
    pipe: IO[bytes],
    limit: int,
    errors: list[WorkerOutputTooLarge],
) -> None:
    buffer = record.buffer(kind)
    try:
        while True:
            try:
                chunk = pipe.read1(READ_CHUNK)  # type: ignore[attr-defined]
            except (BrokenPipeError, ConnectionResetError, ValueError):
                break
            if not chunk:
                break
            buffer.extend(chunk)
            try:
                _check_limit(record, kind, limit)
            except WorkerOutputTooLarge as error:
                errors.append(error)
                if record.process is not None:
                    _kill_quietly(record.process)
                break
    finally:
        pipe.close()


def _check_limit(record: ProcessRecord, kind: str, limit: int) -> None:
    size = len(record.buffer(kind))
    if limit and size > limit:
        raise WorkerOutputTooLarge(
            f"{kind} exceeded the {limit} byte capture limit",
            label=record.label,
        )


def _kill_quietly(process: subprocess.Popen[bytes]) -> None:
    try:
        process.kill()
    except OSError:
        return
