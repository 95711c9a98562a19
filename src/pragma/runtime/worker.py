"""Subprocess launcher for the codex worker."""

from __future__ import annotations

import logging
import subprocess

from pragma.config import Settings
from pragma.errors import WorkerFailed
from pragma.runtime.artifacts import RunContext
from pragma.runtime.protocol import extract_agent_message
from pragma.runtime.streams import ProcessRecord, drain_streams

logger = logging.getLogger(__name__)

WORKER_FLAGS = (
    "--search",
    "--yolo",
    "exec",
    "--skip-git-repo-check",
    "--json",
    "-c",
    "mcp_servers={}",
)


def build_worker_command(prompt: str, settings: Settings) -> list[str]:
    """Worker argv: configured command, non-interactive flags, prompt last."""

    return [*settings.worker.command, *WORKER_FLAGS, prompt]


def spawn_worker(label: str, argv: list[str]) -> subprocess.Popen[bytes]:
    """Start one worker with stdin closed and both output streams piped."""

    logger.debug("Spawning worker for %s: %s", label, argv[0])
    try:
        return subprocess.Popen(  # noqa: S603
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError as error:
        raise WorkerFailed(f"could not start, command not found: {argv[0]}", label=label) from error
    except OSError as error:
        raise WorkerFailed(f"could not start: {error}", label=label) from error


def check_exit(record: ProcessRecord, returncode: int) -> None:
    """Raise `WorkerFailed` for a non-zero exit or a signal, keeping captured output."""

    if returncode == 0:
        return
    if returncode < 0:
        message = f"terminated unexpectedly (signal {-returncode})"
        exit_code = None
    else:
        message = f"exited with code {returncode}"
        exit_code = returncode
    raise WorkerFailed(
        message,
        label=record.label,
        exit_code=exit_code,
        stdout=bytes(record.stdout),
        stderr=bytes(record.stderr),
    )


def terminate_record(record: ProcessRecord) -> None:
    """Kill the child if still running, reap it and close its pipes. Never raises."""

    process = record.process
    if process is not None and process.poll() is None:
        try:
            process.kill()
        except OSError:
            logger.debug("Failed to kill worker for %s", record.label, exc_info=True)
        try:
            process.wait(timeout=2)
        except subprocess.TimeoutExpired:
            logger.warning("Worker for %s did not exit after kill", record.label)
    record.close_pipes()


def run_worker(run_ctx: RunContext, label: str, prompt: str, settings: Settings) -> str:
    """Run one worker to completion and return its decoded final answer."""

    record = ProcessRecord(label=label)
    record.process = spawn_worker(label, build_worker_command(prompt, settings))
    try:
        drain_streams(
            [record],
            max_stdout=settings.worker.max_stdout,
            max_stderr=settings.worker.max_stderr,
        )
        returncode = record.process.wait()
    except BaseException:
        terminate_record(record)
        raise
    if returncode != 0:
        run_ctx.handle_stderr(label, bytes(record.stderr))
    check_exit(record, returncode)

    run_ctx.handle_stdout(label, bytes(record.stdout))
    run_ctx.handle_stderr(label, bytes(record.stderr))
    return extract_agent_message(bytes(record.stdout))
