"""Worker invocation, stream collection, parallel batches and run artifacts."""

from pragma.runtime.artifacts import RunContext, format_bytes, slugify_label
from pragma.runtime.parallel import ParallelExecutor, TaskResult, batches
from pragma.runtime.protocol import extract_agent_message
from pragma.runtime.worker import build_worker_command, run_worker

__all__ = [
    "ParallelExecutor",
    "RunContext",
    "TaskResult",
    "batches",
    "build_worker_command",
    "extract_agent_message",
    "format_bytes",
    "run_worker",
    "slugify_label",
]
