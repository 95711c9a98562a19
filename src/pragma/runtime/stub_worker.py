"""Deterministic stand-in for the codex worker, used by integration tests.

Point `PRAGMA_CODEX_BIN` at `python -m pragma.runtime.stub_worker`. Behaviour is
driven by markers inside the prompt:

- `stub:fail` exits with status 3 after writing to stderr.
- `stub:sleep=<seconds>` delays before answering.
- `stub:stdout=<bytes>` / `stub:stderr=<bytes>` emit filler of that size.
- `stub:echo` answers with the full prompt instead of `PRAGMA_STUB_REPLY`.
- `stub:silent` exits 0 without writing anything.
- `stub:detach=<seconds>` closes stdout and stderr, then lingers that long.
When `PRAGMA_STUB_TRACE_DIR` is set, a `<pid>.json` file records start and end
wall-clock times.
"""

from __future__ import annotations

import json
import os
import re
import sys
import time
from pathlib import Path

_MARKER = re.compile(r"stub:(fail|echo|silent|detach|sleep|stdout|stderr)(?:=([0-9.]+))?")


def main(argv: list[str] | None = None) -> int:
    """Emit codex-style JSON events for the prompt given as last argument."""

    args = sys.argv[1:] if argv is None else argv
    prompt = args[-1] if args else ""
    markers = dict(_MARKER.findall(prompt))

    started = time.time()
    trace_dir = os.getenv("PRAGMA_STUB_TRACE_DIR")

    if "silent" in markers:
        return 0
    if "detach" in markers:
        os.close(sys.stdout.fileno())
        os.close(sys.stderr.fileno())
        time.sleep(float(markers["detach"] or 0))
        return 0
    if "sleep" in markers:
        time.sleep(float(markers["sleep"] or 0))
    if "stderr" in markers:
        _write_filler(sys.stderr.buffer, int(float(markers["stderr"] or 0)), b"e")
    if "fail" in markers:
        sys.stderr.write("stub worker failure requested\n")
        _write_trace(trace_dir, started)
        return 3
    if "stdout" in markers:
        _write_filler(sys.stdout.buffer, int(float(markers["stdout"] or 0)), b"o")

    text = prompt if "echo" in markers else os.getenv("PRAGMA_STUB_REPLY", "OK")
    events = [
        {"type": "thread.started", "thread_id": f"stub-{os.getpid()}"},
        {"type": "item.completed", "item": {"type": "agent_message", "text": text}},
    ]
    for event in events:
        sys.stdout.write(json.dumps(event) + "\n")
    sys.stdout.flush()
    _write_trace(trace_dir, started)
    return 0


def _write_filler(stream, size: int, char: bytes) -> None:
    line = char * 79 + b"\n"
    remaining = size
    while remaining > 0:
        chunk = line[:remaining]
        stream.write(chunk)
        remaining -= len(chunk)
    stream.flush()


def _write_trace(trace_dir: str | None, started: float) -> None:
    if not trace_dir:
        return
    payload = {"pid": os.getpid(), "start": started, "end": time.time()}
    Path(trace_dir, f"{os.getpid()}.json").write_text(json.dumps(payload), "utf-8")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
