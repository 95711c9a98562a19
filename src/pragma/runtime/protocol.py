"""Decoding of the worker's line-delimited JSON event stream."""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

COMPLETED_EVENT = "item.completed"
AGENT_MESSAGE_ITEM = "agent_message"


def extract_agent_message(stream: str | bytes) -> str:
    """Return the text of the last completed agent message in `stream`.

    Malformed and unrelated lines are skipped. Without any agent message the
    trimmed raw stream is returned instead.
    """

    text = _as_text(stream)
    last: str | None = None
    for event in iter_events(text):
        item = completed_item(event)
        if item is None or item.get("type") != AGENT_MESSAGE_ITEM:
            continue
        message = item.get("text")
        if isinstance(message, str):
            last = message

    if last is not None:
        return last
    return text.strip(" \r\n")


def iter_events(text: str) -> Iterator[dict[str, Any]]:
    """Yield every line of `text` that decodes to a JSON object."""

    for line in text.split("\n"):
        trimmed = line.strip(" \r\t")
        if not trimmed.startswith("{"):
            continue
        try:
            parsed = json.loads(trimmed)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            yield parsed


def completed_item(event: dict[str, Any]) -> dict[str, Any] | None:
    if event.get("type") != COMPLETED_EVENT:
        return None
    item = event.get("item")
    if not isinstance(item, dict) or not isinstance(item.get("type"), str):
        return None
    return item


def _as_text(stream: str | bytes) -> str:
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    return stream
