"""Review scorecard built from a worker's JSON event log."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from pragma.runtime.protocol import AGENT_MESSAGE_ITEM, completed_item, iter_events

OUTPUT_PREVIEW_LIMIT = 400
COMMAND_ITEM = "command_execution"
SCORECARD_CRITERIA = ("TRACE", "E-SDD", "Visionary", "Prove-It", "Guilty")

_PLAN_TEXT_KEYS = ("text", "summary", "plan_summary", "content")
_TEST_RUNNERS = {"pytest", "tox", "rspec", "ctest"}
_TEST_SUBCOMMAND_TOOLS = {"mvn", "gradle", "cargo", "go", "npm", "pnpm", "yarn", "zig"}
_TEST_WORD = re.compile(r"(?<![A-Za-z])test(?![A-Za-z])", re.IGNORECASE)


@dataclass(slots=True)
class CommandRecord:
    """One `command_execution` item reported by the worker."""

    command: str
    status: str
    exit_code: int | None = None
    aggregated_output: str = ""


@dataclass(slots=True)
class ScorecardLog:
    """Everything the scorecard needs from a parsed event log."""

    plan_updates: list[str] = field(default_factory=list)
    commands: list[CommandRecord] = field(default_factory=list)
    agent_messages: list[str] = field(default_factory=list)

    @property
    def last_agent_message(self) -> str:
        return self.agent_messages[-1] if self.agent_messages else ""

    @property
    def test_commands(self) -> list[CommandRecord]:
        return [record for record in self.commands if is_likely_test_command(record.command)]


def parse_log(text: str) -> ScorecardLog:
    """Collect plan updates, commands and agent messages from completed items."""

    log = ScorecardLog()
    for event in iter_events(text):
        item = completed_item(event)
        if item is None:
            continue
        item_type = item["type"]
        if "plan" in item_type.lower():
            log.plan_updates.append(extract_plan_text(item))

        if item_type == AGENT_MESSAGE_ITEM:
            message = item.get("text")
            if isinstance(message, str):
                log.agent_messages.append(message)
        elif item_type == COMMAND_ITEM:
            record = _command_record(item)
            if record is not None:
                log.commands.append(record)
    return log


def extract_plan_text(item: dict[str, Any]) -> str:
    for key in _PLAN_TEXT_KEYS:
        value = item.get(key)
        if isinstance(value, str):
            return value
    steps = item.get("steps")
    if isinstance(steps, list):
        formatted = _format_list(steps)
        if formatted:
            return formatted
    if "plan" in item:
        return _format_value(item["plan"])
    return _format_value(item)


def is_likely_test_command(command: str) -> bool:
    """Heuristic match for common test runner invocations."""

    tokens = command.split()
    for index, token in enumerate(tokens):
        lowered = token.lower()
        if _TEST_WORD.search(token) or lowered in _TEST_RUNNERS:
            return True
        following = tokens[index + 1].lower() if index + 1 < len(tokens) else ""
        if lowered in _TEST_SUBCOMMAND_TOOLS and following == "test":
            return True
    return False


def render_scorecard(log: ScorecardLog, run_id: str) -> list[str]:
    """Render the scorecard as output lines."""

    lines = [f"Run: {run_id}", ""]
    lines.extend(_render_section("Plan Updates", log.plan_updates))
    lines.extend(_render_commands("Tests Executed", log.test_commands))
    lines.extend(_render_commands("Commands Executed", log.commands))

    lines.append("")
    lines.append("Agent Summary:")
    lines.append(log.last_agent_message or "- <none captured>")

    lines.append("")
    lines.append("Scorecard Draft:")
    lines.extend(f"{criterion}: [ ] / evidence: " for criterion in SCORECARD_CRITERIA)
    return lines


def _command_record(item: dict[str, Any]) -> CommandRecord | None:
    command = item.get("command")
    status = item.get("status")
    if not isinstance(command, str) or not isinstance(status, str):
        return None
    exit_code = item.get("exit_code")
    if isinstance(exit_code, bool) or not isinstance(exit_code, int | float):
        exit_code = None
    output = item.get("aggregated_output")
    return CommandRecord(
        command=command,
        status=status,
        exit_code=int(exit_code) if exit_code is not None else None,
        aggregated_output=output if isinstance(output, str) else "",
    )


def _render_section(title: str, entries: list[str]) -> list[str]:
    lines = [f"{title}:"]
    if not entries:
        return [*lines, "- <none>", ""]
    for entry in entries:
        trimmed = entry.strip(" \r\n") or "<empty>"
        lines.append(f"- {trimmed}")
    lines.append("")
    return lines


def _render_commands(title: str, commands: list[CommandRecord]) -> list[str]:
    lines = [f"{title}:"]
    if not commands:
        return [*lines, "- <none>", ""]
    for record in commands:
        suffix = f", exit: {record.exit_code}" if record.exit_code is not None else ""
        lines.append(f"- `{record.command}` (status: {record.status}{suffix})")
        output = record.aggregated_output.strip(" \r\n")
        if output:
            lines.append(f"  Output: {output[:OUTPUT_PREVIEW_LIMIT]}")
            if len(output) > OUTPUT_PREVIEW_LIMIT:
                lines.append("  Output truncated...")
    lines.append("")
    return lines


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return _format_list(value)
    return json.dumps(value, separators=(",", ":"))


def _format_list(values: list[Any]) -> str:
    return "".join(f"- {text}\n" for text in map(_format_value, values) if text)
