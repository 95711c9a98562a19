from __future__ import annotations

import json

import allure
import pytest

from pragma.scorecard import is_likely_test_command, parse_log, render_scorecard

pytestmark = [
    allure.epic("Review Tooling"),
    allure.feature("Scorecard"),
]


def _completed(item: dict) -> str:
    return json.dumps({"type": "item.completed", "item": item})


_LOG = "\n".join(
    [
        json.dumps({"type": "thread.started", "thread_id": "t-1"}),
        _completed({"type": "plan_update", "steps": ["Read code", {"step": "Fix"}]}),
        _completed({"type": "todo_plan", "summary": "  tighten checks  "}),
        _completed(
            {
                "type": "command_execution",
                "command": "pytest -q tests",
                "status": "completed",
                "exit_code": 0,
                "aggregated_output": "3 passed\n",
            },
        ),
        _completed(
            {
                "type": "command_execution",
                "command": "ls -la",
                "status": "failed",
                "exit_code": 2.0,
                "aggregated_output": "x" * 450,
            },
        ),
        _completed({"type": "command_execution", "command": "echo", "status": 1}),
        _completed({"type": "agent_message", "text": "working"}),
        _completed({"type": "agent_message", "text": "All done."}),
        "not json at all",
    ],
)


def test_parse_log_collects_items() -> None:
    log = parse_log(_LOG)

    assert log.plan_updates == ['- Read code\n- {"step":"Fix"}\n', "  tighten checks  "]
    assert [record.command for record in log.commands] == ["pytest -q tests", "ls -la"]
    assert log.commands[1].exit_code == 2
    assert log.agent_messages == ["working", "All done."]
    assert log.last_agent_message == "All done."


def test_render_scorecard_sections() -> None:
    lines = render_scorecard(parse_log(_LOG), "run-42")
    text = "\n".join(lines)

    assert lines[0] == "Run: run-42"
    assert "Plan Updates:\n- - Read code\n- {\"step\":\"Fix\"}\n- tighten checks\n" in text
    assert "Tests Executed:\n- `pytest -q tests` (status: completed, exit: 0)\n" in text
    assert "  Output: " + "x" * 400 + "\n  Output truncated..." in text
    assert "Agent Summary:\nAll done.\n" in text
    assert lines[-5:] == [
        "TRACE: [ ] / evidence: ",
        "E-SDD: [ ] / evidence: ",
        "Visionary: [ ] / evidence: ",
        "Prove-It: [ ] / evidence: ",
        "Guilty: [ ] / evidence: ",
    ]


def test_render_scorecard_for_empty_log() -> None:
    text = "\n".join(render_scorecard(parse_log(""), "empty.log"))

    assert "Plan Updates:\n- <none>\n" in text
    assert "Tests Executed:\n- <none>\n" in text
    assert "Commands Executed:\n- <none>\n" in text
    assert "Agent Summary:\n- <none captured>" in text


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        ("zig build test", True),
        ("cargo test --all", True),
        ("npm run test:watch", True),
        ("make unit-test", True),
        ("python -m pytest", True),
        ("cargo build", False),
        ("echo contest", False),
        ("git status", False),
    ],
)
def test_is_likely_test_command(command: str, expected: bool) -> None:
    assert is_likely_test_command(command) is expected
