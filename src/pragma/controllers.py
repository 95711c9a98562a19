"""Controllers for pragma CLI commands."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from pragma.config import Settings
from pragma.directives import (
    extract_directive_contract,
    gather_directive_dirs,
    load_directive,
    validate_directive_dirs,
)
from pragma.errors import PragmaError
from pragma.manifest.driver import ManifestRunner
from pragma.prompts import assemble_prompt
from pragma.runtime.artifacts import RunContext
from pragma.runtime.worker import run_worker
from pragma.scorecard import parse_log, render_scorecard

logger = logging.getLogger(__name__)

SINGLE_RUN_LABEL = "prompt"


@dataclass(slots=True)
class RunCommand:
    """CLI input for a single worker invocation."""

    prompt: str
    directive: str | None
    directives_dir: str | None
    keep_run_artifacts: bool


@dataclass(slots=True)
class ManifestCommand:
    """CLI input for manifest execution."""

    manifest_path: Path
    directives_dir: str | None
    keep_run_artifacts: bool


@dataclass(slots=True)
class ValidateDirectivesCommand:
    """CLI input for directive validation."""

    directives_dir: str | None


@dataclass(slots=True)
class ScorecardCommand:
    """CLI input for scorecard rendering."""

    log_path: str
    run_id: str | None


@dataclass(slots=True)
class ValidationResult:
    """Validation report to render in CLI."""

    lines: list[str]
    success: bool


class PragmaCliController:
    """Builds settings and collaborators for each CLI command."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings if self._settings is not None else Settings.from_env()

    def run_prompt(self, command: RunCommand) -> list[str]:
        settings = self.settings
        if command.directive:
            search_dirs = gather_directive_dirs(command.directives_dir, settings.directives_dir)
            document = load_directive(command.directive, search_dirs, command.prompt or None)
        else:
            document = extract_directive_contract(command.prompt)
            if not document.prompt.strip():
                raise PragmaError("prompt is empty; pass text or --directive")

        label = command.directive or SINGLE_RUN_LABEL
        assembled = assemble_prompt(document.prompt, document.contract)
        with RunContext.from_settings(
            settings,
            keep_artifacts=command.keep_run_artifacts,
        ) as run_ctx:
            answer = run_worker(run_ctx, label, assembled, settings)
        return [answer]

    def run_manifest(self, command: ManifestCommand) -> list[str]:
        """Execute a manifest; task output is streamed while it runs."""

        settings = self.settings
        search_dirs = gather_directive_dirs(command.directives_dir, settings.directives_dir)
        with RunContext.from_settings(
            settings,
            keep_artifacts=command.keep_run_artifacts,
        ) as run_ctx:
            runner = ManifestRunner(run_ctx, settings, search_dirs=search_dirs)
            outcomes = runner.run(command.manifest_path)
            run_dir = run_ctx.run_dir if run_ctx.artifacts or run_ctx.keep_artifacts else None

        logger.info("Manifest %s finished with %d task(s)", command.manifest_path, len(outcomes))
        if run_dir is not None:
            return [f"Run artifacts: {run_dir}"]
        return []

    def validate_directives(self, command: ValidateDirectivesCommand) -> ValidationResult:
        settings = self.settings
        search_dirs = gather_directive_dirs(command.directives_dir, settings.directives_dir)
        report = validate_directive_dirs(search_dirs)

        lines = [f"{issue.path}: {issue.detail}" for issue in report.issues]
        lines.append(
            f"Validated {report.total} directive(s): ok={report.ok} "
            f"failed={len(report.issues)} skipped={report.skipped}",
        )
        return ValidationResult(lines=lines, success=not report.issues)

    def scorecard(self, command: ScorecardCommand) -> list[str]:
        if command.log_path == "-":
            text = sys.stdin.read()
        else:
            try:
                text = Path(command.log_path).read_text("utf-8", errors="replace")
            except OSError as error:
                raise PragmaError(f"cannot read log {command.log_path}: {error}") from error
        return render_scorecard(parse_log(text), command.run_id or command.log_path)
