"""CLI entrypoint for pragma."""

import logging
import os
import sys
from pathlib import Path

import rich_click as click

from pragma import __version__
from pragma.controllers import (
    ManifestCommand,
    PragmaCliController,
    RunCommand,
    ScorecardCommand,
    ValidateDirectivesCommand,
)
from pragma.errors import PragmaError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = PragmaCliController()

_DIRECTIVES_DIR_HELP = "Directory searched first for directive files."
_KEEP_RUN_HELP = "Keep the run directory even when nothing spilled."


@click.group()
@click.version_option(version=__version__, prog_name="pragma")
def pragma() -> None:
    """Run codex workers from directives and manifests."""

    _configure_logging()


@pragma.command("run")
@click.option("--directive", default=None, help="Directive name or path.")
@click.option("--directives-dir", default=None, help=_DIRECTIVES_DIR_HELP)
@click.option("--keep-run-artifacts", is_flag=True, default=False, help=_KEEP_RUN_HELP)
@click.argument("prompt", nargs=-1)
def run(
    directive: str | None,
    directives_dir: str | None,
    keep_run_artifacts: bool,
    prompt: tuple[str, ...],
) -> None:
    """Run one worker with an inline prompt or a directive."""

    _emit_lines(
        _guarded(
            CONTROLLER.run_prompt,
            RunCommand(
                prompt=" ".join(prompt),
                directive=directive,
                directives_dir=directives_dir,
                keep_run_artifacts=keep_run_artifacts,
            ),
        ),
    )


@pragma.command("manifest")
@click.argument("manifest_path", type=click.Path(path_type=Path, dir_okay=False))
@click.option("--directives-dir", default=None, help=_DIRECTIVES_DIR_HELP)
@click.option("--keep-run-artifacts", is_flag=True, default=False, help=_KEEP_RUN_HELP)
def manifest(manifest_path: Path, directives_dir: str | None, keep_run_artifacts: bool) -> None:
    """Execute a JSON manifest step by step.

    Steps marked `parallel: true` fan their tasks out to concurrent workers.
    """

    _emit_lines(
        _guarded(
            CONTROLLER.run_manifest,
            ManifestCommand(
                manifest_path=manifest_path,
                directives_dir=directives_dir,
                keep_run_artifacts=keep_run_artifacts,
            ),
        ),
    )


@pragma.command("validate-directives")
@click.option("--directives-dir", default=None, help=_DIRECTIVES_DIR_HELP)
def validate_directives(directives_dir: str | None) -> None:
    """Check frontmatter and bodies of every directive on the search path."""

    result = _guarded(
        CONTROLLER.validate_directives,
        ValidateDirectivesCommand(directives_dir=directives_dir),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Directive validation failed.")


@pragma.command("scorecard")
@click.argument("log_path")
@click.argument("run_id", required=False)
def scorecard(log_path: str, run_id: str | None) -> None:
    """Summarize a worker JSON log (`-` for stdin) into a review scorecard."""

    _emit_lines(
        _guarded(CONTROLLER.scorecard, ScorecardCommand(log_path=log_path, run_id=run_id)),
    )


def _guarded(handler, command):
    try:
        return handler(command)
    except PragmaError as error:
        message = f"{error.label}: {error}" if error.label else str(error)
        raise click.ClickException(message) from error
    except OSError as error:
        # the runner already printed the labeled diagnostic
        raise click.ClickException(str(error)) from error


def _configure_logging() -> None:
    level = os.getenv("PRAGMA_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    pragma()
