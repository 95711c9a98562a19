"""Error taxonomy shared by the manifest runner and worker runtime."""

from __future__ import annotations


class PragmaError(RuntimeError):
    """Base class for every failure surfaced to the CLI."""

    def __init__(self, message: str, *, label: str | None = None) -> None:
        super().__init__(message)
        self.label = label


class ConfigError(PragmaError):
    """Environment knob could not be parsed or is out of range."""


class InvalidManifest(PragmaError):
    """Manifest is structurally or semantically invalid."""


class MissingDirective(PragmaError):
    """No directive resolved through task, step and document levels."""


class DirectiveNotFound(PragmaError):
    """Directive name did not match any file in the search directories."""


class InvalidDirective(PragmaError):
    """Directive file exists but cannot be parsed."""


class WorkerFailed(PragmaError):
    """Worker process exited non-zero, died on a signal or failed to start."""

    def __init__(  # noqa: PLR0913
        self,
        message: str,
        *,
        label: str | None = None,
        exit_code: int | None = None,
        stdout: bytes = b"",
        stderr: bytes = b"",
    ) -> None:
        super().__init__(message, label=label)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class WorkerOutputTooLarge(WorkerFailed):
    """Worker stream grew past the in-memory capture cap."""
