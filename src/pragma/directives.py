"""Directive discovery, frontmatter parsing and output-contract extraction."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from pragma.errors import DirectiveNotFound, InvalidDirective

logger = logging.getLogger(__name__)

DIRECTIVE_EXTENSIONS = (".md", ".markdown")
MAX_DIRECTIVE_BYTES = 4 * 1024 * 1024

CONTRACT_MARKDOWN = "markdown"
CONTRACT_JSON = "json"
CONTRACT_PLAIN = "plain"
CONTRACT_CUSTOM = "custom"
_BUILTIN_FORMATS = (CONTRACT_MARKDOWN, CONTRACT_JSON, CONTRACT_PLAIN)

_FORMAT_MARKER = "pragma-output-format:"
_CONTRACT_MARKER = "pragma-output-contract:"
_BLOCK_OPEN = "<<<pragma-output-contract"
_BLOCK_CLOSE = "pragma-output-contract>>>"


@dataclass(frozen=True, slots=True)
class OutputContract:
    """Response format the worker is asked to follow."""

    kind: str = CONTRACT_MARKDOWN
    text: str | None = None

    @classmethod
    def custom(cls, text: str) -> OutputContract:
        return cls(kind=CONTRACT_CUSTOM, text=text)


@dataclass(slots=True)
class DirectiveDocument:
    """Sanitized directive prompt plus its output contract."""

    prompt: str
    contract: OutputContract


@dataclass(slots=True)
class ValidationIssue:
    path: Path
    detail: str


@dataclass(slots=True)
class ValidationReport:
    """Outcome of scanning directive directories."""

    issues: list[ValidationIssue] = field(default_factory=list)
    total: int = 0
    skipped: int = 0
    ok: int = 0


def load_directive(
    name: str,
    search_dirs: list[str] | tuple[str, ...],
    inline_extra: str | None = None,
) -> DirectiveDocument:
    """Resolve `name` to a directive file and return its prompt and contract.

    Frontmatter `output_contract` wins over inline markers found in the body
    or in `inline_extra`, which is appended after a blank line.
    """

    path = resolve_directive_path(name, search_dirs)
    try:
        content = _read_directive(path)
    except OSError as error:
        raise DirectiveNotFound(f"cannot read directive {path}: {error}") from error

    frontmatter, body = split_frontmatter(content)
    override = parse_frontmatter_contract(frontmatter) if frontmatter is not None else None

    prompt_input = body
    if inline_extra:
        prompt_input = _join_directive_and_inline(body, inline_extra)

    document = extract_directive_contract(prompt_input)
    if override is not None:
        document.contract = override
    logger.debug("Loaded directive %s from %s (%s)", name, path, document.contract.kind)
    return document


def resolve_directive_path(name: str, search_dirs: list[str] | tuple[str, ...]) -> Path:
    if _looks_like_path(name):
        candidate = Path(name)
        if not candidate.exists():
            raise DirectiveNotFound(f"directive not found: {name}")
        return candidate

    for directory in search_dirs:
        for extension in DIRECTIVE_EXTENSIONS:
            candidate = Path(directory) / f"{name}{extension}"
            if candidate.is_file():
                return candidate
    raise DirectiveNotFound(f"directive not found: {name}")


def gather_directive_dirs(
    cli_dir: str | None,
    env_dir: str | None,
    *,
    include_defaults: bool = True,
) -> list[str]:
    """Return directive search directories in lookup order, without duplicates."""

    candidates: list[str] = []
    if cli_dir:
        candidates.append(cli_dir)
    if env_dir:
        candidates.append(env_dir)
    if include_defaults:
        home = os.getenv("HOME")
        if home:
            candidates.append(str(Path(home) / ".pragma" / "directives"))
        candidates.extend([".pragma/directives", "directives"])

    unique: list[str] = []
    for candidate in candidates:
        if candidate not in unique:
            unique.append(candidate)
    return unique


def split_frontmatter(content: str) -> tuple[str | None, str]:
    """Split a leading `---` block from the directive body."""

    if not content.startswith("---"):
        return None, content
    lines = content.splitlines(keepends=True)
    if lines[0].rstrip("\r\n") != "---":
        raise InvalidDirective("malformed frontmatter opening line")
    for index in range(1, len(lines)):
        if lines[index].strip(" \t\r\n") == "---":
            meta = "".join(lines[1:index]).rstrip(" \r\n")
            body = "".join(lines[index + 1 :])
            return meta, body
    raise InvalidDirective("unterminated frontmatter block")


def parse_frontmatter_contract(raw: str) -> OutputContract | None:
    """Read `output_contract` from YAML frontmatter, if present."""

    try:
        payload = yaml.safe_load(raw) if raw.strip() else None
    except yaml.YAMLError as error:
        raise InvalidDirective(f"invalid YAML frontmatter: {error}") from error
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise InvalidDirective("frontmatter must be a mapping")

    value = payload.get("output_contract")
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidDirective("output_contract must be a string")
    normalized = value.strip()
    if not normalized:
        return None
    builtin = _parse_output_format(normalized)
    if builtin is not None:
        return builtin
    return OutputContract.custom(normalized)


def extract_directive_contract(raw_prompt: str) -> DirectiveDocument:
    """Strip inline contract markers from `raw_prompt`.

    Recognized markers, all removed from the returned prompt:

    - `pragma-output-format: json|markdown|plain`
    - `pragma-output-contract: <custom text>`
    - a `<<<pragma-output-contract` ... `pragma-output-contract>>>` block

    An unclosed block is left in the prompt untouched.
    """

    contract = OutputContract()
    kept: list[str] = []
    block: list[str] = []
    block_start: str | None = None

    for raw_line in raw_prompt.split("\n"):
        line = raw_line.removesuffix("\r")
        trimmed = line.strip(" \t")

        if block_start is not None:
            if trimmed == _BLOCK_CLOSE:
                custom = "\n".join(block)
                if custom:
                    contract = OutputContract.custom(custom)
                block_start = None
                block = []
                continue
            block.append(line)
            continue

        if trimmed == _BLOCK_OPEN:
            block_start = line
            block = []
            continue

        if trimmed.startswith(_CONTRACT_MARKER):
            value = trimmed[len(_CONTRACT_MARKER) :].strip(" \t")
            if value:
                contract = OutputContract.custom(value)
            else:
                kept.append(line)
            continue

        if trimmed.startswith(_FORMAT_MARKER):
            value = trimmed[len(_FORMAT_MARKER) :].strip(" \t")
            parsed = _parse_output_format(value) if value else None
            if parsed is not None:
                contract = parsed
            else:
                kept.append(line)
            continue

        kept.append(line)

    if block_start is not None:
        kept.append(block_start)
        kept.extend(block)

    return DirectiveDocument(prompt="\n".join(kept), contract=contract)


def validate_directive_dirs(
    directories: list[str],
    *,
    skip_prefix: str = "codex",
) -> ValidationReport:
    """Check every directive file found in `directories`."""

    report = ValidationReport()
    for directory in directories:
        root = Path(directory)
        if not root.is_dir():
            continue
        for path in sorted(root.iterdir()):
            if not path.is_file() or path.suffix not in DIRECTIVE_EXTENSIONS:
                continue
            if path.stem.lower().startswith(skip_prefix.lower()):
                report.skipped += 1
                continue
            report.total += 1
            detail = _validate_directive_file(path)
            if detail is None:
                report.ok += 1
            else:
                report.issues.append(ValidationIssue(path=path, detail=detail))
    return report


def _validate_directive_file(path: Path) -> str | None:  # noqa: PLR0911
    try:
        content = _read_directive(path)
    except (OSError, InvalidDirective):
        return "failed to read file"
    if not content.strip(" \r\n"):
        return "body is empty"
    try:
        frontmatter, body = split_frontmatter(content)
    except InvalidDirective:
        return "malformed frontmatter block"
    if frontmatter is not None:
        try:
            parse_frontmatter_contract(frontmatter)
        except InvalidDirective:
            return "invalid YAML frontmatter"
    document = extract_directive_contract(body)
    if not document.prompt.strip(" \r\n"):
        return "directive body reduced to empty after sanitization"
    return None


def _read_directive(path: Path) -> str:
    data = path.read_bytes()
    if len(data) > MAX_DIRECTIVE_BYTES:
        raise InvalidDirective(f"directive {path} exceeds {MAX_DIRECTIVE_BYTES} bytes")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as error:
        raise InvalidDirective(f"directive {path} is not valid UTF-8") from error


def _join_directive_and_inline(body: str, inline_extra: str) -> str:
    if not body:
        return inline_extra
    if body.endswith("\n\n"):
        return body + inline_extra
    if body.endswith("\n"):
        return body + "\n" + inline_extra
    return body + "\n\n" + inline_extra


def _looks_like_path(identifier: str) -> bool:
    return (
        "/" in identifier
        or "\\" in identifier
        or identifier.endswith(DIRECTIVE_EXTENSIONS)
    )


def _parse_output_format(value: str) -> OutputContract | None:
    normalized = value.strip().strip('"').lower()
    if normalized in _BUILTIN_FORMATS:
        return OutputContract(kind=normalized)
    return None
