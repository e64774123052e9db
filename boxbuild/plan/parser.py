"""Parser for box scripts.

This module handles:
- Splitting source into logical statements (shell quoting, line
  continuations, comments)
- Variable interpolation of ``${NAME}`` references
- Block statements (``inside PATH do`` ... ``end``)
- Converting statements into validated step variants

Source that ends in the middle of a statement raises
IncompleteStatementError so incremental callers can ask for more input.
"""

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Collection, Iterator, Mapping
from dataclasses import dataclass, field

from pydantic import ValidationError

from boxbuild.errors import IncompleteStatementError, PlanError
from boxbuild.plan.steps import BLOCK_VERBS, VERBS, StepBase

logger = logging.getLogger(__name__)

VARIABLE_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
BLOCK_OPEN = "do"
BLOCK_CLOSE = "end"


@dataclass
class Statement:
    """A tokenized logical statement.

    Attributes:
        tokens: Shell-split tokens, verb first.
        line: Line the statement starts on.
    """

    tokens: list[str]
    line: int


@dataclass
class _Block:
    verb: str
    args: list[str]
    line: int
    body: list[StepBase] = field(default_factory=list)


def strip_comments(text: str) -> str:
    """Remove comments from script text.

    As in the POSIX shell, an unquoted ``#`` starts a comment only at the
    beginning of a word; the comment runs to the end of the physical line.
    """
    out: list[str] = []
    quote = ""
    escaped = False
    in_comment = False
    previous = "\n"

    for char in text:
        if in_comment:
            if char != "\n":
                continue
            in_comment = False
        elif escaped:
            escaped = False
        elif quote:
            if char == quote:
                quote = ""
            elif char == "\\" and quote == '"':
                escaped = True
        elif char == "\\":
            escaped = True
        elif char in "'\"":
            quote = char
        elif char == "#" and previous.isspace():
            in_comment = True
            continue
        out.append(char)
        previous = char

    return "".join(out)


def iter_statements(source: str) -> Iterator[Statement]:
    """Split source into logical statements.

    Args:
        source: Script source text.

    Yields:
        Statement for every non-empty logical line.

    Raises:
        IncompleteStatementError: If the source ends inside a quoted string
            or after a line continuation.
    """
    buffer = ""
    start_line = 0

    for number, raw in enumerate(source.splitlines(), start=1):
        if not buffer:
            start_line = number
            buffer = raw
        else:
            buffer = f"{buffer}\n{raw}"

        # Trailing backslash joins the next physical line
        stripped = strip_comments(buffer).rstrip()
        if stripped.endswith("\\") and not stripped.endswith("\\\\"):
            buffer = stripped[:-1] + " "
            continue

        try:
            tokens = shlex.split(strip_comments(buffer), posix=True)
        except ValueError:
            # Unterminated quote; keep reading
            continue

        buffer = ""
        if tokens:
            yield Statement(tokens=tokens, line=start_line)

    if buffer.strip():
        raise IncompleteStatementError(
            "statement continues past end of input", line=start_line
        )


def interpolate(token: str, variables: Mapping[str, str], line: int) -> str:
    """Replace ``${NAME}`` references in a token.

    Args:
        token: Token to interpolate.
        variables: Variables supplied to the build.
        line: Line number for error messages.

    Returns:
        Token with all references replaced.

    Raises:
        PlanError: If a referenced variable is not defined.
    """

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in variables:
            raise PlanError(f"undefined variable {name!r}", line=line)
        return variables[name]

    return VARIABLE_PATTERN.sub(_replace, token)


def _pairs(args: list[str], verb: str, line: int) -> dict[str, str]:
    values: dict[str, str] = {}
    for arg in args:
        key, sep, value = arg.partition("=")
        if not sep:
            raise PlanError(f"{verb} expects KEY=VALUE, got {arg!r}", line=line)
        values[key] = value
    return values


def _expect(verb: str, args: list[str], line: int, count: int) -> None:
    if len(args) != count:
        raise PlanError(
            f"{verb} expects {count} argument(s), got {len(args)}", line=line
        )


def _step_fields(
    verb: str, args: list[str], line: int, body: list[StepBase]
) -> dict[str, object]:
    """Map positional script arguments onto step fields."""
    if verb == "from":
        _expect(verb, args, line, 1)
        return {"image": args[0]}
    if verb in ("run", "cmd", "entrypoint"):
        if not args:
            raise PlanError(f"{verb} expects a command", line=line)
        return {"command": args}
    if verb == "copy":
        _expect(verb, args, line, 2)
        return {"source": args[0], "target": args[1]}
    if verb in ("env", "label"):
        if not args:
            raise PlanError(f"{verb} expects KEY=VALUE pairs", line=line)
        return {"values": _pairs(args, verb, line)}
    if verb == "workdir":
        _expect(verb, args, line, 1)
        return {"path": args[0]}
    if verb == "user":
        _expect(verb, args, line, 1)
        return {"user": args[0]}
    if verb == "expose":
        if not args:
            raise PlanError("expose expects at least one port", line=line)
        return {"ports": args}
    if verb == "debug":
        return {"message": " ".join(args)}
    if verb == "inside":
        _expect(verb, args, line, 1)
        return {"path": args[0], "body": body}
    if verb == "with_user":
        _expect(verb, args, line, 1)
        return {"user": args[0], "body": body}
    if verb == "read":
        _expect(verb, args, line, 1)
        return {"path": args[0]}
    # tag, getenv, getuid, getgid
    _expect(verb, args, line, 1)
    return {"name": args[0]}


def build_step(
    verb: str,
    args: list[str],
    line: int,
    body: list[StepBase] | None = None,
) -> StepBase:
    """Construct a validated step variant from a parsed statement.

    Args:
        verb: Statement verb.
        args: Interpolated arguments.
        line: Source line.
        body: Nested steps for block verbs.

    Returns:
        Step variant instance.

    Raises:
        PlanError: If the verb is unknown or the arguments are invalid.
    """
    model = VERBS.get(verb)
    if model is None:
        raise PlanError(f"unknown verb {verb!r}", line=line)

    fields = _step_fields(verb, args, line, body or [])
    try:
        return model.model_validate({**fields, "line": line})
    except ValidationError as e:
        details = "; ".join(err["msg"] for err in e.errors())
        raise PlanError(f"invalid {verb}: {details}", line=line) from None


def parse_source(
    source: str,
    variables: Mapping[str, str] | None = None,
    omit: Collection[str] = (),
) -> list[StepBase]:
    """Parse box script source into steps.

    Args:
        source: Script source text.
        variables: Variables available for ``${NAME}`` interpolation.
        omit: Verbs to drop from the resulting steps.

    Returns:
        Steps in source order.

    Raises:
        IncompleteStatementError: If the source ends mid-statement or inside
            an unclosed block.
        PlanError: If the source is invalid.
    """
    variables = variables or {}
    steps: list[StepBase] = []
    stack: list[_Block] = []

    def _emit(step: StepBase) -> None:
        if step.verb in omit:  # type: ignore[attr-defined]
            logger.debug("Omitting %s at line %s", step.verb, step.line)  # type: ignore[attr-defined]
            return
        if stack:
            stack[-1].body.append(step)
        else:
            steps.append(step)

    for statement in iter_statements(source):
        tokens = [interpolate(t, variables, statement.line) for t in statement.tokens]
        verb, args = tokens[0], tokens[1:]

        if verb == BLOCK_CLOSE and not args:
            if not stack:
                raise PlanError("'end' without an open block", line=statement.line)
            block = stack.pop()
            _emit(build_step(block.verb, block.args, block.line, block.body))
            continue

        if args and args[-1] == BLOCK_OPEN:
            if verb not in BLOCK_VERBS:
                if verb not in VERBS:
                    raise PlanError(f"unknown verb {verb!r}", line=statement.line)
                raise PlanError(f"{verb} does not take a block", line=statement.line)
            stack.append(_Block(verb=verb, args=args[:-1], line=statement.line))
            continue

        if verb in BLOCK_VERBS:
            raise PlanError(f"{verb} requires a 'do' block", line=statement.line)

        _emit(build_step(verb, args, statement.line))

    if stack:
        raise IncompleteStatementError(
            f"block '{stack[-1].verb}' is not closed", line=stack[-1].line
        )

    return steps


__all__ = [
    "BLOCK_CLOSE",
    "BLOCK_OPEN",
    "Statement",
    "build_step",
    "interpolate",
    "iter_statements",
    "parse_source",
    "strip_comments",
]
