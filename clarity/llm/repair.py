"""
Best-effort parsing of JSON produced by the model.

Model output can arrive wrapped in markdown fences, preceded by a sentence of
preamble, or cut off mid-structure when the token ceiling is hit. parse_model_json()
strips the wrapping, tries a direct parse, then applies repair passes one at a
time, re-parsing after each:

  missing_value      "key": followed directly by , } or ]  ->  "key": ""
  incomplete_member  trailing member with no usable value is cut off
  trailing_comma     dangling commas removed
  close_structures   open string closed, then open brackets closed innermost-first
  missing_commas     commas inserted between members split across lines

If the pipeline fails, the text is truncated after the last object-closing brace
and the pipeline runs once more. Only JSON-mode responses come through here.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from clarity.config import PARSE_FAILURE_TAIL_CHARS
from clarity.errors import ParseFailure
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter, log_event

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\r?\n?", re.IGNORECASE)
_MISSING_VALUE_RE = re.compile(r'("(?:[^"\\]|\\.)*"\s*:)\s*(?=[,}\]])')
_TRAILING_COMMA_RE = re.compile(r",\s*(?=[}\]])")
_DANGLING_COMMA_RE = re.compile(r",\s*$")
_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?$")
_PARTIAL_UNICODE_RE = re.compile(r"(\\+)u[0-9a-fA-F]{0,3}$")

_DECODER = json.JSONDecoder(strict=False)


def clean_response_text(text: str | None) -> str:
    """Remove markdown code fences (with or without a json tag) and surrounding whitespace."""
    return _FENCE_RE.sub("", text or "").strip()


# ============================================================================
# Structure scanner
# ============================================================================


@dataclass
class _Frame:
    kind: str  # "{" or "["
    state: str  # object: key|colon|value|literal|after, array: value|literal|after
    member_start: int
    literal_start: int = -1


@dataclass
class _Scan:
    stack: list[_Frame] = field(default_factory=list)
    in_string: bool = False
    string_is_key: bool = False
    pending_escape: bool = False
    last_object_close: int = -1


def _scan(s: str) -> _Scan:
    """Walk `s` outside quoted spans and report what is still open at the end."""
    scan = _Scan()
    stack = scan.stack

    for i, ch in enumerate(s):
        if scan.in_string:
            if scan.pending_escape:
                scan.pending_escape = False
            elif ch == "\\":
                scan.pending_escape = True
            elif ch == '"':
                scan.in_string = False
                if stack:
                    stack[-1].state = "colon" if scan.string_is_key else "after"
            continue

        top = stack[-1] if stack else None
        if top is not None and top.state == "literal":
            if ch in ",}]" or ch.isspace():
                top.state = "after"
            else:
                continue

        if ch == '"':
            scan.in_string = True
            scan.string_is_key = top is not None and top.kind == "{" and top.state == "key"
        elif ch in "{[":
            stack.append(_Frame(kind=ch, state="key" if ch == "{" else "value", member_start=i + 1))
        elif ch in "}]":
            if stack:
                stack.pop()
            if ch == "}":
                scan.last_object_close = i
            if stack:
                stack[-1].state = "after"
        elif top is None or ch.isspace():
            continue
        elif ch == ",":
            top.state = "key" if top.kind == "{" else "value"
            top.member_start = i
        elif ch == ":":
            if top.kind == "{" and top.state == "colon":
                top.state = "value"
        elif top.state == "value":
            top.state = "literal"
            top.literal_start = i

    return scan


def _is_complete_literal(token: str) -> bool:
    return token in ("true", "false", "null") or bool(_NUMBER_RE.match(token))


# ============================================================================
# Repair passes
# ============================================================================


def _fill_missing_values(s: str) -> str:
    return _MISSING_VALUE_RE.sub(r'\1 ""', s)


def _strip_incomplete_member(s: str) -> str:
    scan = _scan(s)
    if not scan.stack:
        return s
    top = scan.stack[-1]

    incomplete_literal = top.state == "literal" and not _is_complete_literal(
        s[top.literal_start :].strip()
    )
    if top.kind == "{":
        cut = (
            (scan.in_string and scan.string_is_key)
            or (not scan.in_string and top.state in ("colon", "value"))
            or incomplete_literal
        )
    else:
        cut = incomplete_literal

    return s[: top.member_start] if cut else s


def _strip_trailing_commas(s: str) -> str:
    return _DANGLING_COMMA_RE.sub("", _TRAILING_COMMA_RE.sub("", s))


def _close_open_structures(s: str) -> str:
    scan = _scan(s)
    if scan.in_string:
        if scan.pending_escape:
            s = s[:-1]
        else:
            partial = _PARTIAL_UNICODE_RE.search(s)
            if partial and len(partial.group(1)) % 2 == 1:
                # Cut inside a \uXXXX escape: drop the escaping backslash and hex digits.
                s = s[: partial.start() + len(partial.group(1)) - 1]
        s += '"'
        scan = _scan(s)

    if scan.stack:
        top = scan.stack[-1]
        if top.kind == "{" and top.state == "colon":
            s += ': ""'
        elif top.kind == "{" and top.state == "value":
            s += '""'

    return s + "".join("}" if frame.kind == "{" else "]" for frame in reversed(scan.stack))


def _insert_missing_commas(s: str) -> str:
    s = re.sub(r'"\s*\n\s*"', '",\n"', s)
    s = re.sub(r"(\d|true|false|null)\s*\n\s*\"", r'\1,\n"', s)
    s = re.sub(r'([}\]])\s*\n\s*"', r'\1,\n"', s)
    return s


_REPAIR_PASSES: tuple[tuple[str, Callable[[str], str]], ...] = (
    ("missing_value", _fill_missing_values),
    ("incomplete_member", _strip_incomplete_member),
    ("trailing_comma", _strip_trailing_commas),
    ("close_structures", _close_open_structures),
    ("missing_commas", _insert_missing_commas),
)


# ============================================================================
# Public API
# ============================================================================


def _decode(s: str) -> Any:
    value, _ = _DECODER.raw_decode(s)
    if isinstance(value, list):
        # The schema always asks for an object; a wrapping array is a model quirk.
        value = value[0] if value else {}
    return value


def _run_pipeline(s: str) -> tuple[Any, str] | None:
    for name, repair in _REPAIR_PASSES:
        s = repair(s)
        try:
            return _decode(s), name
        except json.JSONDecodeError:
            continue
    return None


def parse_model_json(text: str | None) -> Any:
    """
    Parse model output into a JSON value, repairing it if necessary.

    Raises:
        ParseFailure: If no repair pass yields parseable JSON. Carries the tail of
            the offending text.

    Side Effects:
        - Increments telemetry counters (llm.repair.<pass>, llm.parse_failure)
    """
    cleaned = clean_response_text(text)
    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i >= 0]
    if not starts:
        counter("llm.parse_failure")
        raise ParseFailure("No JSON object in model output", tail=cleaned[-PARSE_FAILURE_TAIL_CHARS:])
    candidate = cleaned[min(starts) :]

    try:
        return _decode(candidate)
    except json.JSONDecodeError as exc:
        logger.warning("Model JSON parse error (attempting repair): %s", exc)

    repaired = _run_pipeline(candidate)
    if repaired is None:
        last_close = _scan(candidate).last_object_close
        if 0 < last_close < len(candidate) - 1:
            repaired = _run_pipeline(candidate[: last_close + 1])
            if repaired is not None:
                repaired = (repaired[0], f"{repaired[1]}+truncate")

    if repaired is None:
        counter("llm.parse_failure")
        tail = candidate[-PARSE_FAILURE_TAIL_CHARS:]
        log_event("llm.parse_failure", length=len(candidate))
        raise ParseFailure("Model output is not repairable JSON", tail=tail)

    value, pass_name = repaired
    counter(f"llm.repair.{pass_name}")
    log_event("llm.repair_applied", repair_pass=pass_name)
    return value
