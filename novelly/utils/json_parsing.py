"""
Pull a JSON payload out of free-form model output.

Model responses may wrap the JSON in reasoning blocks (<think>...</think>),
markdown fences, or a sentence of prose. parse_json tries progressively
looser strategies and raises ParseError when none of them yields JSON.
"""
import json
import re
from typing import Any, Optional

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
_THINKING_BLOCK = re.compile(r"<thinking>.*?</thinking>", re.IGNORECASE | re.DOTALL)
# An unterminated <think> running up to the first brace
_DANGLING_THINK = re.compile(r"<think>.*?(?=\{)", re.IGNORECASE | re.DOTALL)
_FENCED = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.IGNORECASE | re.DOTALL)


class ParseError(ValueError):
    """No JSON object could be recovered from the text."""


def strip_reasoning(text: str) -> str:
    cleaned = _THINK_BLOCK.sub("", text)
    cleaned = _THINKING_BLOCK.sub("", cleaned)
    cleaned = _DANGLING_THINK.sub("", cleaned)
    return cleaned.strip()


def _try_loads(candidate: str) -> Optional[Any]:
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        return None


def _first_balanced_object(text: str) -> Optional[Any]:
    """
    Scan for the first `{...}` span with balanced braces that parses as JSON.

    Braces inside JSON strings are ignored. If a balanced span fails to parse,
    scanning resumes at the next opening brace.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    parsed = _try_loads(text[start:index + 1])
                    if parsed is not None:
                        return parsed
                    break
        start = text.find("{", start + 1)
    return None


def parse_json(text: Optional[str]) -> Any:
    """
    Return the JSON value embedded in `text`.

    Raises:
        ParseError: if nothing in the text parses as JSON
    """
    if not text:
        raise ParseError("Empty response")

    cleaned = strip_reasoning(text)

    parsed = _try_loads(cleaned)
    if parsed is not None:
        return parsed

    fenced = _FENCED.search(cleaned)
    if fenced:
        parsed = _try_loads(fenced.group(1))
        if parsed is not None:
            return parsed

    parsed = _first_balanced_object(cleaned)
    if parsed is not None:
        return parsed

    first, last = cleaned.find("{"), cleaned.rfind("}")
    if first != -1 and last > first:
        parsed = _try_loads(cleaned[first:last + 1])
        if parsed is not None:
            return parsed

    raise ParseError(f"Could not parse JSON. Content length: {len(text)}")
