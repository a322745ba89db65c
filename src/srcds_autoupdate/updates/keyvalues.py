"""
Parser for Valve's KeyValues text format.

Both sources of build ids speak this format: the local app manifests
(appmanifest_<appid>.acf) written by SteamCMD, and the output of
``steamcmd +app_info_print``. Only the subset those files use is supported:
quoted or bare tokens, nested blocks and ``//`` line comments.
"""

from __future__ import annotations

import re
from typing import Any

_TOKEN_RE = re.compile(
    r'"(?P<quoted>(?:[^"\\]|\\.)*)"'
    r"|(?P<brace>[{}])"
    r"|(?P<comment>//[^\n]*)"
    r'|(?P<bare>[^\s"{}]+)'
)

_ESCAPES = {"n": "\n", "t": "\t", "\\": "\\", '"': '"'}


class KeyValuesError(ValueError):
    """Raised when KeyValues text is structurally invalid."""


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(0)), value)


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    for match in _TOKEN_RE.finditer(text):
        kind = match.lastgroup
        if kind == "comment":
            continue
        if kind == "quoted":
            tokens.append(("str", _unescape(match.group("quoted"))))
        elif kind == "bare":
            tokens.append(("str", match.group("bare")))
        else:
            tokens.append((match.group("brace"), match.group("brace")))
    return tokens


def loads(text: str, *, first_block_only: bool = False) -> dict[str, Any]:
    """
    Parse KeyValues text into nested dictionaries.

    Values are strings; blocks become dictionaries. When a key repeats in
    the same block the last occurrence wins.

    Args:
        text: KeyValues document.
        first_block_only: Stop once the first top-level block closes, ignoring
            whatever follows (SteamCMD prints shutdown chatter after the
            app info document).

    Returns:
        Top-level mapping of keys to strings or nested dictionaries.

    Raises:
        KeyValuesError: If braces are unbalanced or a key has no value.
    """
    tokens = _tokenize(text)
    root: dict[str, Any] = {}
    stack: list[dict[str, Any]] = [root]
    i = 0

    while i < len(tokens):
        kind, value = tokens[i]

        if kind == "}":
            if len(stack) == 1:
                raise KeyValuesError("Unexpected '}' at top level")
            stack.pop()
            i += 1
            if first_block_only and len(stack) == 1:
                break
            continue

        if kind == "{":
            raise KeyValuesError("Block opened without a key")

        if i + 1 >= len(tokens):
            raise KeyValuesError(f"Key {value!r} has no value")

        next_kind, next_value = tokens[i + 1]
        if next_kind == "{":
            block: dict[str, Any] = {}
            stack[-1][value] = block
            stack.append(block)
        elif next_kind == "str":
            stack[-1][value] = next_value
        else:
            raise KeyValuesError(f"Key {value!r} followed by '}}'")
        i += 2

    if len(stack) != 1:
        raise KeyValuesError("Unterminated block")

    return root


def find(data: dict[str, Any], *path: str) -> Any:
    """
    Walk nested KeyValues data with case-insensitive keys.

    Valve tools are inconsistent about key casing ("buildid" versus
    "BuildID"), so lookups ignore case.

    Returns:
        The value at the path, or None if any segment is missing.
    """
    current: Any = data
    for key in path:
        if not isinstance(current, dict):
            return None
        lowered = key.lower()
        for candidate, value in current.items():
            if candidate.lower() == lowered:
                current = value
                break
        else:
            return None
    return current
