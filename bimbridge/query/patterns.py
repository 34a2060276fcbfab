"""Pattern codec: literal strings vs. ``/body/flags`` regular-expression patterns.

On the wire a pattern is always text.  Only strings that satisfy
``^/(.+)/([gimuy]*)$`` are treated as encoded regular expressions; every other
string is a literal.  Decoding turns encoded text into a compiled
:class:`re.Pattern`, encoding goes the other way.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Union

logger = logging.getLogger(__name__)

PATTERN_GRAMMAR = re.compile(r"^/(.+)/([gimuy]*)\Z")

# Wire flags that map onto Python flags; g, u and y have no Python meaning
_FLAG_MAP = {"i": re.IGNORECASE, "m": re.MULTILINE}

Pattern = Union[str, re.Pattern]


def is_encoded_pattern(text: Any) -> bool:
    """Return *True* if *text* is a string in ``/body/flags`` form."""
    return isinstance(text, str) and PATTERN_GRAMMAR.match(text) is not None


def encode_pattern(literal: str, case_insensitive: bool = True) -> str:
    """Wrap *literal* as ``/<body>/i`` for case-insensitive matching.

    The literal is used as the expression body; forward slashes are escaped
    so the body survives the ``/.../`` framing.  With
    ``case_insensitive=False`` the literal is returned unchanged.
    """
    if not case_insensitive:
        return literal
    body = literal.replace("/", r"\/")
    return f"/{body}/i"


def decode_pattern(text: Any) -> Any:
    """Compile *text* if it is an encoded pattern, else return it unchanged.

    Non-string values pass through.  A string that starts with ``/`` but
    does not satisfy the grammar stays a literal, as does one whose body is
    not a valid expression.
    """
    if not isinstance(text, str):
        return text
    match = PATTERN_GRAMMAR.match(text)
    if match is None:
        return text

    body, wire_flags = match.group(1), match.group(2)
    flags = 0
    for flag in wire_flags:
        flags |= _FLAG_MAP.get(flag, 0)
    try:
        return re.compile(body, flags)
    except re.error:
        logger.warning("Pattern %r is not a valid expression, treating as literal", text)
        return text


def pattern_to_text(pattern: Any) -> Any:
    """Render a compiled pattern back to ``/body/flags``; other values pass through."""
    if not isinstance(pattern, re.Pattern):
        return pattern
    flags = ""
    if pattern.flags & re.IGNORECASE:
        flags += "i"
    if pattern.flags & re.MULTILINE:
        flags += "m"
    return f"/{pattern.pattern}/{flags}"


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def match_pattern(pattern: Any, value: Any) -> bool:
    """Test *value* against a decoded pattern.

    Compiled patterns search the value's text form; literal strings require
    exact equality with it; any other scalar compares by equality.
    """
    if value is None:
        return False
    if isinstance(pattern, re.Pattern):
        return pattern.search(_as_text(value)) is not None
    if isinstance(pattern, str):
        return _as_text(value) == pattern
    if isinstance(pattern, bool) or isinstance(value, bool):
        return isinstance(pattern, bool) and isinstance(value, bool) and pattern == value
    return pattern == value
