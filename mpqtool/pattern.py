"""Glob filters over normalized archive paths.

Matching semantics (anchored on the whole path, case-sensitive):

- ``\\`` in a pattern is read as ``/``, the separator of normalized paths
- ``*`` matches any run of characters except ``/``
- ``?`` matches one character except ``/``
- ``[abc]``, ``[a-z]``, ``[!abc]`` / ``[^abc]`` match one character from
  (or outside) the class; a class never matches ``/``; ``]`` placed first
  is literal
- ``**`` forming a whole path component matches zero or more components:
  ``**/*.txt`` matches ``a.txt`` and ``x/y/a.txt``; ``data/**`` matches
  everything below ``data/``

Malformed patterns (an unclosed class, ``***``, ``**`` glued to other
characters, reversed ranges) raise InvalidPatternError.
"""
from __future__ import annotations

import re
from typing import Optional

from .errors import InvalidPatternError


class GlobPattern:
    def __init__(self, text: str):
        self.text = text
        regex = _translate(text)
        try:
            self._re = re.compile(regex, re.DOTALL)
        except re.error as e:
            raise InvalidPatternError(text, str(e))

    def matches(self, path: str) -> bool:
        return self._re.fullmatch(path) is not None

    def __repr__(self) -> str:
        return f"GlobPattern({self.text!r})"


def compile_pattern(text: Optional[str]) -> Optional[GlobPattern]:
    """Compile a filter; no (or an empty) pattern means match everything."""
    if not text:
        return None
    return GlobPattern(text)


def matches(pattern: Optional[GlobPattern], path: str) -> bool:
    if pattern is None:
        return True
    return pattern.matches(path)


def _translate(pattern: str) -> str:
    text = pattern.replace("\\", "/")
    out = []
    i, n = 0, len(text)
    while i < n:
        c = text[i]
        if c == "*":
            j = i
            while j < n and text[j] == "*":
                j += 1
            run = j - i
            if run > 2:
                raise InvalidPatternError(pattern, "wildcards are either '*' or '**'")
            if run == 1:
                out.append("[^/]*")
            else:
                if (i > 0 and text[i - 1] != "/") or (j < n and text[j] != "/"):
                    raise InvalidPatternError(pattern, "'**' must form a whole path component")
                if j < n:
                    out.append("(?:.*/)?")
                    j += 1  # swallow the '/' after '**'
                else:
                    out.append(".*")
            i = j
        elif c == "?":
            out.append("[^/]")
            i += 1
        elif c == "[":
            cls, i = _translate_class(pattern, text, i)
            out.append(cls)
        else:
            out.append(re.escape(c))
            i += 1
    return "".join(out)


def _translate_class(pattern: str, text: str, start: int):
    n = len(text)
    j = start + 1
    negate = False
    if j < n and text[j] in "!^":
        negate = True
        j += 1
    body_start = j
    if j < n and text[j] == "]":
        j += 1
    while j < n and text[j] != "]":
        j += 1
    if j >= n:
        raise InvalidPatternError(pattern, "unclosed character class")
    body = text[body_start:j]

    parts = []
    k = 0
    while k < len(body):
        if k + 2 < len(body) and body[k + 1] == "-":
            lo, hi = body[k], body[k + 2]
            if lo > hi:
                raise InvalidPatternError(pattern, f"invalid range {lo}-{hi}")
            parts.append(f"{re.escape(lo)}-{re.escape(hi)}")
            k += 3
        else:
            parts.append(re.escape(body[k]))
            k += 1
    cls = "".join(parts)
    if negate:
        return f"[^/{cls}]", j + 1
    return f"(?!/)[{cls}]", j + 1
