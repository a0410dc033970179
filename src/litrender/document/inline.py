from __future__ import annotations

import re
from typing import Iterable

from .blocks import InlineExpr

_FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")


def find_inline_exprs(content: str, tags: Iterable[str] = ("r", "py")) -> list[InlineExpr]:
    """Locate inline expression markers in narrative text.

    A marker is a single-backtick code span whose body starts with one of
    `tags` followed by whitespace, e.g. `r nrow(df)`. Nothing is evaluated
    here; offsets are absolute positions in `content`.

    - the closing backtick must be on the same line; otherwise the opening
      backtick is literal text
    - markers do not nest
    - spans opened by two or more backticks and plain fenced code blocks
      are literal, so documents can show the marker syntax itself
    """

    tag_set = tuple(sorted({t for t in tags if t}, key=len, reverse=True))
    found: list[InlineExpr] = []
    in_fence: str | None = None
    offset = 0

    for line in content.splitlines(keepends=True):
        m = _FENCE_RE.match(line)
        if m:
            marker = m.group(1)
            if in_fence is None:
                in_fence = marker[0] * len(marker)
            elif marker.startswith(in_fence):
                in_fence = None
            offset += len(line)
            continue
        if in_fence is None:
            found.extend(_scan_line(line, offset, tag_set))
        offset += len(line)

    return found


def _scan_line(line: str, base: int, tags: tuple[str, ...]) -> list[InlineExpr]:
    out: list[InlineExpr] = []
    body = line.rstrip("\r\n")
    i = 0
    n = len(body)
    while i < n:
        if body[i] != "`":
            i += 1
            continue
        run_end = i
        while run_end < n and body[run_end] == "`":
            run_end += 1
        run = run_end - i
        close = _find_run(body, run_end, run)
        if close < 0:
            # Unterminated on this line: the backticks are literal text.
            i = run_end
            continue
        if run == 1:
            span = body[run_end:close]
            expr = _match_tag(span, tags)
            if expr is not None:
                engine, code = expr
                out.append(InlineExpr(code=code, start=base + i, end=base + close + 1, engine=engine))
        i = close + run
    return out


def _find_run(body: str, start: int, length: int) -> int:
    """Index of the next backtick run of exactly `length`, or -1."""
    j = start
    n = len(body)
    while j < n:
        if body[j] != "`":
            j += 1
            continue
        k = j
        while k < n and body[k] == "`":
            k += 1
        if k - j == length:
            return j
        j = k
    return -1


def _match_tag(span: str, tags: tuple[str, ...]) -> tuple[str, str] | None:
    for tag in tags:
        if span.startswith(tag) and len(span) > len(tag) and span[len(tag)].isspace():
            code = span[len(tag):].strip()
            if code:
                return tag, code
    return None


def substitute(content: str, exprs: Iterable[InlineExpr], values: Iterable[str]) -> str:
    """Replace each marker with its rendered value, right to left."""
    pairs = sorted(zip(exprs, values), key=lambda p: p[0].start, reverse=True)
    out = content
    for expr, value in pairs:
        out = out[: expr.start] + value + out[expr.end :]
    return out
