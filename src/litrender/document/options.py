from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from ..errors import MalformedOptionError

RESULTS_MODES: tuple[str, ...] = ("show", "hide", "asis")

# Recognized key -> accepted literal types. bool is checked before numbers
# because bool is a subclass of int.
_RECOGNIZED: dict[str, tuple[type, ...]] = {
    "eval": (bool,),
    "echo": (bool,),
    "cache": (bool,),
    "include": (bool,),
    "error": (bool,),
    "fig.cap": (str,),
    "tab.cap": (str,),
    "fig.width": (int, float),
    "fig.height": (int, float),
    "results": (str,),
    "label": (str,),
}

_BOOL_LITERALS = {
    "TRUE": True,
    "true": True,
    "True": True,
    "T": True,
    "FALSE": False,
    "false": False,
    "False": False,
    "F": False,
}
_NULL_LITERALS = {"NULL", "None", "null"}
_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


class _Unparseable(ValueError):
    pass


@dataclass(frozen=True)
class ChunkOptions:
    """Typed chunk options.

    Recognized keys map to attributes; anything else lands in `extra` and is
    ignored by the engine.
    """

    eval: bool = True
    echo: bool = True
    cache: bool = False
    include: bool = True
    error: Optional[bool] = None
    fig_cap: Optional[str] = None
    tab_cap: Optional[str] = None
    fig_width: Optional[float] = None
    fig_height: Optional[float] = None
    results: str = "show"
    label: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def merged(self, overrides: Mapping[str, Any]) -> "ChunkOptions":
        changes = {_attr(k): v for k, v in overrides.items() if k in _RECOGNIZED}
        extra = dict(self.extra)
        extra.update({k: v for k, v in overrides.items() if k not in _RECOGNIZED})
        return replace(self, extra=extra, **changes)

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {k: getattr(self, _attr(k)) for k in _RECOGNIZED}
        out.update(self.extra)
        return out


def _attr(key: str) -> str:
    return key.replace(".", "_")


def parse_literal(raw: str) -> Any:
    """Parse a chunk option value as a typed literal.

    Accepts booleans, NULL, numbers and single/double quoted strings.
    Raises ValueError for anything else.
    """
    s = raw.strip()
    if not s:
        raise _Unparseable("empty value")
    if s in _BOOL_LITERALS:
        return _BOOL_LITERALS[s]
    if s in _NULL_LITERALS:
        return None
    if _NUMBER_RE.match(s):
        if re.match(r"^[+-]?\d+$", s):
            return int(s)
        return float(s)
    if len(s) >= 2 and s[0] == s[-1] and s[0] in {"'", '"'}:
        body = s[1:-1]
        # A bare quote inside means the literal was cut in the wrong place.
        if s[0] in body.replace("\\" + s[0], ""):
            raise _Unparseable(f"unbalanced quotes in {s}")
        return body.replace("\\" + s[0], s[0])
    raise _Unparseable(f"not a boolean, number or quoted string: {s}")


def split_options(text: str) -> list[str]:
    """Split a header on top-level commas, respecting quotes and brackets."""
    parts: list[str] = []
    buf: list[str] = []
    quote: str | None = None
    depth = 0
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            buf.append(ch)
            if ch == "\\" and i + 1 < len(text):
                buf.append(text[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in {"'", '"'}:
            quote = ch
            buf.append(ch)
        elif ch in "([{":
            depth += 1
            buf.append(ch)
        elif ch in ")]}":
            depth = max(0, depth - 1)
            buf.append(ch)
        elif ch == "," and depth == 0:
            parts.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
        i += 1
    # An unbalanced quote stays in the last piece; parse_literal reports it.
    parts.append("".join(buf))
    return [p.strip() for p in parts]


def coerce_option(chunk: str, key: str, value: Any) -> Any:
    """Check a parsed value against the recognized key's type."""
    expected = _RECOGNIZED.get(key)
    if expected is None or value is None:
        return value
    if isinstance(value, bool) and bool not in expected:
        raise MalformedOptionError(chunk, key, f"expected {expected[0].__name__}, got boolean")
    if not isinstance(value, expected):
        raise MalformedOptionError(chunk, key, f"expected {expected[0].__name__}, got {type(value).__name__}")
    if key == "results" and value not in RESULTS_MODES:
        raise MalformedOptionError(chunk, key, f"must be one of {list(RESULTS_MODES)}")
    if key in {"fig.width", "fig.height"}:
        return float(value)
    return value


def parse_option_pairs(chunk: str, pieces: list[str]) -> dict[str, Any]:
    """Turn `key=value` pieces into a typed mapping (recognized keys checked)."""
    out: dict[str, Any] = {}
    for piece in pieces:
        if not piece:
            continue
        if "=" not in piece:
            raise MalformedOptionError(chunk, piece, "expected key=value")
        key, raw = piece.split("=", 1)
        key = key.strip()
        if not key:
            raise MalformedOptionError(chunk, piece, "missing key")
        try:
            value = parse_literal(raw)
        except ValueError as e:
            raise MalformedOptionError(chunk, key, str(e)) from e
        out[key] = coerce_option(chunk, key, value)
    return out


def build_options(
    chunk: str, parsed: Mapping[str, Any], defaults: Mapping[str, Any] | None = None
) -> ChunkOptions:
    base = ChunkOptions()
    if defaults:
        base = base.merged({k: coerce_option("<chunk_defaults>", k, v) for k, v in defaults.items()})
    return base.merged(parsed)
