from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from ..errors import DuplicateChunkNameError, MalformedFrontMatterError, UnterminatedChunkError
from ..models import DocumentMeta
from .blocks import Block, ChunkBlock, Document, TextBlock
from .inline import find_inline_exprs
from .options import build_options, parse_option_pairs, split_options

# ```{python name, key=value}
_CHUNK_OPEN_RE = re.compile(r"^ {0,3}(?P<ticks>`{3,})\s*\{(?P<lang>[A-Za-z_][\w.+-]*)(?P<rest>.*)\}\s*$")
_CHUNK_CLOSE_RE = re.compile(r"^ {0,3}(?P<ticks>`{3,})\s*$")
_PLAIN_FENCE_RE = re.compile(r"^ {0,3}(?P<ticks>`{3,}|~{3,})")
_FENCE_CLOSE_RE = re.compile(r"^ {0,3}(?P<ticks>`{3,}|~{3,})\s*$")
_FRONT_MATTER_CLOSE = {"---", "..."}

ANONYMOUS_PREFIX = "unnamed-chunk-"


@dataclass
class _RawChunk:
    language: str
    name: str | None
    options: dict[str, Any]
    code_lines: list[str]
    line: int
    ticks: int


def parse_front_matter(lines: list[str]) -> tuple[DocumentMeta, str, int]:
    """Split off a leading YAML block.

    Returns (meta, raw front matter text, number of lines consumed). A
    leading `---` without a closing delimiter is not front matter.
    """
    if not lines or lines[0].rstrip("\r\n") != "---":
        return DocumentMeta(), "", 0
    for idx in range(1, len(lines)):
        if lines[idx].rstrip("\r\n") in _FRONT_MATTER_CLOSE:
            raw = "".join(lines[: idx + 1])
            body = "".join(lines[1:idx])
            try:
                obj = yaml.safe_load(body) if body.strip() else {}
            except yaml.YAMLError as e:
                raise MalformedFrontMatterError(f"Front matter is not valid YAML: {e}") from e
            if obj is None:
                obj = {}
            if not isinstance(obj, dict):
                raise MalformedFrontMatterError("Front matter must be a YAML mapping.")
            try:
                meta = DocumentMeta(**{str(k): v for k, v in obj.items()})
            except ValidationError as e:
                raise MalformedFrontMatterError(f"Invalid front matter: {e}") from e
            return meta, raw, idx + 1
    return DocumentMeta(), "", 0


def _parse_header(rest: str, line: int) -> tuple[str | None, dict[str, Any]]:
    pieces = [p for p in split_options(rest.lstrip(" ,")) if p]
    name: str | None = None
    if pieces and "=" not in pieces[0]:
        name = pieces[0].strip().strip("'\"")
        pieces = pieces[1:]
    label_for_errors = name or f"<chunk at line {line}>"
    opts = parse_option_pairs(label_for_errors, pieces)
    if name is None and isinstance(opts.get("label"), str) and opts["label"]:
        name = opts["label"]
    return name, opts


def parse_document(text: str, *, inline_tags: Iterable[str] = ("r", "py")) -> Document:
    """Parse literate source text into a Document.

    Fails before anything executes on malformed options, duplicate chunk
    names, unterminated chunks or malformed front matter.
    """

    tags = tuple(inline_tags)
    lines = text.splitlines(keepends=True)
    meta, front_raw, consumed = parse_front_matter(lines)

    items: list[Any] = []  # (text, line) tuples or _RawChunk
    text_buf: list[str] = []
    text_start = consumed + 1
    current: _RawChunk | None = None
    plain_fence: str | None = None

    for idx in range(consumed, len(lines)):
        raw = lines[idx]
        lineno = idx + 1
        stripped = raw.rstrip("\r\n")

        if current is not None:
            m = _CHUNK_CLOSE_RE.match(stripped)
            if m and len(m.group("ticks")) >= current.ticks:
                items.append(current)
                current = None
            else:
                current.code_lines.append(raw)
            continue

        if plain_fence is None:
            m = _CHUNK_OPEN_RE.match(stripped)
            if m:
                if text_buf:
                    items.append(("".join(text_buf), text_start))
                    text_buf = []
                name, opts = _parse_header(m.group("rest"), lineno)
                current = _RawChunk(
                    language=m.group("lang"),
                    name=name,
                    options=opts,
                    code_lines=[],
                    line=lineno,
                    ticks=len(m.group("ticks")),
                )
                continue
            m = _PLAIN_FENCE_RE.match(stripped)
            if m:
                plain_fence = m.group("ticks")
        else:
            # Chunk headers inside a plain fence are shown, not run.
            m = _FENCE_CLOSE_RE.match(stripped)
            if m and m.group("ticks").startswith(plain_fence):
                plain_fence = None

        if not text_buf:
            text_start = lineno
        text_buf.append(raw)

    if current is not None:
        raise UnterminatedChunkError(current.name or f"<chunk at line {current.line}>", current.line)
    if text_buf:
        items.append(("".join(text_buf), text_start))

    blocks = _build_blocks(items, meta, tags)
    return Document(blocks=tuple(blocks), meta=meta, front_matter=front_raw)


def _build_blocks(items: list[Any], meta: DocumentMeta, tags: tuple[str, ...]) -> list[Block]:
    seen: dict[str, int] = {}
    for it in items:
        if isinstance(it, _RawChunk) and it.name:
            if it.name in seen:
                raise DuplicateChunkNameError(it.name, seen[it.name], it.line)
            seen[it.name] = it.line

    blocks: list[Block] = []
    counter = 0
    for it in items:
        if isinstance(it, _RawChunk):
            anonymous = not it.name
            name = it.name
            if anonymous:
                counter += 1
                while f"{ANONYMOUS_PREFIX}{counter}" in seen:
                    counter += 1
                name = f"{ANONYMOUS_PREFIX}{counter}"
            assert name is not None
            options = build_options(name, it.options, meta.chunk_defaults)
            blocks.append(
                ChunkBlock(
                    name=name,
                    language=it.language,
                    options=options,
                    code="".join(it.code_lines),
                    line=it.line,
                    anonymous=anonymous,
                )
            )
        else:
            content, line = it
            blocks.append(TextBlock(content=content, exprs=tuple(find_inline_exprs(content, tags)), line=line))
    return blocks


def parse_file(path: Path, *, inline_tags: Iterable[str] = ("r", "py")) -> Document:
    return parse_document(path.read_text(encoding="utf-8"), inline_tags=inline_tags)
