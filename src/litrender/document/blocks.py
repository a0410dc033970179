from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Union

from ..models import DocumentMeta
from .options import ChunkOptions


@dataclass(frozen=True)
class InlineExpr:
    """An inline expression marker inside a TextBlock.

    start/end are absolute offsets of the whole marker (backticks included)
    in the owning TextBlock.content; `code` is the expression text only.
    """

    code: str
    start: int
    end: int
    engine: str = "r"


@dataclass(frozen=True)
class TextBlock:
    content: str
    exprs: tuple[InlineExpr, ...] = ()
    line: int = 1


@dataclass(frozen=True)
class ChunkBlock:
    name: str
    language: str
    options: ChunkOptions
    code: str
    line: int = 1
    anonymous: bool = False


Block = Union[TextBlock, ChunkBlock]


@dataclass(frozen=True)
class Document:
    """Parsed literate document: front matter plus blocks in source order."""

    blocks: tuple[Block, ...]
    meta: DocumentMeta = field(default_factory=DocumentMeta)
    front_matter: str = ""

    def chunks(self) -> Iterator[ChunkBlock]:
        for b in self.blocks:
            if isinstance(b, ChunkBlock):
                yield b

    def chunk(self, name: str) -> ChunkBlock:
        for c in self.chunks():
            if c.name == name:
                return c
        raise KeyError(f"No chunk named '{name}'")
