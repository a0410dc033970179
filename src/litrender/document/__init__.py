"""Literate source parsing: front matter, text blocks, chunks and inline markers."""

from .blocks import Block, ChunkBlock, Document, InlineExpr, TextBlock
from .inline import find_inline_exprs, substitute
from .options import ChunkOptions
from .parser import parse_document, parse_file

__all__ = [
    "Block",
    "ChunkBlock",
    "ChunkOptions",
    "Document",
    "InlineExpr",
    "TextBlock",
    "find_inline_exprs",
    "parse_document",
    "parse_file",
    "substitute",
]
