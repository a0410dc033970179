"""litrender: render literate documents (narrative + executable chunks)."""

from .errors import (
    CacheCorruptionError,
    ChunkExecutionError,
    DocumentParseError,
    DuplicateChunkNameError,
    InlineExpressionError,
    LitRenderError,
    MalformedFrontMatterError,
    MalformedOptionError,
    UnterminatedChunkError,
)
from .models import BindingPolicy, FailurePolicy, OutputFormat, RenderOptions
from .pipeline import render_document, render_text

__version__ = "0.1.0"

__all__ = [
    "BindingPolicy",
    "CacheCorruptionError",
    "ChunkExecutionError",
    "DocumentParseError",
    "DuplicateChunkNameError",
    "FailurePolicy",
    "InlineExpressionError",
    "LitRenderError",
    "MalformedFrontMatterError",
    "MalformedOptionError",
    "OutputFormat",
    "RenderOptions",
    "UnterminatedChunkError",
    "render_document",
    "render_text",
]
