"""Document assembly: artifact numbering, cross references and output formats."""

from .assembler import AssembledDocument, assemble
from .formats import HtmlWriter, MarkdownWriter, frame_to_markdown
from .numbering import Numbering, number_artifacts, resolve_refs

__all__ = [
    "AssembledDocument",
    "HtmlWriter",
    "MarkdownWriter",
    "Numbering",
    "assemble",
    "frame_to_markdown",
    "number_artifacts",
    "resolve_refs",
]
