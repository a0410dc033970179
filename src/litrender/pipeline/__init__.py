"""Render orchestration: parse -> execute -> assemble -> write."""

from .context import RenderContext
from .run import RenderedText, RenderResult, default_output_path, render_document, render_text

__all__ = ["RenderContext", "RenderResult", "RenderedText", "default_output_path", "render_document", "render_text"]
