from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class OutputFormat(str, Enum):
    """
    Target formats for the assembled document.

    - MARKDOWN: Markdown stream (front matter re-emitted) for pandoc & co.
    - HTML: standalone HTML page; narrative markup is passed through as-is.
    """
    MARKDOWN = "markdown"
    HTML = "html"

    @property
    def suffix(self) -> str:
        return ".md" if self is OutputFormat.MARKDOWN else ".html"


class FailurePolicy(str, Enum):
    """
    What a failing chunk or inline expression does to the render.

    - FAIL_FAST: abort the render and surface the chunk name + cause
    - CONTINUE: annotate the failing slot with an error marker and keep going
    """
    FAIL_FAST = "fail_fast"
    CONTINUE = "continue"


class BindingPolicy(str, Enum):
    """
    What happens to bindings a failing chunk already set.

    - KEEP: partial bindings stay visible to later chunks
    - ROLLBACK: the context is restored to its state before the chunk ran
    """
    KEEP = "keep"
    ROLLBACK = "rollback"


class DocumentMeta(BaseModel):
    """
    Front matter of a literate document.

    Unknown keys are preserved (extra="allow") so they can be re-emitted.
    params: initial bindings exposed to chunks as `params`
    chunk_defaults: document-wide chunk option defaults
    """
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    author: Optional[Any] = None
    date: Optional[Any] = None
    # Either a string ("html_document") or an R Markdown style mapping
    # ({"html_document": {...}}); only the name is used.
    output: Optional[Any] = None
    params: dict[str, Any] = Field(default_factory=dict)
    chunk_defaults: dict[str, Any] = Field(default_factory=dict)

    def output_format_hint(self) -> Optional[OutputFormat]:
        out = self.output
        if isinstance(out, dict) and out:
            out = next(iter(out))
        if not isinstance(out, str) or not out.strip():
            return None
        name = out.strip().lower()
        if "html" in name:
            return OutputFormat.HTML
        # md_document, pdf_document, word_document...: all get the Markdown
        # stream that an external converter consumes.
        return OutputFormat.MARKDOWN


class RenderOptions(BaseModel):
    """
    Settings for one render invocation.

    output_format: None means "use front matter `output`, else markdown"
    cache_dir: root of the chunk cache; None disables caching entirely
    inline_tags: language tags recognized inside inline markers
    params: overrides merged over front matter params
    lock_timeout: seconds to wait for another render of the same document
    """
    output_format: Optional[OutputFormat] = None
    failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST
    binding_policy: BindingPolicy = BindingPolicy.KEEP
    cache_dir: Optional[Path] = None
    use_cache: bool = True
    figures_dir_name: str = "figures"
    inline_tags: tuple[str, ...] = ("r", "py")
    default_language: str = "python"
    params: dict[str, Any] = Field(default_factory=dict)
    lock_timeout: float = 30.0


class ChunkRecord(BaseModel):
    """One entry of render_log.json `chunks`."""
    name: str
    language: str
    line: int
    status: str  # "executed" | "cached" | "skipped" | "error"
    artifacts: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None


class RenderManifest(BaseModel):
    """
    Paths produced by `litrender render`.

    This is the contract a viewer (CLI, preview UI) relies on.
    """
    source: str
    output: str
    render_log: str
    figures_dir: Optional[str] = None
    cache_dir: Optional[str] = None
    created_at: str = Field(default_factory=lambda: datetime.utcnow().isoformat())
