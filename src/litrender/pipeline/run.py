from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..assemble import AssembledDocument, assemble
from ..document import Document, parse_document
from ..errors import RenderExecutionError
from ..execute import ChunkCache, EngineResult, EvaluatorRegistry, ExecutionContext, ExecutionEngine
from ..log import get_logger
from ..models import OutputFormat, RenderManifest, RenderOptions
from ..utils import now_iso, safe_slug, sha256_text, write_json
from .context import RenderContext

logger = get_logger(__name__)


@dataclass(frozen=True)
class RenderResult:
    """Return type for file renders."""

    source: Path
    output: Path
    render_log: Path
    figures_dir: Optional[Path]
    output_format: OutputFormat
    engine: EngineResult
    assembled: AssembledDocument

    def manifest(self) -> RenderManifest:
        return RenderManifest(
            source=str(self.source),
            output=str(self.output),
            render_log=str(self.render_log),
            figures_dir=str(self.figures_dir) if self.figures_dir else None,
        )


@dataclass(frozen=True)
class RenderedText:
    """Return type for in-memory renders (nothing is written to disk)."""

    text: str
    output_format: OutputFormat
    log: dict[str, Any] = field(default_factory=dict)
    assembled: Optional[AssembledDocument] = None


def resolve_format(document: Document, options: RenderOptions) -> OutputFormat:
    return options.output_format or document.meta.output_format_hint() or OutputFormat.MARKDOWN


def default_output_path(source: Path, fmt: OutputFormat) -> Path:
    out = source.with_suffix(fmt.suffix)
    if out == source:
        out = source.with_name(f"{source.stem}.rendered{fmt.suffix}")
    return out


def _initial_bindings(document: Document, options: RenderOptions) -> dict[str, Any]:
    params = dict(document.meta.params)
    params.update(options.params)
    return {"params": params} if params else {}


def _build_log(
    *,
    source: str,
    text: str,
    fmt: OutputFormat,
    options: RenderOptions,
    executed: Optional[EngineResult],
    assembled: Optional[AssembledDocument],
    cache: Optional[ChunkCache],
    failure: Optional[BaseException] = None,
    render_id: Optional[str] = None,
) -> dict[str, Any]:
    """Deterministic audit trail for one render (render_log.json)."""

    log: dict[str, Any] = {
        "source": source,
        "source_sha256": sha256_text(text),
        "render_id": render_id,
        "created_at": now_iso(),
        "status": "failed" if failure is not None else "ok",
        "output_format": fmt.value,
        "failure_policy": options.failure_policy.value,
        "binding_policy": options.binding_policy.value,
        "chunks": [],
        "warnings": [],
        "errors": [],
        "cache": {"dir": str(cache.directory) if cache else None, "hits": [], "misses": []},
        "unresolved_refs": [],
        "figures": [],
    }
    if executed is not None:
        log["chunks"] = [r.model_dump() for r in executed.records()]
        log["warnings"] = list(executed.warnings)
        log["errors"] = list(executed.errors)
        log["cache"]["hits"] = list(executed.cache_hits)
        log["cache"]["misses"] = list(executed.cache_misses)
    if assembled is not None:
        log["unresolved_refs"] = list(assembled.unresolved_refs)
        log["warnings"].extend(f"Unresolved cross reference '{k}'" for k in assembled.unresolved_refs)
        log["figures"] = [f.filename for f in assembled.figures]
    if failure is not None and str(failure) not in log["errors"]:
        log["errors"].append(str(failure))
    return log


def _execute(
    document: Document,
    *,
    options: RenderOptions,
    registry: Optional[EvaluatorRegistry],
    cache: Optional[ChunkCache],
    figures_dir_name: str,
) -> tuple[EngineResult, AssembledDocument, OutputFormat]:
    fmt = resolve_format(document, options)
    engine = ExecutionEngine(
        registry=registry,
        cache=cache,
        failure_policy=options.failure_policy,
        binding_policy=options.binding_policy,
        default_language=options.default_language,
    )
    # The context lives for exactly one render.
    context = ExecutionContext(_initial_bindings(document, options))
    lock = cache.lock(options.lock_timeout) if cache is not None else contextlib.nullcontext()
    with lock:
        executed = engine.run(document, context)
    assembled = assemble(document, executed, output_format=fmt, figures_dir=figures_dir_name)
    return executed, assembled, fmt


def render_document(
    source: Path,
    *,
    output: Optional[Path] = None,
    options: Optional[RenderOptions] = None,
    registry: Optional[EvaluatorRegistry] = None,
) -> RenderResult:
    """Render a literate source file.

    Writes the output document, its figures and <stem>.render_log.json next
    to the output. Parse errors are raised before anything executes (and
    before anything is written). On a fail-fast execution error the render
    log is still written, marked failed, and the error is re-raised.
    """

    opts = options or RenderOptions()
    text = source.read_text(encoding="utf-8")
    document = parse_document(text, inline_tags=opts.inline_tags)
    fmt = resolve_format(document, opts)
    out_path = output or default_output_path(source, fmt)
    ctx = RenderContext.create(source=source, output_path=out_path, figures_dir_name=opts.figures_dir_name)
    ctx.output_dir.mkdir(parents=True, exist_ok=True)

    cache = None
    if opts.cache_dir is not None and opts.use_cache:
        cache = ChunkCache.for_source(opts.cache_dir, source)

    logger.info("Rendering %s -> %s (%s)", source, out_path, fmt.value)
    try:
        executed, assembled, fmt = _execute(
            document, options=opts, registry=registry, cache=cache, figures_dir_name=opts.figures_dir_name
        )
    except RenderExecutionError as e:
        partial = e.partial if isinstance(e.partial, EngineResult) else None
        write_json(
            ctx.render_log_path(),
            _build_log(
                source=str(source),
                text=text,
                fmt=fmt,
                options=opts,
                executed=partial,
                assembled=None,
                cache=cache,
                failure=e,
                render_id=ctx.render_id,
            ),
        )
        raise

    figures_dir: Optional[Path] = None
    if assembled.figures:
        figures_dir = ctx.figures_dir()
        figures_dir.mkdir(parents=True, exist_ok=True)
        for fig in assembled.figures:
            (figures_dir / fig.filename).write_bytes(fig.data)

    out_path.write_text(assembled.text, encoding="utf-8")
    write_json(
        ctx.render_log_path(),
        _build_log(
            source=str(source),
            text=text,
            fmt=fmt,
            options=opts,
            executed=executed,
            assembled=assembled,
            cache=cache,
            render_id=ctx.render_id,
        ),
    )
    logger.info("Wrote %s", out_path)

    return RenderResult(
        source=source,
        output=out_path,
        render_log=ctx.render_log_path(),
        figures_dir=figures_dir,
        output_format=fmt,
        engine=executed,
        assembled=assembled,
    )


def render_text(
    text: str,
    *,
    options: Optional[RenderOptions] = None,
    registry: Optional[EvaluatorRegistry] = None,
    document_name: str = "document",
) -> RenderedText:
    """Render source text in memory; used by the preview UI and tests.

    Caching is keyed by `document_name` when `options.cache_dir` is set.
    """

    opts = options or RenderOptions()
    document = parse_document(text, inline_tags=opts.inline_tags)
    cache = None
    if opts.cache_dir is not None and opts.use_cache:
        cache = ChunkCache(opts.cache_dir, safe_slug(document_name))
    executed, assembled, fmt = _execute(
        document, options=opts, registry=registry, cache=cache, figures_dir_name=opts.figures_dir_name
    )
    log = _build_log(
        source=document_name,
        text=text,
        fmt=fmt,
        options=opts,
        executed=executed,
        assembled=assembled,
        cache=cache,
    )
    return RenderedText(text=assembled.text, output_format=fmt, log=log, assembled=assembled)
