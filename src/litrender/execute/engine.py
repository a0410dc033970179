from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from ..document.blocks import ChunkBlock, Document, TextBlock
from ..document.inline import substitute
from ..errors import (
    CacheCorruptionError,
    ChunkExecutionError,
    EvaluationError,
    InlineExpressionError,
    RenderExecutionError,
    UnknownEngineError,
)
from ..log import get_logger
from ..models import BindingPolicy, ChunkRecord, FailurePolicy
from ..utils import chunk_file_stem
from .artifacts import AsIsOutput, ErrorOutput, OutputArtifact, TableOutput, TextOutput
from .cache import ChunkCache, UncacheableBindingError
from .context import ExecutionContext
from .evaluator import EvaluatorRegistry

logger = get_logger(__name__)

INLINE_ERROR_MARKER = "[inline error: {message}]"


@dataclass
class ChunkResult:
    chunk: ChunkBlock
    artifacts: list[OutputArtifact]
    status: str  # "executed" | "cached" | "skipped" | "error"
    error: Optional[str] = None
    duration_ms: float = 0.0


@dataclass
class TextResult:
    block: TextBlock
    content: str
    values: list[str] = field(default_factory=list)


BlockResult = Union[ChunkResult, TextResult]


@dataclass
class EngineResult:
    """Everything pass 1 of a render produced, in source order."""

    results: list[BlockResult]
    context: ExecutionContext
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cache_hits: list[str] = field(default_factory=list)
    cache_misses: list[str] = field(default_factory=list)

    def records(self) -> list[ChunkRecord]:
        out: list[ChunkRecord] = []
        for r in self.results:
            if isinstance(r, ChunkResult):
                out.append(
                    ChunkRecord(
                        name=r.chunk.name,
                        language=r.chunk.language,
                        line=r.chunk.line,
                        status=r.status,
                        artifacts=len(r.artifacts),
                        duration_ms=round(r.duration_ms, 3),
                        error=r.error,
                    )
                )
        return out


def format_inline(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


class ExecutionEngine:
    """Walks a document's blocks exactly once, in source order, against one
    ExecutionContext.

    Inline expressions of a TextBlock are evaluated when the walk reaches
    that block, so they see exactly the chunks that precede them.
    """

    def __init__(
        self,
        *,
        registry: EvaluatorRegistry | None = None,
        cache: ChunkCache | None = None,
        failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST,
        binding_policy: BindingPolicy = BindingPolicy.KEEP,
        default_language: str = "python",
    ) -> None:
        self.registry = registry or EvaluatorRegistry.default()
        self.cache = cache
        self.failure_policy = failure_policy
        self.binding_policy = binding_policy
        self.default_language = default_language

    def run(self, document: Document, context: ExecutionContext | None = None) -> EngineResult:
        ctx = context if context is not None else ExecutionContext()
        result = EngineResult(results=[], context=ctx)
        try:
            for block in document.blocks:
                if isinstance(block, ChunkBlock):
                    result.results.append(self._run_chunk(block, ctx, result))
                else:
                    result.results.append(self._run_text(block, ctx, result))
        except RenderExecutionError as e:
            e.partial = result
            raise
        return result

    # ---- chunks ----

    def _policy_for(self, chunk: ChunkBlock) -> FailurePolicy:
        if chunk.options.error is True:
            return FailurePolicy.CONTINUE
        if chunk.options.error is False:
            return FailurePolicy.FAIL_FAST
        return self.failure_policy

    def _run_chunk(self, chunk: ChunkBlock, ctx: ExecutionContext, result: EngineResult) -> ChunkResult:
        opts = chunk.options
        if not opts.eval:
            logger.debug("Chunk '%s' skipped (eval=false)", chunk.name)
            return ChunkResult(chunk=chunk, artifacts=[], status="skipped")

        started = time.perf_counter()

        if opts.cache and self.cache is not None:
            replayed = self._replay(chunk, ctx, result)
            if replayed is not None:
                replayed.duration_ms = (time.perf_counter() - started) * 1000.0
                return replayed
            result.cache_misses.append(chunk.name)

        before = ctx.snapshot()
        try:
            evaluator = self.registry.get(chunk.language)
            figsize = None
            if opts.fig_width or opts.fig_height:
                figsize = (opts.fig_width or 6.4, opts.fig_height or 4.8)
            evaluation = evaluator.execute(chunk.code, ctx, label=chunk_file_stem(chunk.name), figsize=figsize)
        except (EvaluationError, UnknownEngineError) as e:
            partial = e.artifacts if isinstance(e, EvaluationError) else []
            return self._fail_chunk(chunk, ctx, before, e, partial, started, result)

        artifacts = list(evaluation.artifacts)
        logger.info("Chunk '%s' executed (%d artifact(s))", chunk.name, len(artifacts))

        if opts.cache and self.cache is not None:
            try:
                self.cache.store(chunk.name, chunk.code, artifacts, ctx.delta(before, evaluation.bound))
            except UncacheableBindingError as e:
                msg = f"Chunk '{chunk.name}' not cached: {e}"
                logger.warning(msg)
                result.warnings.append(msg)

        return ChunkResult(
            chunk=chunk,
            artifacts=artifacts,
            status="executed",
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    def _replay(self, chunk: ChunkBlock, ctx: ExecutionContext, result: EngineResult) -> Optional[ChunkResult]:
        assert self.cache is not None
        try:
            entry = self.cache.load(chunk.name)
            if entry is None:
                return None
            if entry.chunk_code != chunk.code:
                logger.info("Cache for chunk '%s' invalidated (code changed)", chunk.name)
                return None
            delta = entry.context_delta()
        except CacheCorruptionError as e:
            msg = f"Cache entry for chunk '{chunk.name}' is corrupt; re-executing ({e})"
            logger.warning(msg)
            result.warnings.append(msg)
            return None

        ctx.apply(delta)
        result.cache_hits.append(chunk.name)
        logger.info("Chunk '%s' replayed from cache", chunk.name)
        return ChunkResult(chunk=chunk, artifacts=list(entry.artifacts), status="cached")

    def _fail_chunk(
        self,
        chunk: ChunkBlock,
        ctx: ExecutionContext,
        before: dict[str, Any],
        cause: BaseException,
        partial: list[OutputArtifact],
        started: float,
        result: EngineResult,
    ) -> ChunkResult:
        if self.binding_policy is BindingPolicy.ROLLBACK:
            ctx.restore(before)

        err = ChunkExecutionError(chunk.name, cause)
        result.errors.append(str(err))
        if self._policy_for(chunk) is FailurePolicy.FAIL_FAST:
            logger.error("%s; aborting render", err)
            raise err from cause

        logger.warning("%s; continuing", err)
        artifacts = list(partial) + [ErrorOutput(chunk=chunk.name, message=str(err))]
        return ChunkResult(
            chunk=chunk,
            artifacts=artifacts,
            status="error",
            error=str(err),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    # ---- inline expressions ----

    def _run_text(self, block: TextBlock, ctx: ExecutionContext, result: EngineResult) -> TextResult:
        if not block.exprs:
            return TextResult(block=block, content=block.content)

        values: list[str] = []
        for expr in block.exprs:
            line = block.line + block.content.count("\n", 0, expr.start)
            try:
                evaluator = self.registry.get(self.default_language)
                values.append(format_inline(evaluator.evaluate(expr.code, ctx)))
            except (EvaluationError, UnknownEngineError) as e:
                err = InlineExpressionError(expr.code, line, e)
                result.errors.append(str(err))
                if self.failure_policy is FailurePolicy.FAIL_FAST:
                    logger.error("%s; aborting render", err)
                    raise err from e
                logger.warning("%s; continuing", err)
                underlying = e.cause if isinstance(e, EvaluationError) else e
                values.append(INLINE_ERROR_MARKER.format(message=f"{type(underlying).__name__}: {underlying}"))

        return TextResult(block=block, content=substitute(block.content, block.exprs, values), values=values)


def visible_artifacts(result: ChunkResult) -> list[OutputArtifact]:
    """Apply `include` and `results` to a chunk's captured output."""
    opts = result.chunk.options
    if not opts.include:
        # Errors are never hidden.
        return [a for a in result.artifacts if isinstance(a, ErrorOutput)]
    out: list[OutputArtifact] = []
    for a in result.artifacts:
        if isinstance(a, (TextOutput, TableOutput)) and opts.results == "hide":
            continue
        if isinstance(a, TextOutput) and opts.results == "asis":
            out.append(AsIsOutput(a.text))
            continue
        out.append(a)
    return out

