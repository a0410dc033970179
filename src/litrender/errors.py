from __future__ import annotations

from typing import Any


class LitRenderError(Exception):
    """Base class for every error raised by litrender."""


# ---- Parse-time errors (always fatal) ----


class DocumentParseError(LitRenderError, ValueError):
    """Raised when a source document violates the chunk/front matter syntax."""


class MalformedOptionError(DocumentParseError):
    def __init__(self, chunk: str, key: str, detail: str = "") -> None:
        self.chunk = chunk
        self.key = key
        msg = f"Malformed option '{key}' in chunk '{chunk}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class DuplicateChunkNameError(DocumentParseError):
    def __init__(self, name: str, first_line: int, second_line: int) -> None:
        self.name = name
        self.first_line = first_line
        self.second_line = second_line
        super().__init__(
            f"Duplicate chunk name '{name}' (line {second_line}; first defined on line {first_line})"
        )


class UnterminatedChunkError(DocumentParseError):
    def __init__(self, name: str, line: int) -> None:
        self.name = name
        self.line = line
        super().__init__(f"Chunk '{name}' opened on line {line} is never closed")


class MalformedFrontMatterError(DocumentParseError):
    """Front matter is not valid YAML or is not a mapping."""


# ---- Run-time errors ----


class EvaluationError(LitRenderError):
    """Raised by an evaluator when the code it runs fails.

    `artifacts` holds whatever output was captured before the failure point
    so the engine can still show it when annotating.
    """

    def __init__(self, cause: BaseException, artifacts: list[Any] | None = None) -> None:
        self.cause = cause
        self.artifacts = list(artifacts or [])
        super().__init__(f"{type(cause).__name__}: {cause}")


class UnknownEngineError(LitRenderError, LookupError):
    def __init__(self, language: str) -> None:
        self.language = language
        super().__init__(f"No evaluator registered for language '{language}'")


class RenderExecutionError(LitRenderError):
    """Base class for failures while executing chunks or inline expressions."""

    # EngineResult collected up to the failure, attached by the engine.
    partial: Any = None

    def __init__(self, message: str, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(message)


class ChunkExecutionError(RenderExecutionError):
    def __init__(self, chunk_name: str, cause: BaseException) -> None:
        self.chunk_name = chunk_name
        underlying = cause.cause if isinstance(cause, EvaluationError) else cause
        super().__init__(
            f"Error in chunk '{chunk_name}': {type(underlying).__name__}: {underlying}", cause
        )

    @property
    def underlying_cause(self) -> BaseException:
        if isinstance(self.cause, EvaluationError):
            return self.cause.cause
        return self.cause


class InlineExpressionError(RenderExecutionError):
    def __init__(self, code: str, line: int, cause: BaseException) -> None:
        self.code = code
        self.line = line
        underlying = cause.cause if isinstance(cause, EvaluationError) else cause
        super().__init__(
            f"Error in inline expression `{code}` (line {line}): {type(underlying).__name__}: {underlying}",
            cause,
        )


# ---- Cache ----


class CacheCorruptionError(LitRenderError):
    """A stored cache entry cannot be deserialized. Treated as a cache miss."""


class RenderLockedError(LitRenderError):
    """Another render of the same document holds the cache lock."""
