"""Chunk execution: evaluators, the shared context, the chunk cache and the engine."""

from .artifacts import AsIsOutput, ErrorOutput, FigureOutput, OutputArtifact, TableOutput, TextOutput, WarningOutput
from .cache import CacheEntry, ChunkCache, RenderLock
from .context import ContextDelta, ExecutionContext
from .engine import ChunkResult, EngineResult, ExecutionEngine, TextResult
from .evaluator import EvaluationResult, Evaluator, EvaluatorRegistry, PythonEvaluator

__all__ = [
    "AsIsOutput",
    "CacheEntry",
    "ChunkCache",
    "ChunkResult",
    "ContextDelta",
    "EngineResult",
    "ErrorOutput",
    "EvaluationResult",
    "Evaluator",
    "EvaluatorRegistry",
    "ExecutionContext",
    "ExecutionEngine",
    "FigureOutput",
    "OutputArtifact",
    "PythonEvaluator",
    "RenderLock",
    "TableOutput",
    "TextOutput",
    "TextResult",
    "WarningOutput",
]
