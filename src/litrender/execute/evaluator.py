from __future__ import annotations

import ast
import io
import warnings
from contextlib import redirect_stderr, redirect_stdout
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import pandas as pd  # noqa: E402
from matplotlib.artist import Artist  # noqa: E402

from ..errors import EvaluationError, UnknownEngineError  # noqa: E402
from .artifacts import FigureOutput, OutputArtifact, TableOutput, TextOutput, WarningOutput  # noqa: E402
from .context import ExecutionContext  # noqa: E402


@dataclass(frozen=True)
class EvaluationResult:
    artifacts: list[OutputArtifact] = field(default_factory=list)
    # Names the code may bind in the shared namespace, reported even when
    # the new value is the very object the name already held.
    bound: frozenset[str] = frozenset()


class Evaluator(Protocol):
    """Runtime collaborator that actually runs chunk code.

    `execute` mutates `context` in place and returns the captured output, or
    raises EvaluationError carrying whatever was captured before the failure.
    `evaluate` computes a single inline expression.
    """

    def execute(
        self,
        code: str,
        context: ExecutionContext,
        *,
        label: str = "chunk",
        figsize: Optional[tuple[float, float]] = None,
    ) -> EvaluationResult: ...

    def evaluate(self, expr: str, context: ExecutionContext) -> Any: ...


def _is_plot_value(value: Any) -> bool:
    if isinstance(value, Artist):
        return True
    if isinstance(value, (list, tuple)) and value:
        return all(isinstance(v, Artist) for v in value)
    return False


_NESTED_SCOPES = (
    ast.FunctionDef,
    ast.AsyncFunctionDef,
    ast.ClassDef,
    ast.Lambda,
    ast.ListComp,
    ast.SetComp,
    ast.DictComp,
    ast.GeneratorExp,
)


def assigned_names(tree: ast.AST) -> frozenset[str]:
    """Module-level names a piece of code may bind.

    Covers assignment targets, imports, def/class names and names declared
    `global` inside nested functions. Locals of nested scopes are not
    included.
    """
    names: set[str] = set()

    def visit(node: ast.AST, top: bool) -> None:
        if isinstance(node, ast.Global):
            names.update(node.names)
        if top:
            if isinstance(node, ast.Name) and isinstance(node.ctx, ast.Store):
                names.add(node.id)
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                names.add(node.name)
            elif isinstance(node, (ast.Import, ast.ImportFrom)):
                for alias in node.names:
                    if alias.name != "*":
                        names.add(alias.asname or alias.name.split(".")[0])
        inner = top and not isinstance(node, _NESTED_SCOPES)
        for child in ast.iter_child_nodes(node):
            visit(child, inner)

    visit(tree, True)
    return frozenset(names)



def _collect_figures(label: str) -> list[FigureOutput]:
    out: list[FigureOutput] = []
    for i, num in enumerate(plt.get_fignums(), start=1):
        fig = plt.figure(num)
        buf = io.BytesIO()
        fig.savefig(buf, format="png", bbox_inches="tight")
        out.append(FigureOutput(filename=f"{label}-{i}.png", data=buf.getvalue()))
    plt.close("all")
    return out


class PythonEvaluator:
    """Runs Python chunk code against the shared namespace.

    Captures, in order: printed output (stdout, then stderr), warnings,
    the value of a trailing expression (DataFrame/Series -> table, anything
    else -> its repr; None and matplotlib artists are not shown) and every
    matplotlib figure left open by the chunk.
    """

    def execute(
        self,
        code: str,
        context: ExecutionContext,
        *,
        label: str = "chunk",
        figsize: Optional[tuple[float, float]] = None,
    ) -> EvaluationResult:
        try:
            tree = ast.parse(code, filename=f"<{label}>", mode="exec")
        except SyntaxError as e:
            raise EvaluationError(e) from e

        bound = assigned_names(tree)
        trailing: Optional[ast.Expression] = None
        if tree.body and isinstance(tree.body[-1], ast.Expr):
            trailing = ast.Expression(tree.body.pop().value)

        ns = context.namespace
        stdout = io.StringIO()
        stderr = io.StringIO()
        failure: Optional[BaseException] = None
        value: Any = None

        plt.close("all")
        rc = {"figure.figsize": figsize} if figsize else {}
        with warnings.catch_warnings(record=True) as caught, matplotlib.rc_context(rc):
            warnings.simplefilter("always")
            with redirect_stdout(stdout), redirect_stderr(stderr):
                try:
                    exec(compile(tree, f"<{label}>", "exec"), ns)
                    if trailing is not None:
                        value = eval(compile(trailing, f"<{label}>", "eval"), ns)
                except Exception as e:
                    failure = e
            figures = _collect_figures(label)

        artifacts: list[OutputArtifact] = []
        printed = stdout.getvalue() + stderr.getvalue()
        if printed:
            artifacts.append(TextOutput(printed))
        for w in caught:
            artifacts.append(WarningOutput(f"{w.category.__name__}: {w.message}"))
        if failure is None and value is not None and not _is_plot_value(value):
            if isinstance(value, pd.DataFrame):
                artifacts.append(TableOutput(value.copy()))
            elif isinstance(value, pd.Series):
                artifacts.append(TableOutput(value.to_frame()))
            else:
                artifacts.append(TextOutput(repr(value)))
        artifacts.extend(figures)

        if failure is not None:
            raise EvaluationError(failure, artifacts) from failure
        return EvaluationResult(artifacts=artifacts, bound=bound)

    def evaluate(self, expr: str, context: ExecutionContext) -> Any:
        try:
            return eval(compile(expr, "<inline>", "eval"), context.namespace)
        except Exception as e:
            raise EvaluationError(e) from e


class EvaluatorRegistry:
    """Maps chunk language tags (case-insensitive) to evaluators."""

    def __init__(self) -> None:
        self._evaluators: dict[str, Evaluator] = {}

    @classmethod
    def default(cls) -> "EvaluatorRegistry":
        reg = cls()
        py = PythonEvaluator()
        for name in ("python", "py", "python3"):
            reg.register(name, py)
        return reg

    def register(self, language: str, evaluator: Evaluator) -> None:
        if not language:
            raise ValueError("Language tag must be provided.")
        self._evaluators[language.lower()] = evaluator

    def get(self, language: str) -> Evaluator:
        ev = self._evaluators.get(language.lower())
        if ev is None:
            raise UnknownEngineError(language)
        return ev
