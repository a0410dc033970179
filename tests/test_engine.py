from __future__ import annotations

import ast
from typing import Any

import pytest

from litrender.document import parse_document
from litrender.errors import ChunkExecutionError, InlineExpressionError, UnknownEngineError
from litrender.execute import (
    ErrorOutput,
    EvaluatorRegistry,
    ExecutionContext,
    ExecutionEngine,
    PythonEvaluator,
    TableOutput,
    TextOutput,
    WarningOutput,
)
from litrender.execute.engine import ChunkResult
from litrender.execute.evaluator import assigned_names
from litrender.models import BindingPolicy, FailurePolicy, RenderOptions
from litrender.pipeline import render_text


class CountingEvaluator(PythonEvaluator):
    """PythonEvaluator that records what it was asked to run."""

    def __init__(self) -> None:
        self.executed: list[str] = []
        self.evaluated: list[str] = []

    def execute(self, code: str, context: ExecutionContext, **kwargs: Any):
        self.executed.append(code)
        return super().execute(code, context, **kwargs)

    def evaluate(self, expr: str, context: ExecutionContext) -> Any:
        self.evaluated.append(expr)
        return super().evaluate(expr, context)


def _registry(ev: PythonEvaluator) -> EvaluatorRegistry:
    reg = EvaluatorRegistry()
    reg.register("python", ev)
    return reg


def _chunks(result) -> dict[str, ChunkResult]:
    return {r.chunk.name: r for r in result.results if isinstance(r, ChunkResult)}


SAMPLE = """---
title: "Sample"
params:
  n: 50
---

```{python setup}
n = params["n"]
```

The sample size is `r n`.

```{python}
n = 30
```

After trimming, n is now `r n`.
"""


def test_inline_expressions_see_exactly_the_preceding_chunks() -> None:
    rendered = render_text(SAMPLE)
    assert "The sample size is 50." in rendered.text
    assert "After trimming, n is now 30." in rendered.text
    # Source order: the second statement comes after the first.
    assert rendered.text.index("is 50") < rendered.text.index("now 30")


def test_params_option_overrides_front_matter() -> None:
    rendered = render_text(SAMPLE, options=RenderOptions(params={"n": 7}))
    assert "The sample size is 7." in rendered.text


def test_each_chunk_runs_exactly_once_in_order() -> None:
    ev = CountingEvaluator()
    doc = parse_document("```{python a}\nx = 1\n```\n`r x`\n```{python b}\nx = x + 1\n```\n`r x`\n")
    result = ExecutionEngine(registry=_registry(ev)).run(doc)
    assert ev.executed == ["x = 1\n", "x = x + 1\n"]
    assert ev.evaluated == ["x", "x"]
    assert result.context["x"] == 2


def test_eval_false_chunk_is_shown_but_never_run() -> None:
    src = (
        "```{python data}\nx = 4.0\n```\n\n"
        "```{python model, eval=FALSE}\ny = 10*x^1.5\n```\n"
    )
    ev = CountingEvaluator()
    doc = parse_document(src)
    result = ExecutionEngine(registry=_registry(ev)).run(doc)

    assert ev.executed == ["x = 4.0\n"]
    assert "y" not in result.context
    assert _chunks(result)["model"].status == "skipped"
    assert _chunks(result)["model"].artifacts == []

    rendered = render_text(src, registry=_registry(CountingEvaluator()))
    assert "```python\ny = 10*x^1.5\n```" in rendered.text


def test_inline_reference_before_definition_fails_fast() -> None:
    src = "Value: `r z`.\n\n```{python define}\nz = 1\n```\n"
    ev = CountingEvaluator()
    with pytest.raises(InlineExpressionError) as ei:
        ExecutionEngine(registry=_registry(ev)).run(parse_document(src))
    assert ei.value.code == "z"
    assert ei.value.line == 1
    assert "NameError" in str(ei.value)
    # The chunk defining z never ran.
    assert ev.executed == []


def test_inline_failure_is_annotated_in_continue_mode() -> None:
    src = "Value: `r z`.\n\n```{python define}\nz = 1\n```\n"
    rendered = render_text(src, options=RenderOptions(failure_policy=FailurePolicy.CONTINUE))
    assert "Value: [inline error: NameError: name 'z' is not defined]." in rendered.text
    assert rendered.log["errors"]


FAILING = (
    "```{python first}\nok = True\n```\n\n"
    "```{python boom}\na = 1\nb = 2\n1 / 0\n```\n\n"
    "```{python after}\nlater = 3\n```\n"
)


def test_fail_fast_aborts_and_later_chunks_never_run() -> None:
    ev = CountingEvaluator()
    with pytest.raises(ChunkExecutionError) as ei:
        ExecutionEngine(registry=_registry(ev)).run(parse_document(FAILING))

    err = ei.value
    assert err.chunk_name == "boom"
    assert isinstance(err.underlying_cause, ZeroDivisionError)
    assert "Error in chunk 'boom'" in str(err)
    assert len(ev.executed) == 2
    assert "later = 3\n" not in ev.executed
    # Results collected before the failure are attached for the render log.
    assert [r.chunk.name for r in err.partial.results if isinstance(r, ChunkResult)] == ["first"]


def test_continue_annotates_failing_chunk_and_keeps_going() -> None:
    ev = CountingEvaluator()
    engine = ExecutionEngine(registry=_registry(ev), failure_policy=FailurePolicy.CONTINUE)
    result = engine.run(parse_document(FAILING))

    chunks = _chunks(result)
    assert chunks["boom"].status == "error"
    assert isinstance(chunks["boom"].artifacts[-1], ErrorOutput)
    assert chunks["after"].status == "executed"
    assert result.context["later"] == 3
    assert len(result.errors) == 1

    rendered = render_text(FAILING, options=RenderOptions(failure_policy=FailurePolicy.CONTINUE))
    assert "## Error in chunk 'boom': ZeroDivisionError: division by zero" in rendered.text


def test_binding_policy_keep_and_rollback() -> None:
    keep = ExecutionEngine(failure_policy=FailurePolicy.CONTINUE, binding_policy=BindingPolicy.KEEP)
    result = keep.run(parse_document(FAILING))
    assert result.context["a"] == 1 and result.context["b"] == 2

    rollback = ExecutionEngine(failure_policy=FailurePolicy.CONTINUE, binding_policy=BindingPolicy.ROLLBACK)
    result = rollback.run(parse_document(FAILING))
    assert "a" not in result.context
    assert "b" not in result.context
    assert result.context["ok"] is True


def test_chunk_error_option_overrides_policy() -> None:
    src = "```{python boom, error=TRUE}\n1 / 0\n```\n\n```{python after}\nlater = 1\n```\n"
    result = ExecutionEngine().run(parse_document(src))
    assert _chunks(result)["boom"].status == "error"
    assert result.context["later"] == 1

    src = "```{python boom, error=FALSE}\n1 / 0\n```\n"
    with pytest.raises(ChunkExecutionError):
        ExecutionEngine(failure_policy=FailurePolicy.CONTINUE).run(parse_document(src))


def test_unknown_language_is_a_chunk_failure() -> None:
    src = "```{julia fit}\nx = 1\n```\n"
    with pytest.raises(ChunkExecutionError) as ei:
        ExecutionEngine().run(parse_document(src))
    assert isinstance(ei.value.underlying_cause, UnknownEngineError)
    assert "julia" in str(ei.value)


def test_captured_output_kinds() -> None:
    src = (
        "```{python printed}\nprint('hello')\n1 + 2\n```\n"
        "```{python warned}\nimport warnings\nwarnings.warn('careful')\n```\n"
        "```{python frame}\nimport pandas as pd\npd.DataFrame({'a': [1, 2], 'b': ['x', 'y']})\n```\n"
        "```{python nothing}\nNone\n```\n"
    )
    result = ExecutionEngine().run(parse_document(src))
    chunks = _chunks(result)

    assert chunks["printed"].artifacts == [TextOutput("hello\n"), TextOutput("3")]
    assert chunks["warned"].artifacts == [WarningOutput("UserWarning: careful")]
    (table,) = chunks["frame"].artifacts
    assert isinstance(table, TableOutput)
    assert list(table.frame.columns) == ["a", "b"]
    assert chunks["nothing"].artifacts == []


def test_markdown_output_for_captured_kinds() -> None:
    src = (
        "```{python printed}\n1 + 2\n```\n"
        "```{python warned}\nimport warnings\nwarnings.warn('careful')\n```\n"
        "```{python frame}\nimport pandas as pd\npd.DataFrame({'a': [1, 2], 'b': ['x', 'y']})\n```\n"
    )
    text = render_text(src).text
    assert "```python\n1 + 2\n```\n\n```\n## 3\n```\n" in text
    assert "```\n## Warning: UserWarning: careful\n```\n" in text
    assert "| a | b |\n|---:|:---|\n| 1 | x |\n| 2 | y |\n" in text


def test_results_include_and_echo_options() -> None:
    src = (
        "```{python hidden, results=\"hide\"}\nprint('secret')\n```\n"
        "```{python raw, results=\"asis\"}\nprint('**bold**')\n```\n"
        "```{python quiet, include=FALSE}\nq = 5\nprint('invisible')\n```\n"
        "```{python noecho, echo=FALSE}\nprint('shown')\n```\n"
        "Quiet is `r q`.\n"
    )
    text = render_text(src).text

    assert "print('secret')" in text
    assert "## secret" not in text
    assert "**bold**\n\n" in text
    assert "## **bold**" not in text
    assert "q = 5" not in text
    assert "invisible" not in text
    assert "print('shown')" not in text
    assert "## shown" in text
    assert "Quiet is 5." in text


def test_inline_none_renders_empty() -> None:
    text = render_text("```{python a}\nv = None\n```\nvalue:`r v`.\n").text
    assert "value:." in text


def test_inline_tags_are_configurable() -> None:
    src = "```{python a}\nv = 1\n```\n`r v` and `py v`\n"
    text = render_text(src, options=RenderOptions(inline_tags=("py",))).text
    assert "`r v` and 1" in text


def test_assigned_names_cover_module_level_bindings() -> None:
    code = (
        "import os.path\n"
        "from math import floor as fl\n"
        "x = y = 1\n"
        "a, (b, c) = 1, (2, 3)\n"
        "for i in range(2):\n    pass\n"
        "def f(v):\n    local = v\n    global g\n    g = v\n"
        "class K:\n    attr = 1\n"
        "[inner for inner in range(2)]\n"
    )
    assert assigned_names(ast.parse(code)) == frozenset({"os", "fl", "x", "y", "a", "b", "c", "i", "f", "g", "K"})


def test_delta_records_rebinding_to_the_same_object() -> None:
    ctx = ExecutionContext({"x": 5, "keep": "same"})
    before = ctx.snapshot()
    result = PythonEvaluator().execute("x = 5\n", ctx)
    delta = ctx.delta(before, result.bound)
    assert delta.bound == {"x": 5}
    assert ctx.delta(before).bound == {}
