from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from litrender.errors import CacheCorruptionError, RenderLockedError
from litrender.execute import ChunkCache, EvaluatorRegistry, ExecutionContext, PythonEvaluator, RenderLock
from litrender.execute.context import ContextDelta
from litrender.models import RenderOptions
from litrender.pipeline import render_text
from litrender.utils import chunk_file_stem


class CountingEvaluator(PythonEvaluator):
    def __init__(self) -> None:
        self.executed: list[str] = []

    def execute(self, code: str, context: ExecutionContext, **kwargs: Any):
        self.executed.append(code)
        return super().execute(code, context, **kwargs)


def _render(text: str, cache_dir: Path) -> tuple[Any, CountingEvaluator]:
    ev = CountingEvaluator()
    reg = EvaluatorRegistry()
    reg.register("python", ev)
    rendered = render_text(text, options=RenderOptions(cache_dir=cache_dir), registry=reg, document_name="doc")
    return rendered, ev


CACHED = """```{python setup, cache=TRUE}
import math
base = math.sqrt(16)
print("computed")
```

Floor is `r math.floor(base)`.
"""


def test_second_render_replays_without_executing(tmp_path: Path) -> None:
    first, ev1 = _render(CACHED, tmp_path)
    assert ev1.executed == [CACHED.split("\n", 1)[1].split("```", 1)[0]]
    assert first.log["cache"]["misses"] == ["setup"]

    second, ev2 = _render(CACHED, tmp_path)
    assert ev2.executed == []
    assert second.log["cache"]["hits"] == ["setup"]
    # The module binding is re-imported; output is identical.
    assert "Floor is 4." in second.text
    assert second.text == first.text
    assert [c["status"] for c in second.log["chunks"]] == ["cached"]


def test_code_change_invalidates_entry(tmp_path: Path) -> None:
    _render(CACHED, tmp_path)
    changed = CACHED.replace("sqrt(16)", "sqrt(25)")
    rendered, ev = _render(changed, tmp_path)
    assert len(ev.executed) == 1
    assert "Floor is 5." in rendered.text

    # The new code is now the cached version.
    _, ev_again = _render(changed, tmp_path)
    assert ev_again.executed == []


def test_corrupt_entry_is_a_miss_and_gets_overwritten(tmp_path: Path) -> None:
    _render(CACHED, tmp_path)
    cache = ChunkCache(tmp_path, "doc")
    cache.path_for("setup").write_bytes(b"not a pickle")

    rendered, ev = _render(CACHED, tmp_path)
    assert len(ev.executed) == 1
    assert "Floor is 4." in rendered.text
    assert any("corrupt" in w for w in rendered.log["warnings"])

    entry = cache.load("setup")
    assert entry is not None
    assert entry.chunk_name == "setup"


def test_load_rejects_foreign_layout(tmp_path: Path) -> None:
    import pickle

    cache = ChunkCache(tmp_path, "doc")
    path = cache.path_for("setup")
    path.parent.mkdir(parents=True)
    path.write_bytes(pickle.dumps({"version": 999}))
    with pytest.raises(CacheCorruptionError):
        cache.load("setup")


def test_eval_false_chunk_writes_no_entry(tmp_path: Path) -> None:
    src = "```{python skipped, eval=FALSE, cache=TRUE}\nx = 1\n```\n"
    _, ev = _render(src, tmp_path)
    assert ev.executed == []
    assert ChunkCache(tmp_path, "doc").entries() == []


def test_unserializable_binding_is_not_cached(tmp_path: Path) -> None:
    src = "```{python helpers, cache=TRUE}\ndef double(v):\n    return v * 2\n```\n\n`r double(21)`\n"
    rendered, _ = _render(src, tmp_path)
    assert "42" in rendered.text
    assert any("not cached" in w for w in rendered.log["warnings"])
    assert ChunkCache(tmp_path, "doc").entries() == []

    # Nothing stored, so the next render executes again.
    _, ev = _render(src, tmp_path)
    assert len(ev.executed) == 1


def test_clear_forces_re_execution(tmp_path: Path) -> None:
    _render(CACHED, tmp_path)
    cache = ChunkCache(tmp_path, "doc")
    assert cache.entries() == ["setup"]
    assert cache.clear() == 1
    assert cache.entries() == []

    _, ev = _render(CACHED, tmp_path)
    assert len(ev.executed) == 1


def test_store_and_load_round_trip_bindings(tmp_path: Path) -> None:
    import json

    cache = ChunkCache(tmp_path, "doc")
    cache.store("c", "code\n", [], ContextDelta(bound={"json": json, "n": 3}, removed=("gone",)))
    delta = cache.load("c").context_delta()
    assert delta.bound["json"] is json
    assert delta.bound["n"] == 3
    assert delta.removed == ("gone",)


def test_render_lock_times_out_while_held(tmp_path: Path) -> None:
    path = tmp_path / "doc" / ".lock"
    with RenderLock(path, timeout=1.0):
        with pytest.raises(RenderLockedError):
            RenderLock(path, timeout=0.1, poll=0.01).acquire()
    assert not path.exists()


def test_stale_render_lock_is_reclaimed(tmp_path: Path) -> None:
    path = tmp_path / "doc" / ".lock"
    path.parent.mkdir(parents=True)
    path.write_text("999999999", encoding="utf-8")
    lock = RenderLock(path, timeout=0.5, poll=0.01)
    lock.acquire()
    try:
        assert path.read_text(encoding="utf-8").strip().isdigit()
        assert path.read_text(encoding="utf-8").strip() != "999999999"
    finally:
        lock.release()


def test_chunk_file_stem_keeps_distinct_names_apart() -> None:
    assert chunk_file_stem("setup") == "setup"
    stems = {chunk_file_stem(n) for n in ["fit model", "fit_model", "a/b", "a_b", "Fit_model"]}
    assert len(stems) == 5
    assert chunk_file_stem("fit model").startswith("fit_model-")


def test_chunk_names_that_sanitize_alike_are_cached_separately(tmp_path: Path) -> None:
    src = (
        "```{python fit model, cache=TRUE}\na = 1\n```\n\n"
        "```{python fit_model, cache=TRUE}\nb = 2\n```\n\n"
        "`r a + b`\n"
    )
    _render(src, tmp_path)
    rendered, ev = _render(src, tmp_path)

    assert ev.executed == []
    assert rendered.log["cache"]["hits"] == ["fit model", "fit_model"]
    assert not any("corrupt" in w for w in rendered.log["warnings"])
    assert ChunkCache(tmp_path, "doc").entries() == ["fit model", "fit_model"]


def test_replay_restores_bindings_equal_to_upstream_values(tmp_path: Path) -> None:
    doc = (
        "```{python upstream}\nx = {value}\n```\n\n"
        "```{python pinned, cache=TRUE}\nx = 5\ny = 1\n```\n\n"
        "x is `r x`.\n"
    )
    first, _ = _render(doc.replace("{value}", "5"), tmp_path)
    assert "x is 5." in first.text

    rendered, ev = _render(doc.replace("{value}", "3"), tmp_path)
    assert ev.executed == ["x = 3\n"]
    assert rendered.log["cache"]["hits"] == ["pinned"]
    assert "x is 5." in rendered.text


def test_reclaim_puts_back_a_lock_held_by_a_live_process(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "doc" / ".lock"
    with RenderLock(path, timeout=1.0):
        owner = path.read_text(encoding="utf-8")
        # Pretend the pid looked dead when checked; the live owner must keep the lock.
        monkeypatch.setattr(RenderLock, "_stale", lambda self: True)
        with pytest.raises(RenderLockedError):
            RenderLock(path, timeout=0.1, poll=0.01).acquire()
        assert path.read_text(encoding="utf-8") == owner
        assert sorted(p.name for p in path.parent.iterdir()) == [".lock"]
