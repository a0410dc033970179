from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

from ..execute.artifacts import FigureOutput, TableOutput
from ..execute.engine import BlockResult, ChunkResult, visible_artifacts

# bookdown-style cross reference: \@ref(fig:chunk-name)
REF_RE = re.compile(r"\\@ref\((?P<kind>fig|tab):(?P<label>[^)\s]+)\)")
UNRESOLVED = "??"


@dataclass
class Numbering:
    """Sequential numbers for captioned figures and tables.

    Figures and tables are numbered independently in first-appearance
    order. `labels` maps "fig:<chunk>" / "tab:<chunk>" (and "-<i>" suffixed
    variants when a chunk produced several) to a number.
    """

    labels: dict[str, int] = field(default_factory=dict)
    # (chunk name, index of artifact within the chunk's visible output) -> number
    slots: dict[tuple[str, int], int] = field(default_factory=dict)
    figures: int = 0
    tables: int = 0

    def number_for(self, chunk: str, index: int) -> int | None:
        return self.slots.get((chunk, index))


def number_artifacts(results: Iterable[BlockResult]) -> Numbering:
    """Pass 1: assign numbers once every chunk has executed."""
    numbering = Numbering()
    for r in results:
        if not isinstance(r, ChunkResult):
            continue
        opts = r.chunk.options
        visible = visible_artifacts(r)
        figs = [i for i, a in enumerate(visible) if isinstance(a, FigureOutput)]
        tabs = [i for i, a in enumerate(visible) if isinstance(a, TableOutput)]

        if opts.fig_cap is not None and figs:
            for pos, idx in enumerate(figs, start=1):
                numbering.figures += 1
                numbering.slots[(r.chunk.name, idx)] = numbering.figures
                if len(figs) > 1:
                    numbering.labels[f"fig:{r.chunk.name}-{pos}"] = numbering.figures
                if pos == 1:
                    numbering.labels[f"fig:{r.chunk.name}"] = numbering.figures

        if opts.tab_cap is not None and tabs:
            for pos, idx in enumerate(tabs, start=1):
                numbering.tables += 1
                numbering.slots[(r.chunk.name, idx)] = numbering.tables
                if len(tabs) > 1:
                    numbering.labels[f"tab:{r.chunk.name}-{pos}"] = numbering.tables
                if pos == 1:
                    numbering.labels[f"tab:{r.chunk.name}"] = numbering.tables
    return numbering


def resolve_refs(text: str, numbering: Numbering, unresolved: list[str] | None = None) -> str:
    """Pass 2: replace \\@ref(...) markers with final numbers.

    Unknown labels become "??" and are appended to `unresolved`.
    """

    def _sub(m: re.Match[str]) -> str:
        key = f"{m.group('kind')}:{m.group('label')}"
        n = numbering.labels.get(key)
        if n is None:
            if unresolved is not None:
                unresolved.append(key)
            return UNRESOLVED
        return str(n)

    return REF_RE.sub(_sub, text)
