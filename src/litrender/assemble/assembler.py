from __future__ import annotations

from dataclasses import dataclass, field

from ..document.blocks import Document
from ..execute.artifacts import AsIsOutput, ErrorOutput, FigureOutput, TableOutput, TextOutput, WarningOutput
from ..execute.engine import ChunkResult, EngineResult, visible_artifacts
from ..log import get_logger
from ..models import OutputFormat
from .formats import writer_for
from .numbering import Numbering, number_artifacts, resolve_refs

logger = get_logger(__name__)


@dataclass
class AssembledDocument:
    text: str
    # Figures referenced by `text`; the caller writes them under figures_dir.
    figures: list[FigureOutput] = field(default_factory=list)
    numbering: Numbering = field(default_factory=Numbering)
    unresolved_refs: list[str] = field(default_factory=list)


def assemble(
    document: Document,
    executed: EngineResult,
    *,
    output_format: OutputFormat = OutputFormat.MARKDOWN,
    figures_dir: str = "figures",
) -> AssembledDocument:
    """Stitch narrative and chunk output back together in source order.

    Pass 1 (after every chunk has run) numbers captioned figures and tables;
    pass 2 emits blocks and resolves cross references, so a reference may
    point forward to an artifact defined later in the document.
    """

    numbering = number_artifacts(executed.results)
    unresolved: list[str] = []
    writer = writer_for(output_format)
    writer.begin(document.meta, document.front_matter)
    figures: list[FigureOutput] = []

    for r in executed.results:
        if not isinstance(r, ChunkResult):
            writer.text(resolve_refs(r.content, numbering, unresolved))
            continue

        opts = r.chunk.options
        if opts.echo and opts.include:
            writer.code(r.chunk.language, r.chunk.code)

        for idx, a in enumerate(visible_artifacts(r)):
            if isinstance(a, TextOutput):
                writer.output(a.text)
            elif isinstance(a, AsIsOutput):
                writer.asis(resolve_refs(a.text, numbering, unresolved))
            elif isinstance(a, TableOutput):
                n = numbering.number_for(r.chunk.name, idx)
                caption = None
                if n is not None and opts.tab_cap is not None:
                    caption = f"Table {n}: {resolve_refs(opts.tab_cap, numbering, unresolved)}"
                writer.table(a.frame, caption)
            elif isinstance(a, FigureOutput):
                n = numbering.number_for(r.chunk.name, idx)
                caption = None
                if n is not None and opts.fig_cap is not None:
                    caption = f"Figure {n}: {resolve_refs(opts.fig_cap, numbering, unresolved)}"
                writer.figure(f"{figures_dir}/{a.filename}", caption)
                figures.append(a)
            elif isinstance(a, WarningOutput):
                writer.warning(a.message)
            elif isinstance(a, ErrorOutput):
                writer.error(a.message)

    for key in unresolved:
        logger.warning("Unresolved cross reference '%s'", key)

    return AssembledDocument(text=writer.end(), figures=figures, numbering=numbering, unresolved_refs=unresolved)
