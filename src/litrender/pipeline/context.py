from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class RenderContext:
    """Paths and identifiers for one render invocation.

    The output document, its figures directory and render_log.json all live
    in `output_dir`, so figure references in the document are relative.
    """

    source: Path
    output_path: Path
    render_id: str
    figures_dir_name: str = "figures"

    @classmethod
    def create(
        cls,
        *,
        source: Path,
        output_path: Path,
        figures_dir_name: str = "figures",
        render_id: str | None = None,
    ) -> "RenderContext":
        return cls(
            source=source,
            output_path=output_path,
            render_id=render_id or str(uuid.uuid4()),
            figures_dir_name=figures_dir_name,
        )

    @property
    def output_dir(self) -> Path:
        return self.output_path.parent

    def path(self, filename: str) -> Path:
        return self.output_dir / filename

    def figures_dir(self) -> Path:
        return self.output_dir / self.figures_dir_name

    def render_log_path(self) -> Path:
        return self.path(f"{self.output_path.stem}.render_log.json")
