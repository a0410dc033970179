"""UI components for the litrender preview."""
from .log_panel import render_log_panel, chunk_status_counts
from .figures import render_figures

__all__ = [
    "render_log_panel",
    "chunk_status_counts",
    "render_figures",
]
