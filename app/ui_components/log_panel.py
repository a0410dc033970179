"""Render log panel for the litrender preview."""
import streamlit as st
from collections import Counter


def chunk_status_counts(render_log: dict) -> dict:
    """Count chunks per status (executed / cached / skipped / error)."""
    chunks = render_log.get("chunks") or []
    return dict(Counter(c.get("status", "unknown") for c in chunks if isinstance(c, dict)))


def render_log_panel(render_log: dict):
    """
    Show the render log: per-status counts, warnings, errors and the chunk table.

    Args:
        render_log: dict in the render_log.json layout
    """
    if not render_log:
        st.info("Nothing rendered yet.")
        return

    counts = chunk_status_counts(render_log)
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Executed", counts.get("executed", 0))
    col2.metric("Cached", counts.get("cached", 0))
    col3.metric("Skipped", counts.get("skipped", 0))
    col4.metric("Errors", counts.get("error", 0))

    for w in render_log.get("warnings") or []:
        st.warning(w)
    for e in render_log.get("errors") or []:
        st.error(e)

    chunks = render_log.get("chunks") or []
    if chunks:
        st.dataframe(
            [
                {
                    "chunk": c.get("name"),
                    "line": c.get("line"),
                    "status": c.get("status"),
                    "artifacts": c.get("artifacts"),
                    "ms": c.get("duration_ms"),
                }
                for c in chunks
            ],
            use_container_width=True,
        )
