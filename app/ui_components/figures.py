"""Figure gallery for the litrender preview."""
import streamlit as st


def render_figures(figures) -> bool:
    """
    Show figures captured during an in-memory render.

    Markdown image links point at figures/<name>.png, which does not exist
    for in-memory renders, so the PNG bytes are shown directly.

    Returns:
        True if at least one figure was shown.
    """
    if not figures:
        return False
    for fig in figures:
        st.image(fig.data, caption=fig.filename)
    return True
