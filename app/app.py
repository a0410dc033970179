"""litrender - Live Preview UI"""
import sys
from pathlib import Path

import streamlit as st
import streamlit.components.v1 as components

from litrender.errors import DocumentParseError, LitRenderError
from litrender.models import BindingPolicy, FailurePolicy, OutputFormat, RenderOptions
from litrender.pipeline import render_text

app_dir = Path(__file__).parent
if str(app_dir) not in sys.path:
    sys.path.insert(0, str(app_dir))
from ui_components import render_figures, render_log_panel  # noqa: E402

st.set_page_config(page_title="litrender preview", layout="wide")

EXAMPLE = """---
title: "Example"
---

```{python setup}
n = 50
```

The sample size is `r n`.
"""


def main():
    st.title("litrender preview")

    with st.sidebar:
        uploaded = st.file_uploader("Source file", type=["Rmd", "rmd", "md", "pmd", "qmd", "txt"])
        fmt = st.selectbox("Output format", [f.value for f in OutputFormat], index=0)
        on_error = st.selectbox("On chunk error", [p.value for p in FailurePolicy], index=1)
        bindings = st.selectbox("Failing chunk bindings", [p.value for p in BindingPolicy], index=0)
        use_cache = st.checkbox("Use chunk cache", value=False)
        cache_dir = st.text_input("Cache directory", value=".litrender_cache")

    initial = uploaded.getvalue().decode("utf-8") if uploaded is not None else EXAMPLE
    source = st.text_area("Source", value=initial, height=320)
    name = uploaded.name if uploaded is not None else "preview"

    if not st.button("Render", type="primary"):
        return

    options = RenderOptions(
        output_format=OutputFormat(fmt),
        failure_policy=FailurePolicy(on_error),
        binding_policy=BindingPolicy(bindings),
        cache_dir=Path(cache_dir) if use_cache and cache_dir else None,
    )
    try:
        rendered = render_text(source, options=options, document_name=name)
    except DocumentParseError as e:
        st.error(f"Parse error: {e}")
        return
    except LitRenderError as e:
        st.error(f"Render failed: {e}")
        return

    tab_doc, tab_raw, tab_log = st.tabs(["Document", "Raw output", "Render log"])
    with tab_doc:
        if rendered.output_format is OutputFormat.HTML:
            components.html(rendered.text, height=800, scrolling=True)
        else:
            st.markdown(rendered.text)
        if rendered.assembled is not None:
            render_figures(rendered.assembled.figures)
    with tab_raw:
        st.code(rendered.text, language="html" if rendered.output_format is OutputFormat.HTML else "markdown")
    with tab_log:
        render_log_panel(rendered.log)


main()
