from __future__ import annotations

import pandas as pd

from litrender.assemble import frame_to_markdown, resolve_refs
from litrender.assemble.numbering import Numbering
from litrender.models import OutputFormat, RenderOptions
from litrender.pipeline import render_text

FIGURES = r"""See Figure \@ref(fig:second) and \@ref(fig:first).

```{python first, fig.cap="First"}
import matplotlib.pyplot as plt
plt.plot([1, 2])
```

```{python second, fig.cap="Second"}
plt.plot([2, 1])
```
"""


def test_forward_references_resolve_after_numbering() -> None:
    rendered = render_text(FIGURES)
    assert rendered.text.startswith("See Figure 2 and 1.\n")
    assert "![Figure 1: First](figures/first-1.png)" in rendered.text
    assert "![Figure 2: Second](figures/second-1.png)" in rendered.text
    assert rendered.assembled.unresolved_refs == []
    assert [f.filename for f in rendered.assembled.figures] == ["first-1.png", "second-1.png"]
    assert rendered.assembled.figures[0].data.startswith(b"\x89PNG")


def test_figures_and_tables_are_numbered_independently() -> None:
    src = r"""Table \@ref(tab:counts) and Figure \@ref(fig:plot).

```{python counts, tab.cap="Counts"}
import pandas as pd
pd.DataFrame({"k": ["a", "b"], "n": [3, 4]})
```

```{python plot, fig.cap="Trend"}
import matplotlib.pyplot as plt
plt.plot([1, 2, 3])
```
"""
    text = render_text(src).text
    assert text.startswith("Table 1 and Figure 1.\n")
    assert "Table 1: Counts\n\n| k | n |" in text
    assert "![Figure 1: Trend](figures/plot-1.png)" in text


def test_unresolved_reference_renders_placeholder_and_is_logged() -> None:
    src = r"""Missing \@ref(fig:nowhere); uncaptioned \@ref(fig:raw).

```{python raw}
import matplotlib.pyplot as plt
plt.plot([1])
```
"""
    rendered = render_text(src)
    assert rendered.text.startswith("Missing ??; uncaptioned ??.\n")
    # Uncaptioned figures are still shown, just without a number.
    assert "![](figures/raw-1.png)" in rendered.text
    assert rendered.assembled.unresolved_refs == ["fig:nowhere", "fig:raw"]
    assert rendered.log["unresolved_refs"] == ["fig:nowhere", "fig:raw"]
    assert any("fig:nowhere" in w for w in rendered.log["warnings"])


def test_several_figures_from_one_chunk() -> None:
    src = r"""Panels \@ref(fig:multi-1), \@ref(fig:multi-2); first \@ref(fig:multi).

```{python multi, fig.cap="Panel"}
import matplotlib.pyplot as plt
plt.figure()
plt.plot([1])
plt.figure()
plt.plot([2])
```
"""
    rendered = render_text(src)
    assert rendered.text.startswith("Panels 1, 2; first 1.\n")
    assert "![Figure 1: Panel](figures/multi-1.png)" in rendered.text
    assert "![Figure 2: Panel](figures/multi-2.png)" in rendered.text


def test_hidden_figures_are_not_numbered() -> None:
    src = r"""Ref \@ref(fig:hidden) then \@ref(fig:shown).

```{python hidden, fig.cap="Hidden", include=FALSE}
import matplotlib.pyplot as plt
plt.plot([1])
```

```{python shown, fig.cap="Shown"}
plt.plot([2])
```
"""
    rendered = render_text(src)
    assert rendered.text.startswith("Ref ?? then 1.\n")
    assert "hidden-1.png" not in rendered.text


def test_html_output() -> None:
    src = '---\ntitle: "Demo"\nauthor: "Ana"\noutput: html_document\n---\n' + FIGURES
    rendered = render_text(src)
    assert rendered.output_format is OutputFormat.HTML
    html = rendered.text
    assert html.startswith("<!DOCTYPE html>")
    assert '<h1 class="title">Demo</h1>' in html
    assert '<p class="author">Ana</p>' in html
    assert '<pre class="source"><code class="language-python">' in html
    assert '<img src="figures/first-1.png" alt="Figure 1: First">' in html
    assert "<figcaption>Figure 2: Second</figcaption>" in html
    assert html.rstrip().endswith("</html>")


def test_explicit_format_overrides_front_matter() -> None:
    src = "---\noutput: html_document\n---\nplain\n"
    rendered = render_text(src, options=RenderOptions(output_format=OutputFormat.MARKDOWN))
    assert rendered.text == src


def test_frame_to_markdown() -> None:
    df = pd.DataFrame({"a": [1, 2], "b": ["x", "y"]})
    assert frame_to_markdown(df) == "| a | b |\n|---:|:---|\n| 1 | x |\n| 2 | y |\n"

    indexed = pd.DataFrame({"v": [1.5]}, index=pd.Index(["r1"], name="key"))
    assert frame_to_markdown(indexed) == "| key | v |\n|:---|---:|\n| r1 | 1.5 |\n"


def test_resolve_refs_leaves_other_text_alone() -> None:
    numbering = Numbering(labels={"tab:t": 2})
    unresolved: list[str] = []
    out = resolve_refs(r"Table \@ref(tab:t), \@ref(fig:t), @ref(tab:t)", numbering, unresolved)
    assert out == "Table 2, ??, @ref(tab:t)"
    assert unresolved == ["fig:t"]


def test_rendering_is_deterministic() -> None:
    assert render_text(FIGURES).text == render_text(FIGURES).text
