from __future__ import annotations

import html
from typing import Optional, Protocol

import pandas as pd

from ..models import DocumentMeta, OutputFormat


def _ensure_newline(s: str) -> str:
    return s if s.endswith("\n") else s + "\n"


def _cell(v: object) -> str:
    if v is None:
        return ""
    try:
        if pd.isna(v):
            return "NA"
    except (TypeError, ValueError):
        pass
    return str(v).replace("|", "\\|").replace("\n", " ")


def frame_to_markdown(df: pd.DataFrame) -> str:
    """Render a DataFrame as a pipe table (no tabulate dependency).

    The index is shown unless it is a default RangeIndex.
    """
    show_index = not isinstance(df.index, pd.RangeIndex)
    header = [str(c) for c in df.columns]
    if show_index:
        header = [str(df.index.name or "")] + header
    numeric = [pd.api.types.is_numeric_dtype(df[c]) for c in df.columns]
    if show_index:
        numeric = [False] + numeric

    lines = ["| " + " | ".join(_cell(h) for h in header) + " |"]
    lines.append("|" + "|".join("---:" if n else ":---" for n in numeric) + "|")
    for idx, row in zip(df.index, df.itertuples(index=False, name=None)):
        cells = [_cell(v) for v in row]
        if show_index:
            cells = [_cell(idx)] + cells
        lines.append("| " + " | ".join(cells) + " |")
    return "\n".join(lines) + "\n"


class Writer(Protocol):
    def begin(self, meta: DocumentMeta, front_matter: str) -> None: ...
    def text(self, content: str) -> None: ...
    def code(self, language: str, code: str) -> None: ...
    def output(self, text: str) -> None: ...
    def asis(self, text: str) -> None: ...
    def table(self, frame: pd.DataFrame, caption: Optional[str]) -> None: ...
    def figure(self, path: str, caption: Optional[str]) -> None: ...
    def warning(self, message: str) -> None: ...
    def error(self, message: str) -> None: ...
    def end(self) -> str: ...


class MarkdownWriter:
    """Plain narrative + output stream for pandoc or any Markdown converter."""

    def __init__(self) -> None:
        self._parts: list[str] = []

    def begin(self, meta: DocumentMeta, front_matter: str) -> None:
        if front_matter:
            self._parts.append(_ensure_newline(front_matter))

    def text(self, content: str) -> None:
        self._parts.append(content)

    def _fenced(self, body: str, info: str = "") -> None:
        fence = "```"
        while fence in body:
            fence += "`"
        self._parts.append(f"{fence}{info}\n{_ensure_newline(body)}{fence}\n\n")

    def code(self, language: str, code: str) -> None:
        self._fenced(code, language)

    def output(self, text: str) -> None:
        prefixed = "\n".join("## " + line for line in text.rstrip("\n").split("\n"))
        self._fenced(prefixed)

    def asis(self, text: str) -> None:
        self._parts.append(_ensure_newline(text) + "\n")

    def table(self, frame: pd.DataFrame, caption: Optional[str]) -> None:
        if caption:
            self._parts.append(f"{caption}\n\n")
        self._parts.append(frame_to_markdown(frame) + "\n")

    def figure(self, path: str, caption: Optional[str]) -> None:
        self._parts.append(f"![{caption or ''}]({path})\n\n")

    def warning(self, message: str) -> None:
        self._fenced(f"## Warning: {message}")

    def error(self, message: str) -> None:
        self._fenced(f"## {message}")

    def end(self) -> str:
        return "".join(self._parts)


class HtmlWriter:
    """Standalone HTML page. Narrative markup is passed through untouched;
    converting it is the job of a downstream tool."""

    def __init__(self) -> None:
        self._parts: list[str] = []

    def begin(self, meta: DocumentMeta, front_matter: str) -> None:
        title = html.escape(meta.title or "")
        self._parts.append(
            "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
            f"<title>{title}</title>\n</head>\n<body>\n"
        )
        if meta.title:
            self._parts.append(f"<h1 class=\"title\">{title}</h1>\n")
        if meta.author:
            self._parts.append(f"<p class=\"author\">{html.escape(str(meta.author))}</p>\n")
        if meta.date:
            self._parts.append(f"<p class=\"date\">{html.escape(str(meta.date))}</p>\n")

    def text(self, content: str) -> None:
        self._parts.append(content)

    def code(self, language: str, code: str) -> None:
        self._parts.append(
            f"<pre class=\"source\"><code class=\"language-{html.escape(language)}\">"
            f"{html.escape(code.rstrip(chr(10)))}</code></pre>\n"
        )

    def output(self, text: str) -> None:
        self._parts.append(f"<pre class=\"output\">{html.escape(text.rstrip(chr(10)))}</pre>\n")

    def asis(self, text: str) -> None:
        self._parts.append(_ensure_newline(text))

    def table(self, frame: pd.DataFrame, caption: Optional[str]) -> None:
        show_index = not isinstance(frame.index, pd.RangeIndex)
        body = frame.to_html(border=0, index=show_index)
        if caption:
            self._parts.append(
                f"<figure class=\"table\">\n<figcaption>{html.escape(caption)}</figcaption>\n{body}\n</figure>\n"
            )
        else:
            self._parts.append(body + "\n")

    def figure(self, path: str, caption: Optional[str]) -> None:
        alt = html.escape(caption or "")
        cap = f"<figcaption>{alt}</figcaption>\n" if caption else ""
        self._parts.append(f"<figure>\n<img src=\"{html.escape(path)}\" alt=\"{alt}\">\n{cap}</figure>\n")

    def warning(self, message: str) -> None:
        self._parts.append(f"<pre class=\"warning\">Warning: {html.escape(message)}</pre>\n")

    def error(self, message: str) -> None:
        self._parts.append(f"<pre class=\"error\">{html.escape(message)}</pre>\n")

    def end(self) -> str:
        return "".join(self._parts) + "</body>\n</html>\n"


def writer_for(fmt: OutputFormat) -> Writer:
    if fmt is OutputFormat.HTML:
        return HtmlWriter()
    return MarkdownWriter()
