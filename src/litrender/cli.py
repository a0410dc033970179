from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import typer

from .document import parse_file
from .document.options import parse_literal
from .errors import DocumentParseError, LitRenderError
from .execute import ChunkCache
from .log import configure_logging
from .models import BindingPolicy, FailurePolicy, OutputFormat, RenderOptions
from .pipeline import render_document

app = typer.Typer(add_completion=False, help="litrender: render literate documents (text + executable chunks)")

# ---- Cache commands ----
cache_app = typer.Typer(help="Inspect or clear the chunk cache of a document.")
app.add_typer(cache_app, name="cache")

DEFAULT_CACHE_DIR_NAME = ".litrender_cache"


def _cache_root(source: Path, cache_dir: Optional[Path]) -> Path:
    return cache_dir if cache_dir is not None else source.parent / DEFAULT_CACHE_DIR_NAME


def _parse_params(items: list[str]) -> dict[str, Any]:
    """--param key=value; values are typed literals when they parse, else strings."""
    params: dict[str, Any] = {}
    for item in items:
        if "=" not in item:
            raise typer.BadParameter(f"Invalid param format (expected key=value): {item}")
        k, v = item.split("=", 1)
        key = k.strip()
        if not key:
            raise typer.BadParameter(f"Missing param name: {item}")
        try:
            params[key] = parse_literal(v)
        except ValueError:
            params[key] = v
    return params


@app.command()
def render(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Literate source file"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output path (default: next to source)"),
    fmt: Optional[OutputFormat] = typer.Option(
        None, "--format", "-f", help="Output format (default: front matter `output`, else markdown)", case_sensitive=False
    ),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help=f"Cache root (default: <source dir>/{DEFAULT_CACHE_DIR_NAME})"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Ignore cache=TRUE chunk options for this render"),
    on_error: FailurePolicy = typer.Option(
        FailurePolicy.FAIL_FAST, "--on-error", help="fail_fast aborts; continue annotates and keeps going", case_sensitive=False
    ),
    on_error_bindings: BindingPolicy = typer.Option(
        BindingPolicy.KEEP, "--on-error-bindings", help="keep or rollback a failing chunk's bindings", case_sensitive=False
    ),
    param: list[str] = typer.Option([], "--param", "-p", help="Document parameter like n=50 (repeatable)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    Render SOURCE: run every chunk once, in order, and write the document.

    Always writes:
      <output>, <output stem>.render_log.json, figures/ (when chunks plot)
    """
    configure_logging(verbose)
    try:
        options = RenderOptions(
            output_format=fmt,
            failure_policy=on_error,
            binding_policy=on_error_bindings,
            cache_dir=_cache_root(source, cache_dir),
            use_cache=not no_cache,
            params=_parse_params(param),
        )
        result = render_document(source, output=output, options=options)

        typer.echo("Render complete.")
        typer.echo(f"Output: {result.output}")
        typer.echo(f"Log: {result.render_log}")
        if result.figures_dir:
            typer.echo(f"Figures: {result.figures_dir}")
        errors = result.engine.errors
        if errors:
            typer.echo(f"Chunks with errors: {len(errors)} (see log)")
    except DocumentParseError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=2)
    except LitRenderError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def parse(source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Literate source file")):
    """
    List the chunks of SOURCE as JSON without executing anything.
    """
    try:
        doc = parse_file(source)
    except DocumentParseError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=2)

    payload = {
        "title": doc.meta.title,
        "chunks": [
            {
                "name": c.name,
                "language": c.language,
                "line": c.line,
                "anonymous": c.anonymous,
                "options": c.options.as_dict(),
            }
            for c in doc.chunks()
        ],
        "inline_expressions": sum(len(b.exprs) for b in doc.blocks if hasattr(b, "exprs")),
    }
    typer.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


@cache_app.command("list")
def cache_list(
    source: Path = typer.Argument(..., help="Literate source file"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Cache root"),
):
    """
    List cached chunk names for SOURCE.
    """
    cache = ChunkCache.for_source(_cache_root(source, cache_dir), source)
    names = cache.entries()
    typer.echo(f"Cache dir: {cache.directory}")
    if not names:
        typer.echo("No cached chunks.")
    for n in names:
        typer.echo(n)


@cache_app.command("clear")
def cache_clear(
    source: Path = typer.Argument(..., help="Literate source file"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Cache root"),
):
    """
    Delete every cache entry of SOURCE; the next render re-executes all chunks.
    """
    cache = ChunkCache.for_source(_cache_root(source, cache_dir), source)
    n = cache.clear()
    typer.echo(f"Cleared {n} cached chunk(s) from {cache.directory}.")
