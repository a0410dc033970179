from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import pandas as pd


@dataclass(frozen=True)
class TextOutput:
    """Printed output or the repr of a trailing expression."""

    text: str


@dataclass(frozen=True)
class AsIsOutput:
    """Textual output emitted raw (results="asis")."""

    text: str


@dataclass(frozen=True)
class TableOutput:
    frame: pd.DataFrame


@dataclass(frozen=True)
class FigureOutput:
    """A PNG produced by the chunk. `filename` is relative to the figures dir."""

    filename: str
    data: bytes


@dataclass(frozen=True)
class WarningOutput:
    message: str


@dataclass(frozen=True)
class ErrorOutput:
    chunk: str
    message: str


OutputArtifact = Union[TextOutput, AsIsOutput, TableOutput, FigureOutput, WarningOutput, ErrorOutput]
