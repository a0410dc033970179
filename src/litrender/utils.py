from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any


def now_iso() -> str:
    return datetime.utcnow().isoformat()


def safe_slug(name: str) -> str:
    """
    Simple slugging for directory names.
    """
    s = name.strip().lower()
    s = re.sub(r"[^a-z0-9]+", "_", s)
    return s.strip("_") or "document"


def safe_filename(name: str) -> str:
    keep = []
    for ch in name:
        if ch.isalnum() or ch in {"-", "_", "."}:
            keep.append(ch)
        elif ch in {" ", "/", "\\", ":"}:
            keep.append("_")
    out = "".join(keep).strip("_.")
    return out or "chunk"


def chunk_file_stem(name: str) -> str:
    """
    Filename stem for files derived from a chunk name.

    Names that are already safe (and lowercase, for case-insensitive
    filesystems) are used as-is; anything that had to be sanitized gets a
    hash suffix, so two distinct chunk names never share a stem.
    """
    safe = safe_filename(name)
    if safe == name and name == name.lower():
        return name
    return f"{safe}-{sha256_text(name)[:10]}"


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False, default=str) + "\n", encoding="utf-8")


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
