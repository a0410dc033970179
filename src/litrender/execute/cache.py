from __future__ import annotations

import hashlib
import importlib
import os
import pickle
import shutil
import time
import types
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..errors import CacheCorruptionError, RenderLockedError
from ..log import get_logger
from ..utils import chunk_file_stem, safe_slug
from .artifacts import OutputArtifact
from .context import ContextDelta

logger = get_logger(__name__)

CACHE_VERSION = 2
_ENTRY_SUFFIX = ".pkl"
_LOCK_NAME = ".lock"


class UncacheableBindingError(ValueError):
    """A binding in the chunk's context delta cannot be serialized."""

    def __init__(self, name: str, cause: BaseException) -> None:
        self.name = name
        super().__init__(f"binding '{name}' cannot be serialized ({type(cause).__name__}: {cause})")


@dataclass(frozen=True)
class CacheEntry:
    """Memoized output of one cached chunk.

    `bindings` is the serialized context delta: name -> ("module", dotted
    name) for imported modules (re-imported on replay) or ("pickle", bytes).
    """

    chunk_name: str
    chunk_code: str
    artifacts: list[OutputArtifact]
    bindings: dict[str, tuple[str, Any]] = field(default_factory=dict)
    removed: tuple[str, ...] = ()
    created_at: str = ""

    def context_delta(self) -> ContextDelta:
        bound: dict[str, Any] = {}
        for name, (kind, payload) in self.bindings.items():
            try:
                if kind == "module":
                    bound[name] = importlib.import_module(payload)
                elif kind == "pickle":
                    bound[name] = pickle.loads(payload)
                else:
                    raise ValueError(f"unknown binding kind {kind!r}")
            except Exception as e:
                raise CacheCorruptionError(f"Cannot restore binding '{name}' of chunk '{self.chunk_name}': {e}") from e
        return ContextDelta(bound=bound, removed=self.removed)


def encode_bindings(delta: ContextDelta) -> dict[str, tuple[str, Any]]:
    out: dict[str, tuple[str, Any]] = {}
    for name, value in sorted(delta.bound.items()):
        if isinstance(value, types.ModuleType):
            out[name] = ("module", value.__name__)
            continue
        try:
            out[name] = ("pickle", pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL))
        except Exception as e:
            raise UncacheableBindingError(name, e) from e
    return out


def document_id(source: Path) -> str:
    """Stable cache namespace for a source file: <stem>-<hash of its path>."""
    resolved = str(source.expanduser().resolve())
    digest = hashlib.sha256(resolved.encode("utf-8")).hexdigest()[:12]
    return f"{safe_slug(source.stem)}-{digest}"


class ChunkCache:
    """Durable (document, chunk name) -> CacheEntry store.

    Layout: <root>/<document_id>/<chunk file stem>.pkl. External tooling may
    delete entries or the whole directory; that forces re-execution.
    """

    def __init__(self, root: Path, doc_id: str) -> None:
        self.root = root
        self.doc_id = doc_id

    @classmethod
    def for_source(cls, root: Path, source: Path) -> "ChunkCache":
        return cls(root, document_id(source))

    @property
    def directory(self) -> Path:
        return self.root / self.doc_id

    def path_for(self, chunk_name: str) -> Path:
        return self.directory / (chunk_file_stem(chunk_name) + _ENTRY_SUFFIX)

    def load(self, chunk_name: str) -> Optional[CacheEntry]:
        path = self.path_for(chunk_name)
        if not path.exists():
            return None
        try:
            with path.open("rb") as f:
                obj = pickle.load(f)
        except Exception as e:
            raise CacheCorruptionError(f"Cannot read cache entry {path}: {type(e).__name__}: {e}") from e

        if not isinstance(obj, dict) or obj.get("version") != CACHE_VERSION:
            raise CacheCorruptionError(f"Cache entry {path} has an unsupported layout.")
        try:
            entry = CacheEntry(
                chunk_name=str(obj["chunk_name"]),
                chunk_code=str(obj["chunk_code"]),
                artifacts=list(obj["artifacts"]),
                bindings=dict(obj["bindings"]),
                removed=tuple(obj.get("removed") or ()),
                created_at=str(obj.get("created_at") or ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CacheCorruptionError(f"Cache entry {path} is incomplete: {e}") from e
        if entry.chunk_name != chunk_name:
            raise CacheCorruptionError(f"Cache entry {path} belongs to chunk '{entry.chunk_name}'.")
        return entry

    def store(self, chunk_name: str, chunk_code: str, artifacts: list[OutputArtifact], delta: ContextDelta) -> CacheEntry:
        """Write (or overwrite) the entry for a chunk.

        Raises UncacheableBindingError before touching the disk when the
        delta cannot be serialized.
        """
        entry = CacheEntry(
            chunk_name=chunk_name,
            chunk_code=chunk_code,
            artifacts=list(artifacts),
            bindings=encode_bindings(delta),
            removed=delta.removed,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        payload = {
            "version": CACHE_VERSION,
            "chunk_name": entry.chunk_name,
            "chunk_code": entry.chunk_code,
            "artifacts": entry.artifacts,
            "bindings": entry.bindings,
            "removed": list(entry.removed),
            "created_at": entry.created_at,
        }
        path = self.path_for(chunk_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with tmp.open("wb") as f:
            pickle.dump(payload, f, protocol=pickle.HIGHEST_PROTOCOL)
        os.replace(tmp, path)
        return entry

    def entries(self) -> list[str]:
        """Chunk names with a stored entry. Unreadable files are listed by filename."""
        if not self.directory.exists():
            return []
        names: list[str] = []
        for p in self.directory.glob("*" + _ENTRY_SUFFIX):
            if not p.is_file():
                continue
            try:
                with p.open("rb") as f:
                    obj = pickle.load(f)
                names.append(str(obj["chunk_name"]))
            except Exception as e:
                logger.debug("Unreadable cache entry %s: %s", p, e)
                names.append(p.stem)
        return sorted(names)

    def clear(self) -> int:
        n = len(self.entries())
        if self.directory.exists():
            shutil.rmtree(self.directory)
        return n

    def lock(self, timeout: float = 30.0) -> "RenderLock":
        return RenderLock(self.directory / _LOCK_NAME, timeout=timeout)


def _read_pid(path: Path) -> Optional[int]:
    try:
        return int(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class RenderLock:
    """Exclusive lock file serializing renders of one document.

    Created with O_CREAT|O_EXCL; holds the owner's pid so a lock left behind
    by a dead process is reclaimed.
    """

    def __init__(self, path: Path, *, timeout: float = 30.0, poll: float = 0.05) -> None:
        self.path = path
        self.timeout = timeout
        self.poll = poll
        self._held = False

    def _stale(self) -> bool:
        pid = _read_pid(self.path)
        # Missing or half-written: let the next attempt decide.
        return pid is not None and not _pid_alive(pid)

    def _reclaim(self) -> bool:
        """Move a dead owner's lock aside; True when the lock file is gone.

        The file is renamed before its pid is trusted, so a lock re-created
        by a live process after `_stale` looked is put back, not deleted.
        """
        aside = self.path.with_name(f"{self.path.name}.{os.getpid()}.{uuid.uuid4().hex}")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return True
        pid = _read_pid(aside)
        if pid is None or _pid_alive(pid):
            try:
                os.link(aside, self.path)
            except FileExistsError:
                logger.warning("Render lock %s was re-created while restoring a live owner's lock", self.path)
            aside.unlink(missing_ok=True)
            return False
        aside.unlink(missing_ok=True)
        logger.warning("Removed stale render lock %s (pid %d)", self.path, pid)
        return True

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                if self._stale() and self._reclaim():
                    continue
                if time.monotonic() >= deadline:
                    raise RenderLockedError(f"Another render holds {self.path} (waited {self.timeout:.1f}s)")
                time.sleep(self.poll)
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(str(os.getpid()))
            self._held = True
            return

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False

    def __enter__(self) -> "RenderLock":
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()
