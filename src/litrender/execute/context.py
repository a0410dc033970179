from __future__ import annotations

import builtins
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping

_MISSING = object()


@dataclass(frozen=True)
class ContextDelta:
    """Bindings a chunk created or rebound, plus the names it deleted."""

    bound: dict[str, Any] = field(default_factory=dict)
    removed: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not self.bound and not self.removed


class ExecutionContext:
    """The one mutable namespace shared by every chunk and inline expression
    of a render, in source order.

    Evaluators run code directly against `namespace`. Names starting with a
    double underscore are bookkeeping (e.g. `__builtins__`) and are hidden
    from `names()`, snapshots and deltas.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._ns: dict[str, Any] = {"__name__": "__litrender__", "__builtins__": builtins}
        if initial:
            self._ns.update(initial)

    @property
    def namespace(self) -> dict[str, Any]:
        return self._ns

    def __contains__(self, name: object) -> bool:
        return name in self._ns

    def __getitem__(self, name: str) -> Any:
        return self._ns[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self._ns.get(name, default)

    def names(self) -> list[str]:
        return sorted(k for k in self._ns if not k.startswith("__"))

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def snapshot(self) -> dict[str, Any]:
        """Shallow copy of the user bindings.

        Objects mutated in place are shared with the live context, so a
        rollback restores name -> object bindings, not object state.
        """
        return {k: v for k, v in self._ns.items() if not k.startswith("__")}

    def restore(self, snapshot: Mapping[str, Any]) -> None:
        for k in [k for k in self._ns if not k.startswith("__")]:
            if k not in snapshot:
                del self._ns[k]
        self._ns.update(snapshot)

    def delta(self, before: Mapping[str, Any], assigned: Iterable[str] = ()) -> ContextDelta:
        """Bindings that differ from `before`.

        A name counts as bound when its object changed or when it is listed
        in `assigned`, so `x = 5` is recorded even if `x` already held 5.
        """
        always = set(assigned)
        bound: dict[str, Any] = {}
        for k, v in self._ns.items():
            if k.startswith("__"):
                continue
            if k in always or before.get(k, _MISSING) is not v:
                bound[k] = v
        removed = tuple(sorted(k for k in before if k not in self._ns))
        return ContextDelta(bound=bound, removed=removed)

    def apply(self, delta: ContextDelta) -> None:
        for k in delta.removed:
            self._ns.pop(k, None)
        self._ns.update(delta.bound)
