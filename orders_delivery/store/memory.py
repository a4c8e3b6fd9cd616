"""
In-process implementation of the tree store.

Used by the test suite and for local development without a database.
"""
import threading
from typing import Any, Dict, List, Mapping, Optional

from .base import (
    DELETE,
    OrderStore,
    PreconditionFailed,
    Write,
    ancestors,
    flatten,
    normalize_path,
    resolve_timestamps,
    unflatten,
)


class MemoryOrderStore(OrderStore):
    """Tree store kept in a dict of leaf paths, committed by copy-then-swap."""

    def __init__(self):
        super().__init__()
        self._nodes: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _read_from(nodes: Dict[str, Any], path: str) -> Optional[Any]:
        prefix = path + "/"
        leaves = [(p, v) for p, v in nodes.items() if p == path or p.startswith(prefix)]
        return unflatten(path, leaves)

    def read(self, path: str) -> Optional[Any]:
        path = normalize_path(path)
        with self._lock:
            return self._read_from(self._nodes, path)

    def atomic_write(self, writes: List[Write], expect: Optional[Mapping[str, Any]] = None) -> None:
        with self._lock:
            nodes = dict(self._nodes)

            for path, expected in (expect or {}).items():
                path = normalize_path(path)
                actual = self._read_from(nodes, path)
                if actual != expected:
                    raise PreconditionFailed(path, expected, actual)

            now = self.now_ms()
            for path, value in writes:
                path = normalize_path(path)
                prefix = path + "/"
                for stale in [p for p in nodes if p == path or p.startswith(prefix)]:
                    del nodes[stale]
                for parent in ancestors(path):
                    nodes.pop(parent, None)
                if value is DELETE:
                    continue
                nodes.update(flatten(path, resolve_timestamps(value, now)))

            self._nodes = nodes

    def clear(self) -> None:
        with self._lock:
            self._nodes = {}
