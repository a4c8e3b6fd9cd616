"""
Abstract tree store contract used by the Orders Delivery service.

The store is a hierarchical key-value tree addressed by ``/``-separated paths.
Dict values are flattened into leaf nodes on write and reassembled on read,
so a child path (``ordersDelivery/<id>/status``) can be written without
rewriting its parent document.
"""
import random
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple


class _Sentinel:
    def __init__(self, name: str):
        self._name = name

    def __repr__(self):
        return self._name


# Marker values understood by atomic_write
SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")
DELETE = _Sentinel("DELETE")

Write = Tuple[str, Any]


class StoreError(Exception):
    """Raised when the backend fails to read or commit."""


class PreconditionFailed(StoreError):
    """Raised when an expected value does not match the stored one at commit time."""

    def __init__(self, path: str, expected: Any, actual: Any):
        super().__init__(f"Precondition failed at '{path}': expected {expected!r}, found {actual!r}")
        self.path = path
        self.expected = expected
        self.actual = actual


def split_path(path: str) -> List[str]:
    segments = [segment for segment in path.strip("/").split("/") if segment]
    if not segments:
        raise ValueError("Store paths must contain at least one segment")
    return segments


def normalize_path(path: str) -> str:
    return "/".join(split_path(path))


def ancestors(path: str) -> List[str]:
    """Return every proper ancestor of a normalized path, shortest first."""
    segments = path.split("/")
    return ["/".join(segments[:i]) for i in range(1, len(segments))]


def resolve_timestamps(value: Any, now_ms: int) -> Any:
    if value is SERVER_TIMESTAMP:
        return now_ms
    if isinstance(value, Mapping):
        return {key: resolve_timestamps(child, now_ms) for key, child in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_timestamps(child, now_ms) for child in value]
    return value


def flatten(path: str, value: Any) -> Dict[str, Any]:
    """
    Flatten a value into leaf nodes keyed by full path.

    Lists are stored as dicts keyed by position. ``None`` and empty
    containers produce no nodes.
    """
    if value is None:
        return {}
    if isinstance(value, (list, tuple)):
        value = {str(index): child for index, child in enumerate(value)}
    if isinstance(value, Mapping):
        leaves: Dict[str, Any] = {}
        for key, child in value.items():
            key = str(key)
            if not key or "/" in key:
                raise ValueError(f"Invalid key {key!r} under '{path}'")
            leaves.update(flatten(f"{path}/{key}", child))
        return leaves
    return {path: value}


def unflatten(path: str, leaves: Iterable[Tuple[str, Any]]) -> Optional[Any]:
    """Rebuild the subtree rooted at ``path`` from its leaf nodes."""
    tree: Optional[Any] = None
    prefix = path + "/"
    for leaf_path, value in leaves:
        if leaf_path == path:
            return value
        if not leaf_path.startswith(prefix):
            continue
        if tree is None:
            tree = {}
        node = tree
        segments = leaf_path[len(prefix):].split("/")
        for segment in segments[:-1]:
            node = node.setdefault(segment, {})
        node[segments[-1]] = value
    return tree


class PushIdGenerator:
    """
    Generates 20-character identifiers that sort in creation order.

    The first 8 characters encode the epoch milliseconds, the remaining 12 are
    random and are incremented when two ids share the same millisecond.
    """

    CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

    def __init__(self):
        self._lock = threading.Lock()
        self._last_ms = 0
        self._last_random = [0] * 12

    def __call__(self) -> str:
        with self._lock:
            now = max(int(time.time() * 1000), self._last_ms)
            if now == self._last_ms:
                i = len(self._last_random) - 1
                while i >= 0 and self._last_random[i] == 63:
                    self._last_random[i] = 0
                    i -= 1
                if i < 0:
                    # 64^12 ids in one ms; move to the next millisecond
                    now += 1
                else:
                    self._last_random[i] += 1
            else:
                self._last_random = [random.randrange(64) for _ in range(12)]
            self._last_ms = now
            random_part = list(self._last_random)

        stamp = []
        for _ in range(8):
            stamp.append(self.CHARS[now % 64])
            now //= 64
        return "".join(reversed(stamp)) + "".join(self.CHARS[i] for i in random_part)


class OrderStore(ABC):
    """
    Transactional tree store consumed by the order operations.

    Implementations must apply every write of one ``atomic_write`` call
    together or not at all.
    """

    def __init__(self):
        self._push_id = PushIdGenerator()

    def allocate_id(self, collection_path: str) -> str:
        """
        Allocate a fresh unique identifier for a child of ``collection_path``.

        Args:
            collection_path: Parent path the id will be used under

        Returns:
            Chronologically sortable identifier
        """
        return self._push_id()

    def server_timestamp(self) -> Any:
        """Return the marker resolved to the commit time by ``atomic_write``."""
        return SERVER_TIMESTAMP

    @staticmethod
    def now_ms() -> int:
        return int(time.time() * 1000)

    @abstractmethod
    def read(self, path: str) -> Optional[Any]:
        """
        Read the value or subtree stored at ``path``.

        Returns:
            Scalar, nested dict, or None when nothing is stored there

        Raises:
            StoreError: If the backend fails
        """

    @abstractmethod
    def atomic_write(self, writes: List[Write], expect: Optional[Mapping[str, Any]] = None) -> None:
        """
        Apply a set of writes as one all-or-nothing commit.

        Args:
            writes: ``(path, value)`` pairs; ``DELETE`` removes the subtree
            expect: Optional ``path -> value`` checks evaluated in the same commit

        Raises:
            PreconditionFailed: If an expectation does not hold
            StoreError: If the backend fails
        """
