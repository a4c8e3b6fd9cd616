"""
SQLAlchemy implementation of the tree store.

Each ``atomic_write`` runs in a single database transaction: expectations are
checked under row locks, subtrees are cleared and the new leaves inserted
before the commit. Any SQLAlchemy failure rolls the whole write back.
"""
import logging
from typing import Any, List, Mapping, Optional

from sqlalchemy import delete, insert, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .. import models
from .base import (
    DELETE,
    OrderStore,
    PreconditionFailed,
    StoreError,
    Write,
    ancestors,
    flatten,
    normalize_path,
    resolve_timestamps,
    unflatten,
)

logger = logging.getLogger(__name__)


def _subtree_clause(path: str):
    return or_(
        models.StoreNode.path == path,
        models.StoreNode.path.startswith(path + "/", autoescape=True),
    )


class SqlOrderStore(OrderStore):
    """Tree store backed by the ``store_nodes`` table."""

    def __init__(self, session_factory: sessionmaker):
        super().__init__()
        self._session_factory = session_factory

    def _read(self, db: Session, path: str, lock: bool = False) -> Optional[Any]:
        query = select(models.StoreNode.path, models.StoreNode.value).where(_subtree_clause(path))
        if lock:
            query = query.with_for_update()
        rows = db.execute(query).all()
        return unflatten(path, [(row.path, row.value) for row in rows])

    def read(self, path: str) -> Optional[Any]:
        path = normalize_path(path)
        try:
            with self._session_factory() as db:
                return self._read(db, path)
        except SQLAlchemyError as e:
            raise StoreError(f"Read failed at '{path}'") from e

    def atomic_write(self, writes: List[Write], expect: Optional[Mapping[str, Any]] = None) -> None:
        try:
            with self._session_factory() as db:
                with db.begin():
                    for path, expected in (expect or {}).items():
                        path = normalize_path(path)
                        actual = self._read(db, path, lock=True)
                        if actual != expected:
                            raise PreconditionFailed(path, expected, actual)

                    now = self.now_ms()
                    for path, value in writes:
                        path = normalize_path(path)
                        db.execute(delete(models.StoreNode).where(_subtree_clause(path)))
                        parents = ancestors(path)
                        if parents:
                            db.execute(delete(models.StoreNode).where(models.StoreNode.path.in_(parents)))
                        if value is DELETE:
                            continue
                        leaves = flatten(path, resolve_timestamps(value, now))
                        if leaves:
                            db.execute(
                                insert(models.StoreNode),
                                [{"path": leaf, "value": leaf_value} for leaf, leaf_value in leaves.items()],
                            )
        except SQLAlchemyError as e:
            logger.error(f"Atomic write of {len(writes)} paths rolled back: {e}")
            raise StoreError("Atomic write failed") from e
