from .base import DELETE, SERVER_TIMESTAMP, OrderStore, PreconditionFailed, StoreError
from .memory import MemoryOrderStore
from .sql import SqlOrderStore

__all__ = [
    "DELETE",
    "SERVER_TIMESTAMP",
    "OrderStore",
    "PreconditionFailed",
    "StoreError",
    "MemoryOrderStore",
    "SqlOrderStore",
]
