from .store import CELL_CONFLICT_KEYS, TABLES, InMemoryStore, Order, Store, StoreError

__all__ = [
    "CELL_CONFLICT_KEYS",
    "TABLES",
    "InMemoryStore",
    "Order",
    "Store",
    "StoreError",
]
