"""
Store factory.

Usage:
    from weatherchat.storage import make_store
    store = make_store("sqlite", path="./data/weatherchat.db")

Adding a new store:
    1. Create weatherchat/storage/<name>_store.py implementing ConversationStore.
    2. Add an entry to _REGISTRY below.
    3. Set  storage.backend: <name>  in config.yaml.
"""

from .base import ConversationStore
from .memory_store import MemoryStore
from .sqlite_store import SQLiteStore

_REGISTRY: dict[str, type[ConversationStore]] = {
    "memory": MemoryStore,
    "sqlite": SQLiteStore,
}


def make_store(backend_type: str, path: str | None = None) -> ConversationStore:
    """
    Instantiate a store by name.

    Args:
        backend_type: Registry key ("memory" or "sqlite").
        path:         Database file, required by file-backed stores.

    Raises:
        ValueError: If the store type is not registered.
    """
    cls = _REGISTRY.get(backend_type)
    if cls is None:
        raise ValueError(
            f"Unknown store backend {backend_type!r}. "
            f"Available: {sorted(_REGISTRY)}"
        )
    if cls is SQLiteStore:
        if not path:
            raise ValueError("sqlite store requires storage.sqlite_path")
        return SQLiteStore(path)
    return cls()


def store_from_config(cfg: dict) -> ConversationStore:
    storage_cfg = cfg.get("storage", {})
    return make_store(
        storage_cfg.get("backend", "memory"),
        path=storage_cfg.get("sqlite_path"),
    )


__all__ = [
    "ConversationStore",
    "MemoryStore",
    "SQLiteStore",
    "make_store",
    "store_from_config",
]
