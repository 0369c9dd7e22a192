from typing import Optional

from sqlalchemy.orm import sessionmaker

from shipgraph.config import settings
from shipgraph.repositories.base import EntityStore, StoreOp, apply_writes
from shipgraph.repositories.relational_store import RelationalStore
from shipgraph.repositories.wide_column_store import WideColumnStore

BACKENDS = {
    RelationalStore.backend: RelationalStore,
    WideColumnStore.backend: WideColumnStore,
}


def build_store(backend: str, session_factory: Optional[sessionmaker] = None) -> EntityStore:
    try:
        store_cls = BACKENDS[backend]
    except KeyError:
        raise ValueError(
            f"Unknown STORE_BACKEND {backend!r}; expected one of {sorted(BACKENDS)}"
        )
    return store_cls(session_factory)


def get_store() -> EntityStore:
    """FastAPI dependency: the store for the configured backend."""
    return build_store(settings.STORE_BACKEND)


__all__ = [
    "EntityStore",
    "StoreOp",
    "apply_writes",
    "RelationalStore",
    "WideColumnStore",
    "build_store",
    "get_store",
]
