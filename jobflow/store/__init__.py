from jobflow.store.protocol import EntityStore
from jobflow.store.sql import SqlEntityStore

__all__ = ["EntityStore", "SqlEntityStore"]
