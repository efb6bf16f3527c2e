"""Entity store: tenant-scoped persistence with conditional updates."""

from budget_kernel.store.base import EntityStore
from budget_kernel.store.sql_store import SqlEntityStore

__all__ = ["EntityStore", "SqlEntityStore"]
