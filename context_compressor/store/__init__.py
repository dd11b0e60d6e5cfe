"""Persistent-store collaborators for the context compressor."""

from context_compressor.store.base import ContextStore, StoreError
from context_compressor.store.memory import InMemoryContextStore
from context_compressor.store.sqlite import SqliteContextStore

__all__ = [
    "ContextStore",
    "InMemoryContextStore",
    "SqliteContextStore",
    "StoreError",
]
