"""Reference in-memory store and handlers."""

from .handlers import StoreHandlers, register_default_handlers
from .store import Item, MemoryStore

__all__ = ["Item", "MemoryStore", "StoreHandlers", "register_default_handlers"]
