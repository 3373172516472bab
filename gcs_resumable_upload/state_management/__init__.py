from .session_store import SessionStore
from .session_store_memory import MemorySessionStore
from .session_store_sqlite import SqliteSessionStore

__all__ = ["SessionStore", "MemorySessionStore", "SqliteSessionStore"]
