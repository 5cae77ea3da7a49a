"""
Core Interfaces

Protocol definitions for the remote stores the runtime depends on.
"""

from .cache import RemoteKeyValueStore
from .queue import RemoteListStore

__all__ = ["RemoteKeyValueStore", "RemoteListStore"]
