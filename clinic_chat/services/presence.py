"""
Presence registry

Tracks which users currently hold a live gateway connection. Entries are
kept per connection handle, so a user with several open tabs stays online
until the last one disconnects, and a late disconnect from an old
connection cannot evict a newer one.

The registry is process-local and starts empty on every boot.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List


class PresenceRegistry(ABC):
    """Presence contract owned by the realtime gateway"""

    @abstractmethod
    def register(self, user_id: str, handle_id: str, handle: Any = None) -> None:
        ...

    @abstractmethod
    def unregister(self, user_id: str, handle_id: str) -> bool:
        """Drop one handle. Returns True when the user has no handle left."""

    @abstractmethod
    def is_online(self, user_id: str) -> bool:
        ...

    @abstractmethod
    def online_users(self) -> List[str]:
        ...

    @abstractmethod
    def handles(self, user_id: str) -> List[Any]:
        ...


class InMemoryPresenceRegistry(PresenceRegistry):
    """Presence registry held in process memory"""

    def __init__(self):
        # {user_id: {handle_id: handle}}
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def register(self, user_id: str, handle_id: str, handle: Any = None) -> None:
        with self._lock:
            self._entries.setdefault(user_id, {})[handle_id] = handle

    def unregister(self, user_id: str, handle_id: str) -> bool:
        with self._lock:
            handles = self._entries.get(user_id)
            if handles is None:
                return False
            handles.pop(handle_id, None)
            if handles:
                return False
            del self._entries[user_id]
            return True

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return bool(self._entries.get(user_id))

    def online_users(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def handles(self, user_id: str) -> List[Any]:
        with self._lock:
            return list(self._entries.get(user_id, {}).values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
