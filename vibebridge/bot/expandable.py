"""Bounded store of full texts behind "Show full message" buttons."""
from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict

logger = logging.getLogger(__name__)

EXPAND_PREFIX = "expand:"
DEFAULT_CAPACITY = 20


class ExpandableMessageStore:
    """Maps short keys to full message texts.

    Holds at most *capacity* entries; inserting past capacity evicts the
    oldest. An entry is removed once it has been expanded.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._capacity = capacity
        self._entries: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def add(self, full_text: str) -> str:
        """Store *full_text* and return its key."""
        key = uuid.uuid4().hex[:12]
        with self._lock:
            self._entries[key] = full_text
            while len(self._entries) > self._capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Expandable message %s evicted", evicted)
        return key

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._entries.get(key)

    def pop(self, key: str) -> str | None:
        with self._lock:
            return self._entries.pop(key, None)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)


def callback_data_for(key: str) -> str:
    return f"{EXPAND_PREFIX}{key}"


def key_from_callback_data(data: str) -> str | None:
    """Extract the store key from button callback data, or None."""
    if not data.startswith(EXPAND_PREFIX):
        return None
    return data[len(EXPAND_PREFIX):] or None
