"""Processed-webhook keys, so duplicate deliveries do not store or spend credit twice."""

from collections import OrderedDict


class ProcessedEvents:
    """Bounded in-memory set of event keys; oldest keys are evicted first."""

    def __init__(self, max_entries: int = 10_000) -> None:
        self._max_entries = max(1, max_entries)
        self._keys: OrderedDict[str, None] = OrderedDict()

    def claim(self, key: str) -> bool:
        """Mark `key` as processed. False if it was already claimed."""
        if key in self._keys:
            self._keys.move_to_end(key)
            return False
        self._keys[key] = None
        while len(self._keys) > self._max_entries:
            self._keys.popitem(last=False)
        return True

    def release(self, key: str) -> None:
        """Forget `key` so an upstream retry gets processed."""
        self._keys.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)
