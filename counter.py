import asyncio
from typing import Optional


class RemainingCounter:
    """Countdown of messages still to publish.

    ``claim`` decrements under a lock so concurrent workers never take more
    than ``total`` slots between them.
    """

    def __init__(self, total: int):
        if total < 0:
            raise ValueError("total must not be negative")
        self._total = total
        self._remaining = total
        self._lock = asyncio.Lock()

    @property
    def total(self) -> int:
        return self._total

    @property
    def remaining(self) -> int:
        return self._remaining

    def exhausted(self) -> bool:
        return self._remaining <= 0

    async def claim(self) -> Optional[int]:
        """Take one message slot; returns its 0-based sequence number, or None when none are left."""
        async with self._lock:
            if self._remaining <= 0:
                return None
            seq = self._total - self._remaining
            self._remaining -= 1
            return seq
