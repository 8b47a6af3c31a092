# services/user_sequencer.py
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class _Slot:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.holders = 0


class UserSequencer:
    """
    Serializes work per user id in arrival order.

    asyncio.Lock wakes waiters first-in first-out, so jobs for one user run
    in the order they called `hold`. A slot lives only while some job for
    that user holds or waits on it.
    """

    def __init__(self):
        self._slots: Dict[str, _Slot] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        slot = self._slots.get(user_id)
        if slot is None:
            slot = self._slots[user_id] = _Slot()
        slot.holders += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.holders -= 1
            if slot.holders == 0:
                self._slots.pop(user_id, None)

    def active_users(self) -> int:
        return len(self._slots)
