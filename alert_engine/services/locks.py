"""Per-patient mutual exclusion for the read-then-write alert path."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

logger = structlog.get_logger(__name__)


class PatientLockRegistry:
    """
    Hands out one asyncio.Lock per patient.

    Evaluations for the same patient serialize; different patients never wait
    on each other. Locks are dropped once nobody holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, patient_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(patient_id, asyncio.Lock())
        self._waiters[patient_id] = self._waiters.get(patient_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[patient_id] -= 1
            if self._waiters[patient_id] == 0:
                del self._waiters[patient_id]
                del self._locks[patient_id]

    def __len__(self) -> int:
        return len(self._locks)
