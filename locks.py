import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Hashable

from errors import Unavailable
from settings import LOCK_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class KeyedLock:
    """Scoped exclusive access to an entity by key.

    Holders of the same key run one at a time; different keys never block
    each other. Waiting is bounded by ``timeout`` seconds, after which the
    caller gets ``Unavailable`` and nothing has been touched.
    """

    def __init__(self, timeout: float = LOCK_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._holders: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Lock wait timed out for key={key!r} after {self.timeout}s")
                raise Unavailable()
            try:
                yield
            finally:
                lock.release()
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
