import logging
import threading
from contextlib import ExitStack, contextmanager

from app.config import LOCK_TIMEOUT_SECONDS
from app.exceptions import PartitionLockTimeout


logger = logging.getLogger(__name__)


class KeyedLocks:
    """Named mutexes with a bounded wait.

    One lock per key ("partition:<doctor>:<day>", "appointment:<id>"), created
    on first use and dropped once nobody holds or waits on it.
    """

    def __init__(self, timeout: float = LOCK_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks = {}

    @contextmanager
    def hold(self, key: str, timeout: float = None):
        wait = self.timeout if timeout is None else timeout
        with self._guard:
            slot = self._locks.get(key)
            if slot is None:
                slot = self._locks[key] = [threading.Lock(), 0]
            slot[1] += 1

        acquired = slot[0].acquire(timeout=wait)
        try:
            if not acquired:
                logger.warning(f"Timed out after {wait}s waiting for lock {key}")
                raise PartitionLockTimeout(key, wait)
            yield
        finally:
            if acquired:
                slot[0].release()
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0 and self._locks.get(key) is slot:
                    del self._locks[key]

    @contextmanager
    def hold_many(self, keys, timeout: float = None):
        # Fixed acquisition order so two callers never wait on each other
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self.hold(key, timeout))
            yield

    def __len__(self):
        with self._guard:
            return len(self._locks)
