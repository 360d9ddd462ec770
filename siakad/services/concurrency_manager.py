"""
Concurrency management and thread safety components.
"""

import logging
import threading
import time
import uuid
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ..core.exceptions import ConcurrencyError

logger = logging.getLogger(__name__)


@dataclass
class LockInfo:
    """Information about a held lock."""
    lock_id: str
    resource_id: str
    holder_id: str
    acquired_at: float
    depth: int = 1


class ConcurrencyManager:
    """Keyed exclusive locks serializing check-then-write sequences in this process.

    A holder may re-acquire a resource it already holds; other holders block
    until it is released or the timeout elapses.
    """

    def __init__(self, default_timeout: float = 10.0):
        self._default_timeout = default_timeout
        self._holders: Dict[str, LockInfo] = {}
        self._condition = threading.Condition()

    def acquire_lock(self, resource_id: str, holder_id: str,
                     timeout: Optional[float] = None) -> str:
        """Acquire the lock on a resource, waiting up to ``timeout`` seconds."""
        timeout = self._default_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        with self._condition:
            while True:
                current = self._holders.get(resource_id)
                if current is None:
                    lock_info = LockInfo(
                        lock_id=str(uuid.uuid4()),
                        resource_id=resource_id,
                        holder_id=holder_id,
                        acquired_at=time.time()
                    )
                    self._holders[resource_id] = lock_info
                    return lock_info.lock_id
                if current.holder_id == holder_id:
                    current.depth += 1
                    return current.lock_id

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning("Timed out waiting for lock on %s held by %s",
                                   resource_id, current.holder_id)
                    raise ConcurrencyError(
                        f"Cannot acquire lock on {resource_id}",
                        details={"resource_id": resource_id, "timeout": timeout}
                    )
                self._condition.wait(remaining)

    def release_lock(self, lock_id: str) -> bool:
        """Release a lock."""
        with self._condition:
            for resource_id, lock_info in self._holders.items():
                if lock_info.lock_id != lock_id:
                    continue
                lock_info.depth -= 1
                if lock_info.depth == 0:
                    del self._holders[resource_id]
                    self._condition.notify_all()
                return True
            return False

    @contextmanager
    def lock(self, resource_id: str, holder_id: Optional[str] = None,
             timeout: Optional[float] = None):
        """Context manager for acquiring and releasing a lock."""
        holder_id = holder_id or f"thread-{threading.get_ident()}"
        lock_id = self.acquire_lock(resource_id, holder_id, timeout)
        try:
            yield lock_id
        finally:
            self.release_lock(lock_id)

    @contextmanager
    def lock_many(self, resource_ids: Iterable[str], holder_id: Optional[str] = None,
                  timeout: Optional[float] = None):
        """Lock several resources, always in sorted order to avoid deadlocks."""
        with ExitStack() as stack:
            lock_ids = [
                stack.enter_context(self.lock(resource_id, holder_id, timeout))
                for resource_id in sorted(set(resource_ids))
            ]
            yield lock_ids

    def is_locked(self, resource_id: str) -> bool:
        with self._condition:
            return resource_id in self._holders

    def get_lock_info(self, resource_id: str) -> Optional[LockInfo]:
        """Get information about the lock on a resource."""
        with self._condition:
            return self._holders.get(resource_id)

    def get_statistics(self) -> Dict[str, object]:
        """Get concurrency statistics."""
        with self._condition:
            holders: List[str] = sorted({info.holder_id for info in self._holders.values()})
            return {
                "held_locks": len(self._holders),
                "holders": holders,
                "default_timeout": self._default_timeout,
            }


@contextmanager
def critical_section(database, concurrency_manager: ConcurrencyManager,
                     keys: Iterable[str], timeout: Optional[float] = None):
    """Hold the keyed locks and one database transaction for the whole block.

    Keys are locked in this process first, then inside the transaction through
    the backend's advisory lock so other processes serialize on them too.
    """
    keys = sorted(set(keys))
    with concurrency_manager.lock_many(keys, timeout=timeout):
        with database.transaction():
            for key in keys:
                database.advisory_lock(key)
            yield
