import functools
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ledger.errors import LedgerServiceError, StorageUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class PendingReward:
    name: str
    call: Callable[[], Any]
    attempts: int = 0
    last_error: Optional[str] = None


class RewardRetryQueue:
    """
    Runs reward calls that follow a primary operation (an upload, a follow).

    The primary operation has already succeeded and is never rolled back.
    A reward that fails with StorageUnavailableError is queued and retried
    by `drain`; every reward call is idempotent, so a retry never pays
    twice. Business rejections are logged and dropped.
    """

    def __init__(self, max_attempts: int = 3, base_delay: float = 0.1, sleep: Callable[[float], None] = time.sleep):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep
        self.pending: deque[PendingReward] = deque()
        self.dead_letters: list[PendingReward] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.pending)

    def submit(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> Optional[Any]:
        item = PendingReward(name=name, call=functools.partial(fn, *args, **kwargs))
        ok, result = self._attempt(item)
        if not ok and item.last_error is not None and item.attempts < self.max_attempts:
            with self._lock:
                self.pending.append(item)
        elif not ok and item.last_error is not None:
            self.dead_letters.append(item)
        return result

    def _attempt(self, item: PendingReward) -> tuple[bool, Optional[Any]]:
        item.attempts += 1
        try:
            return True, item.call()
        except StorageUnavailableError as e:
            item.last_error = str(e)
            logger.warning("Reward %s failed (attempt %d): %s", item.name, item.attempts, e)
            return False, None
        except LedgerServiceError as e:
            item.last_error = None
            logger.error("Reward %s rejected: %s", item.name, e)
            return False, None

    def drain(self) -> list[dict]:
        """Retry queued rewards with exponential backoff until they succeed or run out of attempts."""
        results = []
        while True:
            with self._lock:
                batch = list(self.pending)
                self.pending.clear()
            if not batch:
                return results
            delay = self.base_delay * (2 ** (min(i.attempts for i in batch) - 1))
            self.sleep(delay)
            for item in batch:
                ok, result = self._attempt(item)
                if ok:
                    results.append({"name": item.name, "success": True, "result": result})
                elif item.last_error is None:
                    results.append({"name": item.name, "success": False, "error": "rejected"})
                elif item.attempts >= self.max_attempts:
                    logger.error("Reward %s gave up after %d attempts", item.name, item.attempts)
                    self.dead_letters.append(item)
                    results.append({"name": item.name, "success": False, "error": item.last_error})
                else:
                    with self._lock:
                        self.pending.append(item)
