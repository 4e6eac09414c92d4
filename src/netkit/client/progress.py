"""Per-request progress callbacks."""

import logging
import threading
from typing import Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class ProgressRegistry:
    """Thread-safe mapping from in-flight requests to progress callbacks.

    Entries are removed when their request settles, so the registry only
    ever holds the requests currently in flight. Reported fractions are
    clamped to ``[0.0, 1.0]``. A callback that raises is logged and
    otherwise ignored.
    """

    def __init__(self):
        self._callbacks: Dict[Hashable, ProgressCallback] = {}
        self._lock = threading.Lock()

    def register(self, key: Hashable, callback: Optional[ProgressCallback]) -> None:
        if callback is None:
            return
        with self._lock:
            self._callbacks[key] = callback

    def remove(self, key: Hashable) -> None:
        with self._lock:
            self._callbacks.pop(key, None)

    def report(self, key: Hashable, fraction: float) -> None:
        with self._lock:
            callback = self._callbacks.get(key)
        if callback is None:
            return
        try:
            callback(min(1.0, max(0.0, fraction)))
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._callbacks

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)


class UploadProgress:
    """Count uploaded bytes for one request and report them as a fraction.

    Used as the ``on_read`` callback of a request body stream. Call
    :meth:`restart` before a body is sent again, since a replayed body is
    read from its first byte.

    :param registry: Registry the fractions are reported to
    :param key: Request the fractions belong to
    """

    def __init__(self, registry: ProgressRegistry, key: Hashable):
        self.registry = registry
        self.key = key
        self.total = 0
        self.sent = 0

    def restart(self) -> None:
        self.sent = 0

    def __call__(self, size: int) -> None:
        self.sent += size
        if self.total:
            self.registry.report(self.key, self.sent / self.total)
