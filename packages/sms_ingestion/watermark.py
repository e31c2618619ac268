"""Per-user "last processed" timestamps bounding catch-up scans.

Several processes (API, worker, Celery tasks) may share one file. Every save
re-reads the file under a lock and keeps the larger value per user, so no
process can move another user's watermark backwards.
"""

import json
import os
import threading
from pathlib import Path
from typing import Dict, Optional, Union

import structlog
from filelock import FileLock

from .models import from_epoch_ms

logger = structlog.get_logger()

LOCK_TIMEOUT_SECONDS = 10


class WatermarkStore:
    """Monotonic per-user watermark (epoch milliseconds), persisted as JSON.

    With ``path=None`` the store is memory-only.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._values: Dict[str, int] = self._read() if self.path else {}

    def _read(self) -> Dict[str, int]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("watermark_load_failed", path=str(self.path), error=str(e))
            return {}
        return {str(k): int(v) for k, v in data.items() if isinstance(v, (int, float))}

    def _merge_and_write(self, values: Dict[str, int]) -> Dict[str, int]:
        """Merge ``values`` into the file, largest value per user wins."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(self.path) + ".lock", timeout=LOCK_TIMEOUT_SECONDS)
        with lock:
            merged = self._read()
            for user_id, value in values.items():
                merged[user_id] = max(merged.get(user_id, 0), value)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(merged, sort_keys=True), encoding="utf-8")
            os.replace(tmp, self.path)
        return merged

    def get(self, user_id: str) -> int:
        with self._lock:
            return self._values.get(user_id, 0)

    def advance(self, user_id: str, timestamp_ms: int) -> int:
        """Move the watermark to max(current, timestamp_ms); returns the result.

        Raises OSError when the file cannot be written; memory is then left
        untouched.
        """
        with self._lock:
            current = self._values.get(user_id, 0)
            if timestamp_ms <= current:
                return current
            pending = dict(self._values)
            pending[user_id] = timestamp_ms
            if self.path:
                pending = self._merge_and_write(pending)
            self._values = pending
            result = pending[user_id]
        logger.debug("watermark_advanced", user_id=user_id, last_seen_at=from_epoch_ms(result).isoformat())
        return result
