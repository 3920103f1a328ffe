import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger("schedule_cache")

ROSTER_KEY = "__roster__"


class ScheduleCache:
    """
    Last successful backend payload per key (master id, or ROSTER_KEY).

    Entries live in memory and, when a path is given, are mirrored to a JSON
    file so they survive restarts. Each key has a single writer; the lock only
    guards the shared dict and file.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path or None
        self.lock = threading.Lock()
        self.entries: Dict[str, Dict[str, Any]] = self._load()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if self.path and os.path.exists(self.path):
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    raw = json.load(f)
                if isinstance(raw, dict):
                    logger.info(f"[ScheduleCache] Loaded {len(raw)} entries from {self.path}")
                    return raw
                logger.warning(f"[ScheduleCache] Ignoring cache file with unexpected layout: {self.path}")
            except (OSError, ValueError) as e:
                logger.warning(f"[ScheduleCache] Load failed: {e}")
        return {}

    def get(self, key: str) -> Optional[List[Dict[str, Any]]]:
        with self.lock:
            entry = self.entries.get(key)
        if entry is None:
            logger.debug(f"[ScheduleCache] MISS: {key}")
            return None
        logger.debug(f"[ScheduleCache] HIT: {key} (stored {entry.get('stored_at')})")
        return list(entry.get("records", []))

    def stored_at(self, key: str) -> Optional[str]:
        with self.lock:
            entry = self.entries.get(key)
        return entry.get("stored_at") if entry else None

    def set(self, key: str, records: List[Dict[str, Any]]) -> None:
        with self.lock:
            self.entries[key] = {
                "records": list(records),
                "stored_at": datetime.now(timezone.utc).isoformat(),
            }
            self._persist()

    def delete(self, key: str) -> bool:
        with self.lock:
            removed = self.entries.pop(key, None) is not None
            if removed:
                self._persist()
        return removed

    def keys(self) -> List[str]:
        with self.lock:
            return list(self.entries)

    def clear(self) -> None:
        with self.lock:
            self.entries.clear()
            self._persist()

    def _persist(self) -> None:
        if not self.path:
            return
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self.entries, f, indent=2, default=str)
        except OSError as e:
            logger.warning(f"[ScheduleCache] Persist failed: {e}")
