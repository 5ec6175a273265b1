# src/habitstack/local_store.py
import json
import logging
import os
from datetime import date
from typing import Any, Optional, Set

from habitstack.errors import StorageError

logger = logging.getLogger(__name__)

STACKS_KEY = "habitStacks"
COMPLETED_KEY = "completedToday"


class LocalStore:
    """Key/value store kept in a single JSON file.

    Each key holds its own JSON-encoded string, the way browser local storage
    does, so one corrupt value never hides the others. A store created
    without a path behaves like an environment with no storage at all.
    """

    def __init__(self, path: Optional[str]):
        self.path = path

    @property
    def available(self) -> bool:
        return bool(self.path)

    def get(self, key: str) -> Any:
        if not self.available:
            return None
        try:
            raw = self._read_all().get(key)
            return json.loads(raw) if raw is not None else None
        except (StorageError, TypeError, ValueError) as e:
            logger.error("Error getting %r from local store: %s", key, e)
            return None

    def set(self, key: str, value: Any) -> None:
        if not self.available:
            return
        try:
            try:
                data = self._read_all()
            except StorageError:
                data = {}
            data[key] = json.dumps(value)
            self._write_all(data)
        except (StorageError, TypeError, ValueError) as e:
            logger.error("Error saving %r to local store: %s", key, e)

    # -------------------------------
    # FILE ACCESS
    # -------------------------------
    def _read_all(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"{self.path} does not hold a key/value object")
        return data

    def _write_all(self, data: dict) -> None:
        tmp = self.path + ".tmp"
        try:
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e


def read_completed_today(store: LocalStore, today: Optional[date] = None) -> Set[str]:
    """Return the ids stored under ``completedToday``.

    Older clients stored bare id strings; those are upgraded to ``{id, date}``
    pairs dated today before everything is collapsed into a set of ids.
    Stored dates are ignored: every entry read here counts as done today.
    """
    stored = store.get(COMPLETED_KEY)
    if stored is None:
        return set()

    if isinstance(stored, dict):
        return {str(habit_id) for habit_id, done in stored.items() if done}

    if not isinstance(stored, list):
        logger.error("Ignoring unexpected %s value: %r", COMPLETED_KEY, stored)
        return set()

    today_str = (today or date.today()).isoformat()
    entries = [{"id": item, "date": today_str} if isinstance(item, str) else item for item in stored]
    return {str(entry["id"]) for entry in entries if isinstance(entry, dict) and entry.get("id") is not None}


def write_completed_today(store: LocalStore, completed) -> None:
    store.set(COMPLETED_KEY, sorted(completed))
