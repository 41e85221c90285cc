import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class LocalCache:
    """Small JSON key/value store on disk, one file per key.

    Used as the offline fallback for personal data and for UI preferences.
    Unreadable entries are treated as missing.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable cache entry %s: %s", key, e)
            return default

    def set(self, key: str, value: Any):
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(json.dumps(value, default=str), encoding="utf-8")

    def remove(self, key: str):
        path = self._path(key)
        if path.exists():
            path.unlink()
