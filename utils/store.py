import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

from protocols.base import KeyValueStore

logger = logging.getLogger(__name__)

class InMemoryStore(KeyValueStore):
    """Process-local store, lost on exit"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = str(value)

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """Small key-value store persisted as one JSON object on disk

    Every write rewrites the whole file through a temporary file so a crash
    never leaves a half-written document behind.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self.data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring state file {self.path}: expected a JSON object")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        with open(tmp_path, 'w') as f:
            json.dump(self.data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = str(value)
        self._flush()

    def delete(self, key: str) -> None:
        if key in self.data:
            del self.data[key]
            self._flush()
