from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def load_snapshot(path: PathLike) -> Dict[str, Any]:
    """Read a JSON object from ``path``. Missing or broken files give an empty dict."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.info("No cache at %s, starting fresh", path)
        return {}
    except (OSError, ValueError) as e:
        logger.warning("Failed to load cache %s, starting fresh: %s", path, e)
        return {}

    if not isinstance(data, dict):
        logger.warning("Cache %s is not a JSON object, starting fresh", path)
        return {}
    return data


def save_snapshot(path: PathLike, mapping: Dict[str, Any]) -> bool:
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(mapping, f, indent=2, ensure_ascii=False)
    except (OSError, TypeError, ValueError) as e:
        logger.error("Failed to save %s: %s", path, e)
        return False
    logger.debug("%s saved (%d entries)", path, len(mapping))
    return True


class JsonFileCache:
    """Key-value store backed by a JSON snapshot, rewritten on every put. No expiry."""

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._store: Dict[str, Any] = load_snapshot(self.path)
        logger.info("Cache %s loaded with %d entries", self.path, len(self._store))

    def get(self, key: str) -> Optional[Any]:
        return self._store.get(key)

    def put(self, key: str, value: Any) -> None:
        self._store[key] = value
        self.flush()

    def flush(self) -> bool:
        return save_snapshot(self.path, self._store)

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._store)

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)
