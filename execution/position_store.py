# PATH: execution/position_store.py
"""
Persisted position ids.

Key/value store keyed by position_key(owner, series, ilk). Values are
vault ids (bytes12 hex). Last write wins, reads see the latest write.
Entries are never deleted by the borrow flow.
"""

import json
from pathlib import Path
from typing import Dict, Optional, Protocol

from core.logging import get_logger
from core.time import now_iso

logger = get_logger(__name__)


class PositionStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class InMemoryPositionStore:
    """Process-local store, used by tests and one-shot CLI runs."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def __len__(self) -> int:
        return len(self._values)


class JsonFilePositionStore:
    """
    Store backed by a JSON file.

    The whole file is rewritten on every set(). A missing file is an
    empty store; an unreadable one is logged and treated as empty.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._values: Dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(
                "Failed to load position store",
                extra={"context": {"path": str(self.path), "error": str(e)}},
            )
            return

        positions = data.get("positions", {}) if isinstance(data, dict) else data
        if not isinstance(positions, dict):
            logger.warning(
                "Position store has unexpected layout",
                extra={"context": {"path": str(self.path), "type": type(positions).__name__}},
            )
            return

        self._values = {str(k): str(v) for k, v in positions.items()}
        logger.debug(
            "Loaded position store",
            extra={"context": {"path": str(self.path), "entries": len(self._values)}},
        )

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {"updated_at": now_iso(), "positions": self._values}
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self._save()
