"""State store — JSON snapshot persistence for the election store.

The snapshot is written to a temporary sibling file and renamed into
place, so a crash mid-write leaves the previous snapshot intact.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from relayvote.ledger.store import ElectionStore


class StateStore:
    """Durable snapshot of one ElectionStore."""

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path

    @property
    def path(self) -> Path:
        return self._storage_path

    def exists(self) -> bool:
        return self._storage_path.exists()

    def save(self, store: ElectionStore) -> None:
        """Persist a snapshot. Raises OSError on write failure."""
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(store.to_dict(), f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self._storage_path)

    def load(self) -> Optional[ElectionStore]:
        if not self._storage_path.exists():
            return None
        data = json.loads(self._storage_path.read_text(encoding="utf-8"))
        return ElectionStore.from_dict(data)
