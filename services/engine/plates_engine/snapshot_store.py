from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .utils import ensure_dir, stable_json_dumps


class SnapshotStore:
    """Serialized models stored as opaque JSON blobs, addressed by id."""

    def __init__(self, data_root: Path):
        self.data_root = ensure_dir(data_root)
        self.snapshots_root = ensure_dir(self.data_root / "snapshots")
        self.exports_root = ensure_dir(self.data_root / "exports")

    def snapshot_path(self, snapshot_id: str) -> Path:
        return self.snapshots_root / f"{snapshot_id}.json"

    def write_snapshot(self, snapshot_id: str, payload: dict[str, Any]) -> Path:
        path = self.snapshot_path(snapshot_id)
        path.write_text(stable_json_dumps(payload), encoding="utf-8")
        return path

    def read_snapshot(self, snapshot_id: str) -> dict[str, Any] | None:
        path = self.snapshot_path(snapshot_id)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def list_snapshot_ids(self) -> list[str]:
        return sorted(path.stem for path in self.snapshots_root.glob("*.json"))

    def export_path(self, session_id: str, filename: str) -> Path:
        return ensure_dir(self.exports_root / session_id) / filename
