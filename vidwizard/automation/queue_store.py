"""Snapshot stores for the render queue"""

import json
from pathlib import Path
from typing import Optional

from .automation_models import QueueSnapshot
from ..utils.logger import LoggerMixin


class QueueStore:
    """Key-value blob store holding the last queue snapshot"""

    def save(self, snapshot: QueueSnapshot) -> None:
        raise NotImplementedError

    def load(self) -> Optional[QueueSnapshot]:
        raise NotImplementedError


class InMemoryQueueStore(QueueStore):
    def __init__(self):
        self.blob: Optional[str] = None
        self.save_count = 0

    def save(self, snapshot: QueueSnapshot) -> None:
        self.blob = snapshot.model_dump_json()
        self.save_count += 1

    def load(self) -> Optional[QueueSnapshot]:
        if self.blob is None:
            return None
        return QueueSnapshot.model_validate_json(self.blob)


class JsonFileQueueStore(QueueStore, LoggerMixin):
    """Stores the snapshot as a JSON file, replaced atomically on each save"""

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def save(self, snapshot: QueueSnapshot) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(snapshot.model_dump(mode='json'), f, indent=2)
        tmp_path.replace(self.path)

    def load(self) -> Optional[QueueSnapshot]:
        if not self.path.exists():
            return None

        with open(self.path, encoding='utf-8') as f:
            data = json.load(f)

        snapshot = QueueSnapshot(**data)
        self.logger.info(f"Loaded {len(snapshot.jobs)} render jobs from {self.path}")
        return snapshot
