import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from dateutil import parser as dateparser
from django.utils import timezone as djtz

from ..config import SyncConfig
from ..models import CheckpointRecord

logger = logging.getLogger(__name__)


@dataclass
class Checkpoint:
    entity_name: str
    last_sync_timestamp: Optional[datetime] = None
    last_page: Optional[int] = None
    run_id: str = ""
    completed: bool = False


class DatabaseCheckpointStore:
    """CheckpointRecord rows; saves join the caller's transaction."""
    transactional = True

    def load(self, entity_name: str) -> Optional[Checkpoint]:
        row = CheckpointRecord.objects.filter(entity_name=entity_name).first()
        if row is None:
            return None
        return Checkpoint(
            entity_name=row.entity_name,
            last_sync_timestamp=row.last_sync_timestamp,
            last_page=row.last_page,
            run_id=row.run_id,
            completed=row.completed,
        )

    def save(self, checkpoint: Checkpoint) -> None:
        CheckpointRecord.objects.update_or_create(
            entity_name=checkpoint.entity_name,
            defaults={
                "last_sync_timestamp": checkpoint.last_sync_timestamp,
                "last_page": checkpoint.last_page,
                "run_id": checkpoint.run_id,
                "completed": checkpoint.completed,
            },
        )
        logger.info("Checkpoint %s saved (%s)", checkpoint.entity_name, _describe(checkpoint))


class FileCheckpointStore:
    """One JSON document per entity: <dir>/<entity>_last_sync.json."""
    transactional = False

    def __init__(self, directory):
        self.directory = Path(directory)

    def path_for(self, entity_name: str) -> Path:
        return self.directory / f"{entity_name}_last_sync.json"

    def load(self, entity_name: str) -> Optional[Checkpoint]:
        path = self.path_for(entity_name)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            last_sync = data.get("lastSync")
            return Checkpoint(
                entity_name=data.get("entityName") or entity_name,
                last_sync_timestamp=dateparser.isoparse(last_sync) if last_sync else None,
                last_page=data.get("lastPage"),
                run_id=data.get("runId") or "",
                completed=bool(data.get("completed", False)),
            )
        except (OSError, ValueError) as e:
            logger.warning("Unreadable checkpoint %s (%s); treating as absent", path, e)
            return None

    def save(self, checkpoint: Checkpoint) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(checkpoint.entity_name)
        document = {
            "entityName": checkpoint.entity_name,
            "lastSync": checkpoint.last_sync_timestamp.isoformat() if checkpoint.last_sync_timestamp else None,
            "lastPage": checkpoint.last_page,
            "runId": checkpoint.run_id,
            "completed": checkpoint.completed,
            "syncedAt": djtz.now().isoformat(),
        }
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(document, fh, indent=2)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
        logger.info("Checkpoint %s saved to %s (%s)", checkpoint.entity_name, path, _describe(checkpoint))


def _describe(checkpoint: Checkpoint) -> str:
    if checkpoint.last_sync_timestamp:
        return checkpoint.last_sync_timestamp.isoformat()
    state = "completed" if checkpoint.completed else "in progress"
    return f"run {checkpoint.run_id} page {checkpoint.last_page}, {state}"


def get_checkpoint_store(config: SyncConfig):
    if config.checkpoint_backend == "file":
        return FileCheckpointStore(config.checkpoint_dir)
    return DatabaseCheckpointStore()
