from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, List, Optional

from splat_scanner.work import settings
from splat_scanner.work.models import Model, ModelStatus

logger = logging.getLogger(__name__)


def base_data_dir() -> Path:
    d = settings.data_dir()
    d.mkdir(parents=True, exist_ok=True)
    return d


def artifacts_dir() -> Path:
    d = base_data_dir() / "models"
    d.mkdir(parents=True, exist_ok=True)
    return d


def models_path() -> Path:
    return base_data_dir() / "models.json"


def artifact_path(task_id: str, directory: Optional[Path] = None) -> Path:
    safe = task_id.replace("/", "_").replace("\\", "_")
    return (directory or artifacts_dir()) / f"{safe}.ply"


def write_json(path: Path, obj: Any) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(obj, ensure_ascii=False, indent=2), encoding="utf-8")
    os.replace(tmp, path)


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _artifact_missing(model: Model) -> bool:
    return model.status is ModelStatus.COMPLETED and (
        not model.ply_path or not Path(model.ply_path).is_file()
    )


class LocalStore:
    """Ordered model list persisted as one JSON document."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or models_path()
        self.pruned: List[Model] = []

    def save(self, models: List[Model]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_json(self.path, [m.to_dict() for m in models])

    def load(self) -> List[Model]:
        self.pruned = []
        if not self.path.exists():
            return []
        try:
            models = [Model.from_dict(x) for x in read_json(self.path)]
        except (ValueError, KeyError, TypeError):
            logger.exception("could not decode %s, starting with an empty list", self.path)
            return []

        kept = [m for m in models if not _artifact_missing(m)]
        self.pruned = [m for m in models if _artifact_missing(m)]
        for m in self.pruned:
            logger.warning("artifact missing for %s (task %s, plyPath %s), dropping record", m.name, m.task_id, m.ply_path)
        if self.pruned:
            self.save(kept)
        return kept
