from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, TypedDict

from splat_scanner.work.errors import MalformedResponse, UnknownStatus


_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class JobStatus(str, Enum):
    """Server-side task state; values are the wire strings."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "done"
    FAILED = "error"

    @classmethod
    def decode(cls, value: Any) -> "JobStatus":
        try:
            return cls(value)
        except ValueError:
            raise UnknownStatus(value) from None


class ModelStatus(str, Enum):
    UPLOADING = "uploading"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (ModelStatus.COMPLETED, ModelStatus.FAILED)


_STATUS_RANK = {
    ModelStatus.UPLOADING: 0,
    ModelStatus.QUEUED: 1,
    ModelStatus.PROCESSING: 2,
    ModelStatus.COMPLETED: 3,
    ModelStatus.FAILED: 3,
}


class SourceType(str, Enum):
    VIDEO = "video"
    BURST = "burst"


class InvalidTransition(ValueError):
    def __init__(self, current: ModelStatus, target: ModelStatus):
        super().__init__(f"cannot move from {current.value} to {target.value}")
        self.current = current
        self.target = target


def format_timestamp(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def parse_timestamp(raw: str) -> datetime:
    return datetime.strptime(raw, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def utc_now() -> datetime:
    # second precision keeps the persisted document stable across reloads
    return datetime.now(timezone.utc).replace(microsecond=0)


@dataclass(frozen=True)
class Job:
    """Snapshot of a server task as returned by /status and /tasks."""

    status: JobStatus
    progress: int = 0
    message: str = ""
    stage: Optional[str] = None
    filename: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    result_path: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Job":
        if not isinstance(data, dict) or "status" not in data:
            raise MalformedResponse(f"not a task status object: {data!r}")
        try:
            progress = int(data.get("progress") or 0)
        except (TypeError, ValueError):
            raise MalformedResponse(f"bad progress value: {data.get('progress')!r}") from None
        return cls(
            status=JobStatus.decode(data["status"]),
            progress=progress,
            message=str(data.get("message") or ""),
            stage=data.get("stage"),
            filename=data.get("filename"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            result_path=data.get("result_path"),
            error=data.get("error"),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass(frozen=True)
class UploadResponse:
    task_id: str
    message: str = ""
    filename: Optional[str] = None
    type: Optional[str] = None
    image_count: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> "UploadResponse":
        if not isinstance(data, dict) or not data.get("task_id"):
            raise MalformedResponse(f"upload response without task_id: {data!r}")
        return cls(
            task_id=str(data["task_id"]),
            message=str(data.get("message") or ""),
            filename=data.get("filename"),
            type=data.get("type"),
            image_count=data.get("image_count"),
        )


@dataclass(frozen=True)
class UploadRequest:
    source_type: SourceType
    sources: List[Path]
    iterations: int = 7000
    resolution: int = 2
    fast: bool = True

    @classmethod
    def video(cls, path: Path | str, **params: Any) -> "UploadRequest":
        return cls(SourceType.VIDEO, [Path(path)], **params)

    @classmethod
    def images(cls, paths: List[Path | str], **params: Any) -> "UploadRequest":
        return cls(SourceType.BURST, [Path(p) for p in paths], **params)

    def display_name(self) -> str:
        if self.source_type is SourceType.VIDEO:
            return self.sources[0].stem if self.sources else "video"
        return f"burst_{len(self.sources)}_photos"


@dataclass
class UploadProgress:
    file_name: str
    progress: int = 0
    stage: str = "uploading"


class ModelRecord(TypedDict):
    id: str
    taskId: str
    name: str
    type: str
    timestamp: str
    status: str
    plyPath: Optional[str]
    stage: Optional[str]
    errorMessage: Optional[str]


@dataclass
class Model:
    """One user submission and the server task it tracks."""

    name: str
    type: SourceType
    task_id: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utc_now)
    status: ModelStatus = ModelStatus.UPLOADING
    ply_path: Optional[str] = None
    stage: Optional[str] = None
    error_message: Optional[str] = None

    def advance(self, target: ModelStatus) -> bool:
        """
        Move to `target` if that is a forward step. Returns False when the
        model already sits at a non-terminal `target`; raises
        InvalidTransition for backward moves or moves out of a terminal state.
        """
        if self.status is target and not target.is_terminal:
            return False
        if self.status.is_terminal or target.rank <= self.status.rank:
            raise InvalidTransition(self.status, target)
        self.status = target
        return True

    def to_dict(self) -> ModelRecord:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "name": self.name,
            "type": self.type.value,
            "timestamp": format_timestamp(self.timestamp),
            "status": self.status.value,
            "plyPath": self.ply_path,
            "stage": self.stage,
            "errorMessage": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Model":
        return cls(
            id=str(data["id"]),
            task_id=str(data["taskId"]),
            name=str(data["name"]),
            type=SourceType(data["type"]),
            timestamp=parse_timestamp(data["timestamp"]),
            status=ModelStatus(data["status"]),
            ply_path=data.get("plyPath"),
            stage=data.get("stage"),
            error_message=data.get("errorMessage"),
        )
