from __future__ import annotations

from pathlib import Path
from typing import Optional


class APIError(Exception):
    """Base for everything the reconstruction client raises."""


class InsufficientMedia(APIError):
    def __init__(self, count: int, required: int):
        super().__init__(f"at least {required} source files required, got {count}")
        self.count = count
        self.required = required


class FileTooLarge(APIError):
    def __init__(self, path: Path, size: int, limit: int):
        super().__init__(f"{path.name} is {size} bytes, limit is {limit}")
        self.path = path
        self.size = size
        self.limit = limit


class TransportError(APIError):
    """Connection, timeout or protocol failure before a response arrived."""


class MalformedResponse(APIError):
    """Response body could not be decoded into the expected shape."""


class UnknownStatus(MalformedResponse):
    def __init__(self, value: object):
        super().__init__(f"unknown task status: {value!r}")
        self.value = value


class ServerError(APIError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TaskNotFound(APIError):
    def __init__(self, task_id: str):
        super().__init__(f"task not found: {task_id}")
        self.task_id = task_id


class ModelNotFound(LookupError):
    def __init__(self, model_id: str):
        super().__init__(f"model not found: {model_id}")
        self.model_id = model_id


class ModelNotReady(ValueError):
    """The model has not reached the state the operation needs."""
