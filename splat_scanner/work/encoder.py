from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence

import httpx

from splat_scanner.work import settings
from splat_scanner.work.errors import FileTooLarge, InsufficientMedia
from splat_scanner.work.models import SourceType

MIN_BURST_IMAGES = 3

_MIME_TYPES = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".m4v": "video/x-m4v",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".heic": "image/heic",
    ".heif": "image/heic",
    ".bmp": "image/bmp",
}


@dataclass(frozen=True)
class EncodedUpload:
    body: bytes
    boundary: str

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"


def mime_type(path: Path) -> str:
    return _MIME_TYPES.get(path.suffix.lower(), "application/octet-stream")


def validate_sources(
    source_type: SourceType,
    paths: Sequence[Path],
    max_file_size: Optional[int] = None,
) -> None:
    """
    Check source count and sizes before anything touches the network.
    Raises InsufficientMedia, FileTooLarge, FileNotFoundError or ValueError.
    """
    if source_type is SourceType.BURST:
        if len(paths) < MIN_BURST_IMAGES:
            raise InsufficientMedia(len(paths), MIN_BURST_IMAGES)
    else:
        if not paths:
            raise InsufficientMedia(0, 1)
        if len(paths) > 1:
            raise ValueError(f"video upload takes exactly one file, got {len(paths)}")

    limit = settings.max_upload_bytes() if max_file_size is None else max_file_size
    for p in paths:
        size = p.stat().st_size
        if size > limit:
            raise FileTooLarge(p, size, limit)


def encode_upload(
    field_name: str,
    paths: Sequence[Path],
    *,
    iterations: int,
    resolution: int,
    fast: bool = False,
    boundary: Optional[str] = None,
) -> EncodedUpload:
    """Render files plus scalar fields as one multipart body. Sources are not validated here."""
    boundary = boundary or uuid.uuid4().hex
    data: Dict[str, str] = {"iterations": str(int(iterations)), "resolution": str(int(resolution))}
    if fast:
        data["fast"] = "true"
    files = [(field_name, (p.name, p.read_bytes(), mime_type(p))) for p in paths]
    request = httpx.Request(
        "POST",
        "http://upload.invalid/",
        data=data,
        files=files,
        headers={"Content-Type": f"multipart/form-data; boundary={boundary}"},
    )
    return EncodedUpload(body=request.read(), boundary=boundary)
