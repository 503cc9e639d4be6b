from __future__ import annotations

import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content: bytes


class FileUploader(Protocol):
    def upload(self, filename: str, content: bytes, folder: str) -> str: ...


def safe_name(value: str) -> str:
    cleaned = _UNSAFE_RE.sub("_", value).strip("._")
    return cleaned or "file"


class LocalFileUploader:
    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root or UPLOAD_DIR)

    def upload(self, filename: str, content: bytes, folder: str) -> str:
        directory = self.root / safe_name(folder)
        directory.mkdir(parents=True, exist_ok=True)
        stored = f"{int(time.time() * 1000)}_{safe_name(filename)}"
        (directory / stored).write_bytes(content)
        return f"/uploads/{safe_name(folder)}/{stored}"


def store_files(uploader: FileUploader, task_no: str, files: list[UploadedFile] | None) -> list[str]:
    """Upload non-empty files under the task's folder and return their URIs."""
    uris: list[str] = []
    for item in files or []:
        if not item.content:
            continue
        uris.append(uploader.upload(item.filename, item.content, task_no))
    return uris
