"""Artifact directory layout and retrieval URL format."""

from __future__ import annotations

import os
import re
from pathlib import Path

JOB_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
FILENAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+\.(png|jpg|jpeg|pdf|txt|json|csv|zip)$", re.IGNORECASE)


def screenshot_filename(index: int) -> str:
    return f"screenshot-{index}.png"


def download_filename(index: int, suggested: str) -> str:
    """Build ``download-{index}-{name}`` with a name that is safe to serve back.

    Only the final path component of the suggested name is used; characters
    outside ``[A-Za-z0-9_-]`` in the stem become underscores.
    """

    stem, ext = os.path.splitext(Path(suggested).name)
    stem = re.sub(r"[^A-Za-z0-9_-]", "_", stem) or "file"
    ext = re.sub(r"[^A-Za-z0-9]", "", ext).lower()
    return f"download-{index}-{stem}" + (f".{ext}" if ext else "")


class ArtifactStorage:
    """Per-job artifact directories below a single root."""

    def __init__(self, root: Path, base_url: str) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def job_dir(self, job_id: str) -> Path:
        directory = self.root / job_id
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def url_for(self, job_id: str, filename: str) -> str:
        return f"{self.base_url}/artifacts/{job_id}/{filename}"

    def resolve(self, job_id: str, filename: str) -> Path | None:
        """Return the stored file, or None if either name is malformed or nothing is stored.

        Both name checks run before the filesystem is consulted.
        """

        if not JOB_ID_PATTERN.match(job_id) or not FILENAME_PATTERN.match(filename):
            return None
        path = self.root / job_id / filename
        if not path.is_file():
            return None
        return path
