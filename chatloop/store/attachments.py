"""
Content-addressed storage for message attachments.

Attachment bytes are stored by their SHA-256 hash in a two-level directory
layout (first two hex chars as subdirectory).  Storing the same bytes twice
returns the same path without writing a second file.  Only the database row
remembers the original filename; it is never used as a path segment.
"""

from __future__ import annotations

import base64
import hashlib
import os
from dataclasses import dataclass
from pathlib import Path

from chatloop.store.models import Attachment
from chatloop.types import AttachmentPayload


@dataclass
class StoredBlob:
    sha256: str
    stored_path: str
    size_bytes: int


class AttachmentStore:
    """
    Store and retrieve attachment bytes by content hash.

    Parameters
    ----------
    base_dir:
        Root directory for attachment storage.  Created with ``0o700``
        permissions if it does not exist.
    """

    def __init__(self, base_dir: str) -> None:
        self.base_dir = Path(base_dir).expanduser().resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.base_dir, 0o700)

    def _validate_under_base(self, path: Path) -> None:
        resolved = path.resolve()
        base = self.base_dir.resolve()
        if resolved != base and not str(resolved).startswith(str(base) + os.sep):
            raise ValueError(
                f"Path traversal detected: {path} resolves outside {self.base_dir}"
            )

    def put(self, payload: AttachmentPayload) -> StoredBlob:
        """Write *payload* (deduplicated by hash) and return where it lives."""
        sha = hashlib.sha256(payload.content).hexdigest()
        subdir = self.base_dir / sha[:2]
        file_path = subdir / sha
        self._validate_under_base(file_path)

        if not file_path.exists():
            subdir.mkdir(exist_ok=True)
            os.chmod(subdir, 0o700)
            tmp_path = file_path.with_suffix(".tmp")
            try:
                tmp_path.write_bytes(payload.content)
                os.chmod(tmp_path, 0o600)
                tmp_path.rename(file_path)
            except BaseException:
                if tmp_path.exists():
                    tmp_path.unlink()
                raise

        return StoredBlob(
            sha256=sha, stored_path=str(file_path), size_bytes=len(payload.content)
        )

    def read(self, attachment: Attachment) -> bytes:
        """
        Return the raw bytes of *attachment*.

        Raises
        ------
        FileNotFoundError
            If the file is missing on disk.
        ValueError
            If the stored path escapes the base directory.
        """
        path = Path(attachment.stored_path).resolve()
        self._validate_under_base(path)
        if not path.exists():
            raise FileNotFoundError(f"Attachment not found: {attachment.sha256}")
        return path.read_bytes()

    def read_base64(self, attachment: Attachment) -> str:
        return base64.b64encode(self.read(attachment)).decode("ascii")
