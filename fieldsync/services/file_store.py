"""Per-organization file trees on local disk."""

import io
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import BinaryIO, Dict, List, Tuple

from fieldsync.services.checksum import checksum_file, copy_with_checksum

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".tmp-"


@dataclass
class StoredFile:
    """A file belonging to one organization."""

    organization_id: int
    filename: str
    path: str
    size: int


def safe_filename(filename: str) -> str:
    """Strip directory components so a name cannot escape its organization root."""
    name = os.path.basename(filename.replace("\\", "/")).strip()
    if name in ("", ".", "..") or name.startswith(TEMP_PREFIX):
        raise ValueError(f"Invalid filename: {filename!r}")
    return name


class FileStore:
    """Files laid out as `<root>/<organization_id>/<filename>`."""

    def __init__(self, root: str):
        self.root = root

    def organization_dir(self, organization_id: int) -> str:
        return os.path.join(self.root, str(organization_id))

    def path_for(self, organization_id: int, filename: str) -> str:
        return os.path.join(self.organization_dir(organization_id), safe_filename(filename))

    def list_files(self, organization_id: int) -> List[StoredFile]:
        """List regular files of one organization, sorted by name."""
        directory = self.organization_dir(organization_id)
        if not os.path.isdir(directory):
            return []

        files = []
        for entry in sorted(os.scandir(directory), key=lambda e: e.name):
            if not entry.is_file() or entry.name.startswith(TEMP_PREFIX):
                continue
            files.append(StoredFile(
                organization_id=organization_id,
                filename=entry.name,
                path=entry.path,
                size=entry.stat().st_size,
            ))
        return files

    def manifest(self, organization_id: int) -> Dict[str, str]:
        """Return `{filename: checksum}` for one organization."""
        return {f.filename: checksum_file(f.path) for f in self.list_files(organization_id)}

    def read_bytes(self, organization_id: int, filename: str) -> bytes:
        with open(self.path_for(organization_id, filename), "rb") as f:
            return f.read()

    def write_stream(self, organization_id: int, filename: str, stream: BinaryIO) -> Tuple[str, str, int]:
        """Write a stream atomically and return `(path, checksum, size)`.

        Data lands in a temporary file in the same directory and is moved
        into place with `os.replace`, so readers see the old file or the new
        one, never a partial write.
        """
        target = self.path_for(organization_id, filename)
        directory = os.path.dirname(target)
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=directory)
        try:
            with os.fdopen(fd, "wb") as out:
                checksum, size = copy_with_checksum(stream, out)
            os.replace(tmp_path, target)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.debug(f"Stored {target} ({size} bytes, sha256 {checksum[:12]})")
        return target, checksum, size

    def write_bytes(self, organization_id: int, filename: str, data: bytes) -> Tuple[str, str, int]:
        return self.write_stream(organization_id, filename, io.BytesIO(data))
