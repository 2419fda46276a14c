"""Content digests used to fingerprint files and records."""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, BinaryIO, Dict, Iterable, Tuple

CHUNK_SIZE = 64 * 1024


def checksum_bytes(data: bytes) -> str:
    """Return the hex SHA-256 digest of a byte string."""
    return hashlib.sha256(data).hexdigest()


def checksum_chunks(chunks: Iterable[bytes]) -> str:
    """Return the hex SHA-256 digest of a sequence of byte chunks."""
    digest = hashlib.sha256()
    for chunk in chunks:
        digest.update(chunk)
    return digest.hexdigest()


def checksum_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> str:
    """Return the hex SHA-256 digest of a binary stream, read to its end."""
    return checksum_chunks(iter(lambda: stream.read(chunk_size), b""))


def copy_with_checksum(stream: BinaryIO, out: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Tuple[str, int]:
    """Copy a stream into `out`; return the hex SHA-256 digest and byte count."""
    size = 0

    def chunks():
        nonlocal size
        for chunk in iter(lambda: stream.read(chunk_size), b""):
            size += len(chunk)
            out.write(chunk)
            yield chunk

    checksum = checksum_chunks(chunks())
    return checksum, size


def checksum_file(path: str) -> str:
    """Return the hex SHA-256 digest of a file on disk."""
    with open(path, "rb") as f:
        return checksum_stream(f)


def normalize_value(value: Any) -> Any:
    """Convert a column value to its JSON-compatible form."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    return value


def normalize_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Return a JSON-compatible copy of a record payload."""
    return {str(key): normalize_value(value) for key, value in record.items()}


def checksum_record(record: Dict[str, Any]) -> str:
    """Return the digest of a record's canonical JSON form.

    Keys are sorted, so two payloads with the same fields and values hash
    identically regardless of column order.
    """
    canonical = json.dumps(normalize_record(record), sort_keys=True, separators=(",", ":"), default=str)
    return checksum_bytes(canonical.encode("utf-8"))
