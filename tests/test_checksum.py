"""Tests for checksums of files and records."""

import io
from datetime import datetime
from decimal import Decimal

from fieldsync.services.checksum import (
    checksum_bytes,
    checksum_chunks,
    checksum_file,
    checksum_record,
    checksum_stream,
    copy_with_checksum,
    normalize_record,
)


def test_checksum_is_sha256_hex():
    assert checksum_bytes(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_chunked_stream_and_file_agree(tmp_path):
    data = b"field report " * 20000
    path = tmp_path / "report.txt"
    path.write_bytes(data)

    expected = checksum_bytes(data)
    assert checksum_chunks([data[:7], data[7:5000], data[5000:]]) == expected
    assert checksum_stream(io.BytesIO(data), chunk_size=1024) == expected
    assert checksum_file(str(path)) == expected


def test_copy_with_checksum_matches_stream_digest():
    data = b"site photo " * 10000
    out = io.BytesIO()

    checksum, size = copy_with_checksum(io.BytesIO(data), out, chunk_size=4096)

    assert out.getvalue() == data
    assert size == len(data)
    assert checksum == checksum_stream(io.BytesIO(data))


def test_record_checksum_ignores_key_order():
    a = {"id": 1, "name": "Acme", "email": None}
    b = {"email": None, "name": "Acme", "id": 1}

    assert checksum_record(a) == checksum_record(b)


def test_record_checksum_changes_with_content():
    assert checksum_record({"id": 1, "name": "Acme"}) != checksum_record({"id": 1, "name": "Acme Ltd"})


def test_native_and_serialized_values_checksum_identically():
    native = {"id": 3, "updated_at": datetime(2024, 6, 1, 12, 30), "rate": Decimal("12.50")}
    serialized = {"id": 3, "updated_at": "2024-06-01T12:30:00", "rate": "12.50"}

    assert normalize_record(native) == serialized
    assert checksum_record(native) == checksum_record(serialized)
