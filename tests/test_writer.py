import time

import pytest

from geofence.writer import BufferedFileWriter


def _wait_for(predicate, limit=5.0):
    deadline = time.monotonic() + limit
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_small_write_is_buffered_until_flush(tmp_path):
    path = tmp_path / "log.txt"
    writer = BufferedFileWriter(path, max_size=1024, timeout=60)
    try:
        assert writer.write(b"hello") == 5
        assert path.read_bytes() == b""
        writer.flush()
        assert path.read_bytes() == b"hello"
    finally:
        writer.close()


def test_reaching_max_size_flushes(tmp_path):
    path = tmp_path / "log.txt"
    writer = BufferedFileWriter(path, max_size=8, timeout=60)
    try:
        writer.write(b"abcd")
        assert path.read_bytes() == b""
        writer.write(b"efgh")
        assert path.read_bytes() == b"abcdefgh"
    finally:
        writer.close()


def test_close_flushes_remaining_data(tmp_path):
    path = tmp_path / "log.txt"
    writer = BufferedFileWriter(path, max_size=1024, timeout=60)
    writer.write(b"pending")
    writer.close()
    assert writer.closed is True
    assert path.read_bytes() == b"pending"


def test_write_after_close_raises(tmp_path):
    writer = BufferedFileWriter(tmp_path / "log.txt", max_size=1024, timeout=60)
    writer.close()
    with pytest.raises(ValueError):
        writer.write(b"late")


def test_background_timer_flushes(tmp_path):
    path = tmp_path / "log.txt"
    writer = BufferedFileWriter(path, max_size=1024, timeout=0.05)
    try:
        written = writer.write(b"tick")
        assert written == 4
        assert _wait_for(lambda: path.read_bytes() == b"tick")
        assert path.read_bytes() == b"tick"
    finally:
        writer.close()
    assert writer.closed is True


def test_accepts_text_and_returns_length(tmp_path):
    path = tmp_path / "log.txt"
    with BufferedFileWriter(path, max_size=1024, timeout=60) as writer:
        assert writer.write("line one\n") == len("line one\n")
    assert path.read_text(encoding="utf-8") == "line one\n"


def test_appends_to_existing_file(tmp_path):
    path = tmp_path / "log.txt"
    path.write_bytes(b"first\n")
    with BufferedFileWriter(path, max_size=1024, timeout=60) as writer:
        writer.write(b"second\n")
    assert path.read_bytes() == b"first\nsecond\n"


def test_preserves_order_across_flushes(tmp_path):
    path = tmp_path / "log.txt"
    chunks = [f"entry-{n};".encode() for n in range(50)]
    with BufferedFileWriter(path, max_size=16, timeout=60) as writer:
        for chunk in chunks:
            writer.write(chunk)
    assert path.read_bytes() == b"".join(chunks)


def test_missing_directory_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        BufferedFileWriter(tmp_path / "missing" / "log.txt")


def test_close_twice_keeps_content(tmp_path):
    path = tmp_path / "log.txt"
    writer = BufferedFileWriter(path, max_size=1024, timeout=60)
    writer.write(b"once")
    writer.close()
    writer.close()
    assert path.read_bytes() == b"once"