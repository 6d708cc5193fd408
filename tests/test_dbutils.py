import struct
from datetime import datetime, timezone

import pytest

from geofence.dbutils import (
    DBVersion,
    copy_file,
    file_exists,
    get_database_version,
    get_date_from_name,
)


def _utc(year, month, day):
    return datetime(year, month, day, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "db_path, expected",
    [
        ("20240315_IP2LOCATION-LITE-DB1.BIN", _utc(2024, 3, 15)),
        ("/path/to/20240315_IP2LOCATION-LITE-DB1.BIN", _utc(2024, 3, 15)),
        ("C:\\path\\to\\20240315_IP2LOCATION-LITE-DB1.BIN", _utc(2024, 3, 15)),
        ("20240229_IP2LOCATION-LITE-DB1.BIN", _utc(2024, 2, 29)),
        ("20241231_IP2LOCATION-LITE-DB1.BIN", _utc(2024, 12, 31)),
    ],
)
def test_get_date_from_name_valid(db_path, expected):
    assert get_date_from_name(db_path) == expected


@pytest.mark.parametrize(
    "db_path",
    [
        "invalid_IP2LOCATION-LITE-DB1.BIN",
        "",
        "abcd0315_IP2LOCATION-LITE-DB1.BIN",
        "2024xx15_IP2LOCATION-LITE-DB1.BIN",
        "202403xx_IP2LOCATION-LITE-DB1.BIN",
        "2024_IP2LOCATION-LITE-DB1.BIN",
        "20240315IP2LOCATION-LITE-DB1.BIN",
    ],
)
def test_get_date_from_name_invalid(db_path):
    with pytest.raises(ValueError):
        get_date_from_name(db_path)


def _header(year=24, month=2, day=1, product_code=1, size=512):
    data = bytearray(512)
    data[0] = 1
    data[1] = 1
    data[2] = year
    data[3] = month
    data[4] = day
    struct.pack_into("<6I", data, 5, 10, 20, 30, 40, 50, 60)
    data[29] = product_code
    data[30] = 2
    data[31] = 3
    return bytes(data[:size])


def test_get_database_version_reads_header(tmp_path):
    path = tmp_path / "db.bin"
    path.write_bytes(_header(year=24, month=2, day=15))

    version = get_database_version(path)

    assert version.month == 2
    assert version.year == 24
    assert version.day == 15
    assert version.type == 0
    assert version.column_width4 == 4
    assert version.product_code == 1
    assert version.license_code == 2
    assert version.database_size == 3
    assert (
        version.ip_count4,
        version.ip_base4,
        version.ip_count6,
        version.ip_base6,
        version.index_base4,
        version.index_base6,
    ) == (10, 20, 30, 40, 50, 60)
    assert str(version) == "24.2.15"
    assert version.date() == _utc(2024, 2, 15)


def test_get_database_version_missing_file(tmp_path):
    with pytest.raises(OSError):
        get_database_version(tmp_path / "20240315_IP2LOCATION-LITE-INVALID.BIN")


def test_get_database_version_zero_product_code(tmp_path):
    path = tmp_path / "db.bin"
    path.write_bytes(_header(product_code=0))
    with pytest.raises(ValueError, match="invalid IP2Location BIN file format"):
        get_database_version(path)


def test_get_database_version_short_header(tmp_path):
    path = tmp_path / "db.bin"
    path.write_bytes(_header(size=100))
    with pytest.raises(ValueError, match="incomplete header read"):
        get_database_version(path)


def test_get_database_version_empty_file(tmp_path):
    path = tmp_path / "db.bin"
    path.write_bytes(b"")
    with pytest.raises(ValueError):
        get_database_version(path)


def test_dbversion_date_offset_from_2000():
    version = DBVersion(0, 4, 23, 12, 31, 1, 0, 0, 0, 0, 0, 0, 0, 0)
    assert version.date() == _utc(2023, 12, 31)


def test_file_exists(tmp_path):
    path = tmp_path / "a.txt"
    assert file_exists(path) is False
    path.write_text("x")
    assert file_exists(path) is True
    assert file_exists(tmp_path) is False


def test_copy_file_copies_content(tmp_path):
    src = tmp_path / "src.bin"
    dst = tmp_path / "dst.bin"
    src.write_bytes(b"database contents")
    copy_file(src, dst, False)
    assert dst.read_bytes() == b"database contents"


def test_copy_file_missing_source(tmp_path):
    with pytest.raises(FileNotFoundError):
        copy_file(tmp_path / "missing", tmp_path / "dst", True)


def test_copy_file_refuses_overwrite(tmp_path):
    src = tmp_path / "src.bin"
    dst = tmp_path / "dst.bin"
    src.write_bytes(b"new")
    dst.write_bytes(b"old")
    with pytest.raises(FileExistsError):
        copy_file(src, dst, False)
    assert dst.read_bytes() == b"old"


def test_copy_file_overwrites_and_truncates(tmp_path):
    src = tmp_path / "src.bin"
    dst = tmp_path / "dst.bin"
    src.write_bytes(b"new")
    dst.write_bytes(b"much longer old content")
    copy_file(src, dst, True)
    assert dst.read_bytes() == b"new"