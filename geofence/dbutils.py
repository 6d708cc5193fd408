"""Helpers for IP2Location database files: header versions, dated names and copies."""

from __future__ import annotations

import os
import re
import shutil
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

HEADER_SIZE = 512

_INTEGER = re.compile(r"[+-]?[0-9]+")
_HEADER_COUNTS = struct.Struct("<6I")


def _utc_date(year: int, month: int, day: int) -> datetime:
    """Build a UTC midnight, normalising out-of-range months and days."""
    normalised_year, month_index = divmod(year * 12 + (month - 1), 12)
    first = datetime(normalised_year, month_index + 1, 1, tzinfo=timezone.utc)
    return first + timedelta(days=day - 1)


@dataclass(frozen=True)
class DBVersion:
    """Version and layout information from an IP2Location BIN header."""

    type: int
    column_width4: int
    year: int
    month: int
    day: int
    product_code: int
    license_code: int
    database_size: int
    ip_count4: int
    ip_base4: int
    ip_count6: int
    ip_base6: int
    index_base4: int
    index_base6: int

    def __str__(self) -> str:
        return f"{self.year}.{self.month}.{self.day}"

    def date(self) -> datetime:
        """Return the release date; the stored year is an offset from 2000."""
        return _utc_date(2000 + self.year, self.month, self.day)


def get_database_version(path: str | os.PathLike[str]) -> DBVersion:
    """Read the version header of an IP2Location database file.

    Raises OSError if the file cannot be read and ValueError if the header
    is short or does not describe an IP2Location BIN file.
    """
    with open(path, "rb") as file:
        header = file.read(HEADER_SIZE)

    if not header:
        raise ValueError("failed to read header bytes: file is empty")
    if len(header) != HEADER_SIZE:
        raise ValueError(
            f"incomplete header read: got {len(header)} bytes, expected {HEADER_SIZE}"
        )

    ip_count4, ip_base4, ip_count6, ip_base6, index_base4, index_base6 = (
        _HEADER_COUNTS.unpack_from(header, 5)
    )
    version = DBVersion(
        type=(header[0] - 1) & 0xFF,
        column_width4=(header[1] * 4) & 0xFF,
        year=header[2],
        month=header[3],
        day=header[4],
        product_code=header[29],
        license_code=header[30],
        database_size=header[31],
        ip_count4=ip_count4,
        ip_base4=ip_base4,
        ip_count6=ip_count6,
        ip_base6=ip_base6,
        index_base4=index_base4,
        index_base6=index_base6,
    )

    if version.product_code == 0:
        raise ValueError("invalid IP2Location BIN file format")
    return version


def _parse_int(text: str, what: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"invalid {what} in filename: {text}")
    return int(text)


def get_date_from_name(db_path: str) -> datetime:
    """Extract the date from a name such as ``20240315_IP2LOCATION-LITE-DB1.BIN``.

    Both forward and backward slashes are accepted as directory separators.
    Raises ValueError if the file name does not start with a YYYYMMDD date.
    """
    tail = db_path.replace("\\", "/").rpartition("/")[2]
    date_str = tail.split("_")[0]
    if len(date_str) != 8:
        raise ValueError(f"invalid date format in filename: {date_str}")

    year = _parse_int(date_str[:4], "year")
    month = _parse_int(date_str[4:6], "month")
    day = _parse_int(date_str[6:8], "day")
    return _utc_date(year, month, day)


def file_exists(path: str | os.PathLike[str]) -> bool:
    """Return True if ``path`` exists and is not a directory."""
    return os.path.isfile(path)


def copy_file(
    src: str | os.PathLike[str], dst: str | os.PathLike[str], overwrite: bool
) -> None:
    """Copy ``src`` to ``dst`` and sync it to disk.

    Raises FileNotFoundError if ``src`` is missing and FileExistsError if
    ``dst`` exists and ``overwrite`` is false.
    """
    if not file_exists(src):
        raise FileNotFoundError(f"source file does not exist: {src}")
    if file_exists(dst) and not overwrite:
        raise FileExistsError(f"destination file already exists: {dst}")

    with open(src, "rb") as source:
        fd = os.open(dst, os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o644)
        with os.fdopen(fd, "wb") as destination:
            shutil.copyfileobj(source, destination)
            destination.flush()
            os.fsync(destination.fileno())