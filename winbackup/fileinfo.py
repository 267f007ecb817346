"""Basic Win32 file information and FILETIME conversions."""

from __future__ import annotations

from dataclasses import dataclass

FILE_ATTRIBUTE_DIRECTORY = 0x10

# 100-nanosecond intervals between 1601-01-01 and 1970-01-01.
_EPOCH_DIFFERENCE = 116444736000000000


def filetime_to_ns(filetime: int) -> int:
    """Convert a FILETIME value to nanoseconds since the Unix epoch."""
    return (filetime - _EPOCH_DIFFERENCE) * 100


def ns_to_filetime(ns: int) -> int:
    """Convert nanoseconds since the Unix epoch to a FILETIME value, truncating toward zero."""
    intervals = abs(ns) // 100
    if ns < 0:
        intervals = -intervals
    return intervals + _EPOCH_DIFFERENCE


@dataclass
class FileBasicInfo:
    """File times (as FILETIME values) and file attributes."""

    creation_time: int = 0
    last_access_time: int = 0
    last_write_time: int = 0
    change_time: int = 0
    file_attributes: int = 0