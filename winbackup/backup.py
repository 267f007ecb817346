"""Reading and writing of Win32 BackupRead/BackupWrite stream formats."""

from __future__ import annotations

import io
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Iterator

STREAM_SPARSE_ATTRIBUTES = 8

WRITE_DAC = 0x40000
WRITE_OWNER = 0x80000
ACCESS_SYSTEM_SECURITY = 0x1000000

_STREAM_ID = struct.Struct("<IIQI")
_OFFSET = struct.Struct("<q")
_CHUNK = 64 * 1024


class BackupStreamId(IntEnum):
    """Identifiers of the streams that make up a backup stream."""

    DATA = 1
    EA_DATA = 2
    SECURITY = 3
    ALTERNATE_DATA = 4
    LINK = 5
    PROPERTY_DATA = 6
    OBJECT_ID = 7
    REPARSE_DATA = 8
    SPARSE_BLOCK = 9
    TXFS_DATA = 10


class BackupStreamError(Exception):
    """Raised for truncated or inconsistent backup streams."""


@dataclass
class BackupHeader:
    """Header of one stream within a backup stream."""

    id: int
    attributes: int = 0
    size: int = 0
    name: str = ""
    offset: int = 0


def _read_exact(stream: BinaryIO, count: int) -> bytes:
    """Read exactly `count` bytes; return b"" if the stream is already at its end."""
    parts = []
    got = 0
    while got < count:
        chunk = stream.read(count - got)
        if not chunk:
            break
        parts.append(chunk)
        got += len(chunk)
    data = b"".join(parts)
    if data and len(data) < count:
        raise BackupStreamError("unexpected end of backup stream")
    return data


def _to_signed64(value: int) -> int:
    return value - (1 << 64) if value >= (1 << 63) else value


class BackupStreamReader:
    """Splits a backup stream into its headers and stream contents."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._bytes_left = 0

    def _skip_remaining(self) -> None:
        seekable = getattr(self._stream, "seekable", None)
        if seekable is not None:
            try:
                can_seek = seekable()
            except (OSError, ValueError):
                can_seek = False
            if can_seek:
                self._stream.seek(self._bytes_left, io.SEEK_CUR)
                self._bytes_left = 0
                return
        while self._bytes_left:
            self.read(min(self._bytes_left, _CHUNK))

    def next(self) -> BackupHeader | None:
        """Return the next stream header, or None at the end of the backup stream.

        Any unread part of the current stream is skipped.
        """
        if self._bytes_left > 0:
            self._skip_remaining()

        raw = _read_exact(self._stream, _STREAM_ID.size)
        if not raw:
            return None
        stream_id, attributes, size, name_size = _STREAM_ID.unpack(raw)
        header = BackupHeader(id=stream_id, attributes=attributes, size=_to_signed64(size))

        if name_size:
            name_bytes = _read_exact(self._stream, (name_size // 2) * 2)
            if len(name_bytes) < (name_size // 2) * 2:
                raise BackupStreamError("unexpected end of backup stream")
            name = name_bytes.decode("utf-16-le", "replace")
            header.name = name.split("\0", 1)[0]

        if stream_id == BackupStreamId.SPARSE_BLOCK:
            raw_offset = _read_exact(self._stream, _OFFSET.size)
            if not raw_offset:
                raise BackupStreamError("unexpected end of backup stream")
            (header.offset,) = _OFFSET.unpack(raw_offset)
            header.size -= 8

        self._bytes_left = header.size
        return header

    def read(self, size: int = -1) -> bytes:
        """Read up to `size` bytes (all if negative) from the current stream."""
        if self._bytes_left <= 0:
            return b""
        wanted = self._bytes_left if size is None or size < 0 else min(size, self._bytes_left)
        parts = []
        got = 0
        while got < wanted:
            chunk = self._stream.read(wanted - got)
            if not chunk:
                raise BackupStreamError("unexpected end of backup stream")
            parts.append(chunk)
            got += len(chunk)
            self._bytes_left -= len(chunk)
        return b"".join(parts)

    def __iter__(self) -> Iterator[BackupHeader]:
        while (header := self.next()) is not None:
            yield header


class BackupStreamWriter:
    """Writes a stream compatible with the BackupWrite Win32 API."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._bytes_left = 0

    def write_header(self, header: BackupHeader) -> None:
        """Write the next stream header and prepare for its contents."""
        if self._bytes_left != 0:
            raise BackupStreamError(f"missing {self._bytes_left} bytes")
        name = header.name.encode("utf-16-le", "surrogatepass")
        size = header.size
        if header.id == BackupStreamId.SPARSE_BLOCK:
            size += 8
        self._stream.write(
            _STREAM_ID.pack(header.id, header.attributes, size & 0xFFFFFFFFFFFFFFFF, len(name))
        )
        if name:
            self._stream.write(name)
        if header.id == BackupStreamId.SPARSE_BLOCK:
            self._stream.write(_OFFSET.pack(header.offset))
        self._bytes_left = header.size

    def write(self, data: bytes) -> int:
        """Write contents of the current stream; return the number of bytes written."""
        if self._bytes_left < len(data):
            raise BackupStreamError(f"too many bytes by {len(data) - self._bytes_left}")
        written = self._stream.write(data)
        if written is None:
            written = len(data)
        self._bytes_left -= written
        return written