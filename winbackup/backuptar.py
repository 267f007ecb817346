"""Conversion between Win32 backup streams and entries of PAX tar archives."""

from __future__ import annotations

import base64
import binascii
import re
import shutil
import stat
import tarfile
from typing import BinaryIO, Iterable, Iterator

from .backup import (
    STREAM_SPARSE_ATTRIBUTES,
    BackupHeader,
    BackupStreamError,
    BackupStreamId,
    BackupStreamReader,
    BackupStreamWriter,
)
from .ea import ExtendedAttribute, decode_extended_attributes, encode_extended_attributes
from .fileinfo import FILE_ATTRIBUTE_DIRECTORY, FileBasicInfo, filetime_to_ns, ns_to_filetime
from .paxtime import format_pax_time, parse_pax_time

HDR_FILE_ATTRIBUTES = "MSWINDOWS.fileattr"
HDR_SECURITY_DESCRIPTOR = "MSWINDOWS.sd"
HDR_RAW_SECURITY_DESCRIPTOR = "MSWINDOWS.rawsd"
HDR_MOUNT_POINT = "MSWINDOWS.mountpoint"
HDR_EA_PREFIX = "MSWINDOWS.xattr."
HDR_CREATION_TIME = "LIBARCHIVE.creationtime"

_NS_PER_SECOND = 10**9
_CHUNK = 64 * 1024
_DATA_SUFFIX = ":$DATA"
_UINT32_MAX = 0xFFFFFFFF
_DECIMAL = re.compile(r"[0-9]+")

_IGNORED_BEFORE_DATA = frozenset(
    {
        BackupStreamId.ALTERNATE_DATA,
        BackupStreamId.LINK,
        BackupStreamId.PROPERTY_DATA,
        BackupStreamId.OBJECT_ID,
        BackupStreamId.TXFS_DATA,
    }
)
_IGNORED_AFTER_DATA = frozenset(
    {
        BackupStreamId.EA_DATA,
        BackupStreamId.LINK,
        BackupStreamId.PROPERTY_DATA,
        BackupStreamId.OBJECT_ID,
        BackupStreamId.TXFS_DATA,
    }
)


class BackupTarError(ValueError):
    """Raised when a backup stream and a tar entry cannot be converted."""


class _ChunkReader:
    """A minimal readable file over an iterable of byte chunks."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self._chunks = iter(chunks)
        self._buffer = bytearray()

    def read(self, size: int = -1) -> bytes:
        while size < 0 or len(self._buffer) < size:
            chunk = next(self._chunks, None)
            if chunk is None:
                break
            self._buffer += chunk
        if size < 0:
            size = len(self._buffer)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data


def _to_slash(name: str) -> str:
    return name.replace("\\", "/")


def _zeros(count: int) -> Iterator[bytes]:
    while count > 0:
        step = min(count, _CHUNK)
        yield bytes(step)
        count -= step


def _sparse_chunks(reader: BackupStreamReader) -> Iterator[bytes]:
    """Yield file contents from a series of sparse block streams, filling holes with zeros."""
    offset = 0
    while True:
        header = reader.next()
        if header is None:
            raise BackupTarError("unexpected end of backup stream")
        if header.id != BackupStreamId.SPARSE_BLOCK:
            raise BackupTarError(f"unexpected stream {header.id}")
        if header.offset < offset:
            raise BackupTarError(f"cannot seek back from {offset} to {header.offset}")
        yield from _zeros(header.offset - offset)
        if header.size == 0:
            return
        copied = 0
        while chunk := reader.read(_CHUNK):
            copied += len(chunk)
            yield chunk
        if copied != header.size:
            raise BackupTarError(
                f"copied {copied} bytes instead of {header.size} at offset {header.offset}"
            )
        offset = header.offset + copied


def _restart_position(stream: BinaryIO) -> int | None:
    try:
        if not stream.seekable():
            return None
        return stream.tell()
    except (AttributeError, OSError, ValueError):
        return None


def _time_records(mtime: int, atime: int, ctime: int) -> dict[str, str]:
    return {
        "mtime": format_pax_time(mtime),
        "atime": format_pax_time(atime),
        "ctime": format_pax_time(ctime),
    }


def basic_info_header(name: str, size: int, file_info: FileBasicInfo) -> tarfile.TarInfo:
    """Create a tar entry header from basic Win32 file information."""
    info = tarfile.TarInfo(_to_slash(name))
    info.mode = 0
    info.size = size
    info.type = tarfile.REGTYPE
    mtime = filetime_to_ns(file_info.last_write_time)
    info.mtime = mtime // _NS_PER_SECOND
    records = _time_records(
        mtime,
        filetime_to_ns(file_info.last_access_time),
        filetime_to_ns(file_info.change_time),
    )
    records[HDR_FILE_ATTRIBUTES] = str(file_info.file_attributes)
    records[HDR_CREATION_TIME] = format_pax_time(filetime_to_ns(file_info.creation_time))
    info.pax_headers = records

    if file_info.file_attributes & FILE_ATTRIBUTE_DIRECTORY:
        info.mode |= stat.S_IFDIR
        info.size = 0
        info.type = tarfile.DIRTYPE
    return info


def _add_with_content(
    tar: tarfile.TarFile, info: tarfile.TarInfo, content, name: str, source: str
) -> None:
    try:
        tar.addfile(info, content)
        leftover = content.read(1)
    except (BackupTarError, BackupStreamError, OSError) as exc:
        raise BackupTarError(f"{name}: copying contents from {source}: {exc}") from exc
    if leftover:
        raise BackupTarError(f"{name}: copying contents from {source}: write too long")


def write_tar_file_from_backup_stream(
    tar: tarfile.TarFile,
    stream: BinaryIO,
    name: str,
    size: int,
    file_info: FileBasicInfo,
) -> None:
    """Write one file to a PAX tar archive from a Win32 backup stream.

    Win32 metadata is stored as PAX records prefixed with MSWINDOWS. If the
    stream is seekable it is read twice so that metadata following the data
    stream is captured; otherwise such metadata is lost.
    """
    if tar.format != tarfile.PAX_FORMAT:
        raise BackupTarError("tar archive must use the PAX format")
    name = _to_slash(name)
    info = basic_info_header(name, size, file_info)
    restart = _restart_position(stream)
    read_twice = restart is not None

    reader = BackupStreamReader(stream)
    data_header: BackupHeader | None = None
    while data_header is None:
        header = reader.next()
        if header is None:
            break
        if header.id == BackupStreamId.DATA:
            info.mode |= stat.S_IFREG
            if not read_twice:
                data_header = header
        elif header.id == BackupStreamId.SECURITY:
            info.pax_headers[HDR_RAW_SECURITY_DESCRIPTOR] = base64.b64encode(
                reader.read()
            ).decode("ascii")
        elif header.id == BackupStreamId.REPARSE_DATA:
            raise BackupTarError(f"{name}: reparse points are not supported")
        elif header.id == BackupStreamId.EA_DATA:
            for ea in decode_extended_attributes(reader.read()):
                info.pax_headers[HDR_EA_PREFIX + ea.name] = base64.b64encode(ea.value).decode(
                    "ascii"
                )
        elif header.id in _IGNORED_BEFORE_DATA:
            pass
        else:
            raise BackupTarError(f"{name}: unknown stream ID {header.id}")

    if read_twice:
        stream.seek(restart)
        reader = BackupStreamReader(stream)
        for header in reader:
            if header.id == BackupStreamId.DATA:
                data_header = header
                break

    # A data stream is either non-empty or followed by sparse block streams,
    # and empty sparse files carry no sparse block streams at all.
    if data_header is None:
        if info.isreg() and info.size > 0:
            raise BackupTarError(f"{name}: missing data stream for {info.size} bytes")
        tar.addfile(info)
    elif data_header.size > 0 or not data_header.attributes & STREAM_SPARSE_ATTRIBUTES:
        if size != data_header.size:
            raise BackupTarError(
                f"{name}: mismatch between file size {size} and header size {data_header.size}"
            )
        _add_with_content(tar, info, reader, name, "data stream")
    elif size > 0:
        _add_with_content(
            tar, info, _ChunkReader(_sparse_chunks(reader)), name, "sparse block stream"
        )
    else:
        tar.addfile(info)

    for header in reader:
        if header.id == BackupStreamId.ALTERNATE_DATA:
            if header.attributes & STREAM_SPARSE_ATTRIBUTES:
                raise BackupTarError(
                    f"{name}: tar of sparse alternate data streams is unsupported"
                )
            alt_name = header.name.removesuffix(_DATA_SUFFIX)
            records = info.pax_headers
            ads = tarfile.TarInfo(name + alt_name)
            ads.mode = info.mode
            ads.type = tarfile.REGTYPE
            ads.size = header.size
            ads.mtime = info.mtime
            ads.pax_headers = {
                key: records[key] for key in ("mtime", "atime", "ctime") if key in records
            }
            tar.addfile(ads, reader)
            info = ads
        elif header.id in _IGNORED_AFTER_DATA:
            pass
        else:
            raise BackupTarError(f"{name}: unknown stream ID {header.id} after data")


def _header_time(info: tarfile.TarInfo, key: str) -> int | None:
    text = info.pax_headers.get(key)
    if text is not None:
        return parse_pax_time(text)
    if key != "mtime":
        return None
    if isinstance(info.mtime, int):
        return info.mtime * _NS_PER_SECOND
    return round(info.mtime * _NS_PER_SECOND)


def _parse_attributes(text: str) -> int:
    if not _DECIMAL.fullmatch(text) or int(text) > _UINT32_MAX:
        raise BackupTarError(f"invalid file attributes {text!r}")
    return int(text)


def file_info_from_header(info: tarfile.TarInfo) -> tuple[str, int, FileBasicInfo]:
    """Return the name, size and basic Win32 file information stored in a tar entry."""
    name = info.name
    size = info.size if info.type in (tarfile.REGTYPE, tarfile.AREGTYPE) else 0
    mtime = _header_time(info, "mtime")
    atime = _header_time(info, "atime")
    ctime = _header_time(info, "ctime")
    file_info = FileBasicInfo(
        creation_time=ns_to_filetime(mtime),
        last_access_time=ns_to_filetime(atime) if atime is not None else 0,
        last_write_time=ns_to_filetime(mtime),
        change_time=ns_to_filetime(ctime) if ctime is not None else 0,
    )
    records = info.pax_headers
    if HDR_FILE_ATTRIBUTES in records:
        file_info.file_attributes = _parse_attributes(records[HDR_FILE_ATTRIBUTES])
    elif info.type == tarfile.DIRTYPE:
        file_info.file_attributes |= FILE_ATTRIBUTE_DIRECTORY
    if HDR_CREATION_TIME in records:
        file_info.creation_time = ns_to_filetime(parse_pax_time(records[HDR_CREATION_TIME]))
    return name, size, file_info


def _b64decode(text: str) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise BackupTarError(f"invalid base64 value: {exc}") from exc


def _write_stream(writer: BackupStreamWriter, header: BackupHeader, data: bytes) -> None:
    writer.write_header(header)
    writer.write(data)


def _copy_member(tar: tarfile.TarFile, member: tarfile.TarInfo, writer: BackupStreamWriter) -> None:
    source = tar.extractfile(member)
    if source is not None:
        with source:
            shutil.copyfileobj(source, writer, _CHUNK)


def write_backup_stream_from_tar_file(
    stream: BinaryIO, tar: tarfile.TarFile, info: tarfile.TarInfo
) -> tarfile.TarInfo | None:
    """Write a Win32 backup stream for the current tar entry.

    Following entries holding alternate data streams of the same file are
    consumed too. Returns the next unprocessed entry, or None at the end.
    """
    writer = BackupStreamWriter(stream)
    records = info.pax_headers

    security = b""
    if HDR_RAW_SECURITY_DESCRIPTOR in records:
        security = _b64decode(records[HDR_RAW_SECURITY_DESCRIPTOR])
    elif HDR_SECURITY_DESCRIPTOR in records:
        raise BackupTarError(f"{info.name}: SDDL security descriptors are not supported")
    if security:
        _write_stream(
            writer, BackupHeader(id=BackupStreamId.SECURITY, size=len(security)), security
        )

    eas = [
        ExtendedAttribute(name=key[len(HDR_EA_PREFIX):], value=_b64decode(value))
        for key, value in records.items()
        if key.startswith(HDR_EA_PREFIX)
    ]
    if eas:
        ea_data = encode_extended_attributes(eas)
        _write_stream(
            writer, BackupHeader(id=BackupStreamId.EA_DATA, size=len(ea_data)), ea_data
        )

    if info.type == tarfile.SYMTYPE:
        raise BackupTarError(f"{info.name}: reparse points are not supported")

    if info.type in (tarfile.REGTYPE, tarfile.AREGTYPE):
        writer.write_header(BackupHeader(id=BackupStreamId.DATA, size=info.size))
        _copy_member(tar, info, writer)

    prefix = info.name + ":"
    while True:
        member = tar.next()
        if member is None:
            return None
        if member.type != tarfile.REGTYPE or not member.name.startswith(prefix):
            return member
        writer.write_header(
            BackupHeader(
                id=BackupStreamId.ALTERNATE_DATA,
                size=member.size,
                name=member.name[len(info.name):] + _DATA_SUFFIX,
            )
        )
        _copy_member(tar, member, writer)