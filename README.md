# winbackup

Pure-Python tools for the stream format produced by the Win32 `BackupRead`
API and consumed by `BackupWrite`, for `FILE_FULL_EA_INFORMATION` extended
attribute buffers, and for converting backup streams to and from entries of
PAX tar archives. Nothing here calls the operating system, so streams and
archives can be inspected or produced on any platform.

## Installation

```
pip install winbackup
```

## Backup streams (`winbackup.backup`)

A backup stream is a sequence of sub-streams. Each starts with a header,
`BackupHeader(id, attributes, size, name, offset)`, where `id` is one of the
`BackupStreamId` values (`DATA`, `EA_DATA`, `SECURITY`, `ALTERNATE_DATA`,
`LINK`, `PROPERTY_DATA`, `OBJECT_ID`, `REPARSE_DATA`, `SPARSE_BLOCK`,
`TXFS_DATA`). `name` is used by alternate data streams and `offset` by sparse
blocks.

```python
import io
from winbackup.backup import (
    BackupHeader, BackupStreamId, BackupStreamReader, BackupStreamWriter,
)

buf = io.BytesIO()
writer = BackupStreamWriter(buf)
data = b"testing 1 2 3\n"
writer.write_header(BackupHeader(id=BackupStreamId.DATA, size=len(data)))
writer.write(data)

buf.seek(0)
reader = BackupStreamReader(buf)
for header in reader:
    print(header.id, header.size, reader.read(-1))
```

- `BackupStreamReader.next()` returns the next header, or `None` at the end
  of the stream. Unread contents of the current sub-stream are skipped
  (by seeking when the underlying stream is seekable). Iterating the reader
  yields the headers in turn.
- `BackupStreamReader.read(size)` reads from the current sub-stream only; it
  returns `b""` once the sub-stream is exhausted.
- `BackupStreamWriter.write_header(header)` raises `BackupStreamError` if the
  previous sub-stream was not fully written, and `write(data)` raises it when
  `data` goes past the declared size.
- A truncated stream raises `BackupStreamError`.

## Extended attributes (`winbackup.ea`)

`encode_extended_attributes(eas)` turns a list of
`ExtendedAttribute(name, value, flags)` into a `FILE_FULL_EA_INFORMATION`
buffer (entries padded to 4 bytes, the last one unpadded in its offset), and
`decode_extended_attributes(data)` does the reverse. `None` or empty input
gives an empty result. Malformed buffers, names over 255 bytes and values
over 65535 bytes raise `ExtendedAttributeError`.

## File information (`winbackup.fileinfo`)

`FileBasicInfo` holds `creation_time`, `last_access_time`,
`last_write_time` and `change_time` as Windows FILETIME values, plus
`file_attributes`. `filetime_to_ns` and `ns_to_filetime` convert between
FILETIME and nanoseconds since the Unix epoch.

## PAX times (`winbackup.paxtime`)

`parse_pax_time(text)` parses `"<seconds>[.<fraction>]"` (negative values
allowed, fraction truncated to nanoseconds) into nanoseconds;
`format_pax_time(ns)` formats nanoseconds back. Bad input raises
`PaxTimeError`.

## Tar archives (`winbackup.backuptar`)

Windows metadata is kept in PAX records: `MSWINDOWS.fileattr` (attributes,
decimal), `MSWINDOWS.rawsd` (security descriptor, base64),
`MSWINDOWS.xattr.<name>` (extended attribute values, base64) and
`LIBARCHIVE.creationtime`.

- `basic_info_header(name, size, file_info)` builds a `tarfile.TarInfo`;
  directories get the directory type and size 0.
- `write_tar_file_from_backup_stream(tar, stream, name, size, file_info)`
  writes one file into a `tarfile.TarFile` opened with
  `format=tarfile.PAX_FORMAT`. The security and extended attribute streams
  become PAX records, the data stream (including sparse block streams, whose
  holes are written as zeros) becomes the entry's contents, and each
  alternate data stream becomes a following entry named `<name>:<stream>`.
  A seekable input is read twice so metadata after the data is captured.
- `file_info_from_header(info)` returns `(name, size, FileBasicInfo)` from an
  entry.
- `write_backup_stream_from_tar_file(stream, tar, info)` writes a backup
  stream for an entry and the alternate data stream entries that follow it,
  returning the next unprocessed entry, or `None` at the end of the archive.

Conversion problems raise `BackupTarError`.

## What this package does not do

- It does not read or write files through the operating system: there is no
  access to `BackupRead`/`BackupWrite`, to file information of open files, or
  to privileges. Backup streams must be supplied as, or written to, ordinary
  binary file objects.
- Reparse points are not supported: a `REPARSE_DATA` stream or a symbolic
  link tar entry raises `BackupTarError`.
- Security descriptors in SDDL text form (`MSWINDOWS.sd`) are not supported;
  only raw descriptors (`MSWINDOWS.rawsd`) are.
- Sparse alternate data streams cannot be written to a tar archive.

## Running the tests

```
pip install -e .[test]
pytest
```