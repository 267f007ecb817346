import base64
import io
import tarfile

import pytest

from winbackup.backup import (
    STREAM_SPARSE_ATTRIBUTES,
    BackupHeader,
    BackupStreamId,
    BackupStreamReader,
    BackupStreamWriter,
)
from winbackup.backuptar import (
    BackupTarError,
    basic_info_header,
    file_info_from_header,
    write_backup_stream_from_tar_file,
    write_tar_file_from_backup_stream,
)
from winbackup.ea import ExtendedAttribute, encode_extended_attributes
from winbackup.fileinfo import FileBasicInfo

SECURITY = b"\x01\x00\x04\x80" + bytes(16)
NAME = "C:\\tmp\\foo.txt"
SLASH_NAME = "C:/tmp/foo.txt"


def _file_info(attributes=0x20):
    return FileBasicInfo(
        creation_time=132500000000000000,
        last_access_time=132500000010000001,
        last_write_time=132500000020000002,
        change_time=132500000030000003,
        file_attributes=attributes,
    )


class _OneWay:
    """A readable stream that cannot seek, like a live backup reader."""

    def __init__(self, data):
        self._buffer = io.BytesIO(data)

    def read(self, size=-1):
        return self._buffer.read(size)


def _backup_stream(*streams):
    buf = io.BytesIO()
    writer = BackupStreamWriter(buf)
    for header, data in streams:
        writer.write_header(header)
        writer.write(data)
    return buf.getvalue()


def _archive(stream, name, size, file_info):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        write_tar_file_from_backup_stream(tar, stream, name, size, file_info)
    return buf.getvalue()


def _open(data):
    return tarfile.open(fileobj=io.BytesIO(data), mode="r")


def _read_streams(data):
    reader = BackupStreamReader(io.BytesIO(data))
    return [(header, reader.read()) for header in reader]


def _security():
    return (BackupHeader(id=BackupStreamId.SECURITY, size=len(SECURITY)), SECURITY)


def _data(content, attributes=0):
    return (BackupHeader(id=BackupStreamId.DATA, attributes=attributes, size=len(content)), content)


def _sparse(offset, content):
    return (
        BackupHeader(id=BackupStreamId.SPARSE_BLOCK, size=len(content), offset=offset),
        content,
    )


SPARSE = STREAM_SPARSE_ATTRIBUTES
MULTI_CONTENT = b"testing 1 2 3\n" + bytes(1000000 - 14) + b"more data later\n"

ROUND_TRIP_CASES = {
    "normalFile": ([_security(), _data(b"testing 1 2 3\n")], b"testing 1 2 3\n", 0x20),
    "normalFileEmpty": ([_security()], b"", 0x20),
    "normalFileEmptyDataStream": ([_security(), _data(b"")], b"", 0x20),
    "sparseFileEmpty": ([_security(), _data(b"", SPARSE)], b"", 0x220),
    "sparseFileWithNoAllocatedRanges": (
        [_security(), _data(b"", SPARSE), _sparse(1000000, b"")],
        bytes(1000000),
        0x220,
    ),
    "sparseFileWithOneAllocatedRange": (
        [_security(), _data(b"test sparse data", SPARSE)],
        b"test sparse data",
        0x220,
    ),
    "sparseFileWithMultipleAllocatedRanges": (
        [
            _security(),
            _data(b"", SPARSE),
            _sparse(0, b"testing 1 2 3\n"),
            _sparse(1000000, b"more data later\n"),
            _sparse(1000016, b""),
        ],
        MULTI_CONTENT,
        0x220,
    ),
}


@pytest.mark.parametrize("case", sorted(ROUND_TRIP_CASES))
def test_round_trip(case):
    streams, content, attributes = ROUND_TRIP_CASES[case]
    file_info = _file_info(attributes)
    data = _archive(_OneWay(_backup_stream(*streams)), NAME, len(content), file_info)

    with _open(data) as tar:
        header = tar.next()
        name, size, restored = file_info_from_header(header)
        assert name == SLASH_NAME
        assert size == len(content)
        assert restored == file_info
        assert "MSWINDOWS.fileattr" in header.pax_headers
        assert "MSWINDOWS.rawsd" in header.pax_headers
        assert base64.b64decode(header.pax_headers["MSWINDOWS.rawsd"]) == SECURITY
        assert tar.extractfile(header).read() == content
        assert tar.next() is None


def test_basic_info_header_regular_file():
    info = basic_info_header(NAME, 14, _file_info())
    assert info.name == SLASH_NAME
    assert info.size == 14
    assert info.type == tarfile.REGTYPE
    assert info.pax_headers["MSWINDOWS.fileattr"] == "32"
    assert "LIBARCHIVE.creationtime" in info.pax_headers


def test_basic_info_header_directory():
    info = basic_info_header("dir", 100, _file_info(0x10))
    assert info.type == tarfile.DIRTYPE
    assert info.size == 0


def test_directory_round_trip():
    file_info = _file_info(0x10)
    data = _archive(_OneWay(b""), "some\\dir", 0, file_info)
    with _open(data) as tar:
        header = tar.next()
        assert header.isdir()
        name, size, restored = file_info_from_header(header)
    assert name == "some/dir"
    assert size == 0
    assert restored == file_info


def test_extended_attributes_captured_when_seekable():
    eas = encode_extended_attributes([ExtendedAttribute(name="foo", value=b"bar")])
    stream = io.BytesIO(
        _backup_stream(
            _data(b"testing 1 2 3\n"),
            (BackupHeader(id=BackupStreamId.EA_DATA, size=len(eas)), eas),
        )
    )
    data = _archive(stream, "foo.txt", 14, _file_info())
    with _open(data) as tar:
        header = tar.next()
        assert header.pax_headers["MSWINDOWS.xattr.foo"] == "YmFy"
        assert tar.extractfile(header).read() == b"testing 1 2 3\n"


def test_extended_attributes_after_data_lost_when_not_seekable():
    eas = encode_extended_attributes([ExtendedAttribute(name="foo", value=b"bar")])
    stream = _OneWay(
        _backup_stream(
            _data(b"testing 1 2 3\n"),
            (BackupHeader(id=BackupStreamId.EA_DATA, size=len(eas)), eas),
        )
    )
    data = _archive(stream, "foo.txt", 14, _file_info())
    with _open(data) as tar:
        header = tar.next()
        assert "MSWINDOWS.xattr.foo" not in header.pax_headers
        assert tar.extractfile(header).read() == b"testing 1 2 3\n"


def test_alternate_data_stream_becomes_entry():
    stream = _OneWay(
        _backup_stream(
            _data(b"testing 1 2 3\n"),
            (
                BackupHeader(id=BackupStreamId.ALTERNATE_DATA, size=22, name=":ads.txt:$DATA"),
                b"alternate data stream\n",
            ),
        )
    )
    data = _archive(stream, "foo.txt", 14, _file_info())
    with _open(data) as tar:
        members = tar.getmembers()
        assert [m.name for m in members] == ["foo.txt", "foo.txt:ads.txt"]
        assert tar.extractfile(members[1]).read() == b"alternate data stream\n"


def test_sparse_alternate_data_stream_is_rejected():
    stream = _OneWay(
        _backup_stream(
            _data(b"x"),
            (
                BackupHeader(
                    id=BackupStreamId.ALTERNATE_DATA,
                    attributes=SPARSE,
                    size=1,
                    name=":ads:$DATA",
                ),
                b"y",
            ),
        )
    )
    with pytest.raises(BackupTarError, match="sparse alternate data streams"):
        _archive(stream, "foo.txt", 1, _file_info())


def test_unknown_stream_id_is_rejected():
    stream = _OneWay(_backup_stream((BackupHeader(id=42, size=1), b"x")))
    with pytest.raises(BackupTarError, match="unknown stream ID 42"):
        _archive(stream, "foo.txt", 0, _file_info())


def test_size_mismatch_is_rejected():
    stream = _OneWay(_backup_stream(_data(b"testing 1 2 3\n")))
    with pytest.raises(BackupTarError, match="mismatch between file size 10"):
        _archive(stream, "foo.txt", 10, _file_info())


def test_reparse_data_is_rejected():
    stream = _OneWay(
        _backup_stream((BackupHeader(id=BackupStreamId.REPARSE_DATA, size=4), b"\0\0\0\0"))
    )
    with pytest.raises(BackupTarError):
        _archive(stream, "link", 0, _file_info())


def test_sparse_block_seeking_backwards_is_rejected():
    stream = _OneWay(
        _backup_stream(
            _data(b"", SPARSE),
            _sparse(10, b"abc"),
            _sparse(5, b"def"),
        )
    )
    with pytest.raises(BackupTarError, match="cannot seek back"):
        _archive(stream, "foo.txt", 20, _file_info(0x220))


def test_non_pax_archive_is_rejected():
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.GNU_FORMAT) as tar:
        with pytest.raises(BackupTarError):
            write_tar_file_from_backup_stream(tar, _OneWay(b""), "foo.txt", 0, _file_info())


def test_file_info_from_header_defaults():
    info = tarfile.TarInfo("dir")
    info.type = tarfile.DIRTYPE
    info.mtime = 5
    name, size, file_info = file_info_from_header(info)
    assert name == "dir"
    assert size == 0
    assert file_info.file_attributes & 0x10
    assert file_info.creation_time == file_info.last_write_time


@pytest.mark.parametrize("value", ["abc", "-1", "4294967296", ""])
def test_file_info_from_header_bad_attributes(value):
    info = tarfile.TarInfo("foo")
    info.pax_headers = {"MSWINDOWS.fileattr": value}
    with pytest.raises(BackupTarError):
        file_info_from_header(info)


def test_backup_stream_round_trip_through_tar():
    eas = encode_extended_attributes([ExtendedAttribute(name="foo", value=b"bar")])
    stream = io.BytesIO(
        _backup_stream(
            _security(),
            (BackupHeader(id=BackupStreamId.EA_DATA, size=len(eas)), eas),
            _data(b"testing 1 2 3\n"),
            (
                BackupHeader(id=BackupStreamId.ALTERNATE_DATA, size=22, name=":ads.txt:$DATA"),
                b"alternate data stream\n",
            ),
        )
    )
    data = _archive(stream, "foo.txt", 14, _file_info())

    out = io.BytesIO()
    with _open(data) as tar:
        nxt = write_backup_stream_from_tar_file(out, tar, tar.next())
    assert nxt is None

    streams = _read_streams(out.getvalue())
    assert [h.id for h, _ in streams] == [
        BackupStreamId.SECURITY,
        BackupStreamId.EA_DATA,
        BackupStreamId.DATA,
        BackupStreamId.ALTERNATE_DATA,
    ]
    assert streams[0][1] == SECURITY
    assert streams[1][1] == eas
    assert streams[2][1] == b"testing 1 2 3\n"
    assert streams[3][0].name == ":ads.txt:$DATA"
    assert streams[3][1] == b"alternate data stream\n"


def test_write_backup_stream_returns_next_entry():
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        write_tar_file_from_backup_stream(
            tar, _OneWay(_backup_stream(_data(b"one"))), "a.txt", 3, _file_info()
        )
        write_tar_file_from_backup_stream(
            tar, _OneWay(_backup_stream(_data(b"two"))), "b.txt", 3, _file_info()
        )
    out = io.BytesIO()
    with _open(buf.getvalue()) as tar:
        nxt = write_backup_stream_from_tar_file(out, tar, tar.next())
        assert nxt.name == "b.txt"
    streams = _read_streams(out.getvalue())
    assert [(h.id, d) for h, d in streams] == [(BackupStreamId.DATA, b"one")]


def _single_entry_tar(info, content=b""):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        info.size = len(content)
        tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


def test_sddl_only_security_descriptor_is_rejected():
    info = tarfile.TarInfo("foo.txt")
    info.pax_headers = {"MSWINDOWS.sd": "D:P(A;;0x1200FF;;;WD)"}
    with _open(_single_entry_tar(info)) as tar:
        with pytest.raises(BackupTarError):
            write_backup_stream_from_tar_file(io.BytesIO(), tar, tar.next())


def test_invalid_base64_is_rejected():
    info = tarfile.TarInfo("foo.txt")
    info.pax_headers = {"MSWINDOWS.xattr.foo": "not base64!"}
    with _open(_single_entry_tar(info)) as tar:
        with pytest.raises(BackupTarError):
            write_backup_stream_from_tar_file(io.BytesIO(), tar, tar.next())


def test_symlink_is_rejected():
    info = tarfile.TarInfo("link")
    info.type = tarfile.SYMTYPE
    info.linkname = "target"
    with _open(_single_entry_tar(info)) as tar:
        with pytest.raises(BackupTarError):
            write_backup_stream_from_tar_file(io.BytesIO(), tar, tar.next())