"""Encoding and decoding of FILE_FULL_EA_INFORMATION buffers."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Iterable

_HEADER = struct.Struct("<IBBH")
_MAX_NAME = 0xFF
_MAX_VALUE = 0xFFFF


class ExtendedAttributeError(ValueError):
    """Raised for malformed buffers or attributes that cannot be encoded."""


@dataclass
class ExtendedAttribute:
    """A single Windows extended attribute."""

    name: str
    value: bytes = b""
    flags: int = field(default=0)


def _encode_name(name: str) -> bytes:
    return name.encode("utf-8", "surrogateescape")


def _decode_name(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def _parse_entry(data: bytes) -> tuple[ExtendedAttribute, bytes]:
    if len(data) < _HEADER.size:
        raise ExtendedAttributeError("invalid extended attribute buffer")
    next_offset, flags, name_len, value_len = _HEADER.unpack_from(data)

    name_offset = _HEADER.size
    value_offset = name_offset + name_len + 1
    if value_offset + value_len > len(data) or next_offset > len(data):
        raise ExtendedAttributeError("invalid extended attribute buffer")

    ea = ExtendedAttribute(
        name=_decode_name(data[name_offset:name_offset + name_len]),
        value=bytes(data[value_offset:value_offset + value_len]),
        flags=flags,
    )
    rest = data[next_offset:] if next_offset else b""
    return ea, rest


def decode_extended_attributes(data: bytes | None) -> list[ExtendedAttribute]:
    """Decode a list of extended attributes from a FILE_FULL_EA_INFORMATION buffer."""
    eas: list[ExtendedAttribute] = []
    remaining = bytes(data or b"")
    while remaining:
        ea, remaining = _parse_entry(remaining)
        eas.append(ea)
    return eas


def _encode_entry(ea: ExtendedAttribute, last: bool) -> bytes:
    name = _encode_name(ea.name)
    value = bytes(ea.value)
    if len(name) > _MAX_NAME:
        raise ExtendedAttributeError("extended attribute name too large")
    if len(value) > _MAX_VALUE:
        raise ExtendedAttributeError("extended attribute value too large")

    entry_size = _HEADER.size + len(name) + 1 + len(value)
    padded_size = (entry_size + 3) & ~3
    next_offset = 0 if last else padded_size
    header = _HEADER.pack(next_offset, ea.flags, len(name), len(value))
    return header + name + b"\0" + value + b"\0" * (padded_size - entry_size)


def encode_extended_attributes(eas: Iterable[ExtendedAttribute] | None) -> bytes:
    """Encode extended attributes into a FILE_FULL_EA_INFORMATION buffer."""
    items = list(eas or [])
    return b"".join(
        _encode_entry(ea, last=(pos == len(items) - 1)) for pos, ea in enumerate(items)
    )