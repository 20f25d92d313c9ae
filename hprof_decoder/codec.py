"""
Identifier and typed-value codec for HPROF buffers.

Every read in the decoder goes through ``BufferReader``, which owns the
cursor explicitly instead of keeping it on the decoder. A reader can be
narrowed to a window with ``bounded()`` so a record handler can never read
past the record it was given, and sub-record decoders can be unit tested
against a bare reader.

All multi-byte values in the format are big-endian. Identifiers are
opaque unsigned integers, 4 or 8 bytes wide for the whole file.
"""
from __future__ import annotations

import struct
from enum import IntEnum
from typing import Any, Optional, Union

from .errors import HprofDecodeError


Buffer = Union[bytes, bytearray, memoryview]


# ============================================================================
# BASIC TYPES
# ============================================================================

class BasicType(IntEnum):
    """HPROF basic type tags used by fields, constants and arrays."""
    OBJECT = 2
    BOOLEAN = 4
    CHAR = 5
    FLOAT = 6
    DOUBLE = 7
    BYTE = 8
    SHORT = 9
    INT = 10
    LONG = 11

    @property
    def type_name(self) -> str:
        return self.name.lower()


# Fixed-width scalar layouts; OBJECT is sized by the identifier width
_SCALAR_FORMATS = {
    BasicType.BOOLEAN: struct.Struct('>B'),
    BasicType.CHAR: struct.Struct('>H'),
    BasicType.FLOAT: struct.Struct('>f'),
    BasicType.DOUBLE: struct.Struct('>d'),
    BasicType.BYTE: struct.Struct('>b'),
    BasicType.SHORT: struct.Struct('>h'),
    BasicType.INT: struct.Struct('>i'),
    BasicType.LONG: struct.Struct('>q'),
}

SUPPORTED_IDENTIFIER_SIZES = (4, 8)

_U1 = struct.Struct('>B')
_U2 = struct.Struct('>H')
_U4 = struct.Struct('>I')
_U8 = struct.Struct('>Q')


def type_size(type_tag: int, identifier_size: int) -> Optional[int]:
    """Byte width of a value of ``type_tag``, or None for an unknown tag."""
    if type_tag == BasicType.OBJECT:
        return identifier_size
    fmt = _SCALAR_FORMATS.get(type_tag)
    return fmt.size if fmt else None


def type_name(type_tag: int) -> str:
    try:
        return BasicType(type_tag).type_name
    except ValueError:
        return f"type#{type_tag}"


# ============================================================================
# BUFFER READER
# ============================================================================

class BufferReader:
    """Forward-only cursor over an immutable byte buffer.

    ``limit`` is a hard end: any read that would cross it raises
    ``HprofDecodeError`` and leaves the cursor where it was.
    """

    def __init__(self, data: Buffer, position: int = 0, limit: Optional[int] = None,
                 identifier_size: int = 4):
        self.data = data
        self.position = position
        self.limit = len(data) if limit is None else min(limit, len(data))
        self.identifier_size = identifier_size

    def __repr__(self) -> str:
        return (f"<BufferReader position=0x{self.position:X} limit=0x{self.limit:X} "
                f"id-size={self.identifier_size}>")

    @property
    def remaining(self) -> int:
        return max(self.limit - self.position, 0)

    def at_end(self) -> bool:
        return self.position >= self.limit

    def bounded(self, length: int) -> "BufferReader":
        """Reader over the next ``length`` bytes, sharing the same buffer."""
        return BufferReader(self.data, self.position, self.position + length,
                            self.identifier_size)

    def seek(self, position: int) -> None:
        self.position = position

    def skip(self, count: int, what: str = "bytes") -> None:
        self._require(count, what)
        self.position += count

    def _require(self, count: int, what: str) -> None:
        if count < 0 or self.position + count > self.limit:
            raise HprofDecodeError(
                f"Truncated {what}: need {count} bytes, {self.remaining} available",
                self.position,
            )

    def _unpack(self, fmt: struct.Struct, what: str) -> Any:
        self._require(fmt.size, what)
        value, = fmt.unpack_from(self.data, self.position)
        self.position += fmt.size
        return value

    # ------------------------------------------------------------------------
    # Unsigned integers
    # ------------------------------------------------------------------------

    def read_u1(self, what: str = "u1") -> int:
        return self._unpack(_U1, what)

    def read_u2(self, what: str = "u2") -> int:
        return self._unpack(_U2, what)

    def read_u4(self, what: str = "u4") -> int:
        return self._unpack(_U4, what)

    def read_u8(self, what: str = "u8") -> int:
        return self._unpack(_U8, what)

    def read_id(self, what: str = "identifier") -> int:
        """Read one identifier of the file's identifier width."""
        if self.identifier_size == 4:
            return self._unpack(_U4, what)
        if self.identifier_size == 8:
            return self._unpack(_U8, what)
        raise HprofDecodeError(f"Unsupported identifier size: {self.identifier_size}",
                               self.position)

    def read_bytes(self, count: int, what: str = "bytes") -> bytes:
        self._require(count, what)
        start = self.position
        self.position += count
        return bytes(self.data[start:self.position])

    def read_cstring(self, what: str = "string") -> bytes:
        """Read a null-terminated byte string; the terminator is consumed."""
        chars = bytearray()
        while True:
            byte = self.read_u1(what)
            if byte == 0:
                return bytes(chars)
            chars.append(byte)

    # ------------------------------------------------------------------------
    # Typed values
    # ------------------------------------------------------------------------

    def read_value(self, type_tag: int) -> Any:
        """Decode one value of the given basic type.

        Objects come back as identifiers, booleans as ``bool``, chars as
        their unsigned code unit and every other integer type signed.
        """
        if type_tag == BasicType.OBJECT:
            return self.read_id("object value")
        fmt = _SCALAR_FORMATS.get(type_tag)
        if fmt is None:
            raise HprofDecodeError(f"Unknown basic type tag: {type_tag}", self.position)
        value = self._unpack(fmt, type_name(type_tag))
        if type_tag == BasicType.BOOLEAN:
            return value != 0
        return value

    def skip_value(self, type_tag: int) -> None:
        size = type_size(type_tag, self.identifier_size)
        if size is None:
            raise HprofDecodeError(f"Unknown basic type tag: {type_tag}", self.position)
        self.skip(size, type_name(type_tag))
