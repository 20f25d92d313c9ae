"""
HPROF heap dump decoder.

Reads the file header, then walks the top-level records in one forward
pass. Every top-level record is length-framed, so whatever a handler does
(including failing halfway) the cursor is moved to the declared end of the
record before the next one is read. This keeps the scan in step with the
stream even across unknown or damaged records.

Record layout:
    u1  tag
    u4  microseconds since the header timestamp (ignored)
    u4  payload length
    [payload]
"""
from __future__ import annotations

import logging
import mmap
import os
from enum import IntEnum
from pathlib import Path
from typing import Optional, Union

from .codec import SUPPORTED_IDENTIFIER_SIZES, Buffer, BufferReader
from .config import DecoderConfig
from .errors import HprofDecodeError, HprofFormatError
from .heap_dump import decode_heap_dump
from .model import HeapModel, HeapModelBuilder, HprofHeader

logger = logging.getLogger(__name__)

MAGIC_PREFIX = b"JAVA PROFILE 1.0"

# tag (1) + time delta (4) + length (4)
RECORD_HEADER_SIZE = 9


# ============================================================================
# RECORD TAGS
# ============================================================================

class RecordTag(IntEnum):
    """Top-level record tags."""
    STRING = 0x01
    LOAD_CLASS = 0x02
    UNLOAD_CLASS = 0x03
    STACK_FRAME = 0x04
    STACK_TRACE = 0x05
    ALLOC_SITES = 0x06
    HEAP_SUMMARY = 0x07
    START_THREAD = 0x0A
    END_THREAD = 0x0B
    HEAP_DUMP = 0x0C
    CPU_SAMPLES = 0x0D
    CONTROL_SETTINGS = 0x0E
    HEAP_DUMP_SEGMENT = 0x1C
    HEAP_DUMP_END = 0x2C


HEAP_DUMP_TAGS = frozenset({RecordTag.HEAP_DUMP, RecordTag.HEAP_DUMP_SEGMENT})

# Known records this decoder has no use for
SKIPPED_TAGS = frozenset({
    RecordTag.UNLOAD_CLASS,
    RecordTag.STACK_FRAME,
    RecordTag.STACK_TRACE,
    RecordTag.ALLOC_SITES,
    RecordTag.HEAP_SUMMARY,
    RecordTag.START_THREAD,
    RecordTag.END_THREAD,
    RecordTag.HEAP_DUMP_END,
    RecordTag.CPU_SAMPLES,
    RecordTag.CONTROL_SETTINGS,
})


def _tag_name(tag: int) -> str:
    try:
        return RecordTag(tag).name
    except ValueError:
        return f"0x{tag:02X}"


# ============================================================================
# HEADER
# ============================================================================

def read_header(reader: BufferReader) -> HprofHeader:
    """Read the file header and fix the reader's identifier size.

    Raises:
        HprofFormatError: unknown format name, unsupported identifier
            size, or a header cut short.
    """
    try:
        raw_name = reader.read_cstring("format name")
        if not raw_name.startswith(MAGIC_PREFIX):
            shown = raw_name[:32].decode('ascii', 'replace')
            raise HprofFormatError(f"Unsupported format: {shown!r}", 0)

        id_offset = reader.position
        identifier_size = reader.read_u4("identifier size")
        if identifier_size not in SUPPORTED_IDENTIFIER_SIZES:
            raise HprofFormatError(f"Unsupported identifier size: {identifier_size}", id_offset)

        timestamp = reader.read_u8("timestamp")
    except HprofDecodeError as e:
        raise HprofFormatError("Truncated header", e.offset) from e

    reader.identifier_size = identifier_size
    return HprofHeader(
        format_name=raw_name.decode('ascii', 'replace'),
        identifier_size=identifier_size,
        timestamp=timestamp,
    )


# ============================================================================
# RECORD HANDLERS
# ============================================================================

def read_string_record(reader: BufferReader, builder: HeapModelBuilder) -> None:
    """STRING: identifier followed by UTF-8 text filling the record."""
    string_id = reader.read_id("string id")
    text = reader.read_bytes(reader.remaining, "string data")
    builder.add_string(string_id, text.decode('utf-8', 'replace'))


def read_load_class_record(reader: BufferReader, builder: HeapModelBuilder) -> None:
    """LOAD_CLASS: announces a class id and the string naming it."""
    serial = reader.read_u4("class serial")
    class_id = reader.read_id("class id")
    stack_trace_serial = reader.read_u4("stack trace serial")
    name_id = reader.read_id("class name id")
    builder.announce_class(class_id=class_id, name_id=name_id, serial=serial,
                           stack_trace_serial=stack_trace_serial)


# ============================================================================
# DECODER
# ============================================================================

class HprofDecoder:
    """Single-pass HPROF decoder.

    Holds no per-pass state, so one instance may decode any number of
    buffers, including concurrently from several threads.
    """

    def __init__(self, config: Optional[DecoderConfig] = None):
        self.config = config or DecoderConfig()

    def decode(self, data: Buffer) -> HeapModel:
        """Decode a complete heap dump held in memory.

        Raises:
            HprofFormatError: the header is not one this decoder reads.
        """
        reader = BufferReader(data)
        header = read_header(reader)
        logger.info(f"Format: {header.format_name}, identifier size: {header.identifier_size}, "
                    f"timestamp: {header.timestamp}")

        builder = HeapModelBuilder(
            header,
            retain_instance_data=self.config.retain_instance_data,
            max_warnings=self.config.max_warnings,
        )
        while not reader.at_end():
            self.decode_record(reader, builder)

        model = builder.build()
        if model.warnings or model.dropped_warnings:
            logger.info(f"Decoded with {len(model.warnings) + model.dropped_warnings} warnings")
        return model

    def decode_record(self, reader: BufferReader, builder: HeapModelBuilder) -> None:
        """Decode one top-level record and leave the cursor at its declared end."""
        start = reader.position
        if reader.remaining < RECORD_HEADER_SIZE:
            builder.warn(start, f"{reader.remaining} trailing bytes are too short "
                                f"for a record header, ignored")
            reader.seek(reader.limit)
            return

        tag = reader.read_u1("record tag")
        reader.read_u4("record time")
        length = reader.read_u4("record length")
        end = reader.position + length
        if end > reader.limit:
            builder.warn(start, f"{_tag_name(tag)} record declares {length} bytes but "
                                f"only {reader.remaining} remain", tag=tag)

        payload = reader.bounded(length)
        try:
            if tag == RecordTag.STRING:
                read_string_record(payload, builder)
            elif tag == RecordTag.LOAD_CLASS:
                read_load_class_record(payload, builder)
            elif tag in HEAP_DUMP_TAGS:
                decode_heap_dump(payload, builder)
            elif tag in SKIPPED_TAGS:
                logger.debug(f"Skipping {_tag_name(tag)} record ({length} bytes)")
            else:
                builder.warn(start, f"Unknown record tag 0x{tag:02X}, skipped {length} bytes",
                             tag=tag)
        except HprofDecodeError as e:
            builder.warn(start, f"Failed to decode {_tag_name(tag)} record: {e}", tag=tag)

        reader.seek(end)

    def decode_file(self, path: Union[str, Path]) -> HeapModel:
        """Decode a heap dump file.

        Files above the configured threshold are memory-mapped rather than
        read whole; the mapping is released once the pass is done.
        """
        path = Path(path)
        file_size = os.path.getsize(path)
        with open(path, 'rb') as f:
            if 0 < self.config.mmap_threshold_bytes < file_size:
                logger.info(f"Memory-mapping {path} ({file_size:,} bytes)")
                with mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as mapped:
                    return self.decode(mapped)
            return self.decode(f.read())


def decode(data: Buffer, config: Optional[DecoderConfig] = None) -> HeapModel:
    """Decode an in-memory heap dump into a ``HeapModel``."""
    return HprofDecoder(config).decode(data)


def decode_file(path: Union[str, Path], config: Optional[DecoderConfig] = None) -> HeapModel:
    """Decode a heap dump file into a ``HeapModel``."""
    return HprofDecoder(config).decode_file(path)
