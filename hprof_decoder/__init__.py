"""HPROF heap dump decoder.

This package decodes Java/Android HPROF heap dumps into an immutable
in-memory model for analysis tools, including:
- Header validation (format name, 4 or 8 byte identifiers)
- Length-framed record scanning that stays in sync across unknown records
- Heap dump sub-records: GC roots, class dumps, instances and arrays
- Placeholder-then-merge class construction
- Recoverable decode problems reported as warnings on the model
"""
from .codec import BasicType, BufferReader
from .config import DecoderConfig, load_config
from .decoder import HprofDecoder, RecordTag, decode, decode_file, read_header
from .errors import HprofDecodeError, HprofError, HprofFormatError
from .heap_dump import HeapTag, decode_heap_dump
from .model import (
    ClassRecord,
    DecodeWarning,
    FieldDescriptor,
    HeapModel,
    HeapModelBuilder,
    HprofHeader,
    Instance,
    ObjectArrayInstance,
    ObjectKind,
    PrimitiveArrayInstance,
    Root,
    RootKind,
    StaticField,
)

__all__ = [
    # Entry points
    "decode",
    "decode_file",
    "HprofDecoder",
    "read_header",
    "decode_heap_dump",
    # Codec
    "BasicType",
    "BufferReader",
    "RecordTag",
    "HeapTag",
    # Model
    "HeapModel",
    "HeapModelBuilder",
    "HprofHeader",
    "ClassRecord",
    "StaticField",
    "FieldDescriptor",
    "Instance",
    "ObjectArrayInstance",
    "PrimitiveArrayInstance",
    "ObjectKind",
    "Root",
    "RootKind",
    "DecodeWarning",
    # Errors
    "HprofError",
    "HprofFormatError",
    "HprofDecodeError",
    # Configuration
    "DecoderConfig",
    "load_config",
]

__version__ = "1.0.0"
