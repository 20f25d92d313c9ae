"""Heap model produced by one decode pass.

The decoder fills a ``HeapModelBuilder`` while it walks the buffer and
freezes it into a ``HeapModel`` at the end. Everything in the model is
immutable: records are frozen dataclasses, tables are read-only mapping
proxies and lists are tuples.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, ClassVar, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from .codec import type_name

logger = logging.getLogger(__name__)


def placeholder_class_name(class_id: int) -> str:
    """Name used for a class whose name string was never seen."""
    return f"Class#{class_id}"


class RootKind(IntEnum):
    """GC root kinds, numbered like the heap-dump sub-tags that carry them."""
    UNKNOWN = 0xFF
    JNI_GLOBAL = 0x01
    JNI_LOCAL = 0x02
    JAVA_FRAME = 0x03
    NATIVE_STACK = 0x04
    STICKY_CLASS = 0x05
    THREAD_BLOCK = 0x06
    MONITOR_USED = 0x07
    THREAD_OBJECT = 0x08


class ObjectKind(Enum):
    """Kinds of entries in the instance table."""
    INSTANCE = "instance"
    OBJECT_ARRAY = "object_array"
    PRIMITIVE_ARRAY = "primitive_array"


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True)
class HprofHeader:
    """File header: format name, identifier width and capture time."""
    format_name: str
    identifier_size: int
    timestamp: int  # milliseconds since the epoch

    @property
    def captured_at(self) -> Optional[datetime]:
        try:
            return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None


@dataclass(frozen=True)
class StaticField:
    name_id: int
    type: int
    value: Any


@dataclass(frozen=True)
class FieldDescriptor:
    name_id: int
    type: int


@dataclass(frozen=True)
class ClassRecord:
    """A class, possibly still a placeholder.

    A load announcement fills ``name``, ``name_id`` and ``serial``; a class
    dump fills the layout fields. Either may arrive first.
    """
    class_id: int
    name: str
    name_id: Optional[int] = None
    serial: Optional[int] = None
    stack_trace_serial: Optional[int] = None
    super_class_id: Optional[int] = None
    class_loader_id: Optional[int] = None
    instance_size: Optional[int] = None
    static_fields: Tuple[StaticField, ...] = ()
    instance_fields: Tuple[FieldDescriptor, ...] = ()
    instance_ids: Tuple[int, ...] = ()

    @property
    def has_definition(self) -> bool:
        """True once a class dump sub-record has been merged in."""
        return self.instance_size is not None


@dataclass(frozen=True)
class Instance:
    """An object instance; field bytes are kept undecoded."""
    kind: ClassVar[ObjectKind] = ObjectKind.INSTANCE

    object_id: int
    class_id: int
    stack_trace_serial: int
    size: int
    data: bytes = field(default=b"", repr=False)


@dataclass(frozen=True)
class ObjectArrayInstance:
    kind: ClassVar[ObjectKind] = ObjectKind.OBJECT_ARRAY

    object_id: int
    element_class_id: int
    stack_trace_serial: int
    element_ids: Tuple[int, ...]
    size: int

    @property
    def length(self) -> int:
        return len(self.element_ids)


@dataclass(frozen=True)
class PrimitiveArrayInstance:
    kind: ClassVar[ObjectKind] = ObjectKind.PRIMITIVE_ARRAY

    object_id: int
    stack_trace_serial: int
    element_type: int
    length: int
    size: int


HeapObject = Union[Instance, ObjectArrayInstance, PrimitiveArrayInstance]


@dataclass(frozen=True)
class Root:
    """A GC root. Thread-scoped kinds carry thread serial and frame number."""
    kind: RootKind
    object_id: int
    jni_global_ref_id: Optional[int] = None
    thread_serial: Optional[int] = None
    frame_number: Optional[int] = None


@dataclass(frozen=True)
class DecodeWarning:
    """A recoverable problem met during the pass."""
    offset: int
    message: str
    tag: Optional[int] = None

    def __str__(self) -> str:
        tag = f" [tag 0x{self.tag:02X}]" if self.tag is not None else ""
        return f"0x{self.offset:X}{tag}: {self.message}"


# ============================================================================
# MODEL
# ============================================================================

@dataclass(frozen=True)
class HeapModel:
    """Decoded heap dump handed to analysis code."""
    header: HprofHeader
    strings: Mapping[int, str]
    classes: Mapping[int, ClassRecord]
    instances: Mapping[int, HeapObject]
    roots: Tuple[Root, ...]
    warnings: Tuple[DecodeWarning, ...] = ()
    dropped_warnings: int = 0

    @property
    def identifier_size(self) -> int:
        return self.header.identifier_size

    def class_name(self, class_id: int) -> str:
        record = self.classes.get(class_id)
        return record.name if record else placeholder_class_name(class_id)

    def instances_of(self, class_id: int) -> List[Instance]:
        record = self.classes.get(class_id)
        if not record:
            return []
        return [self.instances[oid] for oid in record.instance_ids if oid in self.instances]

    def iter_objects(self, kind: Optional[ObjectKind] = None) -> Iterator[HeapObject]:
        for obj in self.instances.values():
            if kind is None or obj.kind is kind:
                yield obj

    def total_size(self) -> int:
        """Sum of the recorded size of every instance and array."""
        return sum(obj.size for obj in self.instances.values())

    def roots_by_kind(self) -> Dict[RootKind, List[Root]]:
        grouped: Dict[RootKind, List[Root]] = defaultdict(list)
        for root in self.roots:
            grouped[root.kind].append(root)
        return dict(grouped)

    def summary(self) -> Dict[str, Any]:
        counts = {kind: 0 for kind in ObjectKind}
        for obj in self.instances.values():
            counts[obj.kind] += 1
        return {
            'format': self.header.format_name,
            'identifier_size': self.header.identifier_size,
            'timestamp': self.header.timestamp,
            'strings': len(self.strings),
            'classes': len(self.classes),
            'instances': counts[ObjectKind.INSTANCE],
            'object_arrays': counts[ObjectKind.OBJECT_ARRAY],
            'primitive_arrays': counts[ObjectKind.PRIMITIVE_ARRAY],
            'roots': len(self.roots),
            'total_size': self.total_size(),
            'warnings': len(self.warnings) + self.dropped_warnings,
        }

    def to_dict(self, include_strings: bool = True) -> Dict[str, Any]:
        """Convert the model to plain JSON-serializable data.

        Raw instance bytes are not exported, only their length.
        """
        captured_at = self.header.captured_at
        data: Dict[str, Any] = {
            'header': {
                'format': self.header.format_name,
                'identifier_size': self.header.identifier_size,
                'timestamp': self.header.timestamp,
                'captured_at': captured_at.isoformat() if captured_at else None,
            },
            'summary': self.summary(),
            'classes': [_class_to_dict(rec) for rec in self.classes.values()],
            'objects': [_object_to_dict(obj) for obj in self.instances.values()],
            'roots': [
                {
                    'kind': root.kind.name,
                    'object_id': root.object_id,
                    'jni_global_ref_id': root.jni_global_ref_id,
                    'thread_serial': root.thread_serial,
                    'frame_number': root.frame_number,
                }
                for root in self.roots
            ],
            'warnings': [str(w) for w in self.warnings],
        }
        if include_strings:
            data['strings'] = {str(sid): text for sid, text in self.strings.items()}
        return data


def _class_to_dict(record: ClassRecord) -> Dict[str, Any]:
    return {
        'class_id': record.class_id,
        'name': record.name,
        'super_class_id': record.super_class_id,
        'class_loader_id': record.class_loader_id,
        'instance_size': record.instance_size,
        'static_fields': [
            {'name_id': f.name_id, 'type': type_name(f.type), 'value': f.value}
            for f in record.static_fields
        ],
        'instance_fields': [
            {'name_id': f.name_id, 'type': type_name(f.type)} for f in record.instance_fields
        ],
        'instance_count': len(record.instance_ids),
    }


def _object_to_dict(obj: HeapObject) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        'kind': obj.kind.value,
        'object_id': obj.object_id,
        'size': obj.size,
    }
    if isinstance(obj, Instance):
        data['class_id'] = obj.class_id
    elif isinstance(obj, ObjectArrayInstance):
        data['element_class_id'] = obj.element_class_id
        data['length'] = obj.length
    else:
        data['element_type'] = type_name(obj.element_type)
        data['length'] = obj.length
    return data


# ============================================================================
# BUILDER
# ============================================================================

class HeapModelBuilder:
    """Mutable state of a single decode pass.

    Not shared between passes, so independent buffers can be decoded
    concurrently without locking.
    """

    def __init__(self, header: HprofHeader, retain_instance_data: bool = True,
                 max_warnings: int = 1000):
        self.header = header
        self.retain_instance_data = retain_instance_data
        self.max_warnings = max_warnings
        self.strings: Dict[int, str] = {}
        self.classes: Dict[int, ClassRecord] = {}
        self.instances: Dict[int, HeapObject] = {}
        self.roots: List[Root] = []
        self.warnings: List[DecodeWarning] = []
        self.dropped_warnings = 0
        self._class_instances: Dict[int, List[int]] = defaultdict(list)

    def warn(self, offset: int, message: str, tag: Optional[int] = None) -> None:
        logger.warning(f"0x{offset:X}: {message}")
        if len(self.warnings) < self.max_warnings:
            self.warnings.append(DecodeWarning(offset=offset, message=message, tag=tag))
        else:
            self.dropped_warnings += 1

    def add_string(self, string_id: int, text: str) -> None:
        self.strings[string_id] = text

    # ------------------------------------------------------------------------
    # Classes
    # ------------------------------------------------------------------------

    def _upsert_class(self, class_id: int, **changes: Any) -> ClassRecord:
        record = self.classes.get(class_id)
        if record is None:
            record = ClassRecord(class_id=class_id, name=placeholder_class_name(class_id))
        record = replace(record, **changes)
        self.classes[class_id] = record
        return record

    def announce_class(self, class_id: int, name_id: int, serial: int,
                       stack_trace_serial: int) -> ClassRecord:
        """Apply a load-class announcement."""
        changes: Dict[str, Any] = {
            'name_id': name_id,
            'serial': serial,
            'stack_trace_serial': stack_trace_serial,
        }
        name = self.strings.get(name_id)
        if name is not None:
            changes['name'] = name
        else:
            logger.debug(f"Class 0x{class_id:X} names missing string 0x{name_id:X}")
        return self._upsert_class(class_id, **changes)

    def define_class(self, class_id: int, stack_trace_serial: int, super_class_id: int,
                     class_loader_id: int, instance_size: int,
                     static_fields: Tuple[StaticField, ...],
                     instance_fields: Tuple[FieldDescriptor, ...]) -> ClassRecord:
        """Merge a class dump into the class table; the name is left alone."""
        return self._upsert_class(
            class_id,
            stack_trace_serial=stack_trace_serial,
            super_class_id=super_class_id,
            class_loader_id=class_loader_id,
            instance_size=instance_size,
            static_fields=static_fields,
            instance_fields=instance_fields,
        )

    # ------------------------------------------------------------------------
    # Objects and roots
    # ------------------------------------------------------------------------

    def add_instance(self, object_id: int, class_id: int, stack_trace_serial: int,
                     size: int, data: bytes = b"") -> Instance:
        instance = Instance(
            object_id=object_id,
            class_id=class_id,
            stack_trace_serial=stack_trace_serial,
            size=size,
            data=data if self.retain_instance_data else b"",
        )
        repeated = object_id in self.instances
        self.instances[object_id] = instance
        # A repeated object id replaces the entry without linking it twice
        if class_id in self.classes and not repeated:
            self._class_instances[class_id].append(object_id)
        return instance

    def add_object_array(self, array: ObjectArrayInstance) -> None:
        self.instances[array.object_id] = array

    def add_primitive_array(self, array: PrimitiveArrayInstance) -> None:
        self.instances[array.object_id] = array

    def add_root(self, root: Root) -> None:
        self.roots.append(root)

    def build(self) -> HeapModel:
        classes = {
            class_id: replace(record, instance_ids=tuple(self._class_instances.get(class_id, ())))
            for class_id, record in self.classes.items()
        }
        return HeapModel(
            header=self.header,
            strings=MappingProxyType(dict(self.strings)),
            classes=MappingProxyType(classes),
            instances=MappingProxyType(dict(self.instances)),
            roots=tuple(self.roots),
            warnings=tuple(self.warnings),
            dropped_warnings=self.dropped_warnings,
        )
