"""
Decoder for the sub-records inside HEAP_DUMP and HEAP_DUMP_SEGMENT records.

Sub-records carry no length of their own, so an unknown sub-tag (or a
sub-record that fails to decode) leaves no safe way to find the next one.
In that case the rest of the payload is abandoned and the top-level
dispatcher resumes at the next record.

Each ``read_*`` function consumes exactly one sub-record body (the tag has
already been read) from a ``BufferReader`` and adds the result to a
``HeapModelBuilder``.
"""
from __future__ import annotations

import logging
from enum import IntEnum

from .codec import BufferReader, type_size
from .errors import HprofDecodeError
from .model import (
    FieldDescriptor,
    HeapModelBuilder,
    ObjectArrayInstance,
    PrimitiveArrayInstance,
    Root,
    RootKind,
    StaticField,
)

logger = logging.getLogger(__name__)


class HeapTag(IntEnum):
    """Heap dump sub-record tags."""
    ROOT_UNKNOWN = 0xFF
    ROOT_JNI_GLOBAL = 0x01
    ROOT_JNI_LOCAL = 0x02
    ROOT_JAVA_FRAME = 0x03
    ROOT_NATIVE_STACK = 0x04
    ROOT_STICKY_CLASS = 0x05
    ROOT_THREAD_BLOCK = 0x06
    ROOT_MONITOR_USED = 0x07
    ROOT_THREAD_OBJECT = 0x08
    CLASS_DUMP = 0x20
    INSTANCE_DUMP = 0x21
    OBJECT_ARRAY_DUMP = 0x22
    PRIMITIVE_ARRAY_DUMP = 0x23


# Root sub-records laid out as a single identifier
SIMPLE_ROOT_TAGS = frozenset({
    HeapTag.ROOT_UNKNOWN,
    HeapTag.ROOT_STICKY_CLASS,
    HeapTag.ROOT_MONITOR_USED,
    HeapTag.ROOT_THREAD_OBJECT,
})

# Root sub-records laid out as identifier, thread serial, frame number
THREAD_ROOT_TAGS = frozenset({
    HeapTag.ROOT_JNI_LOCAL,
    HeapTag.ROOT_JAVA_FRAME,
    HeapTag.ROOT_NATIVE_STACK,
    HeapTag.ROOT_THREAD_BLOCK,
})


# ============================================================================
# ROOTS
# ============================================================================

def read_simple_root(reader: BufferReader, builder: HeapModelBuilder, tag: HeapTag) -> Root:
    root = Root(kind=RootKind(tag), object_id=reader.read_id("root object id"))
    builder.add_root(root)
    return root


def read_jni_global_root(reader: BufferReader, builder: HeapModelBuilder) -> Root:
    object_id = reader.read_id("root object id")
    jni_global_ref_id = reader.read_id("JNI global ref id")
    root = Root(kind=RootKind.JNI_GLOBAL, object_id=object_id,
                jni_global_ref_id=jni_global_ref_id)
    builder.add_root(root)
    return root


def read_thread_root(reader: BufferReader, builder: HeapModelBuilder, tag: HeapTag) -> Root:
    object_id = reader.read_id("root object id")
    thread_serial = reader.read_u4("thread serial")
    frame_number = reader.read_u4("frame number")
    root = Root(kind=RootKind(tag), object_id=object_id,
                thread_serial=thread_serial, frame_number=frame_number)
    builder.add_root(root)
    return root


# ============================================================================
# CLASSES AND OBJECTS
# ============================================================================

def read_class_dump(reader: BufferReader, builder: HeapModelBuilder):
    """CLASS_DUMP: class layout, constant pool, statics and field descriptors."""
    class_id = reader.read_id("class id")
    stack_trace_serial = reader.read_u4("stack trace serial")
    super_class_id = reader.read_id("super class id")
    class_loader_id = reader.read_id("class loader id")
    reader.read_id("signers id")
    reader.read_id("protection domain id")
    reader.read_id("reserved id")
    reader.read_id("reserved id")
    instance_size = reader.read_u4("instance size")

    # Constant pool values are not kept
    for _ in range(reader.read_u2("constant pool count")):
        reader.read_u2("constant pool index")
        reader.skip_value(reader.read_u1("constant pool type"))

    static_fields = []
    for _ in range(reader.read_u2("static field count")):
        name_id = reader.read_id("static field name id")
        field_type = reader.read_u1("static field type")
        static_fields.append(StaticField(name_id=name_id, type=field_type,
                                         value=reader.read_value(field_type)))

    instance_fields = []
    for _ in range(reader.read_u2("instance field count")):
        name_id = reader.read_id("instance field name id")
        instance_fields.append(FieldDescriptor(name_id=name_id,
                                               type=reader.read_u1("instance field type")))

    return builder.define_class(
        class_id=class_id,
        stack_trace_serial=stack_trace_serial,
        super_class_id=super_class_id,
        class_loader_id=class_loader_id,
        instance_size=instance_size,
        static_fields=tuple(static_fields),
        instance_fields=tuple(instance_fields),
    )


def read_instance_dump(reader: BufferReader, builder: HeapModelBuilder):
    """INSTANCE_DUMP: the field bytes are stored as-is."""
    object_id = reader.read_id("object id")
    stack_trace_serial = reader.read_u4("stack trace serial")
    class_id = reader.read_id("class id")
    byte_count = reader.read_u4("instance byte count")
    if builder.retain_instance_data:
        data = reader.read_bytes(byte_count, "instance field data")
    else:
        reader.skip(byte_count, "instance field data")
        data = b""
    if class_id not in builder.classes:
        logger.debug(f"Instance 0x{object_id:X} refers to unknown class 0x{class_id:X}")
    return builder.add_instance(object_id=object_id, class_id=class_id,
                                stack_trace_serial=stack_trace_serial,
                                size=byte_count, data=data)


def read_object_array_dump(reader: BufferReader, builder: HeapModelBuilder) -> ObjectArrayInstance:
    array_id = reader.read_id("array id")
    stack_trace_serial = reader.read_u4("stack trace serial")
    length = reader.read_u4("array length")
    element_class_id = reader.read_id("array class id")
    element_ids = tuple(reader.read_id("array element") for _ in range(length))
    array = ObjectArrayInstance(
        object_id=array_id,
        element_class_id=element_class_id,
        stack_trace_serial=stack_trace_serial,
        element_ids=element_ids,
        size=length * reader.identifier_size,
    )
    builder.add_object_array(array)
    return array


def read_primitive_array_dump(reader: BufferReader,
                              builder: HeapModelBuilder) -> PrimitiveArrayInstance:
    """PRIMITIVE_ARRAY_DUMP: only the element count and total size are kept."""
    array_id = reader.read_id("array id")
    stack_trace_serial = reader.read_u4("stack trace serial")
    length = reader.read_u4("array length")
    element_type = reader.read_u1("array element type")
    element_size = type_size(element_type, reader.identifier_size) or 1
    total_size = length * element_size
    reader.skip(total_size, "primitive array data")
    array = PrimitiveArrayInstance(
        object_id=array_id,
        stack_trace_serial=stack_trace_serial,
        element_type=element_type,
        length=length,
        size=total_size,
    )
    builder.add_primitive_array(array)
    return array


# ============================================================================
# SUB-RECORD LOOP
# ============================================================================

def decode_heap_dump(reader: BufferReader, builder: HeapModelBuilder) -> bool:
    """Decode sub-records until ``reader`` reaches its limit.

    ``reader`` must be bounded to the heap dump payload. Returns False when
    the payload was abandoned because of an unknown sub-tag or a sub-record
    that failed to decode; a warning is recorded in that case.
    """
    while not reader.at_end():
        start = reader.position
        raw_tag = reader.read_u1("sub-record tag")
        try:
            tag = HeapTag(raw_tag)
        except ValueError:
            builder.warn(start, f"Unknown heap dump sub-record tag 0x{raw_tag:02X}, "
                                f"abandoning remaining {reader.remaining} bytes of heap dump",
                         tag=raw_tag)
            return False

        try:
            if tag in SIMPLE_ROOT_TAGS:
                read_simple_root(reader, builder, tag)
            elif tag == HeapTag.ROOT_JNI_GLOBAL:
                read_jni_global_root(reader, builder)
            elif tag in THREAD_ROOT_TAGS:
                read_thread_root(reader, builder, tag)
            elif tag == HeapTag.CLASS_DUMP:
                read_class_dump(reader, builder)
            elif tag == HeapTag.INSTANCE_DUMP:
                read_instance_dump(reader, builder)
            elif tag == HeapTag.OBJECT_ARRAY_DUMP:
                read_object_array_dump(reader, builder)
            elif tag == HeapTag.PRIMITIVE_ARRAY_DUMP:
                read_primitive_array_dump(reader, builder)
        except HprofDecodeError as e:
            builder.warn(start, f"Failed to decode {tag.name} sub-record, "
                                f"abandoning rest of heap dump: {e}", tag=raw_tag)
            return False
    return True
