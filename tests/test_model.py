import json
import unittest

from hprof_decoder import decode
from hprof_decoder.codec import BasicType
from hprof_decoder.config import DecoderConfig
from hprof_decoder.heap_dump import HeapTag
from hprof_decoder.model import (
    HeapModelBuilder,
    HprofHeader,
    ObjectKind,
    RootKind,
    placeholder_class_name,
)

from hprof_factory import HprofBuilder, u4


def sample_dump():
    hprof = HprofBuilder(identifier_size=4)
    hprof.string(1, "java.lang.String")
    hprof.string(2, "value")
    hprof.load_class(class_id=0x100, name_id=1)
    hprof.heap_dump(
        hprof.root(HeapTag.ROOT_STICKY_CLASS, 0x100),
        hprof.jni_global_root(0x400, 0x9000),
        hprof.thread_root(HeapTag.ROOT_JAVA_FRAME, 0x400, 1, 2),
        hprof.class_dump(0x100, instance_size=8,
                         statics=[(2, BasicType.INT, u4(7))],
                         fields=[(2, BasicType.OBJECT)]),
        hprof.instance_dump(0x400, 0x100, b"\x00\x00\x05\x00\x00\x00\x00\x00"),
        hprof.object_array(0x500, 0x100, [0x400]),
        hprof.primitive_array(0x501, BasicType.CHAR, 3),
    )
    return hprof.build()


class TestHeapModel(unittest.TestCase):
    def setUp(self):
        self.model = decode(sample_dump())

    def test_summary(self):
        summary = self.model.summary()
        self.assertEqual(summary['strings'], 2)
        self.assertEqual(summary['classes'], 1)
        self.assertEqual(summary['instances'], 1)
        self.assertEqual(summary['object_arrays'], 1)
        self.assertEqual(summary['primitive_arrays'], 1)
        self.assertEqual(summary['roots'], 3)
        self.assertEqual(summary['total_size'], 8 + 4 + 6)
        self.assertEqual(summary['warnings'], 0)

    def test_tables_are_read_only(self):
        with self.assertRaises(TypeError):
            self.model.classes[0x999] = None
        with self.assertRaises(TypeError):
            self.model.strings[3] = "x"
        with self.assertRaises(TypeError):
            del self.model.instances[0x400]
        self.assertIsInstance(self.model.roots, tuple)
        self.assertIsInstance(self.model.classes[0x100].instance_ids, tuple)

    def test_records_are_frozen(self):
        with self.assertRaises(AttributeError):
            self.model.classes[0x100].name = "Other"
        with self.assertRaises(AttributeError):
            self.model.roots[0].object_id = 1

    def test_roots_by_kind(self):
        grouped = self.model.roots_by_kind()
        self.assertEqual(len(grouped[RootKind.STICKY_CLASS]), 1)
        self.assertEqual(grouped[RootKind.JNI_GLOBAL][0].jni_global_ref_id, 0x9000)
        self.assertEqual(grouped[RootKind.JAVA_FRAME][0].frame_number, 2)
        self.assertNotIn(RootKind.THREAD_BLOCK, grouped)

    def test_iter_objects_by_kind(self):
        ids = {kind: [o.object_id for o in self.model.iter_objects(kind)] for kind in ObjectKind}
        self.assertEqual(ids[ObjectKind.INSTANCE], [0x400])
        self.assertEqual(ids[ObjectKind.OBJECT_ARRAY], [0x500])
        self.assertEqual(ids[ObjectKind.PRIMITIVE_ARRAY], [0x501])

    def test_to_dict_is_json_serializable(self):
        data = self.model.to_dict()
        text = json.dumps(data)
        loaded = json.loads(text)
        self.assertEqual(loaded['header']['identifier_size'], 4)
        self.assertEqual(loaded['classes'][0]['name'], "java.lang.String")
        self.assertEqual(loaded['classes'][0]['static_fields'][0]['value'], 7)
        self.assertEqual(loaded['classes'][0]['static_fields'][0]['type'], "int")
        self.assertEqual(loaded['classes'][0]['instance_count'], 1)
        self.assertEqual(loaded['strings']['1'], "java.lang.String")
        kinds = sorted(o['kind'] for o in loaded['objects'])
        self.assertEqual(kinds, ["instance", "object_array", "primitive_array"])
        self.assertEqual(loaded['roots'][0]['kind'], "STICKY_CLASS")

    def test_to_dict_without_strings(self):
        self.assertNotIn('strings', self.model.to_dict(include_strings=False))

    def test_placeholder_name(self):
        self.assertEqual(placeholder_class_name(42), "Class#42")
        self.assertEqual(self.model.class_name(42), "Class#42")


class TestHeapModelBuilder(unittest.TestCase):
    def setUp(self):
        self.builder = HeapModelBuilder(HprofHeader("JAVA PROFILE 1.0.3", 4, 0), max_warnings=2)

    def test_warnings_past_limit_are_counted(self):
        for i in range(5):
            self.builder.warn(i, f"problem {i}")
        model = self.builder.build()
        self.assertEqual(len(model.warnings), 2)
        self.assertEqual(model.dropped_warnings, 3)
        self.assertEqual(model.summary()['warnings'], 5)

    def test_warning_text(self):
        self.builder.warn(0x20, "bad", tag=0x99)
        self.assertEqual(str(self.builder.warnings[0]), "0x20 [tag 0x99]: bad")

    def test_build_snapshots_state(self):
        self.builder.add_string(1, "a")
        model = self.builder.build()
        self.builder.add_string(2, "b")
        self.assertEqual(dict(model.strings), {1: "a"})

    def test_upsert_keeps_single_record(self):
        self.builder.announce_class(0x10, name_id=1, serial=1, stack_trace_serial=0)
        self.builder.define_class(0x10, stack_trace_serial=0, super_class_id=0,
                                  class_loader_id=0, instance_size=4,
                                  static_fields=(), instance_fields=())
        self.assertEqual(list(self.builder.classes), [0x10])
        self.assertEqual(self.builder.classes[0x10].name, "Class#16")
        self.assertEqual(self.builder.classes[0x10].instance_size, 4)


class TestDecoderConfigEffects(unittest.TestCase):
    def test_retain_instance_data_off(self):
        model = decode(sample_dump(), DecoderConfig(retain_instance_data=False))
        instance = model.instances[0x400]
        self.assertEqual(instance.data, b"")
        self.assertEqual(instance.size, 8)

    def test_captured_at_out_of_range(self):
        header = HprofHeader("JAVA PROFILE 1.0.3", 4, 2 ** 63)
        self.assertIsNone(header.captured_at)


if __name__ == "__main__":
    unittest.main()
