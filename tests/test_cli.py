"""Tests for the command line interface."""
import json

import pytest

from hprof_decoder.cli import main
from hprof_decoder.heap_dump import HeapTag

from hprof_factory import HprofBuilder


@pytest.fixture
def dump_file(tmp_path):
    hprof = HprofBuilder()
    hprof.string(1, "com.example.Foo").load_class(class_id=0x100, name_id=1)
    hprof.heap_dump(
        hprof.root(HeapTag.ROOT_STICKY_CLASS, 0x100),
        hprof.thread_root(HeapTag.ROOT_JAVA_FRAME, 0x400, 1, 0),
        hprof.class_dump(0x100, instance_size=4),
        hprof.instance_dump(0x400, 0x100, b"\x00" * 4),
    )
    hprof.record(0x77, b"\x00\x01")
    path = tmp_path / "heap.hprof"
    path.write_bytes(hprof.build())
    return path


def test_inspect(dump_file, capsys):
    assert main(["inspect", str(dump_file)]) == 0
    out = capsys.readouterr().out
    assert "JAVA PROFILE 1.0.3" in out
    assert "Classes:          1" in out
    assert "Instances:        1" in out
    assert "GC roots:         2" in out
    assert "WARNINGS (1)" in out
    assert "Unknown record tag 0x77" in out


def test_roots(dump_file, capsys):
    assert main(["roots", str(dump_file)]) == 0
    out = capsys.readouterr().out
    assert "STICKY_CLASS" in out
    assert "JAVA_FRAME" in out
    assert "JNI_GLOBAL" not in out


def test_export(dump_file, tmp_path):
    output = tmp_path / "heap.json"
    assert main(["export", str(dump_file), "-o", str(output), "--no-strings"]) == 0
    data = json.loads(output.read_text(encoding="utf-8"))
    assert data['summary']['classes'] == 1
    assert data['classes'][0]['name'] == "com.example.Foo"
    assert 'strings' not in data


def test_export_requires_output(dump_file):
    with pytest.raises(SystemExit):
        main(["export", str(dump_file)])


def test_not_a_heap_dump(tmp_path, capsys):
    path = tmp_path / "bad.hprof"
    path.write_bytes(b"GIF89a\x00")
    assert main(["inspect", str(path)]) == 2
    assert "not a readable heap dump" in capsys.readouterr().err


def test_missing_file(tmp_path, capsys):
    assert main(["inspect", str(tmp_path / "missing.hprof")]) == 1
    assert "Error" in capsys.readouterr().err
