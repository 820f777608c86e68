import os

from google.protobuf import descriptor_pb2, descriptor_pool

from protoc_parse.binder import bind
from protoc_parse.descriptor_builder import build_descriptors, format_default
from protoc_parse.imports import ImportResolver
from protoc_parse.models import FieldType, Label
from protoc_parse.pure import parse_and_typecheck


def _write_tree(root, files):
    for name, content in files.items():
        path = os.path.join(str(root), name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(content)


def _compile(root, files, input_name="test.proto"):
    _write_tree(root, files)
    return parse_and_typecheck([str(root)], [os.path.join(str(root), input_name)])


def _single(root, source):
    return _compile(root, {"test.proto": source}).file("test.proto")


class TestMaps:
    def test_map_field_is_lowered_to_entry_message(self, tmp_path):
        fd = _single(tmp_path, 'syntax = "proto3";\npackage pkg;\nmessage M { map<string, int32> m = 1; }\n')
        message = fd.message_types[0]

        entry = message.nested_by_name("MEntry")
        assert entry is not None
        assert entry.full_name == "pkg.M.MEntry"
        assert entry.is_map_entry
        key, value = entry.fields
        assert (key.name, key.number, key.type, key.label) == ("key", 1, FieldType.STRING, Label.OPTIONAL)
        assert (value.name, value.number, value.type, value.label) == ("value", 2, FieldType.INT32, Label.OPTIONAL)

        m = message.field_by_name("m")
        assert m.label == Label.REPEATED
        assert m.type == FieldType.MESSAGE
        assert m.type_name == ".pkg.M.MEntry"

    def test_entry_sits_among_nested_messages_in_declaration_order(self, tmp_path):
        fd = _single(tmp_path, """\
syntax = "proto3";
package pkg;
message M {
  message Item {}
  map<int64, Item> items = 1;
  message After {}
}
""")
        message = fd.message_types[0]
        assert [n.name for n in message.nested_types] == ["Item", "ItemsEntry", "After"]
        value = message.nested_by_name("ItemsEntry").field_by_name("value")
        assert value.type == FieldType.MESSAGE
        assert value.type_name == ".pkg.M.Item"


class TestOneofs:
    def test_oneof_index(self, tmp_path):
        fd = _single(tmp_path, """\
syntax = "proto3";
message M {
  oneof kind {
    string a = 1;
    int32 b = 2;
  }
  bool c = 3;
}
""")
        message = fd.message_types[0]
        assert [o.name for o in message.oneofs] == ["kind"]
        assert [f.oneof_index for f in message.fields] == [0, 0, None]

    def test_proto3_optional_gets_synthetic_oneof_after_real_ones(self, tmp_path):
        fd = _single(tmp_path, """\
syntax = "proto3";
message M {
  oneof kind { string a = 1; }
  optional int32 b = 2;
}
""")
        message = fd.message_types[0]
        b = message.field_by_name("b")
        assert b.proto3_optional
        assert b.oneof_index == 1
        assert message.oneofs[1].name == "_b"
        assert message.oneofs[1].synthetic
        assert "M._b" not in fd.full_names()

    def test_synthetic_oneof_name_avoids_collisions(self, tmp_path):
        fd = _single(tmp_path, 'syntax = "proto3";\nmessage M { optional int32 x = 1; int32 _x = 2; }\n')
        message = fd.message_types[0]
        assert [o.name for o in message.oneofs] == ["X_x"]


class TestFields:
    def test_json_names(self, tmp_path):
        fd = _single(tmp_path, """\
syntax = "proto3";
message M {
  int32 foo_bar_baz = 1;
  int32 plain = 2;
  int32 custom = 3 [json_name = "CUSTOM"];
}
""")
        assert [f.json_name for f in fd.message_types[0].fields] == ["fooBarBaz", "plain", "CUSTOM"]

    def test_default_values_in_text_form(self, tmp_path):
        fd = _single(tmp_path, r"""
syntax = "proto2";
enum E { A = 0; B = 1; }
message M {
  optional int32 i = 1 [default = -5];
  optional double d = 2 [default = 10];
  optional float f = 3 [default = -inf];
  optional bool b = 4 [default = true];
  optional string s = 5 [default = "hi"];
  optional bytes y = 6 [default = "a\001"];
  optional E e = 7 [default = B];
  optional int32 none = 8;
}
""")
        defaults = {f.name: f.default_value for f in fd.message_types[0].fields}
        assert defaults == {
            "i": "-5",
            "d": "10",
            "f": "-inf",
            "b": "true",
            "s": "hi",
            "y": "a\\001",
            "e": "B",
            "none": None,
        }

    def test_types_are_fully_qualified(self, tmp_path):
        fd = _single(tmp_path, """\
syntax = "proto3";
package shop.v1;
enum Status { UNKNOWN = 0; }
message Order {
  message Line {}
  Status status = 1;
  repeated Line lines = 2;
}
""")
        order = fd.message_types[0]
        status, lines = order.fields
        assert (status.type, status.type_name) == (FieldType.ENUM, ".shop.v1.Status")
        assert (lines.type, lines.type_name, lines.label) == (FieldType.MESSAGE, ".shop.v1.Order.Line", Label.REPEATED)

    def test_extensions_carry_extendee(self, tmp_path):
        fd = _single(tmp_path, """\
syntax = "proto2";
package p;
message M { extensions 100 to 199; }
message Holder {
  extend M { optional int32 nested_ext = 101; }
}
extend M { optional string top_ext = 100; }
""")
        assert [(e.full_name, e.extendee) for e in fd.extensions] == [("p.top_ext", ".p.M")]
        holder = fd.message_types[1]
        assert [(e.full_name, e.extendee) for e in holder.extensions] == [("p.Holder.nested_ext", ".p.M")]
        assert [e.full_name for e in fd.iter_extensions()] == ["p.top_ext", "p.Holder.nested_ext"]


class TestFormatDefault:
    def test_floats(self):
        assert format_default(1.5) == "1.5"
        assert format_default(3.0) == "3"
        assert format_default(float("nan")) == "nan"
        assert format_default(float("inf")) == "inf"

    def test_bytes_and_bools(self):
        assert format_default(b'q"\n\xff') == 'q\\"\\n\\377'
        assert format_default(False) == "false"


class TestFiles:
    def test_dependency_order_and_import_indices(self, tmp_path):
        result = _compile(tmp_path, {
            "a.proto": 'syntax = "proto3";\nmessage A {}\n',
            "b.proto": 'syntax = "proto3";\nmessage B {}\n',
            "test.proto": 'syntax = "proto3";\nimport "a.proto";\nimport public "b.proto";\n',
        })
        names = [fd.name for fd in result.file_descriptors]
        assert names[-1] == "test.proto"
        assert sorted(names[:-1]) == ["a.proto", "b.proto"]

        fd = result.file("test.proto")
        assert fd.dependencies == ["a.proto", "b.proto"]
        assert fd.public_dependencies == [1]
        assert fd.weak_dependencies == []
        assert [f.name for f in result.inputs] == ["test.proto"]

    def test_missing_weak_import_is_still_a_dependency(self, tmp_path):
        result = _compile(tmp_path, {
            "a.proto": 'syntax = "proto3";\nmessage A {}\n',
            "test.proto": 'syntax = "proto3";\nimport "a.proto";\nimport weak "gone.proto";\n',
        })
        fd = result.file("test.proto")
        assert fd.dependencies == ["a.proto", "gone.proto"]
        assert fd.weak_dependencies == [1]
        assert [f.name for f in result.file_descriptors] == ["a.proto", "test.proto"]
        assert list(fd.to_proto().weak_dependency) == [1]

    def test_full_names_match_declared_symbols(self, tmp_path):
        _write_tree(tmp_path, {"a.proto": """\
syntax = "proto3";
package p;
message Outer {
  message Inner { int32 x = 1; }
  oneof choice { Inner inner = 1; string label = 2; }
  enum Kind { KIND_UNSPECIFIED = 0; KIND_A = 1; }
}
enum Top { TOP_UNSPECIFIED = 0; }
service Svc { rpc Get(Outer) returns (Outer); }
"""})
        resolver = ImportResolver([str(tmp_path)])
        resolver.load("a.proto")
        table = bind(resolver.graph)
        (fd,) = build_descriptors(resolver.graph, table)
        declared = {s.full_name for s in table.symbols_in("a.proto")}
        assert sorted(fd.full_names()) == sorted(declared)


class TestEffectiveOptions:
    SOURCE = """\
syntax = "proto2";
package p;
option deprecated = true;
option java_package = "com.example.p";
message M {
  optional int32 x = 1 [deprecated = false];
  optional int32 y = 2;
  message Inner { optional int32 z = 1; }
  enum E { A = 0; B = 1 [deprecated = false]; }
}
message Fresh {
  option deprecated = false;
  optional int32 w = 1;
}
service S {
  rpc Call(M) returns (M);
}
"""

    def test_inner_scope_overrides_outer(self, tmp_path):
        fd = _single(tmp_path, self.SOURCE)
        m, fresh = fd.message_types
        assert m.effective_options == {"deprecated": True}
        assert m.field_by_name("x").effective_options == {"deprecated": False}
        assert m.field_by_name("y").effective_options == {"deprecated": True}
        assert m.nested_by_name("Inner").fields[0].effective_options == {"deprecated": True}
        assert fresh.effective_options == {"deprecated": False}
        assert fresh.fields[0].effective_options == {"deprecated": False}

    def test_enums_and_services_inherit(self, tmp_path):
        fd = _single(tmp_path, self.SOURCE)
        enum = fd.message_types[0].enum_types[0]
        assert [v.effective_options for v in enum.values] == [{"deprecated": True}, {"deprecated": False}]
        service = fd.services[0]
        assert service.effective_options == {"deprecated": True}
        assert service.methods[0].effective_options == {"deprecated": True}

    def test_own_options_and_wire_form_are_unchanged(self, tmp_path):
        fd = _single(tmp_path, self.SOURCE)
        y = fd.message_types[0].field_by_name("y")
        assert y.options == {}
        proto = fd.to_proto()
        assert not proto.message_type[0].field[1].HasField("options")
        assert not proto.message_type[0].HasField("options")


class TestToProto:
    CUSTOM = """\
syntax = "proto3";
package p;
import "google/protobuf/descriptor.proto";
extend google.protobuf.FieldOptions { string tag = 50000; }
option java_package = "com.example.p";
option optimize_for = CODE_SIZE;
message M { int32 a = 1 [(tag) = "x", deprecated = true]; }
"""

    def test_standard_and_custom_options(self, tmp_path):
        proto = _single(tmp_path, self.CUSTOM).to_proto()
        assert proto.syntax == "proto3"
        assert proto.dependency == ["google/protobuf/descriptor.proto"]
        assert proto.options.java_package == "com.example.p"
        assert proto.options.optimize_for == descriptor_pb2.FileOptions.CODE_SIZE

        field = proto.message_type[0].field[0]
        assert field.options.deprecated
        (uninterpreted,) = field.options.uninterpreted_option
        assert [(n.name_part, n.is_extension) for n in uninterpreted.name] == [("p.tag", True)]
        assert uninterpreted.string_value == b"x"
        assert proto.extension[0].extendee == ".google.protobuf.FieldOptions"

    def test_option_dict_on_the_model(self, tmp_path):
        fd = _single(tmp_path, self.CUSTOM)
        assert fd.options == {"java_package": "com.example.p", "optimize_for": "CODE_SIZE"}
        assert fd.message_types[0].fields[0].options == {"(p.tag)": "x", "deprecated": True}

    def test_ranges_use_exclusive_ends_for_messages_only(self, tmp_path):
        proto = _single(tmp_path, """\
syntax = "proto2";
message M {
  extensions 100 to 199;
  reserved 5 to 9;
}
enum E {
  A = 0;
  reserved 3 to 4;
}
""").to_proto()
        assert not proto.HasField("syntax")
        message = proto.message_type[0]
        assert [(r.start, r.end) for r in message.extension_range] == [(100, 200)]
        assert [(r.start, r.end) for r in message.reserved_range] == [(5, 10)]
        assert [(r.start, r.end) for r in proto.enum_type[0].reserved_range] == [(3, 4)]

    def test_descriptor_set_loads_into_a_pool(self, tmp_path):
        result = _compile(tmp_path, {"test.proto": """\
syntax = "proto3";
package pkg;
enum Color { RED = 0; GREEN = 1; }
message M {
  map<string, int32> counts = 1;
  Color color = 2;
  optional string note = 3;
}
"""})
        file_set = result.to_file_descriptor_set()
        assert [f.name for f in file_set.file] == ["test.proto"]

        pool = descriptor_pool.DescriptorPool()
        pool.AddSerializedFile(file_set.file[0].SerializeToString())
        message = pool.FindMessageTypeByName("pkg.M")
        assert message.fields_by_name["counts"].message_type.GetOptions().map_entry
        assert message.fields_by_name["color"].enum_type.full_name == "pkg.Color"
        assert message.fields_by_name["note"].containing_oneof.name == "_note"
