import os
import shutil

import pytest
from google.protobuf import descriptor_pb2 as d2

from protoc_parse import protoc
from protoc_parse.compilation import Compilation
from protoc_parse.errors import ProtocError
from protoc_parse.models import FieldType, Label

HAS_PROTOC = bool(os.environ.get("PROTOC") or shutil.which("protoc"))

SHOP_PROTO = """\
syntax = "proto3";
package shop;

// A purchase.
message Order {
  int64 id = 1;
  map<string, int32> quantities = 2;
  optional string note = 3;
  oneof payment {
    string card = 4;
    string voucher = 5;
  }
  reserved 10 to 12;
}

enum Status {
  STATUS_UNSPECIFIED = 0;
  STATUS_DONE = 1;
}

service Shop {
  rpc Place(Order) returns (Order);
}
"""


def _write_tree(root, files):
    for name, content in files.items():
        path = os.path.join(str(root), name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(content)


def _hand_built_file():
    proto = d2.FileDescriptorProto(name="shop.proto", package="shop", syntax="proto3")
    proto.options.java_package = "com.shop"
    proto.options.optimize_for = d2.FileOptions.CODE_SIZE

    order = proto.message_type.add(name="Order")
    order.field.add(
        name="id", number=1, label=d2.FieldDescriptorProto.LABEL_OPTIONAL,
        type=d2.FieldDescriptorProto.TYPE_INT64, json_name="id",
    )
    note = order.field.add(
        name="note", number=3, label=d2.FieldDescriptorProto.LABEL_OPTIONAL,
        type=d2.FieldDescriptorProto.TYPE_STRING, json_name="note", oneof_index=0,
    )
    note.proto3_optional = True
    order.field.add(
        name="card", number=4, label=d2.FieldDescriptorProto.LABEL_OPTIONAL,
        type=d2.FieldDescriptorProto.TYPE_STRING, json_name="card", oneof_index=1,
    )
    order.oneof_decl.add(name="_note")
    order.oneof_decl.add(name="payment")
    order.reserved_range.add(start=10, end=13)
    order.extension_range.add(start=100, end=200)

    status = proto.enum_type.add(name="Status")
    status.value.add(name="STATUS_UNSPECIFIED", number=0)
    status.reserved_range.add(start=5, end=6)

    proto.source_code_info.location.add(path=[4, 0], leading_comments=" A purchase.\n")
    proto.source_code_info.location.add(path=[4, 0, 2, 1], leading_comments=" Free text.\n")
    return proto


class TestFileDescriptorFromProto:
    def test_messages_fields_and_oneofs(self):
        fd = protoc.file_descriptor_from_proto(_hand_built_file())
        assert fd.syntax == "proto3"
        order = fd.message_types[0]
        assert order.full_name == "shop.Order"
        assert [f.full_name for f in order.fields] == ["shop.Order.id", "shop.Order.note", "shop.Order.card"]
        assert order.fields[0].type == FieldType.INT64
        assert order.fields[0].label == Label.OPTIONAL
        assert [(o.name, o.synthetic) for o in order.oneofs] == [("_note", True), ("payment", False)]
        assert "shop.Order._note" not in fd.full_names()

    def test_ranges_become_inclusive(self):
        fd = protoc.file_descriptor_from_proto(_hand_built_file())
        order = fd.message_types[0]
        assert order.reserved_ranges == [(10, 12)]
        assert [(r.start, r.end) for r in order.extension_ranges] == [(100, 199)]
        assert fd.enum_types[0].reserved_ranges == [(5, 6)]

    def test_comments_from_source_info(self):
        fd = protoc.file_descriptor_from_proto(_hand_built_file())
        order = fd.message_types[0]
        assert order.doc == "A purchase."
        assert order.fields[1].doc == "Free text."
        assert order.fields[0].doc is None

    def test_options_are_kept(self):
        proto = _hand_built_file()
        fd = protoc.file_descriptor_from_proto(proto)
        assert fd.options == {"java_package": "com.shop", "optimize_for": "CODE_SIZE"}
        assert fd.to_proto().options == proto.options

    def test_options_on_every_element(self):
        proto = _hand_built_file()
        proto.options.deprecated = True
        order = proto.message_type[0]
        order.options.deprecated = False
        order.field[0].options.deprecated = True
        proto.enum_type[0].options.allow_alias = False
        service = proto.service.add(name="Shop")
        service.options.deprecated = True
        method = service.method.add(name="Place", input_type=".shop.Order", output_type=".shop.Order")
        method.options.idempotency_level = d2.MethodOptions.IDEMPOTENT

        fd = protoc.file_descriptor_from_proto(proto)
        message = fd.message_types[0]
        assert message.options == {"deprecated": False}
        assert message.fields[0].options == {"deprecated": True}
        assert message.fields[1].effective_options == {"deprecated": False}
        assert fd.enum_types[0].options == {"allow_alias": False}
        assert fd.enum_types[0].effective_options == {"allow_alias": False, "deprecated": True}
        assert fd.services[0].methods[0].options == {"idempotency_level": "IDEMPOTENT"}
        assert fd.services[0].methods[0].effective_options == {"idempotency_level": "IDEMPOTENT", "deprecated": True}

    @pytest.mark.skipif(
        "targets" not in d2.FieldOptions.DESCRIPTOR.fields_by_name,
        reason="FieldOptions.targets needs a newer protobuf",
    )
    def test_repeated_option_values(self):
        proto = _hand_built_file()
        targets = proto.message_type[0].field[0].options.targets
        targets.append(d2.FieldOptions.TARGET_TYPE_FIELD)
        targets.append(d2.FieldOptions.TARGET_TYPE_FILE)

        field = protoc.file_descriptor_from_proto(proto).message_types[0].fields[0]
        assert field.options == {"targets": ["TARGET_TYPE_FIELD", "TARGET_TYPE_FILE"]}
        assert all(v.repeated for v in field.option_values)

    def test_proto2_syntax_default(self):
        fd = protoc.file_descriptor_from_proto(d2.FileDescriptorProto(name="old.proto"))
        assert fd.syntax == "proto2"
        assert not fd.to_proto().HasField("syntax")


class TestFindProtoc:
    def test_explicit_path_wins(self, monkeypatch):
        monkeypatch.setenv("PROTOC", "/from/env/protoc")
        assert protoc.find_protoc("/explicit/protoc") == "/explicit/protoc"

    def test_environment_variable(self, monkeypatch):
        monkeypatch.setenv("PROTOC", "/from/env/protoc")
        assert protoc.find_protoc() == "/from/env/protoc"

    def test_not_found(self, monkeypatch):
        monkeypatch.delenv("PROTOC", raising=False)
        monkeypatch.setattr(shutil, "which", lambda name: None)
        with pytest.raises(ProtocError, match="not found"):
            protoc.find_protoc()

    def test_missing_binary_is_reported(self, tmp_path):
        _write_tree(tmp_path, {"a.proto": 'syntax = "proto3";\n'})
        with pytest.raises(ProtocError):
            protoc.parse_and_typecheck([str(tmp_path)], [str(tmp_path / "a.proto")], str(tmp_path / "no-protoc"))


class TestCompilation:
    def test_defaults_to_pure(self, tmp_path):
        _write_tree(tmp_path, {"shop.proto": SHOP_PROTO})
        result = Compilation().include(str(tmp_path)).input(str(tmp_path / "shop.proto")).parse_and_typecheck()
        assert result.parser == "pure"
        assert result.relative_paths == ["shop.proto"]

    def test_protoc_path_implies_protoc(self):
        compilation = Compilation().protoc_path("/usr/bin/protoc")
        assert compilation.parser == "protoc"
        assert compilation.pure().parser == "pure"

    def test_extra_args_ignored_by_pure(self, tmp_path, caplog):
        _write_tree(tmp_path, {"shop.proto": SHOP_PROTO})
        result = (
            Compilation()
            .includes([str(tmp_path)])
            .inputs([str(tmp_path / "shop.proto")])
            .extra_arg("--experimental_allow_proto3_optional")
            .parse_and_typecheck()
        )
        assert result.file("shop.proto").message_types[0].name == "Order"
        assert "ignored" in caplog.text


@pytest.mark.skipif(not HAS_PROTOC, reason="protoc is not installed")
class TestAgainstProtoc:
    def _both(self, tmp_path):
        _write_tree(tmp_path, {"shop.proto": SHOP_PROTO})
        compilation = Compilation().include(str(tmp_path)).input(str(tmp_path / "shop.proto"))
        pure = compilation.parse_and_typecheck().file("shop.proto")
        external = compilation.protoc().parse_and_typecheck().file("shop.proto")
        return pure, external

    def test_same_declarations(self, tmp_path):
        pure, external = self._both(tmp_path)
        assert sorted(pure.full_names()) == sorted(external.full_names())

    def test_same_fields(self, tmp_path):
        pure, external = self._both(tmp_path)

        def fields(fd):
            return [
                (f.full_name, f.number, f.label, f.type, f.type_name, f.oneof_index, f.json_name, f.proto3_optional)
                for m in fd.iter_messages()
                for f in m.fields
            ]

        assert fields(pure) == fields(external)

    def test_comments(self, tmp_path):
        pure, external = self._both(tmp_path)
        assert external.message_types[0].doc == "A purchase."
        assert pure.message_types[0].doc == "A purchase."

    def test_protoc_errors_become_diagnostics(self, tmp_path):
        _write_tree(tmp_path, {"bad.proto": 'syntax = "proto3";\nmessage M { int32 a = 1; int32 b = 1; }\n'})
        with pytest.raises(ProtocError) as exc:
            Compilation().protoc().include(str(tmp_path)).input(str(tmp_path / "bad.proto")).parse_and_typecheck()
        assert any("bad.proto" in line for line in exc.value.diagnostics)
