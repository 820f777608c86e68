import os

import pytest

from protoc_parse.errors import FileValidationError, ValidationKind
from protoc_parse.parser.proto_ast import Loc
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


def _errors(root, source, extra_files=None):
    files = {"test.proto": source}
    files.update(extra_files or {})
    with pytest.raises(FileValidationError) as exc:
        _compile(root, files)
    return exc.value.errors


def _kinds(errors):
    return [e.kind for e in errors]


class TestFieldNumbers:
    def test_duplicate_number_references_both_fields(self, tmp_path):
        errors = _errors(tmp_path, """\
syntax = "proto3";
message M {
  int32 a = 1;
  int32 b = 1;
}
""")
        assert _kinds(errors) == [ValidationKind.DUPLICATE_FIELD_NUMBER]
        assert errors[0].loc == Loc("test.proto", 4, 13)
        assert "test.proto:3:13" in errors[0].detail
        assert "'a'" in errors[0].detail and "'b'" in errors[0].detail

    @pytest.mark.parametrize("number", [1, 2, 18999, 20000, 536870911])
    def test_valid_numbers_accepted(self, tmp_path, number):
        result = _compile(tmp_path, {"test.proto": f'syntax = "proto3";\nmessage M {{ int32 a = {number}; }}\n'})
        assert result.file("test.proto").message_types[0].fields[0].number == number

    @pytest.mark.parametrize("number", [0, -1, 19000, 19500, 19999, 536870912])
    def test_invalid_numbers_rejected(self, tmp_path, number):
        errors = _errors(tmp_path, f'syntax = "proto3";\nmessage M {{ int32 a = {number}; }}\n')
        assert _kinds(errors) == [ValidationKind.FIELD_NUMBER]

    def test_reserved_number_and_name(self, tmp_path):
        errors = _errors(tmp_path, """\
syntax = "proto3";
message M {
  reserved 5 to 10;
  reserved "old";
  int32 a = 7;
  int32 old = 11;
}
""")
        assert _kinds(errors) == [ValidationKind.RESERVED, ValidationKind.RESERVED]

    def test_overlapping_reserved_ranges(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nmessage M { reserved 1 to 5, 4 to 8; }\n')
        assert _kinds(errors) == [ValidationKind.RESERVED]

    def test_field_inside_extension_range(self, tmp_path):
        errors = _errors(tmp_path, "message M {\n  extensions 1 to 10;\n  optional int32 a = 5;\n}\n")
        assert _kinds(errors) == [ValidationKind.EXTENSION_RANGE]

    def test_errors_in_one_file_are_aggregated(self, tmp_path):
        errors = _errors(tmp_path, """\
syntax = "proto3";
message M {
  int32 a = 1;
  int32 b = 1;
  int32 c = 19001;
}
""")
        assert _kinds(errors) == [ValidationKind.DUPLICATE_FIELD_NUMBER, ValidationKind.FIELD_NUMBER]


class TestSyntaxRestrictions:
    def test_proto3_required(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nmessage M { required string x = 1; }\n')
        assert _kinds(errors) == [ValidationKind.SYNTAX_FEATURE]

    def test_proto3_default(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nmessage M { int32 x = 1 [default = 5]; }\n')
        assert _kinds(errors) == [ValidationKind.SYNTAX_FEATURE]

    def test_proto3_extension_range(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nmessage M { extensions 100 to 200; }\n')
        assert _kinds(errors) == [ValidationKind.SYNTAX_FEATURE]

    def test_proto2_needs_labels(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto2";\nmessage M { int32 x = 1; }\n')
        assert _kinds(errors) == [ValidationKind.SYNTAX_FEATURE]

    def test_proto3_cannot_use_proto2_enum(self, tmp_path):
        errors = _errors(
            tmp_path,
            'syntax = "proto3";\nimport "legacy.proto";\nmessage M { Color c = 1; }\n',
            {"legacy.proto": 'syntax = "proto2";\nenum Color { RED = 1; }\n'},
        )
        assert _kinds(errors) == [ValidationKind.FIELD_TYPE]

    def test_proto3_json_name_conflict(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nmessage M { int32 foo_bar = 1; int32 fooBar = 2; }\n')
        assert _kinds(errors) == [ValidationKind.JSON_NAME]


class TestEnums:
    def test_proto3_first_value_zero(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nenum E { A = 1; B = 0; }\n')
        assert _kinds(errors) == [ValidationKind.ENUM_VALUE]

    def test_alias_requires_option(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nenum E { A = 0; B = 0; }\n')
        assert _kinds(errors) == [ValidationKind.ENUM_VALUE]

    def test_alias_allowed(self, tmp_path):
        result = _compile(tmp_path, {
            "test.proto": 'syntax = "proto3";\nenum E { option allow_alias = true; A = 0; B = 0; }\n',
        })
        enum = result.file("test.proto").enum_types[0]
        assert [v.number for v in enum.values] == [0, 0]
        assert enum.options == {"allow_alias": True}

    def test_allow_alias_without_aliases(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nenum E { option allow_alias = true; A = 0; B = 1; }\n')
        assert _kinds(errors) == [ValidationKind.ENUM_VALUE]

    def test_reserved_enum_value(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nenum E { reserved 1, 2; A = 0; B = 2; }\n')
        assert _kinds(errors) == [ValidationKind.RESERVED]


class TestOneofsAndMaps:
    def test_label_in_oneof(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nmessage M { oneof o { repeated int32 a = 1; } }\n')
        assert _kinds(errors) == [ValidationKind.ONEOF]

    def test_map_in_oneof(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nmessage M { oneof o { map<string, int32> m = 1; } }\n')
        assert _kinds(errors) == [ValidationKind.ONEOF]

    def test_empty_oneof(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nmessage M { oneof o {} }\n')
        assert _kinds(errors) == [ValidationKind.ONEOF]

    def test_map_key_type(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nmessage M { map<double, string> m = 1; }\n')
        assert _kinds(errors) == [ValidationKind.MAP_FIELD]

    def test_map_entry_name_conflict(self, tmp_path):
        errors = _errors(
            tmp_path,
            'syntax = "proto3";\nmessage M { map<string, int32> foo_bar = 1; message FooBarEntry {} }\n',
        )
        assert _kinds(errors) == [ValidationKind.MAP_FIELD]


class TestExtensions:
    def test_number_outside_extension_range(self, tmp_path):
        errors = _errors(tmp_path, """\
syntax = "proto2";
message M { extensions 100 to 199; }
extend M { optional int32 inside = 150; optional int32 outside = 200; }
""")
        assert _kinds(errors) == [ValidationKind.EXTENSION]
        assert "200" in errors[0].detail

    def test_required_extension(self, tmp_path):
        errors = _errors(tmp_path, """\
syntax = "proto2";
message M { extensions 100 to 199; }
extend M { required int32 x = 100; }
""")
        assert _kinds(errors) == [ValidationKind.EXTENSION]

    def test_duplicate_extension_number_across_files(self, tmp_path):
        errors = _errors(
            tmp_path,
            'syntax = "proto2";\nimport "base.proto";\nextend M { optional int32 second = 100; }\n',
            {"base.proto": 'syntax = "proto2";\nmessage M { extensions 100 to 199; }\n'
                           "extend M { optional int32 first = 100; }\n"},
        )
        assert _kinds(errors) == [ValidationKind.EXTENSION]

    def test_proto3_may_only_extend_options(self, tmp_path):
        errors = _errors(
            tmp_path,
            'syntax = "proto3";\nimport "base.proto";\nextend M { int32 x = 100; }\n',
            {"base.proto": 'syntax = "proto2";\nmessage M { extensions 100 to 199; }\n'},
        )
        assert _kinds(errors) == [ValidationKind.SYNTAX_FEATURE]


class TestServices:
    def test_method_types_must_be_messages(self, tmp_path):
        errors = _errors(tmp_path, """\
syntax = "proto3";
enum E { A = 0; }
message M {}
service S {
  rpc ByEnum(E) returns (M);
  rpc ByScalar(M) returns (string);
}
""")
        assert _kinds(errors) == [ValidationKind.METHOD_TYPE, ValidationKind.METHOD_TYPE]
        assert errors[0].loc == Loc("test.proto", 5, 14)


class TestOptions:
    CUSTOM = """\
syntax = "proto3";
import "google/protobuf/descriptor.proto";
extend google.protobuf.FieldOptions { string tag = 50000; }
"""

    def test_custom_option_type_mismatch(self, tmp_path):
        errors = _errors(tmp_path, self.CUSTOM + "message M { int32 a = 1 [(tag) = 5]; }\n")
        assert _kinds(errors) == [ValidationKind.OPTION]

    def test_custom_option_wrong_target(self, tmp_path):
        errors = _errors(tmp_path, self.CUSTOM + 'message M { option (tag) = "x"; }\n')
        assert _kinds(errors) == [ValidationKind.OPTION]

    def test_unknown_standard_option(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\noption no_such_option = true;\n')
        assert _kinds(errors) == [ValidationKind.OPTION]

    def test_option_set_twice(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\noption java_package = "a";\noption java_package = "b";\n')
        assert _kinds(errors) == [ValidationKind.OPTION]

    def test_enum_option_value_must_exist(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\noption optimize_for = FASTEST;\n')
        assert _kinds(errors) == [ValidationKind.OPTION]

    def test_packed_on_singular_field(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto2";\nmessage M { optional int32 a = 1 [packed = true]; }\n')
        assert _kinds(errors) == [ValidationKind.OPTION]

    def test_map_entry_set_explicitly(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto3";\nmessage M { option map_entry = true; }\n')
        assert _kinds(errors) == [ValidationKind.OPTION]

    def test_default_value_type(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto2";\nmessage M { optional int32 a = 1 [default = "x"]; }\n')
        assert _kinds(errors) == [ValidationKind.DEFAULT_VALUE]

    def test_default_on_repeated(self, tmp_path):
        errors = _errors(tmp_path, 'syntax = "proto2";\nmessage M { repeated int32 a = 1 [default = 1]; }\n')
        assert _kinds(errors) == [ValidationKind.DEFAULT_VALUE]


class TestFailFastAcrossFiles:
    def test_first_broken_file_in_dependency_order_is_reported(self, tmp_path):
        files = {
            "base.proto": 'syntax = "proto3";\nmessage Base { int32 a = 1; int32 b = 1; }\n',
            "test.proto": 'syntax = "proto3";\nimport "base.proto";\nmessage M { required Base x = 1; }\n',
        }
        _write_tree(tmp_path, files)
        with pytest.raises(FileValidationError) as exc:
            parse_and_typecheck([str(tmp_path)], [str(tmp_path / "test.proto")])
        assert exc.value.path == "base.proto"
        assert _kinds(exc.value.errors) == [ValidationKind.DUPLICATE_FIELD_NUMBER]
        assert exc.value.diagnostics[0].startswith("base.proto:2:")
