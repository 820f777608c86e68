import os

from protoc_parse.pure import parse_and_typecheck
from protoc_parse.report import render_file_summary, render_summary


def _write_tree(root, files):
    for name, content in files.items():
        path = os.path.join(str(root), name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(content)


SOURCE = """\
syntax = "proto2";
package shop;
import "google/protobuf/timestamp.proto";

message Order {
  optional google.protobuf.Timestamp placed = 1;
  map<string, Item> items = 2;
  optional int32 count = 3 [default = 7];
  oneof payment {
    string card = 4;
  }
  message Item {}
  enum Kind {
    KIND_RETAIL = 0;
  }
  extensions 100 to 199;
}

extend Order {
  optional string source = 100;
}

service Shop {
  rpc Watch(Order) returns (stream Order);
}
"""


class TestSummary:
    def _result(self, tmp_path):
        _write_tree(tmp_path, {"shop.proto": SOURCE})
        return parse_and_typecheck([str(tmp_path)], [str(tmp_path / "shop.proto")])

    def test_outline(self, tmp_path):
        text = render_summary(self._result(tmp_path))
        lines = [line.strip() for line in text.splitlines()]
        assert lines[0] == "# parsed with pure"
        assert "file shop.proto (proto2, package shop)" in lines
        assert "import google/protobuf/timestamp.proto" in lines
        assert "message shop.Order" in lines
        assert "optional google.protobuf.Timestamp placed = 1" in lines
        assert "repeated shop.Order.ItemsEntry items = 2" in lines
        assert "optional int32 count = 3 [default = 7]" in lines
        assert "optional string card = 4 (oneof payment)" in lines
        assert "message shop.Order.ItemsEntry (map entry)" in lines
        assert "enum shop.Order.Kind" in lines
        assert "KIND_RETAIL = 0" in lines
        assert "extend shop.Order: optional string source = 100" in lines
        assert "service shop.Shop" in lines
        assert "rpc Watch(shop.Order) returns (stream shop.Order)" in lines

    def test_imports_only_on_request(self, tmp_path):
        result = self._result(tmp_path)
        assert "file google/protobuf/timestamp.proto" not in render_summary(result)
        full = render_summary(result, include_imports=True)
        assert "file google/protobuf/timestamp.proto (proto3, package google.protobuf)" in full
        assert full.index("google/protobuf/timestamp.proto (") < full.index("file shop.proto")

    def test_nesting_is_indented(self, tmp_path):
        text = render_file_summary(self._result(tmp_path).inputs, "pure")
        order_line = next(line for line in text.splitlines() if line.strip() == "message shop.Order")
        entry_line = next(line for line in text.splitlines() if "(map entry)" in line)
        indent = len(order_line) - len(order_line.lstrip())
        assert len(entry_line) - len(entry_line.lstrip()) > indent
