"""Lowering of the bound, validated AST forest into the descriptor model."""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Set, Tuple

from protoc_parse.binder import SymbolKind, SymbolTable, join_name
from protoc_parse.imports import DependencyGraph, LoadedFile
from protoc_parse.models import (
    SCALAR_FIELD_TYPES,
    EnumDescriptor,
    EnumValueDescriptor,
    ExtensionRange,
    FieldDescriptor,
    FieldType,
    FileDescriptor,
    Label,
    MessageDescriptor,
    MethodDescriptor,
    OneofDescriptor,
    OptionValue,
    ServiceDescriptor,
)
from protoc_parse.naming import c_escape, json_name, map_entry_name
from protoc_parse.options import (
    ENUM_OPTIONS,
    ENUM_VALUE_OPTIONS,
    EXTENSION_RANGE_OPTIONS,
    FIELD_OPTIONS,
    FILE_OPTIONS,
    MESSAGE_OPTIONS,
    METHOD_OPTIONS,
    ONEOF_OPTIONS,
    SERVICE_OPTIONS,
    OptionInterpreter,
    TypeInfo,
    coerce_value,
    find_pseudo_option,
)
from protoc_parse.parser.proto_ast import (
    EnumNode,
    ExtensionNode,
    FieldNode,
    Loc,
    MessageNode,
    OptionNode,
    ServiceNode,
)

logger = logging.getLogger(__name__)

_LABELS = {"required": Label.REQUIRED, "repeated": Label.REPEATED, "optional": Label.OPTIONAL}


def _option_kind(info: TypeInfo) -> str:
    if info.scalar in ("float", "double"):
        return "float"
    if info.scalar in ("bool", "string", "bytes"):
        return info.scalar
    if info.scalar is not None:
        return "int"
    if info.enum is not None:
        return "enum"
    return "message"


def format_default(value: object) -> str:
    """protoc's text form of a default value."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "nan"
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        if value.is_integer() and abs(value) < 1e15:
            return str(int(value))
        return repr(value)
    if isinstance(value, bytes):
        return c_escape(value)
    return str(value)


class DescriptorBuilder:
    """Builds one FileDescriptor per file of the graph."""

    def __init__(self, graph: DependencyGraph, table: SymbolTable):
        self._graph = graph
        self._table = table
        self._options = OptionInterpreter(table)
        self._proto3 = False

    def build(self) -> List[FileDescriptor]:
        return [self.build_file(loaded) for loaded in self._graph.dependency_order()]

    def build_file(self, loaded: LoadedFile) -> FileDescriptor:
        ast = loaded.ast
        self._proto3 = ast.syntax == "proto3"
        package = ast.package or ""

        fd = FileDescriptor(
            name=loaded.name,
            package=package,
            syntax=ast.syntax,
            option_values=self._option_values(ast.options, FILE_OPTIONS),
        )
        for i, edge in enumerate(loaded.imports):
            fd.dependencies.append(edge.target)
            if edge.kind == "public":
                fd.public_dependencies.append(i)
            elif edge.kind == "weak":
                fd.weak_dependencies.append(i)

        fd.message_types = [self._message(m, join_name(package, m.name)) for m in ast.messages]
        fd.enum_types = [self._enum(e, package) for e in ast.enums]
        fd.services = [self._service(s, package) for s in ast.services]
        fd.extensions = self._extensions(ast.extends, package)
        fd.resolve_effective_options()

        logger.debug("lowered %s", loaded.name)
        return fd

    # -- messages --

    def _message(self, node: MessageNode, full_name: str) -> MessageDescriptor:
        md = MessageDescriptor(
            name=node.name,
            full_name=full_name,
            option_values=self._option_values(node.options, MESSAGE_OPTIONS),
            doc=node.doc,
        )
        md.oneofs = [
            OneofDescriptor(
                name=o.name,
                full_name=join_name(full_name, o.name),
                option_values=self._option_values(o.options, ONEOF_OPTIONS),
                doc=o.doc,
            )
            for o in node.oneofs
        ]
        oneof_index = {o.name: i for i, o in enumerate(node.oneofs)}

        # Map entries sit among the nested messages in declaration order.
        nested: List[Tuple[Loc, MessageDescriptor]] = [
            (m.loc, self._message(m, join_name(full_name, m.name))) for m in node.messages
        ]
        proto3_optional: List[FieldDescriptor] = []
        for f in node.fields:
            field_desc = self._field(f, full_name)
            if f.is_map:
                entry = self._map_entry(f, full_name)
                nested.append((f.loc, entry))
                field_desc.label = Label.REPEATED
                field_desc.type = FieldType.MESSAGE
                field_desc.type_name = "." + entry.full_name
            if f.oneof is not None:
                field_desc.oneof_index = oneof_index[f.oneof]
            elif self._proto3 and f.label == "optional":
                proto3_optional.append(field_desc)
            md.fields.append(field_desc)

        used: Set[str] = {f.name for f in node.fields} | set(oneof_index)
        for field_desc in proto3_optional:
            name = "_" + field_desc.name
            while name in used:
                name = "X" + name
            used.add(name)
            field_desc.proto3_optional = True
            field_desc.oneof_index = len(md.oneofs)
            md.oneofs.append(OneofDescriptor(name=name, full_name=join_name(full_name, name), synthetic=True))

        md.nested_types = [m for _, m in sorted(nested, key=lambda item: (item[0].line, item[0].col))]
        md.enum_types = [self._enum(e, full_name) for e in node.enums]
        md.extensions = self._extensions(node.extends, full_name)
        for ext_range in node.extension_ranges:
            option_values = self._option_values(ext_range.options, EXTENSION_RANGE_OPTIONS)
            for r in ext_range.ranges:
                md.extension_ranges.append(ExtensionRange(r.start, r.end, option_values=list(option_values)))
        md.reserved_ranges = [(r.start, r.end) for r in node.reserved_ranges]
        md.reserved_names = list(node.reserved_names)
        return md

    def _map_entry(self, f: FieldNode, scope: str) -> MessageDescriptor:
        name = map_entry_name(f.name)
        full_name = join_name(scope, name)
        value_type, value_type_name = self._field_type(f.type_name, f.type_loc)
        key = FieldDescriptor(
            name="key",
            full_name=join_name(full_name, "key"),
            number=1,
            label=Label.OPTIONAL,
            type=SCALAR_FIELD_TYPES[f.map_key_type],
            json_name="key",
        )
        value = FieldDescriptor(
            name="value",
            full_name=join_name(full_name, "value"),
            number=2,
            label=Label.OPTIONAL,
            type=value_type,
            type_name=value_type_name,
            json_name="value",
        )
        return MessageDescriptor(
            name=name,
            full_name=full_name,
            fields=[key, value],
            option_values=[OptionValue(path=["map_entry"], value=True, kind="bool")],
        )

    # -- fields --

    def _field_type(self, type_name: str, loc: Loc) -> Tuple[FieldType, Optional[str]]:
        scalar = SCALAR_FIELD_TYPES.get(type_name)
        if scalar is not None:
            return scalar, None
        symbol = self._table.resolved(loc)
        kind = FieldType.ENUM if symbol.kind == SymbolKind.ENUM else FieldType.MESSAGE
        return kind, "." + symbol.full_name

    def _field(self, f: FieldNode, scope: str) -> FieldDescriptor:
        field_type, type_name = self._field_type(f.type_name, f.type_loc)
        custom_json = find_pseudo_option(f.options, "json_name")
        return FieldDescriptor(
            name=f.name,
            full_name=join_name(scope, f.name),
            number=f.number,
            label=_LABELS.get(f.label, Label.OPTIONAL),
            type=field_type,
            type_name=type_name,
            default_value=self._default_value(f),
            json_name=custom_json.value.value.decode("utf-8") if custom_json else json_name(f.name),
            option_values=self._option_values(f.options, FIELD_OPTIONS),
            doc=f.doc,
        )

    def _default_value(self, f: FieldNode) -> Optional[str]:
        option = find_pseudo_option(f.options, "default")
        if option is None:
            return None
        return format_default(coerce_value(option.value, self._options.type_of(f)))

    def _extensions(self, extends: Sequence[ExtensionNode], scope: str) -> List[FieldDescriptor]:
        result = []
        for extend in extends:
            extendee = self._table.resolved(extend.extendee_loc)
            for f in extend.fields:
                field_desc = self._field(f, scope)
                field_desc.extendee = "." + extendee.full_name
                result.append(field_desc)
        return result

    # -- enums and services --

    def _enum(self, node: EnumNode, scope: str) -> EnumDescriptor:
        return EnumDescriptor(
            name=node.name,
            full_name=join_name(scope, node.name),
            values=[
                EnumValueDescriptor(
                    name=v.name,
                    full_name=join_name(scope, v.name),
                    number=v.number,
                    option_values=self._option_values(v.options, ENUM_VALUE_OPTIONS),
                    doc=v.doc,
                )
                for v in node.values
            ],
            reserved_ranges=[(r.start, r.end) for r in node.reserved_ranges],
            reserved_names=list(node.reserved_names),
            option_values=self._option_values(node.options, ENUM_OPTIONS),
            doc=node.doc,
        )

    def _service(self, node: ServiceNode, scope: str) -> ServiceDescriptor:
        full_name = join_name(scope, node.name)
        methods = [
            MethodDescriptor(
                name=m.name,
                full_name=join_name(full_name, m.name),
                input_type="." + self._table.resolved(m.input_loc).full_name,
                output_type="." + self._table.resolved(m.output_loc).full_name,
                client_streaming=m.client_streaming,
                server_streaming=m.server_streaming,
                option_values=self._option_values(m.options, METHOD_OPTIONS),
                doc=m.doc,
            )
            for m in node.methods
        ]
        return ServiceDescriptor(
            name=node.name,
            full_name=full_name,
            methods=methods,
            option_values=self._option_values(node.options, SERVICE_OPTIONS),
            doc=node.doc,
        )

    def _option_values(self, options: Sequence[OptionNode], target: str) -> List[OptionValue]:
        return [
            OptionValue(path=o.path, value=o.value, kind=_option_kind(o.type_info), repeated=o.repeated)
            for o in self._options.interpret_all(options, target)
        ]


def build_descriptors(graph: DependencyGraph, table: SymbolTable) -> List[FileDescriptor]:
    return DescriptorBuilder(graph, table).build()
