"""Resolved descriptor model.

Every type reference is a fully qualified name with a leading dot, maps are
already lowered into synthetic ``*Entry`` messages and oneof membership is
an index into the owning message's ``oneofs``. The model converts to the
protobuf ``descriptor_pb2`` classes for consumers that want the wire form.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from google.protobuf import descriptor_pb2, text_format

from protoc_parse.options import (
    ENUM_OPTIONS,
    ENUM_VALUE_OPTIONS,
    FIELD_OPTIONS,
    MESSAGE_OPTIONS,
    METHOD_OPTIONS,
    SERVICE_OPTIONS,
    inherit_options,
    merge_options,
)


class Label(Enum):
    OPTIONAL = 1
    REQUIRED = 2
    REPEATED = 3


class FieldType(Enum):
    DOUBLE = 1
    FLOAT = 2
    INT64 = 3
    UINT64 = 4
    INT32 = 5
    FIXED64 = 6
    FIXED32 = 7
    BOOL = 8
    STRING = 9
    GROUP = 10
    MESSAGE = 11
    BYTES = 12
    UINT32 = 13
    ENUM = 14
    SFIXED32 = 15
    SFIXED64 = 16
    SINT32 = 17
    SINT64 = 18


SCALAR_FIELD_TYPES: Dict[str, FieldType] = {
    "double": FieldType.DOUBLE,
    "float": FieldType.FLOAT,
    "int64": FieldType.INT64,
    "uint64": FieldType.UINT64,
    "int32": FieldType.INT32,
    "fixed64": FieldType.FIXED64,
    "fixed32": FieldType.FIXED32,
    "bool": FieldType.BOOL,
    "string": FieldType.STRING,
    "bytes": FieldType.BYTES,
    "uint32": FieldType.UINT32,
    "sfixed32": FieldType.SFIXED32,
    "sfixed64": FieldType.SFIXED64,
    "sint32": FieldType.SINT32,
    "sint64": FieldType.SINT64,
}


@dataclass
class OptionValue:
    """One option assignment after interpretation.

    ``kind`` is one of int, float, bool, string, bytes, enum or message;
    message values hold text-format source.
    """

    path: List[str]
    value: Any
    kind: str
    repeated: bool = False

    @property
    def is_custom(self) -> bool:
        return self.path[0].startswith("(")


class _HasOptions:
    option_values: List[OptionValue]
    # Serialized options message, as read from an external descriptor set.
    raw_options: Optional[bytes]

    @property
    def options(self) -> Dict[str, Any]:
        """Option assignments merged into one dict; custom options are keyed ``(full.name)``."""
        return merge_options(self.option_values)


@dataclass
class FieldDescriptor(_HasOptions):
    name: str
    full_name: str
    number: int
    label: Label
    type: FieldType
    # Fully qualified, leading dot; message and enum fields only.
    type_name: Optional[str] = None
    # Fully qualified, leading dot; extensions only.
    extendee: Optional[str] = None
    default_value: Optional[str] = None
    oneof_index: Optional[int] = None
    json_name: str = ""
    proto3_optional: bool = False
    option_values: List[OptionValue] = field(default_factory=list)
    raw_options: Optional[bytes] = None
    # Own options over the standard options inherited from enclosing scopes.
    effective_options: Dict[str, Any] = field(default_factory=dict)
    doc: Optional[str] = None

    @property
    def is_repeated(self) -> bool:
        return self.label == Label.REPEATED

    @property
    def type_display(self) -> str:
        return self.type_name.lstrip(".") if self.type_name else self.type.name.lower()


@dataclass
class OneofDescriptor(_HasOptions):
    name: str
    full_name: str
    # Synthetic oneof wrapping a proto3 ``optional`` field.
    synthetic: bool = False
    option_values: List[OptionValue] = field(default_factory=list)
    raw_options: Optional[bytes] = None
    doc: Optional[str] = None


@dataclass
class EnumValueDescriptor(_HasOptions):
    name: str
    full_name: str
    number: int
    option_values: List[OptionValue] = field(default_factory=list)
    raw_options: Optional[bytes] = None
    effective_options: Dict[str, Any] = field(default_factory=dict)
    doc: Optional[str] = None


@dataclass
class EnumDescriptor(_HasOptions):
    name: str
    full_name: str
    values: List[EnumValueDescriptor] = field(default_factory=list)
    # Inclusive (start, end) pairs.
    reserved_ranges: List[Tuple[int, int]] = field(default_factory=list)
    reserved_names: List[str] = field(default_factory=list)
    option_values: List[OptionValue] = field(default_factory=list)
    raw_options: Optional[bytes] = None
    effective_options: Dict[str, Any] = field(default_factory=dict)
    doc: Optional[str] = None


@dataclass
class ExtensionRange(_HasOptions):
    start: int
    end: int  # inclusive
    option_values: List[OptionValue] = field(default_factory=list)
    raw_options: Optional[bytes] = None


@dataclass
class MessageDescriptor(_HasOptions):
    name: str
    full_name: str
    fields: List[FieldDescriptor] = field(default_factory=list)
    nested_types: List[MessageDescriptor] = field(default_factory=list)
    enum_types: List[EnumDescriptor] = field(default_factory=list)
    extensions: List[FieldDescriptor] = field(default_factory=list)
    extension_ranges: List[ExtensionRange] = field(default_factory=list)
    oneofs: List[OneofDescriptor] = field(default_factory=list)
    # Inclusive (start, end) pairs.
    reserved_ranges: List[Tuple[int, int]] = field(default_factory=list)
    reserved_names: List[str] = field(default_factory=list)
    option_values: List[OptionValue] = field(default_factory=list)
    raw_options: Optional[bytes] = None
    effective_options: Dict[str, Any] = field(default_factory=dict)
    doc: Optional[str] = None

    @property
    def is_map_entry(self) -> bool:
        return bool(self.options.get("map_entry"))

    def field_by_name(self, name: str) -> Optional[FieldDescriptor]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def nested_by_name(self, name: str) -> Optional[MessageDescriptor]:
        for m in self.nested_types:
            if m.name == name:
                return m
        return None


@dataclass
class MethodDescriptor(_HasOptions):
    name: str
    full_name: str
    input_type: str
    output_type: str
    client_streaming: bool = False
    server_streaming: bool = False
    option_values: List[OptionValue] = field(default_factory=list)
    raw_options: Optional[bytes] = None
    effective_options: Dict[str, Any] = field(default_factory=dict)
    doc: Optional[str] = None


@dataclass
class ServiceDescriptor(_HasOptions):
    name: str
    full_name: str
    methods: List[MethodDescriptor] = field(default_factory=list)
    option_values: List[OptionValue] = field(default_factory=list)
    raw_options: Optional[bytes] = None
    effective_options: Dict[str, Any] = field(default_factory=dict)
    doc: Optional[str] = None


@dataclass
class FileDescriptor(_HasOptions):
    name: str
    package: str = ""
    syntax: str = "proto2"
    dependencies: List[str] = field(default_factory=list)
    public_dependencies: List[int] = field(default_factory=list)
    weak_dependencies: List[int] = field(default_factory=list)
    message_types: List[MessageDescriptor] = field(default_factory=list)
    enum_types: List[EnumDescriptor] = field(default_factory=list)
    services: List[ServiceDescriptor] = field(default_factory=list)
    extensions: List[FieldDescriptor] = field(default_factory=list)
    option_values: List[OptionValue] = field(default_factory=list)
    raw_options: Optional[bytes] = None

    def iter_messages(self) -> Iterator[MessageDescriptor]:
        """Every message, nested ones (map entries included) after their parent."""
        pending = list(reversed(self.message_types))
        while pending:
            message = pending.pop()
            yield message
            pending.extend(reversed(message.nested_types))

    def iter_enums(self) -> Iterator[EnumDescriptor]:
        yield from self.enum_types
        for message in self.iter_messages():
            yield from message.enum_types

    def iter_extensions(self) -> Iterator[FieldDescriptor]:
        yield from self.extensions
        for message in self.iter_messages():
            yield from message.extensions

    def full_names(self) -> List[str]:
        """Fully qualified names of everything this file declares."""
        names: List[str] = []
        for message in self.iter_messages():
            names.append(message.full_name)
            names.extend(f.full_name for f in message.fields)
            names.extend(o.full_name for o in message.oneofs if not o.synthetic)
        for enum in self.iter_enums():
            names.append(enum.full_name)
            names.extend(v.full_name for v in enum.values)
        names.extend(e.full_name for e in self.iter_extensions())
        for service in self.services:
            names.append(service.full_name)
            names.extend(m.full_name for m in service.methods)
        return names

    def resolve_effective_options(self) -> None:
        """Fill ``effective_options`` throughout the file: file options, then
        enclosing messages, then the element itself, innermost winning."""
        file_options = self.options
        for message in self.message_types:
            _resolve_message(message, file_options)
        for enum in self.enum_types:
            _resolve_enum(enum, file_options)
        for ext in self.extensions:
            ext.effective_options = inherit_options(file_options, ext.options, FIELD_OPTIONS)
        for service in self.services:
            service.effective_options = inherit_options(file_options, service.options, SERVICE_OPTIONS)
            for method in service.methods:
                method.effective_options = inherit_options(service.effective_options, method.options, METHOD_OPTIONS)

    def to_proto(self) -> descriptor_pb2.FileDescriptorProto:
        proto = descriptor_pb2.FileDescriptorProto(name=self.name)
        if self.package:
            proto.package = self.package
        # protoc leaves syntax unset for proto2 files.
        if self.syntax != "proto2":
            proto.syntax = self.syntax
        proto.dependency.extend(self.dependencies)
        proto.public_dependency.extend(self.public_dependencies)
        proto.weak_dependency.extend(self.weak_dependencies)
        for message in self.message_types:
            _message_to_proto(message, proto.message_type.add())
        for enum in self.enum_types:
            _enum_to_proto(enum, proto.enum_type.add())
        for service in self.services:
            _service_to_proto(service, proto.service.add())
        for ext in self.extensions:
            _field_to_proto(ext, proto.extension.add())
        _options_to_proto(self, proto, "options")
        return proto


@dataclass
class ParsedAndTypechecked:
    """Result of one compilation."""

    # Input paths relative to their include directory, in input order.
    relative_paths: List[str]
    # The whole closure in dependency order.
    file_descriptors: List[FileDescriptor]
    parser: str = "pure"

    def file(self, name: str) -> FileDescriptor:
        for fd in self.file_descriptors:
            if fd.name == name:
                return fd
        raise KeyError(name)

    @property
    def inputs(self) -> List[FileDescriptor]:
        return [self.file(name) for name in self.relative_paths]

    def to_file_descriptor_set(self) -> descriptor_pb2.FileDescriptorSet:
        return descriptor_pb2.FileDescriptorSet(file=[fd.to_proto() for fd in self.file_descriptors])


def _resolve_message(message: MessageDescriptor, outer: Dict[str, Any]) -> None:
    message.effective_options = inherit_options(outer, message.options, MESSAGE_OPTIONS)
    scope = message.effective_options
    for f in message.fields:
        f.effective_options = inherit_options(scope, f.options, FIELD_OPTIONS)
    for ext in message.extensions:
        ext.effective_options = inherit_options(scope, ext.options, FIELD_OPTIONS)
    for nested in message.nested_types:
        _resolve_message(nested, scope)
    for enum in message.enum_types:
        _resolve_enum(enum, scope)


def _resolve_enum(enum: EnumDescriptor, outer: Dict[str, Any]) -> None:
    enum.effective_options = inherit_options(outer, enum.options, ENUM_OPTIONS)
    for value in enum.values:
        value.effective_options = inherit_options(enum.effective_options, value.options, ENUM_VALUE_OPTIONS)


# -- descriptor_pb2 conversion --


def _message_to_proto(message: MessageDescriptor, proto: descriptor_pb2.DescriptorProto) -> None:
    proto.name = message.name
    for f in message.fields:
        _field_to_proto(f, proto.field.add())
    for nested in message.nested_types:
        _message_to_proto(nested, proto.nested_type.add())
    for enum in message.enum_types:
        _enum_to_proto(enum, proto.enum_type.add())
    for ext in message.extensions:
        _field_to_proto(ext, proto.extension.add())
    for ext_range in message.extension_ranges:
        r = proto.extension_range.add(start=ext_range.start, end=ext_range.end + 1)
        _options_to_proto(ext_range, r, "options")
    for oneof in message.oneofs:
        o = proto.oneof_decl.add(name=oneof.name)
        _options_to_proto(oneof, o, "options")
    for start, end in message.reserved_ranges:
        proto.reserved_range.add(start=start, end=end + 1)
    proto.reserved_name.extend(message.reserved_names)
    _options_to_proto(message, proto, "options")


def _field_to_proto(f: FieldDescriptor, proto: descriptor_pb2.FieldDescriptorProto) -> None:
    proto.name = f.name
    proto.number = f.number
    proto.label = f.label.value
    proto.type = f.type.value
    if f.type_name is not None:
        proto.type_name = f.type_name
    if f.extendee is not None:
        proto.extendee = f.extendee
    if f.default_value is not None:
        proto.default_value = f.default_value
    if f.oneof_index is not None:
        proto.oneof_index = f.oneof_index
    if f.json_name:
        proto.json_name = f.json_name
    if f.proto3_optional:
        proto.proto3_optional = True
    _options_to_proto(f, proto, "options")


def _enum_to_proto(enum: EnumDescriptor, proto: descriptor_pb2.EnumDescriptorProto) -> None:
    proto.name = enum.name
    for value in enum.values:
        v = proto.value.add(name=value.name, number=value.number)
        _options_to_proto(value, v, "options")
    for start, end in enum.reserved_ranges:
        proto.reserved_range.add(start=start, end=end)
    proto.reserved_name.extend(enum.reserved_names)
    _options_to_proto(enum, proto, "options")


def _service_to_proto(service: ServiceDescriptor, proto: descriptor_pb2.ServiceDescriptorProto) -> None:
    proto.name = service.name
    for method in service.methods:
        m = proto.method.add(name=method.name, input_type=method.input_type, output_type=method.output_type)
        if method.client_streaming:
            m.client_streaming = True
        if method.server_streaming:
            m.server_streaming = True
        _options_to_proto(method, m, "options")
    _options_to_proto(service, proto, "options")


def _options_to_proto(owner: _HasOptions, proto: Any, field_name: str) -> None:
    if owner.raw_options is not None:
        getattr(proto, field_name).ParseFromString(owner.raw_options)
        return
    if not owner.option_values:
        return
    options = getattr(proto, field_name)
    for option in owner.option_values:
        if option.is_custom or not _set_standard(options, option.path, option):
            _add_uninterpreted(options, option)


def _set_standard(message: Any, path: List[str], option: OptionValue) -> bool:
    """Assign a standard option; False when the installed descriptor_pb2 lacks the field."""
    name = path[0]
    fd = message.DESCRIPTOR.fields_by_name.get(name)
    if fd is None:
        return False
    current = getattr(message, name)
    if len(path) > 1:
        target = current.add() if hasattr(current, "add") else current
        return _set_standard(target, path[1:], option)

    value = option.value
    if option.kind == "enum":
        value = fd.enum_type.values_by_name[value].number
    if option.kind == "message":
        target = current.add() if hasattr(current, "add") else current
        text_format.Merge(value, target)
    elif hasattr(current, "append"):
        current.append(value)
    else:
        setattr(message, name, value)
    return True


def _add_uninterpreted(options: Any, option: OptionValue) -> None:
    u = options.uninterpreted_option.add()
    for part in option.path:
        if part.startswith("("):
            u.name.add(name_part=part[1:-1], is_extension=True)
        else:
            u.name.add(name_part=part, is_extension=False)
    value = option.value
    if option.kind == "bool":
        u.identifier_value = "true" if value else "false"
    elif option.kind == "enum":
        u.identifier_value = value
    elif option.kind == "int":
        if value >= 0:
            u.positive_int_value = value
        else:
            u.negative_int_value = value
    elif option.kind == "float":
        u.double_value = value
    elif option.kind == "string":
        u.string_value = value.encode("utf-8")
    elif option.kind == "bytes":
        u.string_value = value
    else:
        u.aggregate_value = value
