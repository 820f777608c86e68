"""External-binary mode: let protoc compile and read back its descriptor set."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from typing import Dict, List, Optional, Sequence, Tuple

from google.protobuf import descriptor_pb2 as d2
from google.protobuf import text_format

from protoc_parse.binder import join_name
from protoc_parse.errors import ProtocError
from protoc_parse.imports import ImportResolver, PathLike
from protoc_parse.models import (
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
    ParsedAndTypechecked,
    ServiceDescriptor,
)

logger = logging.getLogger(__name__)

# Field numbers within descriptor.proto, used to address SourceCodeInfo locations.
_FILE_MESSAGE, _FILE_ENUM, _FILE_SERVICE, _FILE_EXTENSION = 4, 5, 6, 7
_MESSAGE_FIELD, _MESSAGE_NESTED, _MESSAGE_ENUM, _MESSAGE_EXTENSION, _MESSAGE_ONEOF = 2, 3, 4, 6, 8
_ENUM_VALUE = 2
_SERVICE_METHOD = 2

_OPTION_KINDS = {
    d2.FieldDescriptorProto.TYPE_DOUBLE: "float",
    d2.FieldDescriptorProto.TYPE_FLOAT: "float",
    d2.FieldDescriptorProto.TYPE_BOOL: "bool",
    d2.FieldDescriptorProto.TYPE_STRING: "string",
    d2.FieldDescriptorProto.TYPE_BYTES: "bytes",
    d2.FieldDescriptorProto.TYPE_ENUM: "enum",
    d2.FieldDescriptorProto.TYPE_MESSAGE: "message",
    d2.FieldDescriptorProto.TYPE_GROUP: "message",
}

SourcePath = Tuple[int, ...]


def find_protoc(protoc_path: Optional[PathLike] = None) -> str:
    """The protoc to run: ``protoc_path``, else ``$PROTOC``, else ``protoc`` on PATH."""
    if protoc_path:
        return os.fspath(protoc_path)
    env = os.environ.get("PROTOC")
    if env:
        return env
    found = shutil.which("protoc")
    if found:
        return found
    raise ProtocError("'protoc' not found. Set $PROTOC or install the Protocol Buffers compiler on PATH.")


def run_protoc(
    includes: Sequence[PathLike],
    inputs: Sequence[PathLike],
    protoc_path: Optional[PathLike] = None,
    extra_args: Sequence[str] = (),
) -> d2.FileDescriptorSet:
    protoc = find_protoc(protoc_path)
    with tempfile.TemporaryDirectory() as td:
        desc_path = os.path.join(td, "descriptor_set.pb")
        cmd = [protoc, "--include_imports", "--include_source_info", f"--descriptor_set_out={desc_path}"]
        for inc in includes:
            cmd.extend(["-I", os.fspath(inc)])
        cmd.extend(extra_args)
        cmd.extend(os.fspath(p) for p in inputs)
        logger.debug("running %s", " ".join(cmd))
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except FileNotFoundError as e:
            raise ProtocError(f"'protoc' not found at {protoc}") from e
        except subprocess.CalledProcessError as e:
            raise ProtocError("protoc failed", e.stderr.decode("utf-8", errors="ignore")) from e

        fds = d2.FileDescriptorSet()
        with open(desc_path, "rb") as f:
            fds.ParseFromString(f.read())
    return fds


def parse_and_typecheck(
    includes: Sequence[PathLike],
    inputs: Sequence[PathLike],
    protoc_path: Optional[PathLike] = None,
    extra_args: Sequence[str] = (),
) -> ParsedAndTypechecked:
    """Same contract as the pure pipeline, with protoc doing the compiling."""
    resolver = ImportResolver(includes)
    relative_paths = [resolver.relative_name(p) for p in inputs]
    fds = run_protoc(includes, inputs, protoc_path, extra_args)
    files = [file_descriptor_from_proto(p) for p in fds.file]
    return ParsedAndTypechecked(relative_paths=relative_paths, file_descriptors=files, parser="protoc")


# -- descriptor_pb2 -> model --


def file_descriptor_from_proto(proto: d2.FileDescriptorProto) -> FileDescriptor:
    docs: Dict[SourcePath, str] = {}
    for location in proto.source_code_info.location:
        comment = location.leading_comments.strip()
        if comment:
            docs[tuple(location.path)] = comment

    package = proto.package
    fd = FileDescriptor(
        name=proto.name,
        package=package,
        syntax=proto.syntax or "proto2",
        dependencies=list(proto.dependency),
        public_dependencies=list(proto.public_dependency),
        weak_dependencies=list(proto.weak_dependency),
    )
    _copy_options(proto, fd)
    fd.message_types = [
        _message(m, join_name(package, m.name), (_FILE_MESSAGE, i), docs) for i, m in enumerate(proto.message_type)
    ]
    fd.enum_types = [_enum(e, package, (_FILE_ENUM, i), docs) for i, e in enumerate(proto.enum_type)]
    fd.services = [_service(s, package, (_FILE_SERVICE, i), docs) for i, s in enumerate(proto.service)]
    fd.extensions = [_field(f, package, (_FILE_EXTENSION, i), docs) for i, f in enumerate(proto.extension)]
    fd.resolve_effective_options()
    return fd


def _message(proto: d2.DescriptorProto, full_name: str, path: SourcePath, docs: Dict[SourcePath, str]) -> MessageDescriptor:
    md = MessageDescriptor(name=proto.name, full_name=full_name, doc=docs.get(path))
    _copy_options(proto, md)
    md.fields = [_field(f, full_name, path + (_MESSAGE_FIELD, i), docs) for i, f in enumerate(proto.field)]
    md.nested_types = [
        _message(m, join_name(full_name, m.name), path + (_MESSAGE_NESTED, i), docs)
        for i, m in enumerate(proto.nested_type)
    ]
    md.enum_types = [_enum(e, full_name, path + (_MESSAGE_ENUM, i), docs) for i, e in enumerate(proto.enum_type)]
    md.extensions = [_field(f, full_name, path + (_MESSAGE_EXTENSION, i), docs) for i, f in enumerate(proto.extension)]
    for i, o in enumerate(proto.oneof_decl):
        members = [f for f in md.fields if f.oneof_index == i]
        oneof = OneofDescriptor(
            name=o.name,
            full_name=join_name(full_name, o.name),
            synthetic=bool(members) and all(f.proto3_optional for f in members),
            doc=docs.get(path + (_MESSAGE_ONEOF, i)),
        )
        _copy_options(o, oneof)
        md.oneofs.append(oneof)
    for r in proto.extension_range:
        ext_range = ExtensionRange(r.start, r.end - 1)
        _copy_options(r, ext_range)
        md.extension_ranges.append(ext_range)
    md.reserved_ranges = [(r.start, r.end - 1) for r in proto.reserved_range]
    md.reserved_names = list(proto.reserved_name)
    return md


def _field(proto: d2.FieldDescriptorProto, scope: str, path: SourcePath, docs: Dict[SourcePath, str]) -> FieldDescriptor:
    fd = FieldDescriptor(
        name=proto.name,
        full_name=join_name(scope, proto.name),
        number=proto.number,
        label=Label(proto.label),
        type=FieldType(proto.type),
        type_name=proto.type_name or None,
        extendee=proto.extendee or None,
        default_value=proto.default_value if proto.HasField("default_value") else None,
        oneof_index=proto.oneof_index if proto.HasField("oneof_index") else None,
        json_name=proto.json_name,
        proto3_optional=proto.proto3_optional,
        doc=docs.get(path),
    )
    _copy_options(proto, fd)
    return fd


def _enum(proto: d2.EnumDescriptorProto, scope: str, path: SourcePath, docs: Dict[SourcePath, str]) -> EnumDescriptor:
    ed = EnumDescriptor(
        name=proto.name,
        full_name=join_name(scope, proto.name),
        reserved_ranges=[(r.start, r.end) for r in proto.reserved_range],
        reserved_names=list(proto.reserved_name),
        doc=docs.get(path),
    )
    _copy_options(proto, ed)
    for i, v in enumerate(proto.value):
        value = EnumValueDescriptor(
            name=v.name,
            full_name=join_name(scope, v.name),
            number=v.number,
            doc=docs.get(path + (_ENUM_VALUE, i)),
        )
        _copy_options(v, value)
        ed.values.append(value)
    return ed


def _service(proto: d2.ServiceDescriptorProto, scope: str, path: SourcePath, docs: Dict[SourcePath, str]) -> ServiceDescriptor:
    full_name = join_name(scope, proto.name)
    sd = ServiceDescriptor(name=proto.name, full_name=full_name, doc=docs.get(path))
    _copy_options(proto, sd)
    for i, m in enumerate(proto.method):
        method = MethodDescriptor(
            name=m.name,
            full_name=join_name(full_name, m.name),
            input_type=m.input_type,
            output_type=m.output_type,
            client_streaming=m.client_streaming,
            server_streaming=m.server_streaming,
            doc=docs.get(path + (_SERVICE_METHOD, i)),
        )
        _copy_options(m, method)
        sd.methods.append(method)
    return sd


def _copy_options(proto, target) -> None:
    """Known option fields become OptionValues; the serialized message is
    kept so custom options survive unparsed."""
    if not proto.HasField("options"):
        return
    options = proto.options
    target.raw_options = options.SerializeToString()
    values: List[OptionValue] = []
    for fd, value in options.ListFields():
        if fd.name == "uninterpreted_option":
            continue
        kind = _OPTION_KINDS.get(fd.type, "int")
        repeated = _is_repeated(fd)
        for item in (value if repeated else [value]):
            if kind == "enum":
                item = fd.enum_type.values_by_number[item].name
            elif kind == "message":
                item = text_format.MessageToString(item, as_one_line=True)
            values.append(OptionValue(path=[fd.name], value=item, kind=kind, repeated=repeated))
    target.option_values = values


def _is_repeated(fd) -> bool:
    # FieldDescriptor.label is gone from newer protobuf releases.
    if hasattr(fd, "is_repeated"):
        return fd.is_repeated
    return fd.label == fd.LABEL_REPEATED
