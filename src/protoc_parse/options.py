"""Option interpretation.

Standard options are looked up as fields of the ``google.protobuf.*Options``
messages in the built-in descriptor.proto; custom options ``(ext)`` are
extensions bound by the SymbolTable. Values are type-checked against the
target field and converted to plain Python values.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from protoc_parse.binder import PROTO_PRIMITIVES, SymbolKind, SymbolTable
from protoc_parse.parser.proto_ast import (
    Aggregate,
    Constant,
    EnumNode,
    FieldNode,
    Identifier,
    Loc,
    MessageNode,
    OptionNode,
)
from protoc_parse.well_known import DESCRIPTOR_PROTO, well_known_ast

FILE_OPTIONS = "FileOptions"
MESSAGE_OPTIONS = "MessageOptions"
FIELD_OPTIONS = "FieldOptions"
ONEOF_OPTIONS = "OneofOptions"
ENUM_OPTIONS = "EnumOptions"
ENUM_VALUE_OPTIONS = "EnumValueOptions"
SERVICE_OPTIONS = "ServiceOptions"
METHOD_OPTIONS = "MethodOptions"
EXTENSION_RANGE_OPTIONS = "ExtensionRangeOptions"

# Field options handled by the field itself rather than FieldOptions.
PSEUDO_FIELD_OPTIONS = ("default", "json_name")

_INT_RANGES = {
    "int32": (-(2 ** 31), 2 ** 31 - 1),
    "sint32": (-(2 ** 31), 2 ** 31 - 1),
    "sfixed32": (-(2 ** 31), 2 ** 31 - 1),
    "uint32": (0, 2 ** 32 - 1),
    "fixed32": (0, 2 ** 32 - 1),
    "int64": (-(2 ** 63), 2 ** 63 - 1),
    "sint64": (-(2 ** 63), 2 ** 63 - 1),
    "sfixed64": (-(2 ** 63), 2 ** 63 - 1),
    "uint64": (0, 2 ** 64 - 1),
    "fixed64": (0, 2 ** 64 - 1),
}


class OptionError(Exception):
    def __init__(self, detail: str, loc: Loc):
        super().__init__(detail)
        self.detail = detail
        self.loc = loc


@dataclass
class TypeInfo:
    """What a field holds: a scalar, an enum or a message."""

    scalar: Optional[str] = None
    enum: Optional[EnumNode] = None
    message: Optional[MessageNode] = None
    full_name: str = ""

    def describe(self) -> str:
        return self.scalar or self.full_name


@dataclass
class InterpretedOption:
    # Option path; extension parts are written as "(full.name)".
    path: List[str]
    value: Any
    is_custom: bool
    repeated: bool
    loc: Loc
    type_info: TypeInfo = field(default_factory=TypeInfo)


def standard_options_message(name: str) -> MessageNode:
    """``google.protobuf.<name>`` from the built-in descriptor.proto."""
    for message in well_known_ast(DESCRIPTOR_PROTO).messages:
        if message.name == name:
            return message
    raise KeyError(name)


def _field_by_name(message: MessageNode, name: str) -> Optional[FieldNode]:
    for f in message.fields:
        if f.name == name:
            return f
    return None


class OptionInterpreter:
    """Interprets OptionNodes against a bound SymbolTable."""

    def __init__(self, table: SymbolTable):
        self._table = table

    def type_of(self, f: FieldNode, owner: Optional[MessageNode] = None) -> TypeInfo:
        """Type of field ``f``; ``owner`` is searched for nested types the
        table does not know about (the built-in descriptor messages)."""
        if f.type_name in PROTO_PRIMITIVES:
            return TypeInfo(scalar=f.type_name)
        if owner is not None:
            for enum in owner.enums:
                if enum.name == f.type_name:
                    return TypeInfo(enum=enum, full_name=f"google.protobuf.{owner.name}.{enum.name}")
            for nested in owner.messages:
                if nested.name == f.type_name:
                    return TypeInfo(message=nested, full_name=f"google.protobuf.{owner.name}.{nested.name}")
            return TypeInfo(full_name=f"google.protobuf.{f.type_name}")
        symbol = self._table.resolved(f.type_loc)
        if symbol is not None:
            if symbol.kind == SymbolKind.ENUM:
                return TypeInfo(enum=symbol.node, full_name=symbol.full_name)
            return TypeInfo(message=symbol.node, full_name=symbol.full_name)
        return TypeInfo(full_name=f.type_name)

    def interpret(self, option: OptionNode, target: str) -> InterpretedOption:
        """Resolve the option name path against ``google.protobuf.<target>``
        and type-check the value."""
        message: Optional[MessageNode] = standard_options_message(target)
        message_name = f"google.protobuf.{target}"
        builtin = True
        path: List[str] = []
        current: Optional[FieldNode] = None
        info = TypeInfo()
        is_custom = False

        for i, part in enumerate(option.name):
            if i > 0:
                if info.message is None:
                    raise OptionError(
                        f"option {'.'.join(path)!r} is not a message, cannot set {part}", part.loc
                    )
                message = info.message
                message_name = info.full_name
                builtin = not self._table.lookup(message_name)
            if part.is_extension:
                is_custom = True
                symbol = self._table.resolved(part.loc)
                if symbol is None or symbol.kind != SymbolKind.EXTENSION:
                    raise OptionError(f"{part.name!r} is not a known extension", part.loc)
                if symbol.extendee != message_name:
                    raise OptionError(
                        f"extension {symbol.full_name!r} extends {symbol.extendee!r}, not {message_name!r}",
                        part.loc,
                    )
                current = symbol.node
                path.append(f"({symbol.full_name})")
                info = self.type_of(current)
            else:
                current = _field_by_name(message, part.name)
                if current is None:
                    raise OptionError(f"option {part.name!r} unknown in {message_name!r}", part.loc)
                path.append(part.name)
                info = self.type_of(current, message if builtin else None)

        value = coerce_value(option.value, info)
        return InterpretedOption(
            path=path,
            value=value,
            is_custom=is_custom,
            repeated=current is not None and current.label == "repeated",
            loc=option.loc,
            type_info=info,
        )

    def interpret_all(self, options: Sequence[OptionNode], target: str) -> List[InterpretedOption]:
        return [self.interpret(o, target) for o in options if not _is_pseudo(o, target)]


def _is_pseudo(option: OptionNode, target: str) -> bool:
    return (
        target == FIELD_OPTIONS
        and len(option.name) == 1
        and not option.name[0].is_extension
        and option.name[0].name in PSEUDO_FIELD_OPTIONS
    )


def find_pseudo_option(options: Sequence[OptionNode], name: str) -> Optional[OptionNode]:
    for option in options:
        if len(option.name) == 1 and not option.name[0].is_extension and option.name[0].name == name:
            return option
    return None


def find_bool_option(options: Sequence[OptionNode], name: str) -> Optional[bool]:
    option = find_pseudo_option(options, name)
    if option is not None and isinstance(option.value.value, bool):
        return option.value.value
    return None


def coerce_value(constant: Constant, info: TypeInfo) -> Any:
    """Check ``constant`` against ``info`` and return its Python value."""
    value = constant.value
    loc = constant.loc
    if info.scalar in _INT_RANGES:
        if isinstance(value, bool) or not isinstance(value, int):
            raise OptionError(f"value {constant.text()!r} must be an integer for type {info.scalar}", loc)
        low, high = _INT_RANGES[info.scalar]
        if not low <= value <= high:
            raise OptionError(f"value {value} out of range for type {info.scalar}", loc)
        return value
    if info.scalar in ("float", "double"):
        if isinstance(value, bool):
            raise OptionError(f"value {constant.text()!r} must be a number for type {info.scalar}", loc)
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, Identifier) and value.name in ("inf", "nan"):
            return math.inf if value.name == "inf" else math.nan
        raise OptionError(f"value {constant.text()!r} must be a number for type {info.scalar}", loc)
    if info.scalar == "bool":
        if isinstance(value, bool):
            return value
        raise OptionError(f"value {constant.text()!r} must be true or false", loc)
    if info.scalar == "string":
        if not isinstance(value, bytes):
            raise OptionError(f"value {constant.text()!r} must be a string", loc)
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            raise OptionError("string value is not valid UTF-8", loc) from None
    if info.scalar == "bytes":
        if not isinstance(value, bytes):
            raise OptionError(f"value {constant.text()!r} must be a string", loc)
        return value
    if info.enum is not None:
        if not isinstance(value, Identifier):
            raise OptionError(f"value {constant.text()!r} must be an identifier for enum {info.full_name!r}", loc)
        if value.name not in {v.name for v in info.enum.values}:
            raise OptionError(f"enum {info.full_name!r} has no value named {value.name!r}", loc)
        return value.name
    if info.message is not None:
        if not isinstance(value, Aggregate):
            raise OptionError(f"value for message type {info.full_name!r} must be an aggregate {{...}}", loc)
        return value.text
    raise OptionError(f"cannot assign a value to type {info.describe()!r}", loc)


def merge_options(interpreted: Sequence[InterpretedOption]) -> Dict[str, Any]:
    """Fold option assignments into one dict.

    Sub-field assignments to the same custom option merge into a nested
    dict; repeated fields accumulate into lists.
    """
    merged: Dict[str, Any] = {}
    for option in interpreted:
        target = merged
        for key in option.path[:-1]:
            nested = target.get(key)
            if not isinstance(nested, dict):
                nested = {}
                target[key] = nested
            target = nested
        last = option.path[-1]
        if option.repeated:
            target.setdefault(last, []).append(option.value)
        else:
            target[last] = option.value
    return merged


def inherit_options(outer: Dict[str, Any], own: Dict[str, Any], target: str) -> Dict[str, Any]:
    """Options in effect for an element.

    Standard options of the enclosing scope (``outer``) carry over when
    ``google.protobuf.<target>`` declares a field of the same name; the
    element's own assignments win.
    """
    known = {f.name for f in standard_options_message(target).fields}
    effective = {k: v for k, v in outer.items() if k in known}
    effective.update(own)
    return effective
