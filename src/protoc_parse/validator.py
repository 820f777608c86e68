"""Structural and semantic checks over the bound AST forest.

Files are checked in dependency order. All violations within one file are
collected and raised together; the first file with any violation stops the
compilation.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from protoc_parse.binder import PROTO_PRIMITIVES, SymbolKind, SymbolTable, join_name
from protoc_parse.errors import FileValidationError, ValidationError, ValidationKind
from protoc_parse.imports import DependencyGraph, LoadedFile
from protoc_parse.naming import json_name, map_entry_name
from protoc_parse.options import (
    ENUM_OPTIONS,
    ENUM_VALUE_OPTIONS,
    EXTENSION_RANGE_OPTIONS,
    FIELD_OPTIONS,
    FILE_OPTIONS,
    MESSAGE_OPTIONS,
    METHOD_OPTIONS,
    ONEOF_OPTIONS,
    PSEUDO_FIELD_OPTIONS,
    SERVICE_OPTIONS,
    OptionError,
    OptionInterpreter,
    coerce_value,
    find_bool_option,
    find_pseudo_option,
)
from protoc_parse.parser.proto_ast import (
    EnumNode,
    ExtensionNode,
    FieldNode,
    Loc,
    MessageNode,
    OptionNode,
    ReservedRange,
    ServiceNode,
)
from protoc_parse.parser.proto_ast_parser import MAX_FIELD_NUMBER

logger = logging.getLogger(__name__)

RESERVED_BAND = (19000, 19999)
MIN_ENUM_VALUE = -(2 ** 31)
MAX_ENUM_VALUE = 2 ** 31 - 1

MAP_KEY_TYPES = PROTO_PRIMITIVES - {"float", "double", "bytes"}
PACKABLE_SCALARS = PROTO_PRIMITIVES - {"string", "bytes"}


def _contains(ranges: Sequence[ReservedRange], number: int) -> Optional[ReservedRange]:
    for r in ranges:
        if r.start <= number <= r.end:
            return r
    return None


class Validator:
    """Runs every check over the files of a bound compilation."""

    def __init__(self, graph: DependencyGraph, table: SymbolTable):
        self._graph = graph
        self._table = table
        self._options = OptionInterpreter(table)
        # (extendee full name, number) -> extension field, across the closure.
        self._extension_numbers: Dict[Tuple[str, int], FieldNode] = {}
        self._errors: List[ValidationError] = []
        self._proto3 = False

    # -- public API --

    def validate(self) -> None:
        for loaded in self._graph.dependency_order():
            errors = self.check_file(loaded)
            if errors:
                raise FileValidationError(loaded.name, errors)
            logger.debug("validated %s", loaded.name)

    def check_file(self, loaded: LoadedFile) -> List[ValidationError]:
        """Every violation found in one file."""
        ast = loaded.ast
        self._errors = []
        self._proto3 = ast.syntax == "proto3"
        package = ast.package or ""

        self._check_options(ast.options, FILE_OPTIONS)
        for message in ast.messages:
            self._check_message(message, join_name(package, message.name))
        for enum in ast.enums:
            self._check_enum(enum)
        for extend in ast.extends:
            self._check_extend(extend)
        for service in ast.services:
            self._check_service(service)

        return self._errors

    # -- messages --

    def _check_message(self, node: MessageNode, full_name: str) -> None:
        self._check_options(node.options, MESSAGE_OPTIONS)

        reserved = node.reserved_ranges
        for r in reserved:
            if r.start > r.end:
                self._error(ValidationKind.RESERVED, r.loc, f"reserved range end {r.end} is before start {r.start}")
            elif r.start < 1 or r.end > MAX_FIELD_NUMBER:
                self._error(ValidationKind.RESERVED, r.loc, f"reserved numbers must be in [1, {MAX_FIELD_NUMBER}]")
        self._check_overlaps(reserved, ValidationKind.RESERVED, "reserved range")

        ext_ranges = [r for ext in node.extension_ranges for r in ext.ranges]
        for ext in node.extension_ranges:
            if self._proto3:
                self._error(
                    ValidationKind.SYNTAX_FEATURE, ext.loc,
                    f"extension ranges are not allowed in proto3 (message {full_name!r})",
                )
            self._check_options(ext.options, EXTENSION_RANGE_OPTIONS)
        for r in ext_ranges:
            if r.start > r.end or r.start < 1 or r.end > MAX_FIELD_NUMBER:
                self._error(
                    ValidationKind.EXTENSION_RANGE, r.loc,
                    f"extension range {r.start} to {r.end} must lie within [1, {MAX_FIELD_NUMBER}]",
                )
            clash = next((rr for rr in reserved if r.start <= rr.end and rr.start <= r.end), None)
            if clash is not None:
                self._error(
                    ValidationKind.EXTENSION_RANGE, r.loc,
                    f"extension range {r.start} to {r.end} overlaps reserved range {clash.start} to {clash.end}",
                )
        self._check_overlaps(ext_ranges, ValidationKind.EXTENSION_RANGE, "extension range")

        by_number: Dict[int, FieldNode] = {}
        json_names: Dict[str, FieldNode] = {}
        for f in node.fields:
            self._check_field_number(f)
            previous = by_number.get(f.number)
            if previous is not None:
                self._error(
                    ValidationKind.DUPLICATE_FIELD_NUMBER, f.number_loc,
                    f"field number {f.number} of {f.name!r} is already used by {previous.name!r} "
                    f"at {previous.number_loc}",
                )
            else:
                by_number[f.number] = f
            clash = _contains(reserved, f.number)
            if clash is not None:
                self._error(
                    ValidationKind.RESERVED, f.number_loc,
                    f"field {f.name!r} uses reserved number {f.number} (reserved at {clash.loc})",
                )
            if f.name in node.reserved_names:
                self._error(ValidationKind.RESERVED, f.loc, f"field name {f.name!r} is reserved")
            clash = _contains(ext_ranges, f.number)
            if clash is not None:
                self._error(
                    ValidationKind.EXTENSION_RANGE, f.number_loc,
                    f"field {f.name!r} number {f.number} overlaps extension range {clash.start} to {clash.end}",
                )
            if self._proto3:
                name = json_name(f.name)
                other = json_names.get(name)
                if other is not None:
                    self._error(
                        ValidationKind.JSON_NAME, f.loc,
                        f"the JSON name {name!r} of field {f.name!r} conflicts with field {other.name!r}",
                    )
                else:
                    json_names[name] = f
            self._check_field(f, is_extension=False)

        # A field name repeated across oneofs fails earlier as a duplicate symbol.
        for oneof in node.oneofs:
            self._check_options(oneof.options, ONEOF_OPTIONS)
            if not oneof.fields:
                self._error(ValidationKind.ONEOF, oneof.loc, f"oneof {oneof.name!r} must have at least one field")
            for f in oneof.fields:
                if f.label is not None:
                    self._error(
                        ValidationKind.ONEOF, f.loc,
                        f"fields in oneofs must not have labels (required / optional / repeated): {f.name!r}",
                    )
                if f.is_map:
                    self._error(ValidationKind.ONEOF, f.loc, f"map fields are not allowed in oneofs: {f.name!r}")

        nested_names = {m.name for m in node.messages} | {e.name for e in node.enums}
        entries: Dict[str, FieldNode] = {}
        for f in node.fields:
            if not f.is_map:
                continue
            entry = map_entry_name(f.name)
            if entry in nested_names:
                self._error(
                    ValidationKind.MAP_FIELD, f.loc,
                    f"map entry type {entry!r} of field {f.name!r} conflicts with an existing nested type",
                )
            elif entry in entries:
                self._error(
                    ValidationKind.MAP_FIELD, f.loc,
                    f"map entry type {entry!r} of field {f.name!r} conflicts with field {entries[entry].name!r}",
                )
            entries[entry] = f

        for nested in node.messages:
            self._check_message(nested, join_name(full_name, nested.name))
        for enum in node.enums:
            self._check_enum(enum)
        for extend in node.extends:
            self._check_extend(extend)

    def _check_field_number(self, f: FieldNode) -> None:
        if not 1 <= f.number <= MAX_FIELD_NUMBER:
            self._error(
                ValidationKind.FIELD_NUMBER, f.number_loc,
                f"field number {f.number} of {f.name!r} must be in [1, {MAX_FIELD_NUMBER}]",
            )
        elif RESERVED_BAND[0] <= f.number <= RESERVED_BAND[1]:
            self._error(
                ValidationKind.FIELD_NUMBER, f.number_loc,
                f"field number {f.number} of {f.name!r}: numbers {RESERVED_BAND[0]} through "
                f"{RESERVED_BAND[1]} are reserved for the protocol buffer implementation",
            )

    def _check_field(self, f: FieldNode, *, is_extension: bool) -> None:
        if f.label == "required" and self._proto3:
            self._error(ValidationKind.SYNTAX_FEATURE, f.loc, f"required fields are not allowed in proto3: {f.name!r}")
        if not self._proto3 and f.label is None and not f.is_map and f.oneof is None:
            self._error(
                ValidationKind.SYNTAX_FEATURE, f.loc,
                f"field {f.name!r} needs a label: expected 'required', 'optional', or 'repeated' in proto2",
            )

        if f.is_map and f.map_key_type not in MAP_KEY_TYPES:
            self._error(
                ValidationKind.MAP_FIELD, f.type_loc,
                f"map key type of {f.name!r} must be an integral, string or bool type, got {f.map_key_type!r}",
            )

        symbol = None if f.type_name in PROTO_PRIMITIVES else self._table.resolved(f.type_loc)
        if symbol is not None and symbol.kind == SymbolKind.ENUM and self._proto3:
            if self._graph.files[symbol.file].ast.syntax == "proto2":
                self._error(
                    ValidationKind.FIELD_TYPE, f.type_loc,
                    f"enum {symbol.full_name!r} is a proto2 enum and cannot be used in proto3 field {f.name!r}",
                )

        default = find_pseudo_option(f.options, "default")
        if default is not None:
            if self._proto3:
                self._error(
                    ValidationKind.SYNTAX_FEATURE, default.loc,
                    f"explicit default values are not allowed in proto3: {f.name!r}",
                )
            elif f.label == "repeated" or f.is_map:
                self._error(ValidationKind.DEFAULT_VALUE, default.loc, "repeated fields can't have default values")
            elif symbol is not None and symbol.kind == SymbolKind.MESSAGE:
                self._error(ValidationKind.DEFAULT_VALUE, default.loc, "messages can't have default values")
            else:
                try:
                    coerce_value(default.value, self._options.type_of(f))
                except OptionError as e:
                    self._error(ValidationKind.DEFAULT_VALUE, e.loc, f"default value of {f.name!r}: {e.detail}")

        custom_json = find_pseudo_option(f.options, "json_name")
        if custom_json is not None:
            if is_extension:
                self._error(ValidationKind.OPTION, custom_json.loc, "option json_name is not allowed on extension fields")
            elif not isinstance(custom_json.value.value, bytes):
                self._error(ValidationKind.OPTION, custom_json.loc, "option json_name must be a string")

        self._check_options(f.options, FIELD_OPTIONS, f)

    # -- extensions --

    def _check_extend(self, node: ExtensionNode) -> None:
        extendee = self._table.resolved(node.extendee_loc)
        if extendee is None:
            return
        if self._proto3 and not (
            extendee.full_name.startswith("google.protobuf.") and extendee.full_name.endswith("Options")
        ):
            self._error(
                ValidationKind.SYNTAX_FEATURE, node.extendee_loc,
                f"extensions in proto3 are only allowed for defining options, not {extendee.full_name!r}",
            )
        target: MessageNode = extendee.node
        ranges = [r for ext in target.extension_ranges for r in ext.ranges]
        for f in node.fields:
            self._check_field_number(f)
            if _contains(ranges, f.number) is None:
                self._error(
                    ValidationKind.EXTENSION, f.number_loc,
                    f"{extendee.full_name!r} does not declare {f.number} as an extension number",
                )
            if f.label == "required":
                self._error(ValidationKind.EXTENSION, f.loc, f"extension {f.name!r} cannot be required")
            if f.is_map:
                self._error(ValidationKind.EXTENSION, f.loc, f"map fields cannot be extensions: {f.name!r}")
            key = (extendee.full_name, f.number)
            previous = self._extension_numbers.get(key)
            if previous is not None:
                self._error(
                    ValidationKind.EXTENSION, f.number_loc,
                    f"extension number {f.number} has already been used in {extendee.full_name!r} "
                    f"by extension {previous.name!r} at {previous.loc}",
                )
            else:
                self._extension_numbers[key] = f
            self._check_field(f, is_extension=True)

    # -- enums --

    def _check_enum(self, node: EnumNode) -> None:
        self._check_options(node.options, ENUM_OPTIONS)
        if not node.values:
            self._error(ValidationKind.ENUM_VALUE, node.loc, f"enum {node.name!r} must contain at least one value")
        elif self._proto3 and node.values[0].number != 0:
            self._error(
                ValidationKind.ENUM_VALUE, node.values[0].loc,
                f"the first enum value of {node.name!r} must be zero in proto3",
            )

        for r in node.reserved_ranges:
            if r.start > r.end:
                self._error(ValidationKind.RESERVED, r.loc, f"reserved range end {r.end} is before start {r.start}")
        self._check_overlaps(node.reserved_ranges, ValidationKind.RESERVED, "reserved range")

        allow_alias = find_bool_option(node.options, "allow_alias")
        by_number: Dict[int, str] = {}
        has_alias = False
        for value in node.values:
            self._check_options(value.options, ENUM_VALUE_OPTIONS)
            if not MIN_ENUM_VALUE <= value.number <= MAX_ENUM_VALUE:
                self._error(
                    ValidationKind.ENUM_VALUE, value.loc,
                    f"enum value {value.name!r} = {value.number} is out of int32 range",
                )
            if value.number in by_number:
                has_alias = True
                if not allow_alias:
                    self._error(
                        ValidationKind.ENUM_VALUE, value.loc,
                        f"{value.name!r} uses the same enum value {value.number} as {by_number[value.number]!r}; "
                        "set option allow_alias = true to allow this",
                    )
            else:
                by_number[value.number] = value.name
            if _contains(node.reserved_ranges, value.number) is not None:
                self._error(ValidationKind.RESERVED, value.loc, f"enum value {value.name!r} uses reserved number {value.number}")
            if value.name in node.reserved_names:
                self._error(ValidationKind.RESERVED, value.loc, f"enum value name {value.name!r} is reserved")
        if allow_alias and not has_alias:
            self._error(
                ValidationKind.ENUM_VALUE, node.loc,
                f"enum {node.name!r} sets allow_alias but no values are aliases; remove the option",
            )

    # -- services --

    def _check_service(self, node: ServiceNode) -> None:
        self._check_options(node.options, SERVICE_OPTIONS)
        for method in node.methods:
            for what, type_name, loc in (
                ("input", method.input_type, method.input_loc),
                ("output", method.output_type, method.output_loc),
            ):
                symbol = self._table.resolved(loc)
                if symbol is None or symbol.kind != SymbolKind.MESSAGE:
                    self._error(
                        ValidationKind.METHOD_TYPE, loc,
                        f"{what} type {type_name!r} of method {method.name!r} is not a message type",
                    )
            self._check_options(method.options, METHOD_OPTIONS)

    # -- options --

    def _check_options(self, options: Sequence[OptionNode], target: str, owner: Optional[FieldNode] = None) -> None:
        seen: Dict[Tuple[str, ...], Loc] = {}
        pseudo_seen: Dict[str, Loc] = {}
        for option in options:
            if target == FIELD_OPTIONS and option.name_text in PSEUDO_FIELD_OPTIONS:
                if option.name_text in pseudo_seen:
                    self._error(ValidationKind.OPTION, option.loc, f"option {option.name_text!r} was already set")
                pseudo_seen[option.name_text] = option.loc
                continue
            try:
                interpreted = self._options.interpret(option, target)
            except OptionError as e:
                self._error(ValidationKind.OPTION, e.loc, e.detail)
                continue

            key = tuple(interpreted.path)
            if not interpreted.repeated:
                for previous in seen:
                    shorter = min(len(previous), len(key))
                    if previous[:shorter] == key[:shorter]:
                        self._error(
                            ValidationKind.OPTION, option.loc,
                            f"option {'.'.join(key)!r} was already set at {seen[previous]}",
                        )
                        break
            seen[key] = option.loc

            if key == ("map_entry",) and target == MESSAGE_OPTIONS:
                self._error(
                    ValidationKind.OPTION, option.loc,
                    "map_entry should not be set explicitly; use map<KeyType, ValueType> instead",
                )
            if key == ("packed",) and owner is not None and interpreted.value:
                packable = owner.label == "repeated" and not owner.is_map and (
                    owner.type_name in PACKABLE_SCALARS
                    or getattr(self._table.resolved(owner.type_loc), "kind", None) == SymbolKind.ENUM
                )
                if not packable:
                    self._error(
                        ValidationKind.OPTION, option.loc,
                        f"[packed = true] can only be specified for repeated primitive fields: {owner.name!r}",
                    )

    # -- helpers --

    def _check_overlaps(self, ranges: Sequence[ReservedRange], kind: ValidationKind, what: str) -> None:
        ordered = sorted(ranges, key=lambda r: (r.start, r.end))
        for a, b in zip(ordered, ordered[1:]):
            if b.start <= a.end:
                self._error(kind, b.loc, f"{what} {b.start} to {b.end} overlaps with {a.start} to {a.end}")

    def _error(self, kind: ValidationKind, loc: Loc, detail: str) -> None:
        self._errors.append(ValidationError(kind=kind, loc=loc, detail=detail))


def validate(graph: DependencyGraph, table: SymbolTable) -> None:
    Validator(graph, table).validate()
