"""AST node definitions for protobuf (.proto) files."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Union


@dataclass(frozen=True)
class Loc:
    """Source position: file, 1-based line and column."""

    path: str
    line: int
    col: int

    def __str__(self) -> str:
        return f"{self.path}:{self.line}:{self.col}"


@dataclass
class Aggregate:
    """Text-format message literal used as an option value: ``{ a: 1 }``."""

    text: str


@dataclass
class Identifier:
    """Bare identifier used as a constant (enum value names, inf, nan)."""

    name: str


@dataclass
class Constant:
    """An option or default value.

    ``value`` is an int, float, bool, bytes (string literals keep raw bytes),
    Identifier or Aggregate.
    """

    value: Union[int, float, bool, bytes, Identifier, Aggregate]
    loc: Loc

    def text(self) -> str:
        if isinstance(self.value, bytes):
            return self.value.decode("utf-8", errors="replace")
        if isinstance(self.value, Identifier):
            return self.value.name
        if isinstance(self.value, Aggregate):
            return self.value.text
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value)


@dataclass
class OptionNamePart:
    name: str
    is_extension: bool
    loc: Loc

    def __str__(self) -> str:
        return f"({self.name})" if self.is_extension else self.name


@dataclass
class OptionNode:
    """``option a.(b.c).d = value;`` or a bracketed field option."""

    name: List[OptionNamePart]
    value: Constant
    loc: Loc

    @property
    def name_text(self) -> str:
        return ".".join(str(p) for p in self.name)


@dataclass
class ReservedRange:
    """Inclusive ``start to end`` range (reserved numbers, extension ranges)."""

    start: int
    end: int
    loc: Loc


@dataclass
class FieldNode:
    """A field: ``[label] type name = number [options];``

    Map fields set ``map_key_type``; ``type_name`` then holds the value type.
    """

    name: str
    number: int
    type_name: str
    loc: Loc
    type_loc: Loc
    number_loc: Loc
    label: Optional[str] = None
    map_key_type: Optional[str] = None
    oneof: Optional[str] = None
    options: List[OptionNode] = field(default_factory=list)
    doc: Optional[str] = None

    @property
    def is_map(self) -> bool:
        return self.map_key_type is not None


@dataclass
class OneofNode:
    name: str
    loc: Loc
    fields: List[FieldNode] = field(default_factory=list)
    options: List[OptionNode] = field(default_factory=list)
    doc: Optional[str] = None


@dataclass
class EnumValueNode:
    name: str
    number: int
    loc: Loc
    options: List[OptionNode] = field(default_factory=list)
    doc: Optional[str] = None


@dataclass
class EnumNode:
    name: str
    loc: Loc
    values: List[EnumValueNode] = field(default_factory=list)
    options: List[OptionNode] = field(default_factory=list)
    reserved_ranges: List[ReservedRange] = field(default_factory=list)
    reserved_names: List[str] = field(default_factory=list)
    doc: Optional[str] = None


@dataclass
class ExtensionRangeNode:
    """``extensions 100 to 199 [options];``"""

    ranges: List[ReservedRange]
    loc: Loc
    options: List[OptionNode] = field(default_factory=list)


@dataclass
class ExtensionNode:
    """``extend Foo { ... }`` block."""

    extendee: str
    loc: Loc
    extendee_loc: Loc
    fields: List[FieldNode] = field(default_factory=list)


@dataclass
class MessageNode:
    """A message definition.

    ``fields`` lists every field in declaration order, oneof members
    included; each oneof also lists its own members.
    """

    name: str
    loc: Loc
    fields: List[FieldNode] = field(default_factory=list)
    oneofs: List[OneofNode] = field(default_factory=list)
    messages: List[MessageNode] = field(default_factory=list)
    enums: List[EnumNode] = field(default_factory=list)
    extends: List[ExtensionNode] = field(default_factory=list)
    extension_ranges: List[ExtensionRangeNode] = field(default_factory=list)
    reserved_ranges: List[ReservedRange] = field(default_factory=list)
    reserved_names: List[str] = field(default_factory=list)
    options: List[OptionNode] = field(default_factory=list)
    doc: Optional[str] = None


@dataclass
class MethodNode:
    name: str
    input_type: str
    output_type: str
    loc: Loc
    input_loc: Loc
    output_loc: Loc
    client_streaming: bool = False
    server_streaming: bool = False
    options: List[OptionNode] = field(default_factory=list)
    doc: Optional[str] = None


@dataclass
class ServiceNode:
    name: str
    loc: Loc
    methods: List[MethodNode] = field(default_factory=list)
    options: List[OptionNode] = field(default_factory=list)
    doc: Optional[str] = None


@dataclass
class ImportNode:
    path: str
    loc: Loc
    kind: str = "normal"  # "normal", "public" or "weak"


@dataclass
class FileNode:
    """Top-level parsed representation of a .proto file."""

    path: str
    syntax: str = "proto2"
    package: Optional[str] = None
    imports: List[ImportNode] = field(default_factory=list)
    options: List[OptionNode] = field(default_factory=list)
    messages: List[MessageNode] = field(default_factory=list)
    enums: List[EnumNode] = field(default_factory=list)
    services: List[ServiceNode] = field(default_factory=list)
    extends: List[ExtensionNode] = field(default_factory=list)


Node = Union[
    FileNode,
    MessageNode,
    FieldNode,
    EnumNode,
    EnumValueNode,
    OneofNode,
    ServiceNode,
    MethodNode,
    OptionNode,
    ExtensionNode,
    ReservedRange,
]
