"""Global symbol table and name binding.

The scope tree is an arena: scopes live in ``SymbolTable.scopes`` and refer
to their enclosing scope by index. Binding never mutates the AST; every
resolved reference is recorded in ``SymbolTable.references`` keyed by the
reference's source position.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional, Sequence, Set

from protoc_parse.errors import (
    AmbiguousNameError,
    DuplicateSymbolError,
    UnresolvedNameError,
)
from protoc_parse.imports import DependencyGraph, LoadedFile
from protoc_parse.parser.proto_ast import (
    EnumNode,
    FieldNode,
    FileNode,
    Loc,
    MessageNode,
    Node,
    OptionNode,
    ServiceNode,
)

logger = logging.getLogger(__name__)

# Proto scalar types: any other field type name is a message or enum reference.
PROTO_PRIMITIVES = {
    "int32", "sint32", "sfixed32", "uint32", "fixed32",
    "int64", "sint64", "sfixed64", "uint64", "fixed64",
    "float", "double", "bool", "string", "bytes",
}


class SymbolKind(Enum):
    PACKAGE = auto()
    MESSAGE = auto()
    ENUM = auto()
    ENUM_VALUE = auto()
    FIELD = auto()
    ONEOF = auto()
    EXTENSION = auto()
    SERVICE = auto()
    METHOD = auto()


TYPE_KINDS = frozenset({SymbolKind.MESSAGE, SymbolKind.ENUM})
# Symbols that may contain other symbols in a compound name lookup.
AGGREGATE_KINDS = frozenset({SymbolKind.PACKAGE, SymbolKind.MESSAGE, SymbolKind.ENUM, SymbolKind.SERVICE})


@dataclass
class Symbol:
    full_name: str
    kind: SymbolKind
    # Declaring file; None for packages, which any file may contribute to.
    file: Optional[str] = None
    node: Optional[Node] = None
    loc: Optional[Loc] = None
    # Scope index for symbols that open a namespace.
    scope: Optional[int] = None
    # Full name of the extended message, for extensions.
    extendee: Optional[str] = None

    @property
    def is_type(self) -> bool:
        return self.kind in TYPE_KINDS


@dataclass
class Scope:
    index: int
    full_name: str
    parent: Optional[int]
    symbol: Optional[Symbol] = None
    members: Dict[str, Symbol] = field(default_factory=dict)


def join_name(scope: str, name: str) -> str:
    return f"{scope}.{name}" if scope else name


class SymbolTable:
    """Read-only once built: the scope arena, all symbols and all bindings."""

    ROOT = 0

    def __init__(self) -> None:
        self.scopes: List[Scope] = [Scope(index=self.ROOT, full_name="", parent=None)]
        self.by_name: Dict[str, Symbol] = {}
        self.references: Dict[Loc, Symbol] = {}
        # Innermost package scope of each file.
        self.file_scopes: Dict[str, int] = {}
        self.visible: Dict[str, Set[str]] = {}

    def lookup(self, full_name: str) -> Optional[Symbol]:
        """Symbol by fully qualified name, with or without a leading dot."""
        return self.by_name.get(full_name.lstrip("."))

    def resolved(self, loc: Loc) -> Optional[Symbol]:
        """Symbol bound to the reference at ``loc``."""
        return self.references.get(loc)

    def scope_of(self, full_name: str) -> int:
        if not full_name:
            return self.ROOT
        symbol = self.by_name[full_name]
        if symbol.scope is None:
            raise KeyError(full_name)
        return symbol.scope

    def symbols_in(self, file_name: str) -> List[Symbol]:
        return [s for s in self.by_name.values() if s.file == file_name]


class SymbolBinder:
    """Builds a SymbolTable from every file of a dependency graph."""

    def __init__(self, graph: DependencyGraph):
        self._graph = graph
        self.table = SymbolTable()

    # -- public API --

    def bind(self) -> SymbolTable:
        files = self._graph.dependency_order()
        for loaded in files:
            self._declare_file(loaded)
        for loaded in files:
            self.table.visible[loaded.name] = self._graph.visible_files(loaded.name)
            self._bind_file(loaded)
            logger.debug("bound %s", loaded.name)
        return self.table

    # -- declaration pass --

    def _new_scope(self, full_name: str, parent: int, symbol: Symbol) -> int:
        index = len(self.table.scopes)
        self.table.scopes.append(Scope(index=index, full_name=full_name, parent=parent, symbol=symbol))
        symbol.scope = index
        return index

    def _define(self, scope_index: int, name: str, symbol: Symbol) -> Symbol:
        existing = self.table.by_name.get(symbol.full_name)
        if existing is not None:
            if existing.kind == SymbolKind.PACKAGE and symbol.kind == SymbolKind.PACKAGE:
                return existing
            raise DuplicateSymbolError(symbol.full_name, symbol.loc, existing.loc)
        self.table.by_name[symbol.full_name] = symbol
        self.table.scopes[scope_index].members[name] = symbol
        return symbol

    def _declare_file(self, loaded: LoadedFile) -> None:
        ast = loaded.ast
        scope = SymbolTable.ROOT
        if ast.package:
            prefix = ""
            for part in ast.package.split("."):
                prefix = join_name(prefix, part)
                pkg = self._define(scope, part, Symbol(prefix, SymbolKind.PACKAGE, loc=Loc(ast.path, 1, 1)))
                if pkg.scope is None:
                    self._new_scope(prefix, scope, pkg)
                scope = pkg.scope
        self.table.file_scopes[loaded.name] = scope

        for message in ast.messages:
            self._declare_message(message, scope, loaded.name)
        for enum in ast.enums:
            self._declare_enum(enum, scope, loaded.name)
        for extend in ast.extends:
            self._declare_extensions(extend.fields, scope, loaded.name)
        for service in ast.services:
            self._declare_service(service, scope, loaded.name)

    def _declare_message(self, node: MessageNode, parent: int, file_name: str) -> None:
        full_name = join_name(self.table.scopes[parent].full_name, node.name)
        symbol = self._define(parent, node.name, Symbol(full_name, SymbolKind.MESSAGE, file_name, node, node.loc))
        scope = self._new_scope(full_name, parent, symbol)

        for f in node.fields:
            self._define(scope, f.name, Symbol(join_name(full_name, f.name), SymbolKind.FIELD, file_name, f, f.loc))
        for oneof in node.oneofs:
            self._define(
                scope, oneof.name,
                Symbol(join_name(full_name, oneof.name), SymbolKind.ONEOF, file_name, oneof, oneof.loc),
            )
        for nested in node.messages:
            self._declare_message(nested, scope, file_name)
        for enum in node.enums:
            self._declare_enum(enum, scope, file_name)
        for extend in node.extends:
            self._declare_extensions(extend.fields, scope, file_name)

    def _declare_enum(self, node: EnumNode, parent: int, file_name: str) -> None:
        parent_name = self.table.scopes[parent].full_name
        full_name = join_name(parent_name, node.name)
        symbol = self._define(parent, node.name, Symbol(full_name, SymbolKind.ENUM, file_name, node, node.loc))
        scope = self._new_scope(full_name, parent, symbol)
        # Enum values are siblings of their enum (C++ scoping).
        for value in node.values:
            value_symbol = Symbol(join_name(parent_name, value.name), SymbolKind.ENUM_VALUE, file_name, value, value.loc)
            self._define(parent, value.name, value_symbol)
            self.table.scopes[scope].members[value.name] = value_symbol

    def _declare_extensions(self, fields: Sequence[FieldNode], parent: int, file_name: str) -> None:
        parent_name = self.table.scopes[parent].full_name
        for f in fields:
            self._define(parent, f.name, Symbol(join_name(parent_name, f.name), SymbolKind.EXTENSION, file_name, f, f.loc))

    def _declare_service(self, node: ServiceNode, parent: int, file_name: str) -> None:
        full_name = join_name(self.table.scopes[parent].full_name, node.name)
        symbol = self._define(parent, node.name, Symbol(full_name, SymbolKind.SERVICE, file_name, node, node.loc))
        scope = self._new_scope(full_name, parent, symbol)
        for method in node.methods:
            self._define(
                scope, method.name,
                Symbol(join_name(full_name, method.name), SymbolKind.METHOD, file_name, method, method.loc),
            )

    # -- binding pass --

    def _bind_file(self, loaded: LoadedFile) -> None:
        ast: FileNode = loaded.ast
        name = loaded.name
        scope = self.table.file_scopes[name]

        self._bind_options(ast.options, scope, name)
        for message in ast.messages:
            self._bind_message(message, scope, name)
        for enum in ast.enums:
            self._bind_enum(enum, scope, name)
        for extend in ast.extends:
            self._bind_extend(extend.extendee, extend.extendee_loc, extend.fields, scope, name)
        for service in ast.services:
            service_scope = self.table.scope_of(join_name(self.table.scopes[scope].full_name, service.name))
            self._bind_options(service.options, scope, name)
            for method in service.methods:
                for type_name, loc in ((method.input_type, method.input_loc), (method.output_type, method.output_loc)):
                    # Scalar method types are left unbound and rejected during validation.
                    if type_name not in PROTO_PRIMITIVES:
                        self._bind(type_name, service_scope, name, loc)
                self._bind_options(method.options, service_scope, name)

    def _bind_message(self, node: MessageNode, parent: int, file_name: str) -> None:
        scope = self.table.scope_of(join_name(self.table.scopes[parent].full_name, node.name))
        self._bind_options(node.options, parent, file_name)
        for f in node.fields:
            self._bind_field(f, scope, file_name)
        for oneof in node.oneofs:
            self._bind_options(oneof.options, scope, file_name)
        for ext_range in node.extension_ranges:
            self._bind_options(ext_range.options, scope, file_name)
        for nested in node.messages:
            self._bind_message(nested, scope, file_name)
        for enum in node.enums:
            self._bind_enum(enum, scope, file_name)
        for extend in node.extends:
            self._bind_extend(extend.extendee, extend.extendee_loc, extend.fields, scope, file_name)

    def _bind_field(self, f: FieldNode, scope: int, file_name: str) -> None:
        if f.type_name not in PROTO_PRIMITIVES:
            self._bind(f.type_name, scope, file_name, f.type_loc)
        self._bind_options(f.options, scope, file_name)

    def _bind_enum(self, node: EnumNode, parent: int, file_name: str) -> None:
        self._bind_options(node.options, parent, file_name)
        for value in node.values:
            self._bind_options(value.options, parent, file_name)

    def _bind_extend(
        self,
        extendee: str,
        extendee_loc: Loc,
        fields: Sequence[FieldNode],
        scope: int,
        file_name: str,
    ) -> None:
        symbol = self._bind(extendee, scope, file_name, extendee_loc)
        if symbol.kind != SymbolKind.MESSAGE:
            raise UnresolvedNameError(extendee, extendee_loc, f"{symbol.full_name!r} is not a message type")
        scope_name = self.table.scopes[scope].full_name
        for f in fields:
            self.table.by_name[join_name(scope_name, f.name)].extendee = symbol.full_name
            self._bind_field(f, scope, file_name)

    def _bind_options(self, options: Sequence[OptionNode], scope: int, file_name: str) -> None:
        for option in options:
            for part in option.name:
                if not part.is_extension:
                    continue
                symbol = self._bind(part.name, scope, file_name, part.loc, want_type=False)
                if symbol.kind != SymbolKind.EXTENSION:
                    raise UnresolvedNameError(part.name, part.loc, f"{symbol.full_name!r} is not an extension")

    def _bind(self, name: str, scope: int, file_name: str, loc: Loc, want_type: bool = True) -> Symbol:
        symbol = self.resolve(name, scope, file_name, loc, want_type)
        self.table.references[loc] = symbol
        return symbol

    # -- lookup --

    def resolve(self, name: str, scope: int, file_name: str, loc: Loc, want_type: bool = True) -> Symbol:
        """Resolve ``name`` as seen from ``scope`` in ``file_name``.

        A leading dot means a fully qualified name. Otherwise scopes are
        tried from the innermost outward and the first match wins. For a
        compound name only the first component is searched; once it is
        found the rest must exist under it.
        """
        by_name = self.table.by_name

        if name.startswith("."):
            symbol = by_name.get(name[1:])
            if symbol is None:
                raise UnresolvedNameError(name, loc)
            return self._checked(symbol, name, file_name, loc, want_type)

        first, _, rest = name.partition(".")
        index: Optional[int] = scope
        while index is not None:
            current = self.table.scopes[index]
            candidate = join_name(current.full_name, first)
            symbol = by_name.get(candidate)
            if symbol is not None:
                if rest:
                    if symbol.kind in AGGREGATE_KINDS:
                        full_name = f"{candidate}.{rest}"
                        found = by_name.get(full_name)
                        if found is None:
                            self._raise_shadowed(name, full_name, current.parent, loc)
                        return self._checked(found, name, file_name, loc, want_type)
                elif not want_type or symbol.is_type:
                    return self._checked(symbol, name, file_name, loc, want_type)
            index = current.parent

        raise UnresolvedNameError(name, loc)

    def _raise_shadowed(self, name: str, tried: str, outer: Optional[int], loc: Loc) -> None:
        index = outer
        while index is not None:
            current = self.table.scopes[index]
            other = self.table.by_name.get(join_name(current.full_name, name))
            if other is not None:
                raise AmbiguousNameError(name, [tried, other.full_name], loc)
            index = current.parent
        raise UnresolvedNameError(name, loc, f"resolved to {tried!r}, which is not defined")

    def _checked(self, symbol: Symbol, name: str, file_name: str, loc: Loc, want_type: bool) -> Symbol:
        if want_type and not symbol.is_type:
            raise UnresolvedNameError(name, loc, f"{symbol.full_name!r} is not a message or enum type")
        if symbol.file is not None and symbol.file not in self.table.visible.get(file_name, {file_name}):
            raise UnresolvedNameError(
                name, loc, f"{symbol.full_name!r} is defined in {symbol.file!r}, which is not imported by {file_name!r}"
            )
        return symbol


def bind(graph: DependencyGraph) -> SymbolTable:
    return SymbolBinder(graph).bind()
