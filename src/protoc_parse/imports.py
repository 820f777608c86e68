"""Import resolution across include directories.

Imports are canonical relative names (``foo/bar.proto``). Each name is
looked up in the include directories in declared order, then in the
built-in well-known table. Every file is parsed once per compilation; the
resulting graph records files in dependency order (imports first).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Dict, List, Optional, Sequence, Set, Union

from protoc_parse.errors import (
    ImportCycleError,
    ImportNotFoundError,
    ProtoImportError,
    ProtoIoError,
)
from protoc_parse.parser.proto_ast import FileNode, Loc
from protoc_parse.parser.proto_parser import parse_proto_file
from protoc_parse.well_known import is_well_known, well_known_ast

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


@dataclass
class ImportEdge:
    target: str
    kind: str  # "normal", "public" or "weak"
    # False for a weak import that could not be found.
    available: bool = True


@dataclass
class LoadedFile:
    name: str
    ast: FileNode
    # None for built-in files.
    fs_path: Optional[str] = None
    imports: List[ImportEdge] = field(default_factory=list)


class DependencyGraph:
    """Files of one compilation keyed by canonical name, in dependency order."""

    def __init__(self) -> None:
        self.files: Dict[str, LoadedFile] = {}
        self._order: List[str] = []

    def __contains__(self, name: str) -> bool:
        return name in self.files

    def add(self, loaded: LoadedFile) -> None:
        """Record a file whose imports have all been added already."""
        self.files[loaded.name] = loaded
        self._order.append(loaded.name)

    def dependency_order(self) -> List[LoadedFile]:
        """All files; a file never precedes any file it imports."""
        return [self.files[name] for name in self._order]

    def visible_files(self, name: str) -> Set[str]:
        """Files whose symbols ``name`` may reference.

        The file itself, its direct imports, and the public imports of any
        visible import, transitively.
        """
        visible = {name}
        pending = [e.target for e in self.files[name].imports if e.available]
        seen: Set[str] = set()
        while pending:
            target = pending.pop()
            if target in seen:
                continue
            seen.add(target)
            visible.add(target)
            pending.extend(e.target for e in self.files[target].imports if e.kind == "public")
        return visible


def remove_path_prefix(path: PathLike, prefix: PathLike) -> Optional[str]:
    """Strip the directory ``prefix`` from ``path``.

    Leading ``./`` on either side is ignored. Returns the remainder with
    ``/`` separators, or None when ``path`` is not under ``prefix``.
    """
    path_parts = PurePath(path).parts
    prefix_parts = PurePath(prefix).parts
    if len(path_parts) <= len(prefix_parts):
        return None
    if path_parts[:len(prefix_parts)] != prefix_parts:
        return None
    return PurePath(*path_parts[len(prefix_parts):]).as_posix()


def _canonical(name: str) -> str:
    while name.startswith("./"):
        name = name[2:]
    return name


class ImportResolver:
    """Locates, parses and links .proto files for one compilation."""

    def __init__(self, include_dirs: Sequence[PathLike]):
        self.include_dirs = [str(d) for d in include_dirs]
        self.graph = DependencyGraph()

    # -- public API --

    def relative_name(self, input_path: PathLike) -> str:
        """Canonical name of an input file: its path relative to the first
        include directory that contains it."""
        if not Path(input_path).is_file():
            raise ProtoIoError(f"input file {os.fspath(input_path)} does not exist")
        for include in self.include_dirs:
            rel = remove_path_prefix(input_path, include)
            if rel is None:
                rel = remove_path_prefix(os.path.abspath(input_path), os.path.abspath(include))
            if rel is not None:
                found = self.find(rel)
                if found is not None and not os.path.samefile(found, input_path):
                    raise ProtoIoError(
                        f"input {os.fspath(input_path)} is shadowed in the include path by {found}"
                    )
                return rel
        raise ProtoIoError(
            f"input file {os.fspath(input_path)} must reside in one of the include directories: "
            + ", ".join(self.include_dirs)
        )

    def load(self, name: str) -> LoadedFile:
        """Load ``name`` and, recursively, everything it imports."""
        return self._load(_canonical(name), [], None)

    def find(self, name: str) -> Optional[str]:
        """Filesystem path of ``name`` in the first matching include directory."""
        for include in self.include_dirs:
            candidate = Path(include) / name
            if candidate.is_file():
                return str(candidate)
        return None

    def exists(self, name: str) -> bool:
        return self.find(name) is not None or is_well_known(name)

    # -- internals --

    def _load(self, name: str, stack: List[str], loc: Optional[Loc]) -> LoadedFile:
        if name in stack:
            raise ImportCycleError(stack[stack.index(name):] + [name], loc)
        if name in self.graph:
            return self.graph.files[name]

        loaded = self._read(name, loc)
        stack.append(name)
        seen: Set[str] = set()
        for imp in loaded.ast.imports:
            target = _canonical(imp.path)
            if target in seen:
                raise ProtoImportError(f"import {target!r} was listed twice", imp.loc)
            seen.add(target)
            if imp.kind == "weak" and not self.exists(target):
                logger.warning("%s: weak import %r not found, its types are unavailable", imp.loc, target)
                loaded.imports.append(ImportEdge(target=target, kind=imp.kind, available=False))
                continue
            self._load(target, stack, imp.loc)
            loaded.imports.append(ImportEdge(target=target, kind=imp.kind))
        stack.pop()

        self.graph.add(loaded)
        return loaded

    def _read(self, name: str, loc: Optional[Loc]) -> LoadedFile:
        fs_path = self.find(name)
        if fs_path is not None:
            logger.debug("resolved %s -> %s", name, fs_path)
            return LoadedFile(name=name, ast=parse_proto_file(fs_path, name), fs_path=fs_path)
        if is_well_known(name):
            logger.debug("resolved %s -> built-in", name)
            return LoadedFile(name=name, ast=well_known_ast(name))
        raise ImportNotFoundError(name, loc)
