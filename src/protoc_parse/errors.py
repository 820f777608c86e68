"""Error taxonomy for the .proto front end.

Every failure raised by the pipeline derives from ProtoError and exposes a
non-empty ``diagnostics`` list, so callers get either the full descriptor
sequence or a list of positioned messages and nothing in between.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from protoc_parse.parser.proto_ast import Loc


class ProtoError(Exception):
    """Base class for every error raised while compiling .proto files."""

    def __init__(self, message: str, loc: Optional[Loc] = None):
        self.message = message
        self.loc = loc
        if loc:
            super().__init__(f"{loc}: {message}")
        else:
            super().__init__(message)

    @property
    def diagnostics(self) -> List[str]:
        return [str(self)]


class ProtoIoError(ProtoError):
    """A file is missing or unreadable."""


class ProtoSyntaxError(ProtoError):
    """Lexical or grammatical failure."""


class ProtocError(ProtoError):
    """The external protoc binary is missing or rejected its input."""

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(f"{message}\n{stderr.rstrip()}" if stderr.strip() else message)

    @property
    def diagnostics(self) -> List[str]:
        lines = [line for line in self.stderr.splitlines() if line.strip()]
        return lines or [str(self)]


class ProtoImportError(ProtoError):
    pass


class ImportNotFoundError(ProtoImportError):
    def __init__(self, import_path: str, loc: Optional[Loc] = None):
        self.import_path = import_path
        super().__init__(f"import {import_path!r} was not found in any include directory", loc)


class ImportCycleError(ProtoImportError):
    def __init__(self, path_sequence: Sequence[str], loc: Optional[Loc] = None):
        self.path_sequence = list(path_sequence)
        super().__init__("import cycle: " + " -> ".join(self.path_sequence), loc)


class NameResolutionError(ProtoError):
    pass


class UnresolvedNameError(NameResolutionError):
    def __init__(self, reference: str, loc: Optional[Loc] = None, detail: str = ""):
        self.reference = reference
        message = f"{reference!r} is not defined"
        if detail:
            message += f" ({detail})"
        super().__init__(message, loc)


class AmbiguousNameError(NameResolutionError):
    def __init__(self, reference: str, candidates: Sequence[str], loc: Optional[Loc] = None):
        self.reference = reference
        self.candidates = list(candidates)
        super().__init__(
            f"{reference!r} is ambiguous between "
            + ", ".join(repr(c) for c in self.candidates)
            + "; use a leading '.' to start from the outermost scope",
            loc,
        )


class DuplicateSymbolError(NameResolutionError):
    def __init__(self, full_name: str, loc: Optional[Loc] = None, previous: Optional[Loc] = None):
        self.full_name = full_name
        self.previous = previous
        message = f"{full_name!r} is already defined"
        if previous:
            message += f" at {previous}"
        super().__init__(message, loc)


class ValidationKind(Enum):
    FIELD_NUMBER = "field-number"
    DUPLICATE_FIELD_NUMBER = "duplicate-field-number"
    RESERVED = "reserved"
    ENUM_VALUE = "enum-value"
    ONEOF = "oneof"
    MAP_FIELD = "map-field"
    SYNTAX_FEATURE = "syntax-feature"
    EXTENSION_RANGE = "extension-range"
    EXTENSION = "extension"
    FIELD_TYPE = "field-type"
    METHOD_TYPE = "method-type"
    DEFAULT_VALUE = "default-value"
    OPTION = "option"
    JSON_NAME = "json-name"


@dataclass
class ValidationError:
    kind: ValidationKind
    loc: Loc
    detail: str

    def __str__(self) -> str:
        return f"{self.loc}: [{self.kind.value}] {self.detail}"


class FileValidationError(ProtoError):
    """All validation errors found in a single file."""

    def __init__(self, path: str, errors: Sequence[ValidationError]):
        self.path = path
        self.errors = list(errors)
        super().__init__(
            f"{path}: {len(self.errors)} validation error(s)\n"
            + "\n".join(str(e) for e in self.errors)
        )

    @property
    def diagnostics(self) -> List[str]:
        return [str(e) for e in self.errors]
