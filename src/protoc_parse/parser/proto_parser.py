from __future__ import annotations

from pathlib import Path
from typing import Optional

from protoc_parse.errors import ProtoIoError

from .proto_ast import FileNode
from .proto_ast_parser import ProtoParser
from .proto_tokenizer import tokenize_proto


def parse_proto_text(text: str, name: str = "<string>") -> FileNode:
    """Parse .proto source text into a FileNode named ``name``."""
    return ProtoParser(tokenize_proto(text, name), name).parse()


def parse_proto_file(file_path: str, name: Optional[str] = None) -> FileNode:
    """Read and parse a .proto file.

    ``name`` is the canonical import name recorded in the AST and in every
    source position; it defaults to ``file_path``.
    """
    try:
        text = Path(file_path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ProtoIoError(f"cannot read {file_path}: {e}") from e
    return parse_proto_text(text, name if name is not None else str(file_path))
