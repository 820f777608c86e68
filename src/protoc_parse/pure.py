"""The in-process pipeline: parse, resolve imports, bind, validate, lower."""

from __future__ import annotations

import logging
from typing import Sequence

from protoc_parse.binder import bind
from protoc_parse.descriptor_builder import build_descriptors
from protoc_parse.imports import ImportResolver, PathLike
from protoc_parse.models import ParsedAndTypechecked
from protoc_parse.validator import validate

logger = logging.getLogger(__name__)


def parse_and_typecheck(includes: Sequence[PathLike], inputs: Sequence[PathLike]) -> ParsedAndTypechecked:
    """Compile ``inputs`` against ``includes``.

    Returns descriptors for the whole import closure in dependency order,
    or raises a ProtoError; nothing is returned for a partially valid
    closure.
    """
    resolver = ImportResolver(includes)
    relative_paths = [resolver.relative_name(p) for p in inputs]
    for name in relative_paths:
        resolver.load(name)

    graph = resolver.graph
    logger.debug("loaded %d file(s) for %d input(s)", len(graph.files), len(relative_paths))
    table = bind(graph)
    validate(graph, table)
    files = build_descriptors(graph, table)
    return ParsedAndTypechecked(relative_paths=relative_paths, file_descriptors=files, parser="pure")
