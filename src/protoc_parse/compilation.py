"""Chainable configuration for one compilation.

    result = (
        Compilation()
        .include("proto")
        .input("proto/shop/order.proto")
        .parse_and_typecheck()
    )
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from protoc_parse import protoc, pure
from protoc_parse.imports import PathLike
from protoc_parse.models import ParsedAndTypechecked

logger = logging.getLogger(__name__)

PURE = "pure"
PROTOC = "protoc"


class Compilation:
    def __init__(self) -> None:
        self._which_parser = PURE
        self._protoc_path: Optional[PathLike] = None
        self._includes: List[PathLike] = []
        self._inputs: List[PathLike] = []
        self._extra_args: List[str] = []

    @property
    def parser(self) -> str:
        return self._which_parser

    def pure(self) -> Compilation:
        """Compile in process (the default)."""
        self._which_parser = PURE
        return self

    def protoc(self) -> Compilation:
        """Delegate to the protoc binary."""
        self._which_parser = PROTOC
        return self

    def protoc_path(self, path: PathLike) -> Compilation:
        """Explicit protoc binary; implies protoc mode."""
        self._protoc_path = path
        self._which_parser = PROTOC
        return self

    def include(self, path: PathLike) -> Compilation:
        self._includes.append(path)
        return self

    def includes(self, paths: Iterable[PathLike]) -> Compilation:
        self._includes.extend(paths)
        return self

    def input(self, path: PathLike) -> Compilation:
        self._inputs.append(path)
        return self

    def inputs(self, paths: Iterable[PathLike]) -> Compilation:
        self._inputs.extend(paths)
        return self

    def extra_arg(self, arg: str) -> Compilation:
        """Extra command-line argument for protoc; ignored in pure mode."""
        self._extra_args.append(arg)
        return self

    def parse_and_typecheck(self) -> ParsedAndTypechecked:
        logger.debug("compiling %d input(s) with the %s parser", len(self._inputs), self._which_parser)
        if self._which_parser == PROTOC:
            return protoc.parse_and_typecheck(self._includes, self._inputs, self._protoc_path, self._extra_args)
        if self._extra_args:
            logger.warning("extra protoc arguments are ignored by the pure parser: %s", self._extra_args)
        return pure.parse_and_typecheck(self._includes, self._inputs)
