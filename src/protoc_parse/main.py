from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Sequence

from google.protobuf import descriptor_pb2, text_format

from protoc_parse.compilation import Compilation
from protoc_parse.errors import ProtoError
from protoc_parse.report import render_summary


def run(
    input_path: str,
    includes: Sequence[str],
    output_format: str = "text",
    use_protoc: bool = False,
    include_imports: bool = False,
) -> str:
    """Compile one file and render the result as text."""
    compilation = Compilation().includes(includes).input(input_path)
    if use_protoc:
        compilation.protoc()
    result = compilation.parse_and_typecheck()

    if output_format == "summary":
        return render_summary(result, include_imports=include_imports)

    files = result.file_descriptors if include_imports else result.inputs
    fds = descriptor_pb2.FileDescriptorSet(file=[fd.to_proto() for fd in files])
    return text_format.MessageToString(fds)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Parse and typecheck a .proto file, then print its descriptors",
    )
    parser.add_argument("input", help=".proto file to compile; must live under one of the include directories")
    parser.add_argument(
        "includes",
        nargs="+",
        metavar="include",
        help="Include directories, searched in order",
    )
    parser.add_argument(
        "--format",
        choices=["text", "summary"],
        default="text",
        help="text: FileDescriptorSet in protobuf text format; summary: readable outline",
    )
    parser.add_argument(
        "--protoc",
        action="store_true",
        help="Compile with the protoc binary ($PROTOC or PATH) instead of the built-in parser",
    )
    parser.add_argument(
        "--include-imports",
        action="store_true",
        help="Also print every imported file",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging to stderr")

    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        output = run(args.input, args.includes, args.format, args.protoc, args.include_imports)
    except ProtoError as e:
        for line in e.diagnostics:
            print(line, file=sys.stderr)
        sys.exit(1)
    print(output, end="")
