from __future__ import annotations

from pathlib import Path
from typing import List

from jinja2 import Environment, FileSystemLoader

from protoc_parse.models import FileDescriptor, ParsedAndTypechecked


def _get_template_env() -> Environment:
    template_dir = Path(__file__).parent / "templates"
    return Environment(
        loader=FileSystemLoader(str(template_dir)),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render_file_summary(files: List[FileDescriptor], parser: str) -> str:
    """Outline of ``files``: declarations with resolved type names."""
    env = _get_template_env()
    template = env.get_template("summary.txt.j2")
    return template.render(files=files, parser=parser)


def render_summary(result: ParsedAndTypechecked, include_imports: bool = False) -> str:
    """Outline of the input files, or of the whole closure with ``include_imports``."""
    files = result.file_descriptors if include_imports else result.inputs
    return render_file_summary(files, result.parser)
