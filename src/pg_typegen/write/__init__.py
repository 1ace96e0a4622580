"""Writing generated declarations back into the source tree."""
from .annotations import merge_annotation, quote_annotation
from .files import read_bytes, write_file_edit
from .inline import BLOCK_END, BLOCK_START, apply_edits, build_inline_edit, render_block, replace_block
from .sql_helpers import build_companion_edit, companion_path, render_companion

__all__ = [
    "BLOCK_END",
    "BLOCK_START",
    "apply_edits",
    "build_companion_edit",
    "build_inline_edit",
    "companion_path",
    "merge_annotation",
    "quote_annotation",
    "read_bytes",
    "render_block",
    "render_companion",
    "replace_block",
    "write_file_edit",
]
