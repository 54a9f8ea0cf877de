"""Split packed snippet files into raw blocks.

Several snippets may share one source file, joined by a literal separator
token.  Splitting is purely textual: it locates separator boundaries and
never looks at the Title/Id/Score/Body header structure.
"""

from __future__ import annotations

from dataclasses import dataclass

SEPARATOR = "|======|"


@dataclass(frozen=True)
class RawBlock:
    """One packed entry's text prior to structured parsing."""
    index: int   # position among the surviving blocks of the file
    line: int    # 1-based line of the block's first character in the file
    text: str


def decode_source(raw: bytes) -> str:
    """Decode snippet file bytes as UTF-8 (BOM tolerated), normalizing newlines."""
    text = raw.decode("utf-8-sig")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def read_source_file(path) -> str:
    """Read a snippet file as text.

    OSError and UnicodeDecodeError propagate to the caller.
    """
    with open(path, "rb") as f:
        return decode_source(f.read())


def split_blocks(text: str, separator: str = SEPARATOR) -> list[RawBlock]:
    """Split *text* on *separator*, dropping whitespace-only spans.

    A file without any separator yields exactly one block (the whole file),
    unless the file is blank.
    """
    if not separator:
        raise ValueError("separator must be a non-empty string")

    blocks: list[RawBlock] = []
    line = 1
    for span in text.split(separator):
        if span.strip():
            blocks.append(RawBlock(index=len(blocks), line=line, text=span))
        line += span.count("\n") + separator.count("\n")
    return blocks
