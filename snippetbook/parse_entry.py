"""Parse one raw block into a SnippetRecord.

Block format::

    Title: How to reverse a slice
    Id: 1204
    Score: 17
    Search: reverse, slice
    Body:
    Prose, then a code sample:

    ```go
    for i, j := 0, len(s)-1; i < j; i, j = i+1, j-1 {
        s[i], s[j] = s[j], s[i]
    }
    ```

The header is a small fixed set of labelled fields.  The first ``Body:``
label ends the header; everything after it, to the end of the block, is the
freeform body.  Code regions inside the body (fenced or indented) are kept
as opaque, whitespace-exact spans.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from snippetbook.errors import MalformedEntry
from snippetbook.split_entries import RawBlock

# ---------------------------------------------------------------------------
# Header fields
# ---------------------------------------------------------------------------

# lowercase label -> canonical label
HEADER_FIELDS = {
    "title": "Title",
    "id": "Id",
    "score": "Score",
    "search": "Search",
}
REQUIRED_FIELDS = ("Title", "Id")
BODY_LABEL = "body"

HEADER_LINE_RE = re.compile(r"^\s*([A-Za-z][A-Za-z0-9_-]*)\s*:(.*)$")
INT_RE = re.compile(r"^[+-]?\d+$")

FENCE_OPEN_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})(.*)$")
INDENTED_PREFIXES = ("    ", "\t")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BodyFragment:
    """A prose or code span of a snippet body, in body order."""
    kind: str            # "prose" or "code"
    text: str
    lang: str = ""       # fence info string for fenced code
    fenced: bool = False
    closed: bool = True  # False for a fence that runs to the end of the body
    fence: str = ""      # opening marker of fenced code, e.g. "```"


@dataclass(frozen=True)
class SnippetRecord:
    id: int
    title: str
    score: int
    body: str
    fragments: tuple[BodyFragment, ...] = ()
    search: tuple[str, ...] = ()
    source: str = ""      # file path relative to the book root
    block_index: int = 0

    @property
    def code_fragments(self) -> tuple[BodyFragment, ...]:
        return tuple(f for f in self.fragments if f.kind == "code")

    @property
    def origin(self) -> str:
        return f"{self.source} [block {self.block_index}]"


@dataclass
class _Header:
    values: dict[str, str] = field(default_factory=dict)
    body_lines: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _read_header(lines: list[str]) -> _Header:
    header = _Header()
    for i, line in enumerate(lines):
        if not line.strip():
            continue
        m = HEADER_LINE_RE.match(line)
        if not m:
            raise MalformedEntry("header", f"expected 'Label: value', got {line.strip()[:60]!r}")
        label = m.group(1).lower()
        value = m.group(2)

        if label == BODY_LABEL:
            rest = value[1:] if value.startswith(" ") else value
            header.body_lines = ([rest] if rest.strip() else []) + lines[i + 1:]
            return header

        canonical = HEADER_FIELDS.get(label)
        if canonical is None:
            raise MalformedEntry(m.group(1), "unknown header field")
        if canonical in header.values:
            raise MalformedEntry(canonical, "field given more than once")
        header.values[canonical] = value.strip()
    return header


def _parse_int(name: str, raw: str) -> int:
    if not INT_RE.match(raw):
        raise MalformedEntry(name, f"not an integer: {raw!r}")
    return int(raw)


def _trim_blank_edges(lines: list[str]) -> list[str]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


def _open_fence(line: str) -> tuple[str, str] | None:
    """Return (marker, lang) when *line* opens a fenced block.

    A backtick info string may not contain a backtick, so a prose line like
    "```x``` is inline" is not a fence.
    """
    m = FENCE_OPEN_RE.match(line)
    if not m:
        return None
    fence, info = m.group(1), m.group(2).strip()
    if fence[0] == "`" and "`" in info:
        return None
    return fence, (info.split()[0] if info else "")


def _closes_fence(line: str, fence: str) -> bool:
    s = line.strip()
    return len(s) >= len(fence) and set(s) == {fence[0]}


def split_fragments(body: str) -> tuple[BodyFragment, ...]:
    """Split a body into alternating prose and code fragments.

    Fenced regions open with three or more backticks or tildes and close on a
    line holding at least as many of the same character.  Indented regions
    are runs of lines indented by four spaces or a tab that follow a blank
    line (or the start of the body).  Code text is never re-flowed.
    """
    lines = body.split("\n") if body else []
    fragments: list[BodyFragment] = []
    prose: list[str] = []

    def flush_prose():
        kept = _trim_blank_edges(prose)
        if kept:
            fragments.append(BodyFragment("prose", "\n".join(kept)))
        prose.clear()

    i = 0
    prev_blank = True
    n = len(lines)
    while i < n:
        line = lines[i]

        opened = _open_fence(line)
        if opened:
            flush_prose()
            fence, lang = opened
            j = i + 1
            while j < n and not _closes_fence(lines[j], fence):
                j += 1
            fragments.append(BodyFragment(
                "code", "\n".join(lines[i + 1:j]), lang=lang, fenced=True, closed=j < n, fence=fence,
            ))
            i = j + 1
            prev_blank = False
            continue

        if prev_blank and line.strip() and line.startswith(INDENTED_PREFIXES):
            flush_prose()
            j = i
            while j < n and (lines[j].startswith(INDENTED_PREFIXES) or not lines[j].strip()):
                j += 1
            # trailing blank lines go back to the prose that follows
            while j > i and not lines[j - 1].strip():
                j -= 1
            fragments.append(BodyFragment("code", "\n".join(lines[i:j])))
            i = j
            prev_blank = False
            continue

        prose.append(line)
        prev_blank = not line.strip()
        i += 1

    flush_prose()
    return tuple(fragments)


def parse_entry(block: RawBlock | str, source: str = "") -> SnippetRecord:
    """Parse one raw block into a SnippetRecord.

    Raises MalformedEntry naming the offending field when a required field is
    missing, an integer field does not parse, or the header is unreadable.
    Ids are non-negative: a negative Id is rejected like a non-integer one.
    """
    if isinstance(block, RawBlock):
        text, block_index = block.text, block.index
    else:
        text, block_index = block, 0

    try:
        header = _read_header(text.split("\n"))
        values = header.values

        for name in REQUIRED_FIELDS:
            if name not in values:
                raise MalformedEntry(name, "missing required field")
        title = values["Title"]
        if not title:
            raise MalformedEntry("Title", "empty title")

        snippet_id = _parse_int("Id", values["Id"])
        if snippet_id < 0:
            raise MalformedEntry("Id", f"negative id: {snippet_id}")
        score = _parse_int("Score", values["Score"]) if "Score" in values else 0
    except MalformedEntry as e:
        raise e.located(source, block_index) from None

    search = tuple(k.strip() for k in values.get("Search", "").split(",") if k.strip())
    body = "\n".join(_trim_blank_edges(header.body_lines))

    return SnippetRecord(
        id=snippet_id,
        title=title,
        score=score,
        body=body,
        fragments=split_fragments(body),
        search=search,
        source=source,
        block_index=block_index,
    )
