"""Chapter Index: load one chapter directory into an ordered, deduplicated
list of snippet records.

Reading order is an explicit invariant, not an accident of sort order:
  - files are read in lexicographic file-name order (authors encode the
    intended reading order with a numeric prefix, e.g. ``0010-basics.md``);
  - within a file, snippets keep their block order.

One bad entry never aborts the chapter: a MalformedEntry is recorded with its
file and block index and the remaining blocks are still parsed.  An
unreadable file is recorded and the remaining files are still read.
"""

from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass
from pathlib import Path

from snippetbook.book_config import (
    CHAPTER_CONFIG_FILE,
    BookConfig,
    parse_chapter_title,
    read_config_bytes,
)
from snippetbook.errors import BuildCancelled, ConfigError, MalformedEntry
from snippetbook.parse_entry import SnippetRecord, parse_entry
from snippetbook.split_entries import decode_source, split_blocks

DIR_PREFIX_RE = re.compile(r"^(\d+)(?:[-_. ]+(.+))?$")


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Diagnostic:
    """A recoverable problem recorded during a run."""
    severity: str                  # "error" or "warning"
    kind: str                      # malformed_entry, duplicate_id, io_error, config
    source: str                    # path relative to the book root
    message: str
    block_index: int | None = None

    def describe(self) -> str:
        where = self.source
        if self.block_index is not None:
            where = f"{where} [block {self.block_index}]"
        return f"{where}: {self.message}"

    def to_dict(self) -> dict:
        return {
            "severity": self.severity,
            "kind": self.kind,
            "source": self.source,
            "block_index": self.block_index,
            "message": self.message,
        }


def dedupe_records(
    records: list[SnippetRecord],
    policy: str = "last",
) -> tuple[list[SnippetRecord], list[Diagnostic]]:
    """Drop records whose id was already (or will again be) seen.

    ``last``: the last occurrence survives at its own position.
    ``first``: the first occurrence survives, later ones are dropped.
    Every dropped record yields a duplicate_id warning naming both origins.
    """
    winner: dict[int, int] = {}
    for pos, rec in enumerate(records):
        if policy == "first":
            winner.setdefault(rec.id, pos)
        else:
            winner[rec.id] = pos

    kept: list[SnippetRecord] = []
    diagnostics: list[Diagnostic] = []
    for pos, rec in enumerate(records):
        win_pos = winner[rec.id]
        if win_pos == pos:
            kept.append(rec)
            continue
        survivor = records[win_pos]
        if policy == "first":
            msg = (f"duplicate id {rec.id}: {rec.origin} ignored, "
                   f"keeping {survivor.origin}")
            at = rec
        else:
            msg = (f"duplicate id {rec.id}: {rec.origin} superseded by "
                   f"{survivor.origin}")
            at = survivor
        diagnostics.append(Diagnostic(
            "warning", "duplicate_id", at.source, msg, at.block_index,
        ))
    return kept, diagnostics


# ---------------------------------------------------------------------------
# Chapter
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SourceFile:
    path: str      # relative to the book root, forward slashes
    sha256: str
    blocks: int


@dataclass(frozen=True)
class Chapter:
    dir_name: str
    sort_prefix: int | None
    name: str
    records: tuple[SnippetRecord, ...] = ()
    files: tuple[SourceFile, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()
    config_file: SourceFile | None = None   # chapter.yaml, when present

    @property
    def is_empty(self) -> bool:
        return not self.records


def parse_dir_name(name: str) -> tuple[int | None, str]:
    """Split a directory name into (numeric sort prefix, display name).

    0010-intro -> (10, "intro"); 0020 -> (20, "0020"); intro -> (None, "intro")
    """
    m = DIR_PREFIX_RE.match(name)
    if not m:
        return None, name
    return int(m.group(1)), m.group(2) or name


def chapter_sort_key(path: Path) -> tuple:
    prefix, _ = parse_dir_name(path.name)
    if prefix is None:
        return (1, 0, path.name)
    return (0, prefix, path.name)


def list_source_files(chapter_dir, suffixes) -> list[Path]:
    """Snippet files of a chapter in lexicographic file-name order."""
    wanted = {s.lower() for s in suffixes}
    out = []
    with os.scandir(chapter_dir) as it:
        for entry in it:
            if entry.name.startswith(".") or entry.name == CHAPTER_CONFIG_FILE:
                continue
            if not entry.is_file():
                continue
            if Path(entry.name).suffix.lower() in wanted:
                out.append(Path(entry.path))
    return sorted(out, key=lambda p: p.name)


def _relpath(path: Path, book_root: Path) -> str:
    try:
        return path.relative_to(book_root).as_posix()
    except ValueError:
        return path.as_posix()


def _io_reason(e: Exception) -> str:
    # OSError text without its filename
    if isinstance(e, OSError):
        return e.strerror or type(e).__name__
    return str(e)


def build_chapter(chapter_dir, book_root, config: BookConfig | None = None, cancel=None) -> Chapter:
    """Load every snippet file of *chapter_dir* into a Chapter.

    *cancel* is an optional threading.Event checked before the chapter is
    started; a set event raises BuildCancelled.
    """
    if cancel is not None and cancel.is_set():
        raise BuildCancelled(f"cancelled before chapter {Path(chapter_dir).name}")

    config = config or BookConfig()
    chapter_dir = Path(chapter_dir)
    book_root = Path(book_root)
    rel_dir = _relpath(chapter_dir, book_root)
    prefix, name = parse_dir_name(chapter_dir.name)
    diagnostics: list[Diagnostic] = []

    title = None
    config_file = None
    cfg_path = chapter_dir / CHAPTER_CONFIG_FILE
    if cfg_path.is_file():
        cfg_rel = f"{rel_dir}/{CHAPTER_CONFIG_FILE}"
        try:
            raw = read_config_bytes(cfg_path)
            config_file = SourceFile(cfg_rel, hashlib.sha256(raw).hexdigest(), 0)
            title = parse_chapter_title(raw)
        except ConfigError as e:
            diagnostics.append(Diagnostic("warning", "config", cfg_rel, str(e)))
    if title:
        name = title

    try:
        paths = list_source_files(chapter_dir, config.file_suffixes)
    except OSError as e:
        diagnostics.append(Diagnostic("error", "io_error", rel_dir, f"cannot list chapter: {_io_reason(e)}"))
        paths = []

    records: list[SnippetRecord] = []
    files: list[SourceFile] = []
    for path in paths:
        rel = _relpath(path, book_root)
        try:
            raw = path.read_bytes()
            text = decode_source(raw)
        except (OSError, UnicodeDecodeError) as e:
            diagnostics.append(Diagnostic("error", "io_error", rel, f"cannot read file: {_io_reason(e)}"))
            continue

        blocks = split_blocks(text, config.separator)
        files.append(SourceFile(rel, hashlib.sha256(raw).hexdigest(), len(blocks)))
        for block in blocks:
            try:
                records.append(parse_entry(block, source=rel))
            except MalformedEntry as e:
                diagnostics.append(Diagnostic(
                    "error", "malformed_entry", rel,
                    f"malformed entry (line {block.line}): {e.field}: {e.reason}",
                    block.index,
                ))

    kept, dup_diags = dedupe_records(records, config.duplicate_policy)
    diagnostics.extend(dup_diags)

    return Chapter(
        dir_name=chapter_dir.name,
        sort_prefix=prefix,
        name=name,
        records=tuple(kept),
        files=tuple(files),
        diagnostics=tuple(diagnostics),
        config_file=config_file,
    )
