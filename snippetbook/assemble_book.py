#!/usr/bin/env python3
"""
Book Assembler: compile a book directory of snippet chapters into one
normalized markdown document.

Input layout:
    <book>/book.yaml                  (optional)
    <book>/0010-intro/chapter.yaml    (optional)
    <book>/0010-intro/0010-basics.md  (snippets joined by |======|)
    <book>/0020-advanced/...

Chapters are ordered by their numeric directory prefix (ties broken by
directory name, unprefixed chapters last).  Snippet ids are unique across the
whole book; duplicates are resolved by the configured policy with a
recorded warning.

Output is deterministic: identical input trees give byte-identical documents,
so the tool can run as a reproducible build step.

Usage:
    python -m snippetbook.assemble_book books/go --output out/go.md
    python -m snippetbook.assemble_book books --all --output out/ \\
        --summary-json out/summaries --workers 4
    python -m snippetbook.assemble_book books/go --output out/go.md --check

Exit status: 0 ok, 1 malformed entries over tolerance / empty book / stale
output (--check), 2 configuration or input error, 130 cancelled.
"""

from __future__ import annotations

import argparse
import hashlib
import json
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from pathlib import Path

from snippetbook import __version__
from snippetbook.book_config import BOOK_CONFIG_FILE, DUPLICATE_POLICIES, BookConfig, load_book_config
from snippetbook.chapter_index import (
    Chapter,
    Diagnostic,
    build_chapter,
    chapter_sort_key,
    dedupe_records,
    parse_dir_name,
)
from snippetbook.errors import BookError, BuildCancelled, ConfigError, EmptyBook
from snippetbook.reporting import error, info, report_diagnostics, set_quiet

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130

GENERATOR = f"snippetbook {__version__}"


# ---------------------------------------------------------------------------
# Book
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Book:
    title: str
    dir_name: str
    chapters: tuple[Chapter, ...]
    diagnostics: tuple[Diagnostic, ...]
    fingerprint: str

    @property
    def records(self):
        return [r for ch in self.chapters for r in ch.records]

    def count(self, kind: str) -> int:
        return sum(1 for d in self.diagnostics if d.kind == kind)


def list_chapter_dirs(book_root) -> list[Path]:
    """Immediate sub-directories of *book_root* in chapter order, skipping
    names that start with "." or "_"."""
    root = Path(book_root)
    dirs = [
        p for p in root.iterdir()
        if p.is_dir() and not p.name.startswith((".", "_"))
    ]
    return sorted(dirs, key=chapter_sort_key)


def compute_fingerprint(book_root: Path, chapters) -> str:
    """sha256 over relpath:sha256 of every file read, in traversal order."""
    parts = []
    cfg = book_root / BOOK_CONFIG_FILE
    if cfg.is_file():
        parts.append(f"{BOOK_CONFIG_FILE}:{hashlib.sha256(cfg.read_bytes()).hexdigest()}")
    for ch in chapters:
        if ch.config_file is not None:
            parts.append(f"{ch.config_file.path}:{ch.config_file.sha256}")
        for f in ch.files:
            parts.append(f"{f.path}:{f.sha256}")
    return hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()


def _build_chapters(dirs, book_root, config, workers, cancel) -> list[Chapter]:
    if workers <= 1 or len(dirs) <= 1:
        return [build_chapter(d, book_root, config, cancel) for d in dirs]
    # Chapters share no mutable state; results are joined in directory order.
    with ThreadPoolExecutor(max_workers=min(workers, len(dirs))) as ex:
        futures = [ex.submit(build_chapter, d, book_root, config, cancel) for d in dirs]
        return [f.result() for f in futures]


def _drop_cross_chapter_duplicates(chapters, policy):
    flat = [r for ch in chapters for r in ch.records]
    kept, diagnostics = dedupe_records(flat, policy)
    if not diagnostics:
        return list(chapters), []
    survivors = {(r.source, r.block_index) for r in kept}
    rebuilt = []
    for ch in chapters:
        records = tuple(r for r in ch.records if (r.source, r.block_index) in survivors)
        rebuilt.append(replace(ch, records=records))
    return rebuilt, diagnostics


def build_book(book_root, config: BookConfig | None = None, cancel=None) -> Book:
    """Build every chapter of *book_root* and combine them into a Book.

    Raises BookError when the root cannot be listed, EmptyBook when no chapter
    holds a snippet, and BuildCancelled when *cancel* (a threading.Event) is
    set before the run completes.
    """
    config = config or BookConfig()
    root = Path(book_root)
    if not root.is_dir():
        raise BookError(f"book root is not a directory: {root}")
    try:
        dirs = list_chapter_dirs(root)
    except OSError as e:
        raise BookError(f"cannot read book root {root}: {e}") from e

    chapters = _build_chapters(dirs, root, config, config.workers, cancel)
    if cancel is not None and cancel.is_set():
        raise BuildCancelled("cancelled; partial chapters discarded")

    chapters, cross_diags = _drop_cross_chapter_duplicates(chapters, config.duplicate_policy)
    diagnostics = [d for ch in chapters for d in ch.diagnostics] + cross_diags

    resolved = root.resolve()
    if all(ch.is_empty for ch in chapters):
        raise EmptyBook(
            f"book {resolved.name!r} has no usable snippets "
            f"({len(chapters)} chapter(s) scanned)",
            diagnostics,
        )

    return Book(
        title=config.title or parse_dir_name(resolved.name)[1],
        dir_name=resolved.name,
        chapters=tuple(chapters),
        diagnostics=tuple(diagnostics),
        fingerprint=compute_fingerprint(root, chapters),
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _link_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace("[", "\\[").replace("]", "\\]")


def render_book(book: Book) -> str:
    """Render a Book as a deterministic markdown document."""
    lines = [
        "<!-- GENERATED FILE. DO NOT EDIT. -->",
        f"<!-- generator={GENERATOR} -->",
        f"<!-- inputs: {book.fingerprint} -->",
        "",
        f"# {book.title}",
        "",
        "## Contents",
        "",
    ]

    for num, ch in enumerate(book.chapters, start=1):
        suffix = " (no entries)" if ch.is_empty else ""
        lines.append(f"{num}. [{_link_text(ch.name)}](#chapter-{num}){suffix}")
        for rec in ch.records:
            lines.append(f"   - [{_link_text(rec.title)}](#snippet-{rec.id})")
    lines.append("")

    for num, ch in enumerate(book.chapters, start=1):
        lines.append(f'<a id="chapter-{num}"></a>')
        lines.append(f"## {num}. {ch.name}")
        lines.append("")
        if ch.is_empty:
            lines.append("_(no entries)_")
            lines.append("")
            continue
        for rec in ch.records:
            lines.append(f'<a id="snippet-{rec.id}"></a>')
            lines.append(f"### {rec.title}")
            lines.append("")
            lines.append(f"_id {rec.id} · score {rec.score}_")
            lines.append("")
            if rec.body:
                lines.append(rec.body)
                # close a fence left open at the end of the body
                lines.extend(f.fence for f in rec.code_fragments if f.fenced and not f.closed)
                lines.append("")

    if book.diagnostics:
        lines.append("## Diagnostics")
        lines.append("")
        for d in book.diagnostics:
            lines.append(f"- {d.severity.upper()} `{d.kind}` {d.describe()}")
        lines.append("")

    return "\n".join(lines).rstrip("\n") + "\n"


def generate_summary(book: Book, config: BookConfig) -> dict:
    """Machine-readable run summary (no timestamps, no absolute paths)."""
    return {
        "generator": GENERATOR,
        "book_dir": book.dir_name,
        "book_title": book.title,
        "fingerprint": book.fingerprint,
        "duplicate_policy": config.duplicate_policy,
        "total_chapters": len(book.chapters),
        "total_snippets": len(book.records),
        "total_files": sum(len(ch.files) for ch in book.chapters),
        "total_code_fragments": sum(len(r.code_fragments) for r in book.records),
        "malformed_entries": book.count("malformed_entry"),
        "duplicate_ids": book.count("duplicate_id"),
        "io_errors": book.count("io_error"),
        "chapters": [
            {
                "dir": ch.dir_name,
                "name": ch.name,
                "sort_prefix": ch.sort_prefix,
                "files": [f.path for f in ch.files],
                "snippet_ids": [r.id for r in ch.records],
            }
            for ch in book.chapters
        ],
        "diagnostics": [d.to_dict() for d in book.diagnostics],
    }


# ---------------------------------------------------------------------------
# Main pipeline
# ---------------------------------------------------------------------------

def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(text)


def run_book(book_root: Path, output: Path, args, cancel=None, summary_path: Path | None = None) -> int:
    """Build, render and write one book. Returns an exit code."""
    try:
        config = load_book_config(book_root).with_overrides(
            title=args.title,
            separator=args.separator,
            duplicate_policy=args.duplicate_policy,
            max_malformed=args.max_malformed,
            workers=args.workers,
        )
    except ConfigError as e:
        error(str(e))
        return EXIT_USAGE

    info(f"Building book: {book_root}")
    try:
        book = build_book(book_root, config, cancel=cancel)
    except EmptyBook as e:
        report_diagnostics(e.diagnostics)
        error(str(e))
        return EXIT_FAILED
    except BuildCancelled as e:
        error(str(e))
        return EXIT_CANCELLED
    except BookError as e:
        error(str(e))
        return EXIT_USAGE

    report_diagnostics(book.diagnostics)
    info(f"  {len(book.chapters)} chapter(s), {len(book.records)} snippet(s), "
         f"{len(book.diagnostics)} diagnostic(s)")

    text = render_book(book)

    if args.check:
        try:
            current = output.read_text(encoding="utf-8")
        except OSError:
            current = None
        if current != text:
            error(f"{output} is out of date; regenerate it")
            return EXIT_FAILED
        info(f"  Up to date: {output}")
        return EXIT_OK

    if args.dry_run:
        info(f"  [dry-run] Would write {output}")
    else:
        _write_text(output, text)
        info(f"  Wrote: {output}")

    if summary_path is not None:
        summary = generate_summary(book, config)
        if args.dry_run:
            info(f"  [dry-run] Would write {summary_path}")
        else:
            _write_text(summary_path, json.dumps(summary, ensure_ascii=False, indent=2) + "\n")
            info(f"  Summary: {summary_path}")

    malformed = book.count("malformed_entry")
    if malformed > config.max_malformed:
        error(f"{malformed} malformed entr{'y' if malformed == 1 else 'ies'} "
              f"exceed tolerance of {config.max_malformed}")
        return EXIT_FAILED
    return EXIT_OK


def run_all(books_dir: Path, output_dir: Path, args, cancel=None) -> int:
    """Build every book under *books_dir*; returns the worst exit code."""
    try:
        books = list_chapter_dirs(books_dir)
    except OSError as e:
        error(f"cannot read books directory {books_dir}: {e}")
        return EXIT_USAGE
    if not books:
        error(f"no books found under {books_dir}")
        return EXIT_FAILED

    worst = EXIT_OK
    for book_root in books:
        if cancel is not None and cancel.is_set():
            error("cancelled; remaining books skipped")
            return EXIT_CANCELLED
        summary_path = None
        if args.summary_json:
            summary_path = Path(args.summary_json) / f"{book_root.name}.json"
        status = run_book(book_root, output_dir / f"{book_root.name}.md", args, cancel, summary_path)
        worst = max(worst, status)
    return worst


def run(args, cancel=None) -> int:
    set_quiet(args.quiet)
    source = Path(args.source)
    output = Path(args.output)
    if not source.is_dir():
        error(f"not a directory: {source}")
        return EXIT_USAGE
    if args.all:
        return run_all(source, output, args, cancel)
    summary_path = Path(args.summary_json) if args.summary_json else None
    return run_book(source, output, args, cancel, summary_path)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Compile a directory of snippet chapters into one markdown book"
    )
    parser.add_argument(
        "source",
        help="Book root (chapter sub-directories inside), or a books directory with --all"
    )
    parser.add_argument(
        "--output", "-o", required=True,
        help="Output document path (a directory with --all)"
    )
    parser.add_argument(
        "--all", action="store_true",
        help="Treat SOURCE as a directory of books and render each to OUTPUT/<book>.md"
    )
    parser.add_argument("--title", default=None, help="Book title (overrides book.yaml)")
    parser.add_argument("--separator", default=None, help="Entry separator token (default: |======|)")
    parser.add_argument(
        "--duplicate-policy", choices=DUPLICATE_POLICIES, default=None,
        help="Which occurrence of a duplicate id survives (default: last)"
    )
    parser.add_argument(
        "--max-malformed", type=int, default=None,
        help="Malformed entries tolerated before exiting non-zero (default: 0)"
    )
    parser.add_argument(
        "--workers", type=int, default=None,
        help="Chapters built concurrently (default: 1)"
    )
    parser.add_argument(
        "--summary-json", default=None,
        help="Write a JSON run summary here (a directory with --all)"
    )
    parser.add_argument(
        "--check", action="store_true",
        help="Exit non-zero if OUTPUT differs from a fresh render; write nothing"
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Build and report without writing any files"
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress progress output")
    parser.add_argument("--version", action="version", version=GENERATOR)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    cancel = threading.Event()

    def _handle_shutdown(signum, frame):
        if cancel.is_set():
            print("\n[FORCED EXIT] Exiting immediately.", file=sys.stderr, flush=True)
            sys.exit(EXIT_CANCELLED)
        cancel.set()
        print("\n[SHUTDOWN] Stopping at the next chapter boundary.", file=sys.stderr, flush=True)

    signums = [signal.SIGINT] + ([signal.SIGTERM] if hasattr(signal, "SIGTERM") else [])
    previous = {s: signal.signal(s, _handle_shutdown) for s in signums}
    try:
        status = run(args, cancel)
    finally:
        for s, handler in previous.items():
            signal.signal(s, handler)
    sys.exit(status)


if __name__ == "__main__":
    main()
