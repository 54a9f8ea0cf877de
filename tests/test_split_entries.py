"""Tests for snippetbook/split_entries.py — File Splitter.

Run: python -m pytest tests/test_split_entries.py -q
"""

import dataclasses

import pytest

from snippetbook.split_entries import (
    SEPARATOR,
    RawBlock,
    decode_source,
    read_source_file,
    split_blocks,
)


class TestSplitBlocks:
    """split_blocks: purely textual split on the separator token."""

    def test_no_separator_yields_whole_file(self):
        text = "Title: A\nId: 1\nBody:\nhello\n"
        blocks = split_blocks(text)
        assert len(blocks) == 1
        assert blocks[0].text == text
        assert blocks[0].index == 0
        assert blocks[0].line == 1

    @pytest.mark.parametrize("n", [1, 2, 5])
    def test_n_separators_yield_n_plus_one_blocks(self, n):
        entries = [f"Title: T{i}\nId: {i}\nBody:\nx\n" for i in range(n + 1)]
        text = SEPARATOR.join(entries)
        blocks = split_blocks(text)
        assert len(blocks) == n + 1
        assert [b.index for b in blocks] == list(range(n + 1))

    def test_block_order_preserved(self):
        text = f"first\n{SEPARATOR}\nsecond\n{SEPARATOR}\nthird\n"
        assert [b.text.strip() for b in split_blocks(text)] == ["first", "second", "third"]

    def test_whitespace_only_edges_dropped(self):
        text = f"\n  \n{SEPARATOR}\nonly\n{SEPARATOR}\n\n\t\n"
        blocks = split_blocks(text)
        assert len(blocks) == 1
        assert blocks[0].text.strip() == "only"
        assert blocks[0].index == 0

    def test_adjacent_separators_do_not_make_empty_blocks(self):
        text = f"a{SEPARATOR}{SEPARATOR}\n{SEPARATOR}b"
        assert [b.text for b in split_blocks(text)] == ["a", "b"]

    def test_blank_file_yields_nothing(self):
        assert split_blocks("") == []
        assert split_blocks("\n\n   \n") == []

    def test_does_not_parse_headers(self):
        """Garbage still comes back as one block; splitting never fails."""
        blocks = split_blocks("not a header at all\n:::\n")
        assert len(blocks) == 1

    def test_line_numbers_track_block_start(self):
        text = f"Title: A\nId: 1\n{SEPARATOR}\nTitle: B\nId: 2\n"
        blocks = split_blocks(text)
        assert blocks[0].line == 1
        # block 1 starts right after the separator on line 3
        assert blocks[1].line == 3
        assert blocks[1].text.startswith("\nTitle: B")

    def test_custom_separator(self):
        blocks = split_blocks("a\n%%\nb\n", separator="%%")
        assert [b.text.strip() for b in blocks] == ["a", "b"]

    def test_empty_separator_rejected(self):
        with pytest.raises(ValueError):
            split_blocks("abc", separator="")

    def test_blocks_are_immutable(self):
        block = split_blocks("x")[0]
        assert isinstance(block, RawBlock)
        with pytest.raises(dataclasses.FrozenInstanceError):
            block.text = "y"


class TestReadSource:
    """read_source_file / decode_source: UTF-8 with newline normalization."""

    def test_crlf_normalized(self):
        assert decode_source(b"a\r\nb\rc\n") == "a\nb\nc\n"

    def test_bom_stripped(self):
        assert decode_source(b"\xef\xbb\xbfTitle: x") == "Title: x"

    def test_invalid_utf8_raises(self, tmp_path):
        p = tmp_path / "bad.md"
        p.write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(UnicodeDecodeError):
            read_source_file(p)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(OSError):
            read_source_file(tmp_path / "nope.md")

    def test_reads_unicode(self, tmp_path):
        p = tmp_path / "u.md"
        p.write_text("Title: café\n", encoding="utf-8")
        assert read_source_file(p) == "Title: café\n"
