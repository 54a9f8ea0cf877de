"""Exception types raised while compiling snippet books."""

from __future__ import annotations


class SnippetBookError(Exception):
    """Base class for all snippetbook errors."""


class MalformedEntry(SnippetBookError):
    """A raw block could not be parsed into a snippet record.

    ``field`` names the offending header field (``Title``, ``Id``, ``Score``,
    ...) or ``header`` when a header line itself is unreadable.
    """

    def __init__(self, field: str, reason: str, source: str = "", block_index: int | None = None):
        self.field = field
        self.reason = reason
        self.source = source
        self.block_index = block_index
        super().__init__(self._format())

    def _format(self) -> str:
        where = self.source or "<block>"
        if self.block_index is not None:
            where = f"{where} [block {self.block_index}]"
        return f"{where}: {self.field}: {self.reason}"

    def located(self, source: str, block_index: int) -> "MalformedEntry":
        """Return a copy carrying the originating file and block index."""
        return MalformedEntry(self.field, self.reason, source, block_index)


class ConfigError(SnippetBookError):
    """book.yaml / chapter.yaml is unreadable or violates its schema."""


class BookError(SnippetBookError):
    """The book as a whole cannot be built (e.g. unreadable root)."""


class EmptyBook(BookError):
    """Full traversal produced zero snippet records.

    ``diagnostics`` holds whatever was recorded on the way, which usually
    explains why nothing survived.
    """

    def __init__(self, message: str, diagnostics=()):
        self.diagnostics = tuple(diagnostics)
        super().__init__(message)


class BuildCancelled(SnippetBookError):
    """The run was cancelled at a chapter boundary; nothing is emitted."""
