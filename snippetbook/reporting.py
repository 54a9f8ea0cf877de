"""Console reporting helpers shared by the command-line tools.

Progress goes to stdout, problems go to stderr with a severity prefix.
"""

import sys

_QUIET = False


def set_quiet(quiet: bool) -> None:
    global _QUIET
    _QUIET = quiet


def info(msg):
    """Print progress to stdout (suppressed by --quiet)."""
    if not _QUIET:
        print(msg)


def warn(msg):
    """Print warning to stderr."""
    print(f"WARNING: {msg}", file=sys.stderr)


def error(msg):
    """Print error to stderr."""
    print(f"ERROR: {msg}", file=sys.stderr)


def report_diagnostics(diagnostics) -> None:
    """Echo collected diagnostics to stderr in traversal order."""
    for d in diagnostics:
        if d.severity == "error":
            error(d.describe())
        else:
            warn(d.describe())
