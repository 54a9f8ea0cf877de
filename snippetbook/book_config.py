"""book.yaml / chapter.yaml loading.

Both files are optional.  They are parsed with PyYAML and validated against
the schemas below before any value is used.  Precedence when building a
book: command-line flags > book.yaml > defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

import jsonschema
import yaml

from snippetbook.errors import ConfigError
from snippetbook.split_entries import SEPARATOR

BOOK_CONFIG_FILE = "book.yaml"
CHAPTER_CONFIG_FILE = "chapter.yaml"

DUPLICATE_POLICIES = ("last", "first")
DEFAULT_SUFFIXES = (".md", ".txt")

BOOK_CONFIG_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "separator": {"type": "string", "minLength": 1},
        "duplicate_policy": {"enum": list(DUPLICATE_POLICIES)},
        "file_suffixes": {
            "type": "array",
            "items": {"type": "string", "pattern": r"^\.[^./\\]+$"},
            "minItems": 1,
        },
        "max_malformed": {"type": "integer", "minimum": 0},
        "workers": {"type": "integer", "minimum": 1},
    },
}

CHAPTER_CONFIG_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "title": {"type": "string", "minLength": 1},
    },
}


@dataclass(frozen=True)
class BookConfig:
    title: str | None = None
    separator: str = SEPARATOR
    duplicate_policy: str = "last"
    file_suffixes: tuple[str, ...] = DEFAULT_SUFFIXES
    max_malformed: int = 0
    workers: int = 1

    def with_overrides(self, **overrides) -> "BookConfig":
        """Return a copy with every non-None override applied."""
        given = {k: v for k, v in overrides.items() if v is not None}
        if "file_suffixes" in given:
            given["file_suffixes"] = tuple(given["file_suffixes"])
        cfg = replace(self, **given)
        if cfg.duplicate_policy not in DUPLICATE_POLICIES:
            raise ConfigError(f"duplicate_policy must be one of {DUPLICATE_POLICIES}, "
                              f"got {cfg.duplicate_policy!r}")
        if cfg.max_malformed < 0:
            raise ConfigError("max_malformed must be >= 0")
        if cfg.workers < 1:
            raise ConfigError("workers must be >= 1")
        if not cfg.separator:
            raise ConfigError("separator must not be empty")
        return cfg


def read_config_bytes(path) -> bytes:
    """Read a config file.  The ConfigError message carries no path."""
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise ConfigError(f"cannot read: {e.strerror or type(e).__name__}") from e


def _parse_yaml_mapping(raw: bytes, schema: dict) -> dict:
    try:
        data = yaml.safe_load(raw.decode("utf-8-sig"))
    except UnicodeDecodeError as e:
        raise ConfigError(f"not valid UTF-8: {e.reason}") from e
    except yaml.YAMLError as e:
        problem = getattr(e, "problem", None) or type(e).__name__
        mark = getattr(e, "problem_mark", None)
        if mark is not None:
            problem = f"{problem} (line {mark.line + 1}, column {mark.column + 1})"
        raise ConfigError(f"invalid YAML: {problem}") from e

    if data is None:
        return {}
    try:
        jsonschema.validate(data, schema)
    except jsonschema.ValidationError as e:
        raise ConfigError(e.message) from e
    return data


def load_book_config(book_root) -> BookConfig:
    """Load <book_root>/book.yaml, or defaults when the file is absent."""
    path = Path(book_root) / BOOK_CONFIG_FILE
    if not path.is_file():
        return BookConfig()
    try:
        data = _parse_yaml_mapping(read_config_bytes(path), BOOK_CONFIG_SCHEMA)
        return BookConfig().with_overrides(**data)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from e


def parse_chapter_title(raw: bytes) -> str | None:
    """Return the title of a chapter.yaml document, if any.

    Raises ConfigError for invalid YAML or a schema violation.
    """
    return _parse_yaml_mapping(raw, CHAPTER_CONFIG_SCHEMA).get("title")
