"""snippetbook: compile topic-organized snippet corpora into ordered books."""

__version__ = "0.1.0"
