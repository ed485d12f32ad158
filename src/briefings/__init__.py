"""Briefings - RSS 摘要与周报流水线."""

__version__ = "0.1.0"
