"""FocusFlow - personal task and focus tracker core."""

__version__ = "0.1.0"
