"""Command line interface for FocusFlow."""
