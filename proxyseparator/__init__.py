"""Rule matching and runtime helpers for splitting company and personal traffic."""

__version__ = "0.1.0"