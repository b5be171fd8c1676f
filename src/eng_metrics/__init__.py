"""Engineering metrics collector for GitHub pull requests."""

__version__ = "0.1.0"
