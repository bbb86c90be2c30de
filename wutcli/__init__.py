"""wut - Web UI Testing CLI."""

__version__ = "0.1.0"
