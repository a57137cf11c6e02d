"""Region-addressable fetch-and-cache layer for remote genome annotation services."""

__version__ = "0.1.0"
