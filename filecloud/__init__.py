"""A file-sharing HTTP server with accounts, uploads, ranged downloads and share links on SQLite."""

__version__ = "0.1.0"