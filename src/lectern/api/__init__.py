"""HTTP interface for book processing and retrieval."""

from .app import create_app

__all__ = ["create_app"]
