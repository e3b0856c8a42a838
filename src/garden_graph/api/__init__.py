"""HTTP API for knowledge graph lifecycle and queries."""

from .app import create_app

__all__ = ["create_app"]
