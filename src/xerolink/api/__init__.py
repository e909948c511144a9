"""HTTP surface for the coordinator."""

from .app import create_app


__all__ = ["create_app"]
