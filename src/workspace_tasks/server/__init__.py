"""HTTP surface for the workspace task engine."""

from .api import create_app

__all__ = ["create_app"]
