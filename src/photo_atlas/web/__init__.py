"""photo-atlas web interface."""

from .api import app, configure

__all__ = ["app", "configure"]
