"""HTTP surface for the Points Bank engine."""
from __future__ import annotations

from .application import app, create_app

__all__ = ["app", "create_app"]
