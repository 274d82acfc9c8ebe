"""BehaviorBank web application package."""
from __future__ import annotations

from .application import app, engine

__all__ = ["app", "engine"]
