"""
FastAPI server module for arcollect.

Exposes collections conversations over HTTP.
"""

from .main import app, create_app

__all__ = ["app", "create_app"]
