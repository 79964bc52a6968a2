"""HTTP API for the serial novel engine."""

from .routes import register_routes

__all__ = ["register_routes"]
