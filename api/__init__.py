"""
FastAPI application exposing the allow-list sync as an administrative surface.

Modules in this package provide request/response schemas, API key auth, the
background refresh scheduler, and the app factory (`api.main:create_app`).
"""

__all__ = ["main", "schemas", "auth", "refresh"]
