"""HTTP server for replica stores.

Exposes the `/replica` endpoint with GET/HEAD/PUT/DELETE and conditional
request support using FastAPI.
"""

from .app import create_app

__all__ = ["create_app"]
