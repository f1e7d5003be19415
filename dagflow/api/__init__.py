"""
API package - FastAPI routes and schemas.
"""

from dagflow.api.routes import graph

__all__ = ["graph"]
