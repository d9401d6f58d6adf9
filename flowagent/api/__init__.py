"""
API package - FastAPI routes and schemas.
"""

from flowagent.api.routes import flows, runs, websocket

__all__ = ["flows", "runs", "websocket"]
