"""
API routes package.
"""

from flowagent.api.routes import flows, runs, websocket

__all__ = ["flows", "runs", "websocket"]
