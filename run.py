#!/usr/bin/env python3
"""
Simple run script for FlowAgent.

Usage:
    python run.py
    
Or with custom settings:
    HOST=127.0.0.1 PORT=8080 GENERATION_BACKEND=echo python run.py
"""

import uvicorn

from flowagent.config import settings


def main():
    """Run the FastAPI application."""
    host = settings.HOST
    port = settings.PORT
    
    print(f"""
FlowAgent - persona-driven agent flows
  Server:    http://{host}:{port}
  API Docs:  http://{host}:{port}/docs
  Backend:   {settings.GENERATION_BACKEND} ({settings.GEMINI_MODEL})
  Starter flow ID: starter-flow
    """)
    
    uvicorn.run(
        "flowagent.main:app",
        host=host,
        port=port,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
