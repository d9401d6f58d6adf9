"""
FlowAgent - FastAPI Application Entry Point.

Build flows of persona-driven agents and run them level by level.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from flowagent.config import settings
from flowagent.api.routes import flows, runs, websocket
from flowagent.workflows.starter import STARTER_FLOW_ID, register_starter_flow


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Generation backend: {settings.GENERATION_BACKEND}")

    await register_starter_flow()

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
## FlowAgent API

Chain persona-driven LLM agents into a directed flow.

### Concepts
- **Nodes**: Agents with a persona instruction
- **Connections**: Carry a node's output to the next node
- **Roots**: Nodes without incoming connections receive the global input
- **Levels**: All nodes of a level run concurrently; the next level starts when all have settled

### Quick Start
1. Create a flow: `POST /flows`
2. Add nodes and connections: `POST /flows/{flow_id}/nodes`, `POST /flows/{flow_id}/connections`
3. Run it: `POST /flows/{flow_id}/run`
4. Watch it live: `WS /ws/flows/{flow_id}`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(flows.router)
app.include_router(runs.router)
app.include_router(websocket.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "Chain persona-driven LLM agents into a directed flow",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "flows": "/flows",
            "runs": "/runs",
            "websocket": "/ws/flows/{flow_id}",
        },
        "starter_flow": STARTER_FLOW_ID,
    }


@app.get("/health", tags=["Root"])
async def health():
    """Health check endpoint."""
    from flowagent.storage.memory import flow_storage, run_storage

    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "generation_backend": settings.GENERATION_BACKEND,
        "flows_count": len(flow_storage),
        "runs_count": len(run_storage),
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
        },
    )
