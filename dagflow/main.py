"""
DagFlow - FastAPI Application Entry Point.

A small, async-first DAG workflow engine with schema-checked state and
parallel fan-out.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from dagflow.config import settings
from dagflow.api.routes import graph
from dagflow.workflows.currency import CURRENCY_GRAPH_ID, register_currency_workflow


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await register_currency_workflow()

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title=settings.APP_NAME,
    description="""
## DagFlow API

A minimal workflow engine running directed acyclic graphs of nodes over a
shared, schema-validated state.

### Features
- **Nodes**: units of work that read a state snapshot and return a partial update
- **Edges**: static execution order, validated once at compile time
- **Fan-out**: sibling nodes run concurrently and are joined before their successors
- **Conflict detection**: concurrent writes of different values to one field fail the run

### Quick Start
1. List graphs: `GET /graph/`
2. Inspect a graph and its Mermaid diagram: `GET /graph/{graph_id}`
3. Run it: `POST /graph/run`
4. Check execution state: `GET /graph/state/{run_id}`

### Demo Workflow
A pre-registered USD to INR conversion workflow is available with ID: `currency-demo`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(graph.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "A minimal DAG workflow engine",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "graphs": "/graph",
            "run": "/graph/run",
            "runs": "/graph/runs",
            "diagram": "/graph/{graph_id}/diagram",
        },
        "demo_workflow": CURRENCY_GRAPH_ID,
    }


@app.get("/health", tags=["Root"])
async def health():
    """Health check endpoint."""
    from dagflow.storage.memory import graph_storage, run_storage

    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "graphs_count": len(graph_storage),
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
