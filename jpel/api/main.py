# JPEL Runner FastAPI Application
# REST API exposing the process engine operations

import time
import uuid
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import jpel
from jpel import config
from jpel.api.errors import ApiError, status_for
from jpel.api.instances import router as instances_router
from jpel.api.models import HealthResponse
from jpel.api.processes import router as processes_router
from jpel.api.service import get_engine, get_shared_repositories
from jpel.api.tasks import router as tasks_router
from jpel.core.exceptions import EngineInvariantError, JpelError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    config.configure_logging()
    get_engine()
    logger.info(f"JPEL Runner API starting up ({config.storage_backend()} storage)")
    yield
    logger.info("JPEL Runner API shutting down")


app = FastAPI(
    title="JPEL Runner API",
    description="""
    ## JPEL Process Runner

    Interprets JSON process definitions (JPEL) and drives their instances
    step by step, pausing at human tasks and resuming from persisted state.

    ### Features
    - **Process Loading**: Validate and store JPEL definitions
    - **Instance Execution**: Step, run to suspension, cancel and rerun
    - **Human Tasks**: Present field specifications and validate submissions
    - **Navigation**: Move the focus back to the start or to the next pending activity
    - **Audit Logging**: Execution history stored as RDF
    """,
    version=jpel.__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Process Definitions", "description": "Load and inspect JPEL definitions"},
        {"name": "Process Instances", "description": "Drive process instances"},
        {"name": "Human Tasks", "description": "Present and submit human tasks"},
        {"name": "System", "description": "Health and system information"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_metadata(request: Request, call_next):
    """Attach request tracing and timing headers."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start = time.perf_counter()

    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.2f}"
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    return response


app.include_router(processes_router, prefix="/api/v1")
app.include_router(instances_router, prefix="/api/v1")
app.include_router(tasks_router, prefix="/api/v1")


# ==================== Health & Info Endpoints ====================


@app.get("/health", response_model=HealthResponse, tags=["System"])
def health_check():
    """
    Health check endpoint.

    Returns the storage backend and the number of stored definitions and instances.
    """
    repositories = get_shared_repositories()
    return HealthResponse(
        status="healthy",
        version=jpel.__version__,
        storage_backend=config.storage_backend(),
        definitions=repositories.definitions.count(),
        instances=repositories.instances.count(),
    )


@app.get("/", tags=["System"])
async def root():
    """
    Root endpoint with API overview.
    """
    return {
        "name": "JPEL Runner API",
        "version": jpel.__version__,
        "documentation": "/docs",
        "health": "/health",
        "endpoints": {
            "processes": "/api/v1/processes",
            "instances": "/api/v1/instances",
        },
    }


@app.get("/statistics", tags=["System"])
def get_statistics():
    """
    Get system statistics.

    Returns instance counts by status and the size of the RDF graphs.
    """
    repositories = get_shared_repositories()
    status_counts = {}
    for instance in repositories.instances.list_all():
        status = instance.status.value
        status_counts[status] = status_counts.get(status, 0) + 1

    stats = repositories.storage.get_stats()
    return {
        "processes": {"total": repositories.definitions.count()},
        "instances": {"total": sum(status_counts.values()), "by_status": status_counts},
        "rdf_storage": {"total_triples": stats["total_triples"]},
    }


# ==================== Global Error Handlers ====================


def _error_content(detail: str, error_code=None, errors=None) -> dict:
    return {
        "detail": detail,
        "errorCode": error_code,
        "errors": list(errors or []),
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
    }


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_content(exc.detail, exc.error_code, exc.errors),
    )


@app.exception_handler(JpelError)
async def jpel_error_handler(request: Request, exc: JpelError):
    """Domain errors that escaped a router"""
    return JSONResponse(
        status_code=status_for(exc.error_code),
        content=_error_content(exc.message, exc.error_code, getattr(exc, "errors", None)),
    )


@app.exception_handler(EngineInvariantError)
async def invariant_error_handler(request: Request, exc: EngineInvariantError):
    logger.exception(f"Engine invariant violated on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content=_error_content("Internal engine error", "ENGINE_INVARIANT"),
    )


# Main entry point
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("jpel.api.main:app", host="0.0.0.0", port=8000, log_level="info")
