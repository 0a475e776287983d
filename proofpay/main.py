"""
ProofPay - Host Application
===========================

FastAPI application hosting the proof pipeline. The lifespan builds the
pipeline and owns the confirmation poller: started on startup when enabled,
stopped on shutdown after its in-flight tick.

Version: 0.1.0
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from proofpay import __version__
from proofpay.config import settings
from proofpay.database.postgres import PostgresClient
from proofpay.exceptions import ProofPayError
from proofpay.ledger import get_ledger_client
from proofpay.logging import bind_context, clear_context, get_logger, setup_logging
from proofpay.models import ErrorResponse, HealthResponse
from proofpay.payments import get_payment_provider
from proofpay.pipeline import ProofService, build_pipeline


# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="proofpay",
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan manager."""
    logger.info(
        "proofpay_starting",
        environment=settings.environment.value,
        port=settings.port,
    )

    # Startup
    try:
        PostgresClient.get_engine()
        await PostgresClient.create_schema()
        logger.info("postgres_connected")

        service = build_pipeline()
        app.state.proof_service = service
        logger.info(
            "ledger_connected",
            mode=settings.ledger.mode.value,
        )

        if settings.poller.enabled:
            service.poller.start()
        else:
            logger.info("confirmation_poller_disabled")

    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("proofpay_shutting_down")
    await service.poller.stop()
    await service.close()
    await get_ledger_client().close()
    await get_payment_provider().close()
    await PostgresClient.close()


# Create FastAPI application
app = FastAPI(
    title="ProofPay",
    description="Zero-knowledge proof submission, confirmation tracking and settlement",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


@app.middleware("http")
async def request_context(request: Request, call_next: Any) -> Any:
    """Bind a request id to every log line emitted while handling the request."""
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    clear_context()
    bind_context(request_id=request_id, method=request.method, path=request.url.path)
    try:
        response = await call_next(request)
    finally:
        clear_context()
    response.headers["x-request-id"] = request_id
    return response


def get_proof_service(request: Request) -> ProofService:
    """Dependency returning the pipeline built at startup."""
    return request.app.state.proof_service


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request) -> HealthResponse:
    """
    Service health check.

    Returns health status of the service and its dependencies.
    """
    service = get_proof_service(request)
    components: dict[str, dict[str, Any]] = {}

    components["postgres"] = await PostgresClient.health_check()

    prover_ok = await service.prover.health_check()
    components["prover"] = {"status": "healthy" if prover_ok else "unhealthy"}

    components["ledger"] = await get_ledger_client().health_check()

    poller_ok = service.poller.is_running or not settings.poller.enabled
    components["poller"] = {
        "status": "healthy" if poller_ok else "unhealthy",
        "running": service.poller.is_running,
    }

    all_healthy = all(c.get("status") == "healthy" for c in components.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        service="proofpay",
        version=__version__,
        components=components,
    )


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "ProofPay",
        "version": __version__,
        "docs": "/docs",
    }


# ============================================================================
# Error Handlers
# ============================================================================


@app.exception_handler(ProofPayError)
async def proofpay_exception_handler(request: Request, exc: ProofPayError) -> JSONResponse:
    """Map pipeline errors to their HTTP status."""
    logger.warning(
        "pipeline_error",
        code=exc.code,
        status_code=exc.http_status,
        error=exc.message,
        path=request.url.path,
    )
    body = ErrorResponse(
        error=exc.message,
        error_code=exc.code,
        details=exc.details or None,
    )
    return JSONResponse(status_code=exc.http_status, content=body.model_dump(mode="json"))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Internal server error",
            "status_code": 500,
        },
    )


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "proofpay.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
