from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
import logging

from .middleware import TracingMiddleware
from .logging_config import setup_logging
from .config import (
    API_PREFIX, API_VERSION, APP_PORT, DISPATCH_ENABLED, REAPER_ENABLED,
)
from .context import ServiceContext, build_context
from .db_init import init_schema_and_seed
from .errors import OrchestrationError
from .services.dispatch import DispatchRelay
from .services.prometheus_metrics import prometheus_metrics
from .services.reaper import JobReaper
from .api.health import router as health_router
from .api.integrations import router as integrations_router
from .api.jobs import router as jobs_router
from .api.tenants import router as tenants_router

# Configure logging at import time
setup_logging()

logger = logging.getLogger("integrations_api")
logger.info("startup: logging configured", extra={"component": "api"})

@asynccontextmanager
async def lifespan(application: FastAPI):
    logger.info("Integrations API starting up", extra={"component": "api"})

    # Ensure DB schema + default tenant (idempotent)
    init_schema_and_seed()

    # Tests may install their own context before startup
    context: ServiceContext = getattr(application.state, "context", None) or build_context()
    application.state.context = context

    if DISPATCH_ENABLED and context.relay is None:
        context.relay = DispatchRelay(context.session_factory, clock=context.clock)
        await context.relay.start()

    reaper = None
    if REAPER_ENABLED:
        reaper = JobReaper(context)
        await reaper.start()

    prometheus_metrics.set_build_info(API_VERSION)
    logger.info("Integrations API ready", extra={
        "component": "api",
        "dispatch_relay": context.relay is not None,
        "reaper": reaper is not None,
    })

    try:
        yield
    finally:
        if reaper is not None:
            await reaper.stop()
        await context.close()
        logger.info("Integrations API shutting down", extra={"component": "api"})

app = FastAPI(title="Integrations API", lifespan=lifespan)

app.add_middleware(TracingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(OrchestrationError)
async def orchestration_error_handler(request: Request, exc: OrchestrationError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Job store failure", exc_info=exc, extra={
        "component": "api",
        "path": request.url.path,
    })
    return JSONResponse(status_code=500, content={"error": f"store error: {exc.__class__.__name__}"})

app.include_router(health_router, prefix=API_PREFIX)
app.include_router(tenants_router, prefix=API_PREFIX)
app.include_router(integrations_router, prefix=API_PREFIX)
app.include_router(jobs_router, prefix=API_PREFIX)

# Server startup configuration
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting Integrations API on port %s", APP_PORT, extra={"component": "api"})
    uvicorn.run(
        "integrations_api.main:app",
        host="0.0.0.0",
        port=APP_PORT,
        reload=False,
        access_log=True,
    )
