"""
FastAPI application for the AR collections assistant.

Usage:
    # Development server with auto-reload
    uvicorn arcollect.api.main:app --reload --host 0.0.0.0 --port 8000

    # Debug mode (verbose logging)
    LOG_LEVEL=DEBUG uvicorn arcollect.api.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import config
from ..tracing import init_tracing_client, shutdown_tracing
from .routes import chat, health


def configure_logging():
    """Configure logging based on LOG_LEVEL."""
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("arcollect").setLevel(log_level)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    logger.info("Starting AR collections API server")

    logger.info("=" * 60)
    logger.info("ORCHESTRATOR CONFIGURATION")
    logger.info(f"  Model: {config.orchestrator.model}")
    if config.orchestrator.uses_azure:
        logger.info(f"  Azure endpoint: {config.orchestrator.azure_endpoint}")
    else:
        logger.info(f"  Base URL: {config.orchestrator.base_url or 'https://api.openai.com/v1'}")
    logger.info(f"  Max iterations: {config.orchestrator.max_iterations}")
    logger.info(f"  Max conversation messages: {config.orchestrator.max_conversation_messages}")

    logger.info("-" * 60)
    logger.info("TOOL PROVIDER")
    logger.info(f"  Command: {' '.join(config.tool_server.command)}")
    logger.info(f"  ERP mode: {'DEMO' if config.erp.demo_mode else config.erp.api_endpoint}")

    logger.info("-" * 60)
    logger.info("LANGFUSE OBSERVABILITY")
    tracing_client = init_tracing_client(config.langfuse)
    if tracing_client.enabled:
        logger.info("  Status: ENABLED")
    else:
        logger.info("  Status: DISABLED")
        if tracing_client.error:
            logger.info(f"  Reason: {tracing_client.error}")
    logger.info("=" * 60)

    yield

    logger.info("Shutting down AR collections API server")
    await chat.store.close_all()
    shutdown_tracing()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="AR Collections Assistant API",
        description=(
            "Conversational access to AR aging, payment history and collections "
            "notes, backed by ERP tools running in an isolated provider process."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(chat.router, tags=["Conversations"])

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Log validation errors before returning 400 response."""
        logger.warning(
            f"Validation error on {request.method} {request.url.path}: {exc.errors()}"
        )
        return JSONResponse(status_code=400, content={"detail": exc.errors()})

    return app


# Create the application instance
app = create_app()


def run_server():
    """Run the server using uvicorn."""
    import uvicorn

    uvicorn.run(
        "arcollect.api.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
    )


if __name__ == "__main__":
    run_server()
