"""FastAPI server for the POS ledger pipeline.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core import __version__
from core.audit.events import AuditLogger, JSONFileAuditBackend
from core.config import PipelineConfig, load_config
from core.observability.logging import configure_logging, get_logger

from api.routes import (
    health,
    events,
    journals,
    transactions,
    metrics,
)
from api.services.publishers import PublisherRegistry

logger = get_logger(__name__)


def build_audit(config: PipelineConfig) -> AuditLogger:
    """Audit logger with a JSON-file backend when an audit directory is configured."""
    audit = AuditLogger()
    if config.audit_dir:
        audit.add_backend(JSONFileAuditBackend(Path(config.audit_dir)))
    return audit


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    config = app.state.config or load_config()
    configure_logging(level=config.log_level_value, json_format=config.json_logs)

    app.state.config = config
    app.state.registry = PublisherRegistry(config, build_audit(config))
    logger.info(
        "POS ledger API starting up",
        extra_fields={"database": str(config.persistence.database_path)},
    )

    yield

    app.state.registry.close()
    logger.info("POS ledger API shutting down")


def create_app(config: Optional[PipelineConfig] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="POS Ledger API",
        description="Turns point-of-sale events into validated double-entry journal entries",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(events.router, prefix="/events", tags=["Events"])
    app.include_router(journals.router, prefix="/journals", tags=["Journals"])
    app.include_router(transactions.router, prefix="/transactions", tags=["Transactions"])
    app.include_router(metrics.router, tags=["Metrics"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
