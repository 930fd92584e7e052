"""FastAPI application entry point."""

from fastapi import FastAPI

from .config import RuntimeConfig, load_config
from .dependencies import include_routers
from .logging import configure_logging


def create_app(runtime: RuntimeConfig | None = None) -> FastAPI:
    """Build FastAPI instance with configured dependencies."""
    configure_logging()
    cfg = runtime or load_config()
    app = FastAPI(title="Event Metrics")
    include_routers(app, cfg)
    return app
