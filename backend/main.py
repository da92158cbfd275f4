"""
RapidTriage - Backend Entrypoint

FastAPI application factory and server configuration.
Run with: uvicorn main:app --reload (from the backend directory)
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rapidtriage import __version__
from rapidtriage.api import routes
from rapidtriage.config import Settings, get_settings
from rapidtriage.core.coordinator import create_coordinator
from rapidtriage.core.exceptions import RapidTriageError
from rapidtriage.core.logging import setup_structured_logging
from rapidtriage.services.ai.registry import create_model_provider
from rapidtriage.services.extraction import AudioProcessor, TextProcessor

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Application factory."""

    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Startup:
            - Configure logging
            - Build the model provider (fails fast on bad model config)
            - Create processors and the coordinator with its tools

        Shutdown:
            - Log and exit; no background work to drain
        """
        # === Startup ===
        setup_structured_logging(
            level=settings.app_log_level,
            json_format=settings.log_json,
            anonymize=settings.anonymize_logs,
        )
        logger.info("RapidTriage starting in %s mode", settings.app_env)

        provider = create_model_provider(settings)
        model = provider.default_model()

        app.state.settings = settings
        app.state.provider = provider
        app.state.text_processor = TextProcessor(
            model,
            timeout_seconds=settings.processor_timeout_seconds,
            store_raw_transcripts=settings.store_raw_transcripts,
            anonymize_logs=settings.anonymize_logs,
        )
        app.state.audio_processor = AudioProcessor(
            model,
            timeout_seconds=settings.processor_timeout_seconds,
            store_raw_transcripts=settings.store_raw_transcripts,
            anonymize_logs=settings.anonymize_logs,
        )
        app.state.coordinator = create_coordinator(settings, provider)

        logger.info("Coordinator initialized and ready (model=%s)", model.name)
        logger.info(
            "   Privacy: anonymize_logs=%s, store_transcripts=%s",
            settings.anonymize_logs,
            settings.store_raw_transcripts,
        )

        yield

        # === Shutdown ===
        logger.info("RapidTriage shutting down")

    app = FastAPI(
        title="RapidTriage",
        description="Emergency triage and dispatch API for spoken and typed reports",
        version=__version__,
        docs_url="/docs" if settings.app_debug else None,
        redoc_url="/redoc" if settings.app_debug else None,
        lifespan=lifespan,
    )

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Errors ---
    app.add_exception_handler(RapidTriageError, routes.rapidtriage_error_handler)

    # --- Routes ---
    app.include_router(routes.router, prefix="/api/v1")

    @app.get("/")
    async def root():
        """Root health check."""
        return {
            "service": "RapidTriage",
            "status": "operational",
            "version": __version__,
        }

    return app


# Create app instance
app = create_app()
