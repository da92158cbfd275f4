"""
RapidTriage - REST API Routes

Ingress endpoints for spoken and typed emergency reports, plus health.

Architecture:
    Every report flows processor -> coordinator. Both are created once at
    startup and accessed via dependency injection from app.state. This
    ensures:
    - One model provider and one tool registry per process
    - Consistent error mapping through the RapidTriageError handler
    - Centralized logging and metrics in the coordinator
"""

import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.datastructures import UploadFile

from rapidtriage import __version__
from rapidtriage.config import Settings
from rapidtriage.core.coordinator import EmergencyCoordinator
from rapidtriage.core.exceptions import (
    InvalidAudioFormatError,
    InvalidRequestError,
    PayloadTooLargeError,
    RapidTriageError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from rapidtriage.core.types import AUDIO_MIME_TYPES, AudioInput, Location, format_rfc3339, utcnow
from rapidtriage.services.ai.registry import ModelProvider
from rapidtriage.services.extraction import AudioProcessor, TextProcessor

from .schemas import (
    EmergencyResponseSchema,
    ErrorResponse,
    HealthResponse,
    LocationSchema,
    TextEmergencyRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["emergency"])

_MIME_TO_FORMAT = {mime: fmt for fmt, mime in AUDIO_MIME_TYPES.items()}
_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    415: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}


# =============================================================================
# Dependencies
# =============================================================================

def get_coordinator(request: Request) -> EmergencyCoordinator:
    """Dependency to get the emergency coordinator from app state."""
    return request.app.state.coordinator


def get_text_processor(request: Request) -> TextProcessor:
    return request.app.state.text_processor


def get_audio_processor(request: Request) -> AudioProcessor:
    return request.app.state.audio_processor


def get_provider(request: Request) -> ModelProvider:
    return request.app.state.provider


def get_settings(request: Request) -> Settings:
    """Dependency to get settings from app state."""
    return request.app.state.settings


# =============================================================================
# Error Handling
# =============================================================================

async def rapidtriage_error_handler(request: Request, exc: RapidTriageError) -> JSONResponse:
    """
    Render RapidTriageError as ``{"error": code, "message": ...}``.

    Request validation errors echo their own message; everything else uses
    the fixed public message of its class.
    """
    message = exc.message if isinstance(exc, ValidationError) else exc.public_message

    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.warning("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.message)

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.code, message=message).model_dump(),
    )


# =============================================================================
# Request Parsing Helpers
# =============================================================================

def parse_location(raw: Optional[str]) -> Optional[Location]:
    """Parse the optional ``location`` form field (a JSON object string)."""
    if raw is None or not raw.strip():
        return None
    try:
        return LocationSchema.model_validate_json(raw).to_domain()
    except PydanticValidationError as e:
        raise InvalidRequestError(
            "location must be a JSON object with valid latitude and longitude",
            details={"errors": e.error_count()},
        ) from e


def resolve_audio_format(filename: Optional[str], content_type: Optional[str]) -> str:
    """
    Audio format from the file extension, else from the part's content type.

    Raises:
        InvalidAudioFormatError: neither identifies an audio format
    """
    ext = os.path.splitext(filename or "")[1].lower().lstrip(".")
    if ext in AUDIO_MIME_TYPES:
        return ext

    mime = (content_type or "").split(";")[0].strip().lower()
    if mime in _MIME_TO_FORMAT:
        return _MIME_TO_FORMAT[mime]
    if mime.startswith("audio/"):
        return mime.split("/", 1)[1]

    raise InvalidAudioFormatError(
        "could not determine audio format",
        details={"filename": filename, "content_type": content_type},
    )


def _mime_for(content_type: Optional[str], audio_format: str) -> str:
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime.startswith("audio/"):
        return mime
    return AUDIO_MIME_TYPES.get(audio_format, "")


# =============================================================================
# Emergency Ingress
# =============================================================================

@router.post(
    "/emergency",
    response_model=EmergencyResponseSchema,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def submit_audio_emergency(
    request: Request,
    settings: Settings = Depends(get_settings),
    processor: AudioProcessor = Depends(get_audio_processor),
    coordinator: EmergencyCoordinator = Depends(get_coordinator),
):
    """
    Process a recorded emergency call.

    Multipart form fields:
    - audio: the recording (required)
    - location: JSON object string with latitude/longitude/address (optional)

    Privacy:
    - Audio is processed in memory and never stored
    - Transcripts are only attached when store_raw_transcripts is enabled
    """
    content_type = request.headers.get("content-type", "")
    if not content_type.lower().startswith("multipart/form-data"):
        raise UnsupportedMediaTypeError(
            "expected multipart/form-data",
            details={"content_type": content_type},
        )

    async with request.form() as form:
        upload = form.get("audio")
        if not isinstance(upload, UploadFile):
            raise InvalidRequestError("missing 'audio' file field")

        location_field = form.get("location")
        location = parse_location(location_field if isinstance(location_field, str) else None)

        limit = settings.max_audio_size_bytes
        data = await upload.read(limit + 1)
        if len(data) > limit:
            raise PayloadTooLargeError(
                f"audio exceeds {settings.max_audio_size_mb} MB limit",
                details={"limit_bytes": limit},
            )
        if not data:
            raise InvalidRequestError("audio file is empty")

        audio_format = resolve_audio_format(upload.filename, upload.content_type)
        audio = AudioInput(
            data=data,
            audio_format=audio_format,
            mime_type=_mime_for(upload.content_type, audio_format),
        )

    logger.info(
        "Audio emergency received: %d bytes, format=%s, location=%s",
        len(audio.data),
        audio.audio_format,
        "yes" if location else "no",
    )

    situation = await processor.process_emergency_audio(audio, location)
    response = await coordinator.process_emergency(situation)
    return EmergencyResponseSchema.from_domain(response)


@router.post(
    "/emergency/text",
    response_model=EmergencyResponseSchema,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def submit_text_emergency(
    body: TextEmergencyRequest,
    processor: TextProcessor = Depends(get_text_processor),
    coordinator: EmergencyCoordinator = Depends(get_coordinator),
):
    """
    Process a typed emergency report.

    The pipeline will:
    1. Extract a structured situation with the default model
    2. Classify it if the model left the code UNKNOWN
    3. Dispatch tools per severity and summarize for responders
    """
    if not body.text or not body.text.strip():
        raise InvalidRequestError("text must not be empty")

    location = body.location.to_domain() if body.location else None

    logger.info("Text emergency received: %d chars, location=%s", len(body.text), "yes" if location else "no")

    situation = await processor.process_emergency_text(body.text, location)
    response = await coordinator.process_emergency(situation)
    return EmergencyResponseSchema.from_domain(response)


# =============================================================================
# Health & Status
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_settings),
    provider: ModelProvider = Depends(get_provider),
    coordinator: EmergencyCoordinator = Depends(get_coordinator),
):
    """
    System health check.

    Reports the default model, the classifier and the registered tools.
    """
    model = provider.default_model()
    tools = [t.name for t in coordinator.registry.get_all()]

    components = {
        "api": "operational",
        "coordinator": "operational",
        "model_family": model.family.value,
        "environment": settings.app_env,
    }

    return HealthResponse(
        status="healthy" if tools else "degraded",
        timestamp=format_rfc3339(utcnow()),
        version=__version__,
        model=model.name,
        classifier=coordinator.classifier.classifier_id,
        tools=tools,
        components=components,
    )

