"""
RapidTriage - Exception Hierarchy

Structured exceptions for consistent error handling across the system.
All exceptions include error codes for API responses.

Every exception also carries a ``public_message``: a fixed, client-safe
sentence. The API layer returns that instead of ``message`` so vendor
payloads and internal details never reach end users.
"""

from typing import Optional


class RapidTriageError(Exception):
    """Base exception for all RapidTriage errors."""

    code: str = "UNKNOWN_ERROR"
    status_code: int = 500
    public_message: str = "An internal error occurred"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# Model Errors
# =============================================================================

class ModelError(RapidTriageError):
    """Error raised by a generative model backend."""
    code = "MODEL_ERROR"
    status_code = 502
    public_message = "The AI model could not process the request"


class UnsupportedModelError(ModelError):
    """Requested model family is not registered."""
    code = "UNSUPPORTED_MODEL"
    status_code = 500
    public_message = "The configured AI model is not supported"


class UnsupportedRequestTypeError(ModelError):
    """Model does not support the requested modality."""
    code = "UNSUPPORTED_REQUEST_TYPE"
    status_code = 500
    public_message = "The configured AI model does not support this input type"


class InvalidConfigurationError(ModelError):
    """Model configuration is invalid (e.g., missing API key)."""
    code = "INVALID_MODEL_CONFIGURATION"
    status_code = 500
    public_message = "The AI model is misconfigured"


class APICallFailedError(ModelError):
    """Transport failure or unexpected status from the vendor API."""
    code = "API_CALL_FAILED"


class RateLimitExceededError(ModelError):
    """Vendor API returned 429. Retryable by the caller."""
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 503
    public_message = "The AI model is rate limited, please retry shortly"


class ModelUnavailableError(ModelError):
    """Vendor API returned 503."""
    code = "MODEL_UNAVAILABLE"
    status_code = 503
    public_message = "The AI model is temporarily unavailable"


class ContextDeadlineExceededError(ModelError):
    """Model call did not complete before its timeout."""
    code = "MODEL_DEADLINE_EXCEEDED"
    status_code = 504
    public_message = "The AI model did not respond in time"


class InvalidJSONSchemaError(ModelError):
    """Model output failed JSON validation. Never retried."""
    code = "INVALID_JSON_SCHEMA"
    public_message = "The AI model returned an invalid response"


class InvalidAudioFormatError(ModelError):
    """Audio format could not be determined."""
    code = "INVALID_AUDIO_FORMAT"
    status_code = 400
    public_message = "Unsupported audio format"


# =============================================================================
# Pipeline Errors
# =============================================================================

class PipelineError(RapidTriageError):
    """Error during emergency processing."""
    code = "PIPELINE_ERROR"
    status_code = 500
    public_message = "Emergency processing failed"


class ExtractionError(PipelineError):
    """Required extraction stage failed."""
    code = "EXTRACTION_ERROR"
    status_code = 502
    public_message = "Could not extract an assessment from the report"


class ClassificationError(PipelineError):
    """Classifier failed to assign a triage code."""
    code = "CLASSIFICATION_ERROR"
    public_message = "Could not classify the emergency"


class DeadlineExceededError(PipelineError):
    """Overall request deadline expired."""
    code = "DEADLINE_EXCEEDED"
    status_code = 504
    public_message = "Emergency processing timed out"


# =============================================================================
# Tool Errors
# =============================================================================

class ToolError(RapidTriageError):
    """Error raised by an action tool."""
    code = "TOOL_ERROR"
    status_code = 502
    public_message = "A response service could not be reached"


class ToolExecutionError(ToolError):
    """Tool could not run for this situation (e.g., missing location)."""
    code = "TOOL_EXECUTION_ERROR"


class ToolDispatchError(ToolError):
    """All dispatch attempts failed or the response could not be parsed."""
    code = "TOOL_DISPATCH_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        attempts: int = 0,
        last_status: Optional[int] = None,
    ):
        super().__init__(message, details)
        self.attempts = attempts
        self.last_status = last_status


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(RapidTriageError):
    """Input validation error."""
    code = "VALIDATION_ERROR"
    status_code = 400
    public_message = "Invalid request"


class InvalidRequestError(ValidationError):
    """Request is missing a field or carries a malformed one."""
    code = "INVALID_REQUEST"


class UnsupportedMediaTypeError(ValidationError):
    """Wrong content type for the endpoint."""
    code = "UNSUPPORTED_MEDIA_TYPE"
    status_code = 415
    public_message = "Unsupported content type"


class PayloadTooLargeError(ValidationError):
    """Uploaded payload exceeds the configured limit."""
    code = "PAYLOAD_TOO_LARGE"
    status_code = 413
    public_message = "Uploaded file is too large"


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(RapidTriageError):
    """Configuration error."""
    code = "CONFIGURATION_ERROR"
    status_code = 500
