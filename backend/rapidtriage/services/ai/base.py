"""
RapidTriage - Model Capability Contract

Uniform interface over heterogeneous generative backends.

Architecture:
    - Model: Protocol every backend implements
    - ModelConfig: connection/generation settings shared by all backends
    - HTTPModel: base class for hosted vendors (httpx transport, status
      mapping, JSON-mode validation)

JSON-mode contract:
    The model is instructed to emit one JSON value. Markdown fences are
    stripped, bare JSON passes through unchanged, and the result is parsed
    before returning. Invalid JSON is always an InvalidJSONSchemaError and
    is never coerced or retried.
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict

from rapidtriage.core.exceptions import (
    APICallFailedError,
    ContextDeadlineExceededError,
    InvalidConfigurationError,
    InvalidJSONSchemaError,
    ModelUnavailableError,
    RateLimitExceededError,
    UnsupportedRequestTypeError,
)
from rapidtriage.core.types import AudioInput, ModelResponse, RequestType

logger = logging.getLogger(__name__)


# =============================================================================
# Model Families / Config
# =============================================================================

class ModelFamily(str, Enum):
    """Tag used to select a backend from the model registry."""
    GEMINI = "gemini"
    CLAUDE = "claude"
    GPT4 = "gpt4"
    LLAMA = "llama"
    DUMMY = "dummy"


class ModelConfig(BaseModel):
    """
    Settings for one model instance.

    Zero/blank values mean "use the backend's default"; each backend
    fills them in its constructor.
    """
    model_config = ConfigDict(protected_namespaces=())

    api_key: str = ""
    endpoint: str = ""
    model_name: str = ""
    max_tokens: int = 0
    temperature: float = 0.0
    timeout_seconds: float = 0.0

    def with_defaults(
        self,
        endpoint: str,
        model_name: str,
        max_tokens: int,
        temperature: float,
        timeout_seconds: float,
    ) -> "ModelConfig":
        return self.model_copy(update={
            "endpoint": (self.endpoint or endpoint).rstrip("/"),
            "model_name": self.model_name or model_name,
            "max_tokens": self.max_tokens or max_tokens,
            "temperature": self.temperature or temperature,
            "timeout_seconds": self.timeout_seconds or timeout_seconds,
        })


# =============================================================================
# Protocol (Interface)
# =============================================================================

@runtime_checkable
class Model(Protocol):
    """
    Protocol for generative models.

    Calling a modality outside ``supported_request_types()`` raises
    UnsupportedRequestTypeError.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Vendor model name (e.g., "gpt-4o")."""
        ...

    @property
    @abstractmethod
    def family(self) -> ModelFamily:
        ...

    @abstractmethod
    def supported_request_types(self) -> FrozenSet[RequestType]:
        ...

    @abstractmethod
    async def process_text(self, prompt: str) -> ModelResponse:
        """Free-form text completion."""
        ...

    @abstractmethod
    async def process_structured(self, prompt: str, schema: str) -> ModelResponse:
        """Completion whose content is validated JSON matching ``schema``."""
        ...

    @abstractmethod
    async def process_audio(self, audio: AudioInput, prompt: str) -> ModelResponse:
        """Run ``prompt`` against an audio payload (transcription/analysis)."""
        ...


# =============================================================================
# JSON Helpers
# =============================================================================

def extract_json_from_text(text: str) -> str:
    """
    Strip markdown code fences from a model reply.

    Text already starting with ``{``/``[`` is returned unchanged. Anything
    else is returned stripped so validation can reject it.
    """
    text = (text or "").strip()
    if text.startswith("```json") and text.endswith("```") and len(text) >= 10:
        return text[7:-3].strip()
    if text.startswith("```") and text.endswith("```") and len(text) >= 6:
        return text[3:-3].strip()
    return text


def looks_like_json(text: str) -> bool:
    """True if the reply is a fenced or bare JSON object/array."""
    candidate = extract_json_from_text(text)
    return (candidate.startswith("{") and candidate.endswith("}")) or (
        candidate.startswith("[") and candidate.endswith("]")
    )


def parse_json_content(text: str) -> Any:
    """Extract and parse JSON, raising InvalidJSONSchemaError on failure."""
    candidate = extract_json_from_text(text)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        raise InvalidJSONSchemaError(
            f"model response is not valid JSON: {e}",
            details={"content_preview": candidate[:200]},
        ) from e


# Prompts wrap the caller's words in these markers, separating them from instructions
REPORT_START = "<<<"
REPORT_END = ">>>"


def wrap_report(text: str) -> str:
    return f"{REPORT_START}\n{text}\n{REPORT_END}"


def build_json_instruction(prompt: str, schema: str) -> str:
    """Wrap a prompt so the model emits exactly one JSON value."""
    return (
        "Your response MUST be a valid JSON object adhering strictly to the "
        f"following JSON schema:\n```json\n{schema}\n```\n"
        "Respond with the JSON object only, no prose.\n"
        f"Based on the following request, generate the JSON object:\n{prompt}"
    )


def provider_error_message(response: httpx.Response) -> str:
    """Best-effort extraction of a vendor error message."""
    message = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return message[:300] or f"HTTP {response.status_code}"


# =============================================================================
# HTTP Base
# =============================================================================

class HTTPModel:
    """
    Shared plumbing for hosted vendor backends.

    Subclasses set ``FAMILY`` and the ``DEFAULT_*`` constants and implement
    the three ``process_*`` methods on top of ``_send``.
    """

    FAMILY: ModelFamily
    DEFAULT_ENDPOINT: str = ""
    DEFAULT_MODEL: str = ""
    DEFAULT_MAX_TOKENS: int = 4096
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_TIMEOUT_SECONDS: float = 60.0
    JSON_TEMPERATURE: float = 0.2

    def __init__(
        self,
        config: ModelConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not config.api_key:
            raise InvalidConfigurationError(
                f"{self.FAMILY.value} API key is required",
                details={"family": self.FAMILY.value},
            )
        self._config = config.with_defaults(
            endpoint=self.DEFAULT_ENDPOINT,
            model_name=self.DEFAULT_MODEL,
            max_tokens=self.DEFAULT_MAX_TOKENS,
            temperature=self.DEFAULT_TEMPERATURE,
            timeout_seconds=self.DEFAULT_TIMEOUT_SECONDS,
        )
        self._transport = transport

        logger.info(
            "%s initialized: model=%s, timeout=%.0fs",
            type(self).__name__,
            self._config.model_name,
            self._config.timeout_seconds,
        )

    @property
    def name(self) -> str:
        return self._config.model_name

    @property
    def family(self) -> ModelFamily:
        return self.FAMILY

    @property
    def config(self) -> ModelConfig:
        return self._config

    def _require(self, request_type: RequestType) -> None:
        if request_type not in self.supported_request_types():
            raise UnsupportedRequestTypeError(
                f"{self.name} does not support {request_type.value} requests",
                details={"model": self.name, "request_type": request_type.value},
            )

    def supported_request_types(self) -> FrozenSet[RequestType]:
        return frozenset({RequestType.TEXT})

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout_seconds, connect=10.0),
            transport=self._transport,
        )

    async def _send(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Issue one request and return the decoded JSON body.

        Maps vendor failures onto the model error taxonomy. No retries.
        """
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ContextDeadlineExceededError(
                f"{self.family.value} request timed out after {self._config.timeout_seconds}s",
            ) from e
        except httpx.HTTPError as e:
            raise APICallFailedError(
                f"failed to reach {self.family.value} API: {type(e).__name__}",
            ) from e

        self._raise_for_status(response)

        try:
            return response.json()
        except ValueError as e:
            raise APICallFailedError(
                f"{self.family.value} API returned a non-JSON body",
                details={"status": response.status_code},
            ) from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code == 200:
            return

        vendor_message = provider_error_message(response)
        details = {"status": response.status_code, "vendor_message": vendor_message}
        logger.warning(
            "%s API error: status=%d, message=%s",
            self.family.value,
            response.status_code,
            vendor_message[:120],
        )

        if response.status_code == 429:
            raise RateLimitExceededError(f"{self.family.value} rate limit exceeded", details=details)
        if response.status_code == 503:
            raise ModelUnavailableError(f"{self.family.value} model unavailable", details=details)
        raise APICallFailedError(
            f"{self.family.value} API returned status {response.status_code}",
            details=details,
        )
