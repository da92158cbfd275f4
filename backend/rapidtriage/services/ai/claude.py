"""
RapidTriage - Claude Backend

Anthropic Messages API. Audio input is not supported.
"""

from __future__ import annotations

from typing import Any, Dict, FrozenSet, Optional

from rapidtriage.core.exceptions import APICallFailedError, UnsupportedRequestTypeError
from rapidtriage.core.types import AudioInput, ModelResponse, RequestType, ResponseFormat
from rapidtriage.services.ai.base import (
    HTTPModel,
    ModelFamily,
    extract_json_from_text,
    parse_json_content,
)

ANTHROPIC_VERSION = "2023-06-01"


class ClaudeModel(HTTPModel):
    """Claude via /v1/messages."""

    FAMILY = ModelFamily.CLAUDE
    DEFAULT_ENDPOINT = "https://api.anthropic.com/v1/messages"
    DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
    DEFAULT_MAX_TOKENS = 4096
    DEFAULT_TEMPERATURE = 0.7
    DEFAULT_TIMEOUT_SECONDS = 60.0

    def supported_request_types(self) -> FrozenSet[RequestType]:
        if self.name.startswith("claude-3"):
            return frozenset({RequestType.TEXT, RequestType.IMAGE, RequestType.MULTIMODAL})
        return frozenset({RequestType.TEXT})

    async def process_text(self, prompt: str) -> ModelResponse:
        self._require(RequestType.TEXT)
        body = await self._messages(prompt, temperature=self.config.temperature)
        return self._to_response(body, ResponseFormat.TEXT)

    async def process_structured(self, prompt: str, schema: str) -> ModelResponse:
        self._require(RequestType.TEXT)
        system = (
            "You are a helpful assistant that always responds with valid JSON "
            f"matching this schema:\n{schema}\n"
            "Respond with the JSON object only."
        )
        body = await self._messages(prompt, temperature=self.JSON_TEMPERATURE, system=system)
        response = self._to_response(body, ResponseFormat.JSON)
        parse_json_content(response.content)
        return response

    async def process_audio(self, audio: AudioInput, prompt: str) -> ModelResponse:
        raise UnsupportedRequestTypeError(
            f"{self.name} does not support audio requests",
            details={"model": self.name, "request_type": RequestType.AUDIO.value},
        )

    async def _messages(
        self,
        prompt: str,
        temperature: float,
        system: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.name,
            "max_tokens": self.config.max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            payload["system"] = system

        return await self._send(
            "POST",
            self.config.endpoint,
            json=payload,
            headers={
                "x-api-key": self.config.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "Content-Type": "application/json",
            },
        )

    def _to_response(self, body: Dict[str, Any], fmt: ResponseFormat) -> ModelResponse:
        blocks = body.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        if not text:
            raise APICallFailedError("empty response from Claude")

        usage = body.get("usage") or {}
        metadata: Dict[str, Any] = {
            "model": body.get("model", self.name),
            "stop_reason": body.get("stop_reason", ""),
            "input_tokens": usage.get("input_tokens", 0),
            "output_tokens": usage.get("output_tokens", 0),
        }

        content = extract_json_from_text(text) if fmt == ResponseFormat.JSON else text
        return ModelResponse(content=content, format=fmt, metadata=metadata, raw=body)
