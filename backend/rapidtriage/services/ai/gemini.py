"""
RapidTriage - Gemini Backend

Google Generative Language REST API (v1beta). Audio is uploaded through the
Files API first and then referenced from generateContent by file URI.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, FrozenSet, List

from rapidtriage.core.exceptions import APICallFailedError, InvalidAudioFormatError
from rapidtriage.core.types import AudioInput, ModelResponse, RequestType, ResponseFormat
from rapidtriage.services.ai.base import (
    HTTPModel,
    ModelFamily,
    build_json_instruction,
    extract_json_from_text,
    parse_json_content,
)

logger = logging.getLogger(__name__)

FILE_UPLOAD_HOST = "https://generativelanguage.googleapis.com"


class GeminiModel(HTTPModel):
    """Gemini via generateContent."""

    FAMILY = ModelFamily.GEMINI
    DEFAULT_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta"
    DEFAULT_MODEL = "gemini-2.5-flash"
    DEFAULT_MAX_TOKENS = 8192
    DEFAULT_TEMPERATURE = 0.7
    DEFAULT_TIMEOUT_SECONDS = 120.0
    TOP_P = 0.95
    TOP_K = 40

    def supported_request_types(self) -> FrozenSet[RequestType]:
        # 1.5 and 2.5 generations accept audio and images
        if "1.5" in self.name or "2.5" in self.name:
            return frozenset(RequestType)
        return frozenset({RequestType.TEXT})

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def process_text(self, prompt: str) -> ModelResponse:
        self._require(RequestType.TEXT)
        body = await self._generate([{"text": prompt}], temperature=self.config.temperature)
        return self._to_response(body, ResponseFormat.TEXT)

    async def process_structured(self, prompt: str, schema: str) -> ModelResponse:
        self._require(RequestType.TEXT)
        body = await self._generate(
            [{"text": build_json_instruction(prompt, schema)}],
            temperature=self.JSON_TEMPERATURE,
        )
        response = self._to_response(body, ResponseFormat.JSON)
        parse_json_content(response.content)
        return response

    async def process_audio(self, audio: AudioInput, prompt: str) -> ModelResponse:
        self._require(RequestType.AUDIO)
        if not audio.data:
            raise InvalidAudioFormatError("audio payload is empty")

        mime_type = audio.resolved_mime_type
        file_uri = await self._upload_file(audio.data, mime_type)

        parts = [
            {"file_data": {"mime_type": mime_type, "file_uri": file_uri}},
            {"text": prompt},
        ]
        body = await self._generate(parts, temperature=self.config.temperature)
        return self._to_response(body, ResponseFormat.TEXT)

    # -------------------------------------------------------------------------
    # Wire helpers
    # -------------------------------------------------------------------------

    def _generate_url(self) -> str:
        return f"{self.config.endpoint}/models/{self.name}:generateContent"

    async def _generate(self, parts: List[Dict[str, Any]], temperature: float) -> Dict[str, Any]:
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": self.config.max_tokens,
                "topP": self.TOP_P,
                "topK": self.TOP_K,
            },
        }
        return await self._send(
            "POST",
            self._generate_url(),
            params={"key": self.config.api_key},
            json=payload,
        )

    async def _upload_file(self, data: bytes, mime_type: str) -> str:
        body = await self._send(
            "POST",
            f"{FILE_UPLOAD_HOST}/upload/v1beta/files",
            params={"key": self.config.api_key},
            content=data,
            headers={
                "Content-Type": mime_type,
                "x-goog-file-name": f"audio-upload-{time.time_ns()}.tmp",
            },
        )
        file_info = body.get("file") or {}
        file_uri = file_info.get("uri") or file_info.get("name")
        if not file_uri:
            raise APICallFailedError("file upload response did not contain a file reference")

        logger.debug("Uploaded audio to Gemini Files API (%d bytes)", len(data))
        return file_uri

    def _to_response(self, body: Dict[str, Any], fmt: ResponseFormat) -> ModelResponse:
        feedback = body.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise APICallFailedError(
                f"request blocked by Gemini: {feedback['blockReason']}",
                details={"block_reason": feedback["blockReason"]},
            )

        candidates = body.get("candidates") or []
        if not candidates:
            raise APICallFailedError("empty response from Gemini")

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        if not text:
            raise APICallFailedError("Gemini candidate contained no text")

        metadata: Dict[str, Any] = {
            "model": self.name,
            "finish_reason": candidate.get("finishReason", ""),
        }
        ratings = candidate.get("safetyRatings") or []
        if ratings:
            metadata["safety_ratings"] = {
                r.get("category", ""): r.get("probability", "") for r in ratings
            }

        content = extract_json_from_text(text) if fmt == ResponseFormat.JSON else text
        return ModelResponse(content=content, format=fmt, metadata=metadata, raw=body)
