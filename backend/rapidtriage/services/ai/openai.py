"""
RapidTriage - OpenAI Backend

Chat Completions for text/JSON; Whisper transcriptions for audio. Whisper
takes the prompt only as context, so the audio reply is the transcript.
"""

from __future__ import annotations

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

WHISPER_MODEL = "whisper-1"


class OpenAIModel(HTTPModel):
    """GPT-4 family via /chat/completions."""

    FAMILY = ModelFamily.GPT4
    DEFAULT_ENDPOINT = "https://api.openai.com/v1"
    DEFAULT_MODEL = "gpt-4o"
    DEFAULT_MAX_TOKENS = 4096
    DEFAULT_TEMPERATURE = 0.7
    DEFAULT_TIMEOUT_SECONDS = 60.0

    def supported_request_types(self) -> FrozenSet[RequestType]:
        if "gpt-4" in self.name:
            return frozenset(RequestType)
        return frozenset({RequestType.TEXT})

    @property
    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    async def process_text(self, prompt: str) -> ModelResponse:
        self._require(RequestType.TEXT)
        body = await self._chat(
            [{"role": "user", "content": prompt}],
            temperature=self.config.temperature,
        )
        return self._to_response(body, ResponseFormat.TEXT)

    async def process_structured(self, prompt: str, schema: str) -> ModelResponse:
        self._require(RequestType.TEXT)
        body = await self._chat(
            [
                {"role": "system", "content": "You always respond with a single valid JSON object."},
                {"role": "user", "content": build_json_instruction(prompt, schema)},
            ],
            temperature=self.JSON_TEMPERATURE,
            response_format={"type": "json_object"},
        )
        response = self._to_response(body, ResponseFormat.JSON)
        parse_json_content(response.content)
        return response

    async def process_audio(self, audio: AudioInput, prompt: str) -> ModelResponse:
        self._require(RequestType.AUDIO)
        if not audio.data:
            raise InvalidAudioFormatError("audio payload is empty")

        form = {"model": WHISPER_MODEL, "response_format": "json"}
        if prompt:
            form["prompt"] = prompt
        if audio.language:
            form["language"] = audio.language

        body = await self._send(
            "POST",
            f"{self.config.endpoint}/audio/transcriptions",
            headers=self._auth_headers,
            data=form,
            files={"file": (f"audio.{audio.audio_format or 'mp3'}", audio.data, audio.resolved_mime_type)},
        )

        text = body.get("text", "")
        if not text:
            raise APICallFailedError("empty transcription from OpenAI")

        return ModelResponse(
            content=text,
            format=ResponseFormat.TEXT,
            metadata={"model": WHISPER_MODEL, "language": body.get("language", audio.language)},
            raw=body,
        )

    async def _chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        **extra: Any,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.name,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": temperature,
        }
        payload.update(extra)
        return await self._send(
            "POST",
            f"{self.config.endpoint}/chat/completions",
            headers=self._auth_headers,
            json=payload,
        )

    def _to_response(self, body: Dict[str, Any], fmt: ResponseFormat) -> ModelResponse:
        choices = body.get("choices") or []
        if not choices:
            raise APICallFailedError("empty response from OpenAI")

        choice = choices[0]
        text = (choice.get("message") or {}).get("content") or ""
        if not text:
            raise APICallFailedError("OpenAI choice contained no content")

        usage = body.get("usage") or {}
        metadata: Dict[str, Any] = {
            "model": body.get("model", self.name),
            "finish_reason": choice.get("finish_reason", ""),
            "total_tokens": usage.get("total_tokens", 0),
        }

        content = extract_json_from_text(text) if fmt == ResponseFormat.JSON else text
        return ModelResponse(content=content, format=fmt, metadata=metadata, raw=body)
