"""
RapidTriage - Extraction Pipeline

Turns a raw emergency report into a Situation using one to three model calls.

Flows:
    Audio:  transcribe (required)
            -> emotion/tone notes (best-effort, placeholder on failure)
            -> structured JSON extraction (required)
    Text:   analysis (required)
            -> structured JSON extraction over the prose reply, only when
               the analysis reply is not already JSON

Mapping rules:
    - triage_code maps by exact match (RED/YELLOW/GREEN), else UNKNOWN
    - confidence and emotional markers are clamped to [0, 1]
    - vendor metadata is namespaced under ``model_meta_``
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from rapidtriage.core.exceptions import (
    ContextDeadlineExceededError,
    DeadlineExceededError,
    ExtractionError,
    InvalidJSONSchemaError,
    ModelError,
)
from rapidtriage.core.types import (
    AudioInput,
    InputModality,
    Location,
    ModelResponse,
    ResponseFormat,
    Situation,
    TriageCode,
)
from rapidtriage.services.ai.base import Model, looks_like_json, parse_json_content, wrap_report

logger = logging.getLogger(__name__)


# =============================================================================
# Prompts & Schema
# =============================================================================

EXTRACTION_SCHEMA = json.dumps({
    "type": "object",
    "properties": {
        "emergency_type": {
            "type": "string",
            "description": "Type of emergency (Medical, Fire, Crime, Accident, etc.)",
        },
        "triage_code": {
            "type": "string",
            "enum": ["RED", "YELLOW", "GREEN", "UNKNOWN"],
            "description": "RED: life-threatening, YELLOW: urgent, GREEN: non-urgent",
        },
        "confidence": {
            "type": "number",
            "description": "Confidence level of assessment (0.0-1.0)",
        },
        "emotional_state": {
            "type": "object",
            "properties": {
                "distress": {"type": "number"},
                "panic": {"type": "number"},
                "pain": {"type": "number"},
                "confusion": {"type": "number"},
                "clarity": {"type": "number"},
            },
            "description": "Emotional states from 0.0 to 1.0",
        },
        "keywords": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Key medical or emergency terms extracted",
        },
        "summary": {
            "type": "string",
            "description": "Brief summary of the emergency situation",
        },
        "recommended_actions": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Recommended immediate actions",
        },
    },
    "required": ["triage_code", "summary"],
}, indent=2)

TEXT_ANALYSIS_PROMPT = """Analyze this emergency report and provide a detailed assessment including:

1. Emergency description: precisely what is the medical emergency?
2. Severity indicators: which symptoms or signs indicate the urgency level?
3. Emotional state: assess the reporter's emotional state.
4. Key medical details: relevant history, allergies or medications.
5. Environmental factors: context that might impact the response.

Provide an analysis that helps emergency responders prioritize and prepare.

Report:
"""

STRUCTURE_PROMPT = """Extract the emergency information below as structured JSON.
Include only information that can be clearly inferred from the material.

Original report:
{report}

Analysis:
{analysis}
"""

TRANSCRIBE_PROMPT = (
    "Transcribe this emergency call audio verbatim. "
    "Return only the spoken words, without commentary."
)

EMOTION_PROMPT = """Describe the speaker's emotional state and tone in this emergency call transcript.
Note signs of distress, panic, pain, confusion or clarity in two or three sentences.

Transcript:
"""

AUDIO_STRUCTURE_PROMPT = """Assess this emergency call and extract the information as structured JSON.

Transcript:
{transcript}

Emotional analysis:
{emotion_notes}
"""

EMOTION_PLACEHOLDER = "No emotional analysis available."


# =============================================================================
# Structured Assessment
# =============================================================================

class StructuredAssessment(BaseModel):
    """Parsed model output. Lenient on missing fields, strict on types."""

    emergency_type: str = ""
    triage_code: str = "UNKNOWN"
    confidence: float = 0.0
    emotional_state: Dict[str, float] = Field(default_factory=dict)
    keywords: List[str] = Field(default_factory=list)
    summary: str = ""
    recommended_actions: List[str] = Field(default_factory=list)

    @field_validator("triage_code", mode="before")
    @classmethod
    def _code_to_str(cls, v: Any) -> str:
        return "UNKNOWN" if v is None else str(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _null_confidence(cls, v: Any) -> Any:
        return 0.0 if v is None else v

    @classmethod
    def from_content(cls, content: str) -> "StructuredAssessment":
        data = parse_json_content(content)
        if not isinstance(data, dict):
            raise InvalidJSONSchemaError(
                "structured extraction must be a JSON object",
                details={"type": type(data).__name__},
            )
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise InvalidJSONSchemaError(
                "structured extraction does not match schema",
                details={"errors": e.errors(include_url=False)},
            ) from e


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def normalize_markers(markers: Dict[str, float]) -> Dict[str, float]:
    """Values above 1 are treated as 0-10 scores, then everything is clamped."""
    normalized = {}
    for name, value in markers.items():
        v = float(value)
        if v > 1.0:
            v = v / 10.0
        normalized[name] = clamp_unit(v)
    return normalized


# =============================================================================
# Shared Base
# =============================================================================

class _Processor:
    """Common timeout handling and Situation assembly."""

    def __init__(
        self,
        model: Model,
        timeout_seconds: float = 30.0,
        store_raw_transcripts: bool = False,
        anonymize_logs: bool = True,
    ):
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._store_raw_transcripts = store_raw_transcripts
        self._anonymize_logs = anonymize_logs

    @property
    def model(self) -> Model:
        return self._model

    def _log_text(self, text: str) -> str:
        """Loggable form of report text; an excerpt only when transcripts are kept and logs are not anonymized."""
        if self._store_raw_transcripts and not self._anonymize_logs:
            return text[:100]
        return f"[REDACTED, {len(text)} chars]"

    async def _bounded(self, coro, stage: str):
        """Run a whole processor flow under the processor timeout."""
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout_seconds)
        except asyncio.TimeoutError as e:
            raise DeadlineExceededError(
                f"{stage} did not complete within {self._timeout_seconds}s",
            ) from e

    @staticmethod
    async def _required(stage: str, call):
        """Await a required model call, wrapping failures as ExtractionError."""
        try:
            return await call
        except ContextDeadlineExceededError:
            raise
        except ModelError as e:
            logger.warning("Extraction stage '%s' failed: %s", stage, e.code)
            raise ExtractionError(
                f"{stage} failed: {e.message}",
                details={"stage": stage, "cause": e.code},
            ) from e

    @staticmethod
    def _parse_assessment(content: str) -> StructuredAssessment:
        try:
            return StructuredAssessment.from_content(content)
        except InvalidJSONSchemaError as e:
            logger.warning("Structured extraction returned invalid JSON: %s", e.message)
            raise ExtractionError(
                f"structured extraction failed: {e.message}",
                details={"stage": "structured extraction", "cause": e.code},
            ) from e

    def _build_situation(
        self,
        assessment: StructuredAssessment,
        fallback_description: str,
        modality: InputModality,
        responses: List[ModelResponse],
        location: Optional[Location] = None,
    ) -> Situation:
        situation = Situation(
            description=assessment.summary.strip() or fallback_description.strip(),
            location=location,
        )
        situation.set_triage_code(
            TriageCode.from_exact(assessment.triage_code),
            clamp_unit(assessment.confidence),
        )
        situation.keywords = list(assessment.keywords)
        situation.emotional_markers = normalize_markers(assessment.emotional_state)

        metadata = situation.metadata
        metadata["emergency_type"] = assessment.emergency_type
        metadata["model_used"] = self._model.name
        metadata["input_modality"] = modality.value

        for response in responses:
            for key, value in response.metadata.items():
                metadata[f"model_meta_{key}"] = value if isinstance(value, str) else json.dumps(value, default=str)

        if assessment.recommended_actions:
            metadata["recommended_actions"] = json.dumps(assessment.recommended_actions)

        if self._store_raw_transcripts:
            metadata["transcript"] = fallback_description

        logger.info(
            "Extracted situation: id=%s, code=%s, confidence=%.2f, keywords=%d",
            situation.id[:8] if self._anonymize_logs else situation.id,
            situation.code.value,
            situation.confidence,
            len(situation.keywords),
        )
        return situation


# =============================================================================
# Text Processor
# =============================================================================

class TextProcessor(_Processor):
    """Typed reports: analysis pass plus an optional structuring pass."""

    async def process_emergency_text(
        self,
        text: str,
        location: Optional[Location] = None,
    ) -> Situation:
        """
        Build a Situation from a typed report.

        Raises:
            ExtractionError: a required model call failed or returned bad JSON
            DeadlineExceededError: processor timeout expired
            ContextDeadlineExceededError: the model call itself timed out
        """
        return await self._bounded(self._process(text, location), "text processing")

    async def _process(self, text: str, location: Optional[Location]) -> Situation:
        logger.debug("Text analysis: %s", self._log_text(text))

        analysis = await self._required(
            "analysis",
            self._model.process_text(TEXT_ANALYSIS_PROMPT + wrap_report(text)),
        )
        responses = [analysis]

        assessment: Optional[StructuredAssessment] = None
        if analysis.format == ResponseFormat.JSON or looks_like_json(analysis.content):
            try:
                assessment = StructuredAssessment.from_content(analysis.content)
            except InvalidJSONSchemaError:
                logger.info("Analysis reply looked like JSON but did not validate, re-deriving")

        if assessment is None:
            structured = await self._required(
                "structured extraction",
                self._model.process_structured(
                    STRUCTURE_PROMPT.format(report=wrap_report(text), analysis=analysis.content),
                    EXTRACTION_SCHEMA,
                ),
            )
            responses.append(structured)
            assessment = self._parse_assessment(structured.content)

        return self._build_situation(assessment, text, InputModality.TEXT, responses, location)


# =============================================================================
# Audio Processor
# =============================================================================

class AudioProcessor(_Processor):
    """Spoken reports: transcribe, best-effort emotion notes, structure."""

    async def process_emergency_audio(
        self,
        audio: AudioInput,
        location: Optional[Location] = None,
    ) -> Situation:
        """
        Build a Situation from recorded audio.

        Raises:
            ExtractionError: transcription or structuring failed
            DeadlineExceededError: processor timeout expired
            ContextDeadlineExceededError: a model call itself timed out
        """
        return await self._bounded(self._process(audio, location), "audio processing")

    async def _process(self, audio: AudioInput, location: Optional[Location]) -> Situation:
        logger.debug("Audio processing: %d bytes, mime=%s", len(audio.data), audio.resolved_mime_type)

        transcription = await self._required(
            "transcription",
            self._model.process_audio(audio, TRANSCRIBE_PROMPT),
        )
        transcript = transcription.content.strip()
        if not transcript:
            raise ExtractionError("transcription returned no text", details={"stage": "transcription"})

        logger.debug("Transcript: %s", self._log_text(transcript))

        emotion_notes = await self._emotion_notes(transcript)

        structured = await self._required(
            "structured extraction",
            self._model.process_structured(
                AUDIO_STRUCTURE_PROMPT.format(
                    transcript=wrap_report(transcript),
                    emotion_notes=emotion_notes,
                ),
                EXTRACTION_SCHEMA,
            ),
        )
        assessment = self._parse_assessment(structured.content)

        return self._build_situation(
            assessment,
            transcript,
            InputModality.AUDIO,
            [transcription, structured],
            location,
        )

    async def _emotion_notes(self, transcript: str) -> str:
        """Optional stage; any model failure degrades to a placeholder."""
        try:
            response = await self._model.process_text(EMOTION_PROMPT + wrap_report(transcript))
        except ModelError as e:
            logger.warning("Emotion analysis failed, continuing without it: %s", e.code)
            return EMOTION_PLACEHOLDER
        return response.content.strip() or EMOTION_PLACEHOLDER
