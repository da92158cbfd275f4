"""
RapidTriage - Extraction Pipeline Tests

Tests TextProcessor and AudioProcessor with the dummy model and a scripted
model whose replies are set per test.
These tests verify:
- Text flow skips the structuring call when analysis is already JSON
- Audio flow survives emotion-analysis failures
- Required-stage failures become ExtractionError
- Mapping rules (exact code match, clamping, metadata namespacing)

Run with: pytest tests/test_extraction.py -v
"""

import asyncio
import json
import logging
from typing import FrozenSet, List, Union

import pytest

from rapidtriage.core.exceptions import (
    APICallFailedError,
    ContextDeadlineExceededError,
    DeadlineExceededError,
    ExtractionError,
    RateLimitExceededError,
)
from rapidtriage.core.types import AudioInput, ModelResponse, RequestType, ResponseFormat, TriageCode
from rapidtriage.services.ai.base import ModelFamily
from rapidtriage.services.ai.dummy import DummyModel
from rapidtriage.services.extraction import (
    EMOTION_PLACEHOLDER,
    AudioProcessor,
    StructuredAssessment,
    TextProcessor,
    normalize_markers,
)

Reply = Union[ModelResponse, Exception]


class ScriptedModel:
    """Model whose replies are queued per method."""

    def __init__(self, text: List[Reply] = None, structured: List[Reply] = None, audio: List[Reply] = None):
        self.text = list(text or [])
        self.structured = list(structured or [])
        self.audio = list(audio or [])
        self.prompts: List[str] = []

    @property
    def name(self) -> str:
        return "scripted-v1"

    @property
    def family(self) -> ModelFamily:
        return ModelFamily.DUMMY

    def supported_request_types(self) -> FrozenSet[RequestType]:
        return frozenset(RequestType)

    @staticmethod
    def _next(queue: List[Reply]) -> ModelResponse:
        reply = queue.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def process_text(self, prompt: str) -> ModelResponse:
        self.prompts.append(prompt)
        return self._next(self.text)

    async def process_structured(self, prompt: str, schema: str) -> ModelResponse:
        self.prompts.append(prompt)
        return self._next(self.structured)

    async def process_audio(self, audio: AudioInput, prompt: str) -> ModelResponse:
        self.prompts.append(prompt)
        return self._next(self.audio)


def _json_reply(**fields) -> ModelResponse:
    return ModelResponse(content=json.dumps(fields), format=ResponseFormat.JSON, metadata={"model": "scripted-v1"})


def _text_reply(text: str) -> ModelResponse:
    return ModelResponse(content=text, format=ResponseFormat.TEXT, metadata={"finish_reason": "STOP"})


class TestTextProcessorWithDummy:

    @pytest.mark.asyncio
    async def test_critical_report(self, dummy_model: DummyModel, location):
        processor = TextProcessor(dummy_model)

        situation = await processor.process_emergency_text(
            "My friend is unconscious and not breathing. Please hurry.", location
        )

        assert situation.code == TriageCode.RED
        assert situation.confidence == pytest.approx(0.9)
        assert situation.location == location
        assert set(situation.keywords) == {"unconscious", "not breathing"}
        assert situation.description == "My friend is unconscious and not breathing."
        assert situation.metadata["input_modality"] == "text"
        assert situation.metadata["model_used"] == "dummy-triage-v0.1"

    @pytest.mark.asyncio
    async def test_fenced_json_analysis_needs_one_call(self, dummy_model: DummyModel):
        processor = TextProcessor(dummy_model)

        await processor.process_emergency_text("I have a mild rash on my arm")

        assert dummy_model.call_count == 1

    @pytest.mark.asyncio
    async def test_unmatched_report_is_unknown(self, dummy_model: DummyModel):
        situation = await TextProcessor(dummy_model).process_emergency_text("Something happened")

        assert situation.code == TriageCode.UNKNOWN

    @pytest.mark.asyncio
    async def test_raw_transcript_not_stored_by_default(self, dummy_model: DummyModel):
        situation = await TextProcessor(dummy_model).process_emergency_text("Deep cut on my hand")

        assert "transcript" not in situation.metadata

    @pytest.mark.asyncio
    async def test_raw_transcript_stored_when_enabled(self, dummy_model: DummyModel):
        processor = TextProcessor(dummy_model, store_raw_transcripts=True)

        situation = await processor.process_emergency_text("Deep cut on my hand")

        assert situation.metadata["transcript"] == "Deep cut on my hand"


class TestLogPrivacy:
    """Report text reaches the logs only when transcripts are kept and logs are not anonymized."""

    REPORT = "Deep cut on my hand from a kitchen knife"

    @pytest.mark.asyncio
    async def test_anonymized_logs_redact_report_text(self, dummy_model: DummyModel, caplog):
        caplog.set_level(logging.DEBUG, logger="rapidtriage.services.extraction")
        processor = TextProcessor(dummy_model, store_raw_transcripts=True, anonymize_logs=True)

        situation = await processor.process_emergency_text(self.REPORT)

        assert self.REPORT not in caplog.text
        assert f"[REDACTED, {len(self.REPORT)} chars]" in caplog.text
        assert situation.id not in caplog.text
        assert situation.id[:8] in caplog.text

    @pytest.mark.asyncio
    async def test_unanonymized_logs_show_excerpt_and_full_id(self, dummy_model: DummyModel, caplog):
        caplog.set_level(logging.DEBUG, logger="rapidtriage.services.extraction")
        processor = TextProcessor(dummy_model, store_raw_transcripts=True, anonymize_logs=False)

        situation = await processor.process_emergency_text(self.REPORT)

        assert self.REPORT in caplog.text
        assert situation.id in caplog.text

    @pytest.mark.asyncio
    async def test_transcripts_not_kept_stay_redacted(self, dummy_model: DummyModel, caplog):
        caplog.set_level(logging.DEBUG, logger="rapidtriage.services.extraction")
        processor = TextProcessor(dummy_model, store_raw_transcripts=False, anonymize_logs=False)

        await processor.process_emergency_text(self.REPORT)

        assert self.REPORT not in caplog.text


class TestTextProcessorScripted:

    @pytest.mark.asyncio
    async def test_prose_analysis_triggers_structuring(self):
        model = ScriptedModel(
            text=[_text_reply("The caller describes a fall with a probable fracture.")],
            structured=[_json_reply(triage_code="YELLOW", confidence=0.8, summary="Probable fracture")],
        )

        situation = await TextProcessor(model).process_emergency_text("I fell and my wrist looks wrong")

        assert situation.code == TriageCode.YELLOW
        assert situation.description == "Probable fracture"
        assert "<<<\nI fell and my wrist looks wrong\n>>>" in model.prompts[1]
        assert "probable fracture" in model.prompts[1]

    @pytest.mark.asyncio
    async def test_invalid_json_analysis_falls_through_to_structuring(self):
        model = ScriptedModel(
            text=[_text_reply('{"triage_code": ["not", "a", "string"], "confidence": "high"}')],
            structured=[_json_reply(triage_code="GREEN", confidence=0.6, summary="Minor")],
        )

        situation = await TextProcessor(model).process_emergency_text("report")

        assert situation.code == TriageCode.GREEN
        assert model.structured == []

    @pytest.mark.asyncio
    async def test_lowercase_code_maps_to_unknown(self):
        model = ScriptedModel(text=[_json_reply(triage_code="red", confidence=0.9, summary="x")])

        situation = await TextProcessor(model).process_emergency_text("report")

        assert situation.code == TriageCode.UNKNOWN

    @pytest.mark.asyncio
    async def test_values_are_clamped(self):
        model = ScriptedModel(text=[_json_reply(
            triage_code="RED",
            confidence=1.7,
            summary="x",
            emotional_state={"distress": 8, "panic": -0.2, "clarity": 0.5},
        )])

        situation = await TextProcessor(model).process_emergency_text("report")

        assert situation.confidence == 1.0
        assert situation.emotional_markers == {"distress": 0.8, "panic": 0.0, "clarity": 0.5}

    @pytest.mark.asyncio
    async def test_empty_summary_falls_back_to_input(self):
        model = ScriptedModel(text=[_json_reply(triage_code="GREEN", confidence=0.5, summary="")])

        situation = await TextProcessor(model).process_emergency_text("  Sore throat since Monday  ")

        assert situation.description == "Sore throat since Monday"

    @pytest.mark.asyncio
    async def test_vendor_metadata_is_namespaced(self):
        model = ScriptedModel(
            text=[_text_reply("prose")],
            structured=[ModelResponse(
                content=json.dumps({"triage_code": "RED", "summary": "x", "recommended_actions": ["CPR"]}),
                format=ResponseFormat.JSON,
                metadata={"safety_ratings": {"MEDICAL": "LOW"}, "output_tokens": 12},
            )],
        )

        situation = await TextProcessor(model).process_emergency_text("report")

        assert situation.metadata["model_meta_finish_reason"] == "STOP"
        assert json.loads(situation.metadata["model_meta_safety_ratings"]) == {"MEDICAL": "LOW"}
        assert situation.metadata["model_meta_output_tokens"] == "12"
        assert json.loads(situation.metadata["recommended_actions"]) == ["CPR"]

    @pytest.mark.asyncio
    async def test_analysis_failure_is_extraction_error(self):
        model = ScriptedModel(text=[APICallFailedError("vendor 500")])

        with pytest.raises(ExtractionError) as exc_info:
            await TextProcessor(model).process_emergency_text("report")

        assert exc_info.value.details["stage"] == "analysis"

    @pytest.mark.asyncio
    async def test_invalid_structured_json_is_extraction_error(self):
        model = ScriptedModel(
            text=[_text_reply("prose")],
            structured=[_text_reply("not json at all")],
        )

        with pytest.raises(ExtractionError):
            await TextProcessor(model).process_emergency_text("report")

    @pytest.mark.asyncio
    async def test_model_timeout_propagates_unwrapped(self):
        model = ScriptedModel(text=[ContextDeadlineExceededError("slow vendor")])

        with pytest.raises(ContextDeadlineExceededError):
            await TextProcessor(model).process_emergency_text("report")

    @pytest.mark.asyncio
    async def test_processor_timeout(self):
        class SlowModel(ScriptedModel):
            async def process_text(self, prompt: str) -> ModelResponse:
                await asyncio.sleep(5)
                return _text_reply("late")

        with pytest.raises(DeadlineExceededError):
            await TextProcessor(SlowModel(), timeout_seconds=0.05).process_emergency_text("report")


class TestAudioProcessor:

    @pytest.mark.asyncio
    async def test_dummy_audio_flow(self, dummy_model: DummyModel, location):
        processor = AudioProcessor(dummy_model)

        situation = await processor.process_emergency_audio(AudioInput(data=b"\x00\x01" * 500), location)

        assert dummy_model.call_count == 3
        assert situation.code in (TriageCode.RED, TriageCode.YELLOW, TriageCode.GREEN)
        assert situation.metadata["input_modality"] == "audio"
        assert situation.location == location

    @pytest.mark.asyncio
    async def test_emotion_failure_uses_placeholder(self):
        model = ScriptedModel(
            audio=[_text_reply("He collapsed and is not breathing")],
            text=[RateLimitExceededError("429")],
            structured=[_json_reply(triage_code="RED", confidence=0.95, summary="Collapse")],
        )

        situation = await AudioProcessor(model).process_emergency_audio(AudioInput(data=b"abc"))

        assert situation.code == TriageCode.RED
        assert EMOTION_PLACEHOLDER in model.prompts[-1]

    @pytest.mark.asyncio
    async def test_emotion_notes_feed_structuring(self):
        model = ScriptedModel(
            audio=[_text_reply("My arm hurts")],
            text=[_text_reply("Caller sounds calm but in pain.")],
            structured=[_json_reply(triage_code="YELLOW", confidence=0.7, summary="Arm pain")],
        )

        await AudioProcessor(model).process_emergency_audio(AudioInput(data=b"abc"))

        assert "Caller sounds calm but in pain." in model.prompts[-1]
        assert "<<<\nMy arm hurts\n>>>" in model.prompts[-1]

    @pytest.mark.asyncio
    async def test_empty_transcript_is_extraction_error(self):
        model = ScriptedModel(audio=[_text_reply("   ")])

        with pytest.raises(ExtractionError):
            await AudioProcessor(model).process_emergency_audio(AudioInput(data=b"abc"))

    @pytest.mark.asyncio
    async def test_transcription_failure_is_extraction_error(self):
        model = ScriptedModel(audio=[APICallFailedError("upload failed")])

        with pytest.raises(ExtractionError) as exc_info:
            await AudioProcessor(model).process_emergency_audio(AudioInput(data=b"abc"))

        assert exc_info.value.details["stage"] == "transcription"

    @pytest.mark.asyncio
    async def test_transcript_stored_when_enabled(self):
        model = ScriptedModel(
            audio=[_text_reply("Burn on my hand")],
            text=[_text_reply("calm")],
            structured=[_json_reply(triage_code="YELLOW", summary="Burn")],
        )

        situation = await AudioProcessor(model, store_raw_transcripts=True).process_emergency_audio(
            AudioInput(data=b"abc")
        )

        assert situation.metadata["transcript"] == "Burn on my hand"


class TestStructuredAssessment:

    def test_missing_fields_use_defaults(self):
        assessment = StructuredAssessment.from_content('{"summary": "x"}')

        assert assessment.triage_code == "UNKNOWN"
        assert assessment.confidence == 0.0
        assert assessment.keywords == []

    def test_null_values_tolerated(self):
        assessment = StructuredAssessment.from_content('{"triage_code": null, "confidence": null}')

        assert assessment.triage_code == "UNKNOWN"
        assert assessment.confidence == 0.0

    def test_normalize_markers_rescales_ten_point_scores(self):
        assert normalize_markers({"pain": 7, "panic": 0.4, "distress": 15}) == {
            "pain": 0.7,
            "panic": 0.4,
            "distress": 1.0,
        }
