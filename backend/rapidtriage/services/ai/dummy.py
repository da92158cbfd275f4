"""
RapidTriage - Dummy Model Backend

Deterministic stand-in for a hosted model. No network calls, no API key.

Useful for:
    - Running the full pipeline locally without vendor credentials
    - Reproducible tests of the extraction and coordinator flows

The heuristics are intentionally simplistic and have NO clinical validity.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
from typing import Any, Dict, FrozenSet, List, Optional

from rapidtriage.core.types import AudioInput, ModelResponse, RequestType, ResponseFormat
from rapidtriage.services.ai.base import REPORT_END, REPORT_START, ModelConfig, ModelFamily

logger = logging.getLogger(__name__)

_REPORT_RE = re.compile(re.escape(REPORT_START) + r"(.*?)" + re.escape(REPORT_END), re.DOTALL)


class DummyModel:
    """
    Keyword-driven placeholder model.

    process_text replies with a fenced JSON assessment, process_structured
    with bare JSON, and process_audio with a canned transcript selected by
    audio hash.
    """

    CRITICAL_KEYWORDS = (
        "not breathing", "unconscious", "heart attack", "stroke",
        "severe bleeding", "choking", "seizure", "overdose", "collapsed",
    )

    URGENT_KEYWORDS = (
        "broken", "fracture", "deep cut", "burn", "chest pain",
        "difficulty breathing", "high fever", "concussion",
    )

    MINOR_KEYWORDS = (
        "sprain", "rash", "minor", "sore throat", "mild", "cold",
    )

    CANNED_TRANSCRIPTS = (
        "Please help, my father just collapsed in the kitchen and he is not breathing. "
        "I think it might be a heart attack.",
        "My son fell off his bike and I think his arm is broken, there is a deep cut on his elbow.",
        "I twisted my ankle jogging this morning, it looks like a sprain and it is a bit swollen.",
        "There was a car crash outside my house, one driver is unconscious and there is severe bleeding.",
        "My daughter has had a high fever since last night and she is very drowsy.",
        "I have a sore throat and a mild fever, I was hoping to see a doctor today.",
    )

    def __init__(self, config: Optional[ModelConfig] = None, simulated_latency_ms: float = 0.0):
        self._model_name = (config.model_name if config and config.model_name else "dummy-triage-v0.1")
        self._simulated_latency_ms = simulated_latency_ms
        self._call_count = 0

    @property
    def name(self) -> str:
        return self._model_name

    @property
    def family(self) -> ModelFamily:
        return ModelFamily.DUMMY

    @property
    def call_count(self) -> int:
        return self._call_count

    def supported_request_types(self) -> FrozenSet[RequestType]:
        return frozenset(RequestType)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def process_text(self, prompt: str) -> ModelResponse:
        await self._tick()
        assessment = self._assess(self._report_text(prompt))
        content = "```json\n" + json.dumps(assessment, indent=2) + "\n```"
        return ModelResponse(content=content, format=ResponseFormat.TEXT, metadata=self._metadata())

    async def process_structured(self, prompt: str, schema: str) -> ModelResponse:
        await self._tick()
        assessment = self._assess(self._report_text(prompt))
        return ModelResponse(
            content=json.dumps(assessment),
            format=ResponseFormat.JSON,
            metadata=self._metadata(),
        )

    async def process_audio(self, audio: AudioInput, prompt: str) -> ModelResponse:
        await self._tick()
        audio_hash = hashlib.md5(audio.data).hexdigest()
        idx = int(audio_hash[:8], 16) % len(self.CANNED_TRANSCRIPTS)

        logger.debug("DummyModel: transcribed %d bytes, call #%d", len(audio.data), self._call_count)

        return ModelResponse(
            content=self.CANNED_TRANSCRIPTS[idx],
            format=ResponseFormat.TEXT,
            metadata=self._metadata(),
        )

    # -------------------------------------------------------------------------
    # Heuristics
    # -------------------------------------------------------------------------

    async def _tick(self) -> None:
        self._call_count += 1
        if self._simulated_latency_ms > 0:
            await asyncio.sleep(self._simulated_latency_ms / 1000.0)

    def _metadata(self) -> Dict[str, Any]:
        return {"model": self.name, "call_count": self._call_count}

    @staticmethod
    def _report_text(prompt: str) -> str:
        match = _REPORT_RE.search(prompt)
        return (match.group(1) if match else prompt).strip()

    @staticmethod
    def _find_matches(text_lower: str, keywords: tuple) -> List[str]:
        return [kw for kw in keywords if kw in text_lower]

    def _assess(self, report: str) -> Dict[str, Any]:
        text_lower = report.lower()

        critical = self._find_matches(text_lower, self.CRITICAL_KEYWORDS)
        urgent = self._find_matches(text_lower, self.URGENT_KEYWORDS)
        minor = self._find_matches(text_lower, self.MINOR_KEYWORDS)

        if critical:
            code, confidence, emergency_type = "RED", 0.9, "critical medical emergency"
            actions = ["Call emergency services", "Begin CPR if trained and patient is not breathing"]
        elif urgent:
            code, confidence, emergency_type = "YELLOW", 0.75, "urgent injury or illness"
            actions = ["Keep the patient still", "Seek prompt medical attention"]
        elif minor:
            code, confidence, emergency_type = "GREEN", 0.7, "minor complaint"
            actions = ["Book a clinic visit"]
        else:
            code, confidence, emergency_type = "UNKNOWN", 0.2, "unclassified"
            actions = []

        exclamations = report.count("!")
        distress = min(1.0, 0.3 + 0.2 * len(critical) + 0.1 * len(urgent) + 0.05 * exclamations)

        first_sentence = re.split(r"(?<=[.!?])\s+", report, maxsplit=1)[0] if report else ""

        return {
            "emergency_type": emergency_type,
            "triage_code": code,
            "confidence": confidence,
            "emotional_state": {
                "distress": round(distress, 2),
                "panic": round(min(1.0, 0.1 + 0.2 * len(critical)), 2),
                "pain": 0.6 if (critical or urgent) else 0.2,
                "confusion": 0.1,
                "clarity": 0.8,
            },
            "keywords": critical + urgent + minor,
            "summary": first_sentence[:200],
            "recommended_actions": actions,
        }
