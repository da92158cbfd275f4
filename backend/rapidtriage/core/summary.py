"""
RapidTriage - Responder Summary

Deterministic template composition of the responder-facing report. No model
call, no side effects.
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import Callable, List, Protocol, Sequence, runtime_checkable

from rapidtriage.core.types import (
    Situation,
    ToolResponse,
    TriageCode,
    format_rfc3339,
    utcnow,
)

PRIORITY_TEXT = {
    TriageCode.RED: "CRITICAL - IMMEDIATE RESPONSE REQUIRED",
    TriageCode.YELLOW: "URGENT - PROMPT RESPONSE REQUIRED",
    TriageCode.GREEN: "NON-URGENT - STANDARD RESPONSE",
}
UNCLASSIFIED_TEXT = "UNCLASSIFIED EMERGENCY"


@runtime_checkable
class SummaryGenerator(Protocol):
    @abstractmethod
    def generate_summary(self, situation: Situation, responses: Sequence[ToolResponse]) -> str:
        ...


def fallback_summary(situation: Situation) -> str:
    """Minimal summary used when the generator fails."""
    return (
        f"Emergency: {situation.description} "
        f"(Code {situation.code.value}). Confidence: {situation.confidence:.2f}"
    )


class TemplateSummaryGenerator:
    """
    Banner, description, optional patient/location sections, timestamps,
    confidence and one line per dispatched action.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    def generate_summary(self, situation: Situation, responses: Sequence[ToolResponse]) -> str:
        priority = PRIORITY_TEXT.get(situation.code, UNCLASSIFIED_TEXT)

        lines: List[str] = [
            f"EMERGENCY ALERT: {priority} - {situation.code.value}",
            "",
            f"Description: {situation.description}",
        ]

        patient = situation.patient_info
        if patient is not None:
            patient_lines = []
            if patient.name:
                patient_lines.append(f"Name: {patient.name}")
            if patient.age:
                patient_lines.append(f"Age: {patient.age}")
            if patient.gender:
                patient_lines.append(f"Gender: {patient.gender}")
            if patient.allergies:
                patient_lines.append(f"Allergies: {', '.join(patient.allergies)}")
            if patient_lines:
                lines += ["", "PATIENT INFO:"] + patient_lines

        location = situation.location
        if location is not None:
            lines += ["", f"LOCATION: Lat {location.latitude:.6f}, Long {location.longitude:.6f}"]
            if location.address:
                lines.append(f"Address: {location.address}")

        if responses:
            lines += ["", "ACTIONS TAKEN:"]
            lines += [f"- {r.tool_name}: {r.message}" for r in responses]

        lines += [
            "",
            f"Emergency reported at: {format_rfc3339(situation.timestamp)}",
            f"Alert generated at: {format_rfc3339(self._clock())}",
            "",
            f"Assessment confidence: {situation.confidence * 100:.1f}%",
        ]

        return "\n".join(lines) + "\n"
