"""
RapidTriage - Responder Summary Tests

Run with: pytest tests/test_summary.py -v
"""

from datetime import datetime, timezone

import pytest

from rapidtriage.core.summary import TemplateSummaryGenerator, fallback_summary
from rapidtriage.core.types import Location, PatientInfo, Situation, ToolResponse, TriageCode

FIXED_NOW = datetime(2025, 3, 1, 12, 30, 5, tzinfo=timezone.utc)


@pytest.fixture
def generator() -> TemplateSummaryGenerator:
    return TemplateSummaryGenerator(clock=lambda: FIXED_NOW)


@pytest.fixture
def red_situation() -> Situation:
    situation = Situation(
        description="Adult male collapsed, not breathing",
        location=Location(37.7749, -122.4194, "1 Market St"),
        patient_info=PatientInfo(name="J. Doe", age=54, allergies=["penicillin", "latex"]),
        timestamp=datetime(2025, 3, 1, 12, 29, 58, tzinfo=timezone.utc),
    )
    situation.set_triage_code(TriageCode.RED, 0.875)
    return situation


class TestTemplateSummary:

    def test_full_layout(self, generator, red_situation):
        responses = [
            ToolResponse(tool_name="Hospital Communication Tool", success=True, message="Notified"),
            ToolResponse(tool_name="Ambulance Dispatch Tool", success=True, message="Dispatched"),
        ]

        summary = generator.generate_summary(red_situation, responses)

        assert summary == (
            "EMERGENCY ALERT: CRITICAL - IMMEDIATE RESPONSE REQUIRED - RED\n"
            "\n"
            "Description: Adult male collapsed, not breathing\n"
            "\n"
            "PATIENT INFO:\n"
            "Name: J. Doe\n"
            "Age: 54\n"
            "Allergies: penicillin, latex\n"
            "\n"
            "LOCATION: Lat 37.774900, Long -122.419400\n"
            "Address: 1 Market St\n"
            "\n"
            "ACTIONS TAKEN:\n"
            "- Hospital Communication Tool: Notified\n"
            "- Ambulance Dispatch Tool: Dispatched\n"
            "\n"
            "Emergency reported at: 2025-03-01T12:29:58Z\n"
            "Alert generated at: 2025-03-01T12:30:05Z\n"
            "\n"
            "Assessment confidence: 87.5%\n"
        )

    def test_optional_sections_omitted(self, generator):
        situation = Situation(description="Rash", code=TriageCode.GREEN, confidence=0.7)

        summary = generator.generate_summary(situation, [])

        assert summary.startswith("EMERGENCY ALERT: NON-URGENT - STANDARD RESPONSE - GREEN\n")
        assert "PATIENT INFO" not in summary
        assert "LOCATION" not in summary
        assert "ACTIONS TAKEN" not in summary

    def test_empty_patient_info_has_no_section(self, generator):
        situation = Situation(description="x", patient_info=PatientInfo())

        assert "PATIENT INFO" not in generator.generate_summary(situation, [])

    def test_unknown_code_banner(self, generator):
        summary = generator.generate_summary(Situation(description="x"), [])

        assert summary.startswith("EMERGENCY ALERT: UNCLASSIFIED EMERGENCY - UNKNOWN\n")


class TestFallbackSummary:

    def test_format(self):
        situation = Situation(description="Fall from ladder", code=TriageCode.YELLOW, confidence=0.756)

        assert fallback_summary(situation) == "Emergency: Fall from ladder (Code YELLOW). Confidence: 0.76"
