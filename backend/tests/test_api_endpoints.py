"""
RapidTriage - API Endpoint Tests

Tests for REST API endpoints using FastAPI TestClient.
These tests verify:
- Health and root endpoints
- Typed and spoken emergency ingress
- Error mapping to {"error", "message"} bodies

Run with: pytest tests/test_api_endpoints.py -v
"""

import json
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from rapidtriage.api.routes import parse_location, resolve_audio_format
from rapidtriage.core.exceptions import (
    DeadlineExceededError,
    ExtractionError,
    InvalidAudioFormatError,
    InvalidRequestError,
)

LOCATION = {"latitude": 37.7749, "longitude": -122.4194, "address": "1 Market St"}


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_returns_200(self, client: TestClient):
        response = client.get("/api/v1/health")
        assert response.status_code == 200

    def test_health_reports_model_and_tools(self, client: TestClient):
        data = client.get("/api/v1/health").json()

        assert data["status"] == "healthy"
        assert data["model"] == "dummy-triage-v0.1"
        assert data["classifier"].startswith("rules-v1")
        assert data["tools"] == [
            "Hospital Communication Tool",
            "Ambulance Dispatch Tool",
            "Hospital Booking Tool",
        ]
        assert data["components"]["model_family"] == "dummy"
        assert data["components"]["environment"] == "testing"


class TestRootEndpoint:
    """Tests for the root endpoint."""

    def test_root_returns_service_info(self, client: TestClient):
        data = client.get("/").json()

        assert data["service"] == "RapidTriage"
        assert data["status"] == "operational"
        assert "version" in data


class TestTextEmergency:
    """Tests for POST /api/v1/emergency/text."""

    def test_critical_report_dispatches_hospital_and_ambulance(self, client: TestClient, service_stub):
        response = client.post("/api/v1/emergency/text", json={
            "text": "My father collapsed in the kitchen and he is not breathing.",
            "location": LOCATION,
        })

        assert response.status_code == 200
        data = response.json()
        assert data["code"] == "RED"
        assert [t["tool_name"] for t in data["tool_responses"]] == [
            "Hospital Communication Tool",
            "Ambulance Dispatch Tool",
        ]
        assert all(t["success"] for t in data["tool_responses"])
        assert data["nearest_hospitals"][0]["id"] == "h-near"
        assert data["summary"].startswith("EMERGENCY ALERT: CRITICAL")
        assert data["timestamp"].endswith("Z")
        assert service_stub.calls_to("/booking/bookings/lookup") == []

    def test_minor_report_books_a_slot(self, client: TestClient):
        response = client.post("/api/v1/emergency/text", json={"text": "I have a mild rash on my arm."})

        assert response.status_code == 200
        data = response.json()
        assert data["code"] == "GREEN"
        assert [t["tool_name"] for t in data["tool_responses"]] == ["Hospital Booking Tool"]
        assert data["tool_responses"][0]["data"]["booking_url"] == "https://book.test/slot/1"
        assert "nearest_hospitals" not in data
        assert "nearest_ambulances" not in data

    def test_unmatched_report_falls_back_to_yellow(self, client: TestClient):
        """The dummy model leaves the code UNKNOWN, the rule classifier falls back."""
        response = client.post("/api/v1/emergency/text", json={"text": "Something feels wrong with my neighbour"})

        assert response.status_code == 200
        assert response.json()["code"] == "YELLOW"

    @pytest.mark.parametrize("text", ["", "   \n\t"])
    def test_empty_text_rejected(self, client: TestClient, text: str):
        response = client.post("/api/v1/emergency/text", json={"text": text})

        assert response.status_code == 400
        assert response.json() == {"error": "INVALID_REQUEST", "message": "text must not be empty"}

    def test_missing_text_field_is_422(self, client: TestClient):
        response = client.post("/api/v1/emergency/text", json={"location": LOCATION})

        assert response.status_code == 422

    def test_out_of_range_location_is_422(self, client: TestClient):
        response = client.post("/api/v1/emergency/text", json={
            "text": "help",
            "location": {"latitude": 91, "longitude": 0},
        })

        assert response.status_code == 422

    def test_extraction_failure_maps_to_502(self, app, client: TestClient):
        app.state.text_processor.process_emergency_text = AsyncMock(
            side_effect=ExtractionError("upstream said no", details={"stage": "analysis"})
        )

        response = client.post("/api/v1/emergency/text", json={"text": "help"})

        assert response.status_code == 502
        assert response.json() == {
            "error": "EXTRACTION_ERROR",
            "message": "Could not extract an assessment from the report",
        }

    def test_deadline_maps_to_504(self, app, client: TestClient):
        app.state.text_processor.process_emergency_text = AsyncMock(
            side_effect=DeadlineExceededError("text processing exceeded 30s")
        )

        response = client.post("/api/v1/emergency/text", json={"text": "help"})

        assert response.status_code == 504
        assert response.json()["error"] == "DEADLINE_EXCEEDED"


class TestAudioEmergency:
    """Tests for POST /api/v1/emergency (multipart)."""

    def test_audio_upload_processed(self, client: TestClient):
        response = client.post(
            "/api/v1/emergency",
            files={"audio": ("call.mp3", b"\xff\xfb\x90\x00" * 64, "audio/mpeg")},
            data={"location": json.dumps(LOCATION)},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["code"] in ("RED", "YELLOW", "GREEN")
        assert data["tool_responses"]

    def test_audio_without_location(self, client: TestClient):
        response = client.post(
            "/api/v1/emergency",
            files={"audio": ("call.wav", b"RIFF" + b"\x00" * 128, "audio/wav")},
        )

        assert response.status_code == 200
        assert "nearest_hospitals" not in response.json()

    def test_json_body_is_415(self, client: TestClient):
        response = client.post("/api/v1/emergency", json={"audio": "not a file"})

        assert response.status_code == 415
        assert response.json()["error"] == "UNSUPPORTED_MEDIA_TYPE"

    def test_missing_audio_part_is_400(self, client: TestClient):
        response = client.post(
            "/api/v1/emergency",
            files={"recording": ("call.mp3", b"abc", "audio/mpeg")},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_REQUEST"

    def test_empty_audio_is_400(self, client: TestClient):
        response = client.post("/api/v1/emergency", files={"audio": ("call.mp3", b"", "audio/mpeg")})

        assert response.status_code == 400
        assert response.json()["message"] == "audio file is empty"

    def test_oversized_audio_is_413(self, app, client: TestClient, test_settings):
        app.state.settings = test_settings.model_copy(update={"max_audio_size_mb": 1})

        response = client.post(
            "/api/v1/emergency",
            files={"audio": ("call.mp3", b"\x00" * (1024 * 1024 + 1), "audio/mpeg")},
        )

        assert response.status_code == 413
        assert response.json()["error"] == "PAYLOAD_TOO_LARGE"

    def test_malformed_location_is_400(self, client: TestClient):
        response = client.post(
            "/api/v1/emergency",
            files={"audio": ("call.mp3", b"abc", "audio/mpeg")},
            data={"location": "{not json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_REQUEST"

    def test_unknown_audio_format_is_400(self, client: TestClient):
        response = client.post(
            "/api/v1/emergency",
            files={"audio": ("notes.txt", b"abc", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "INVALID_AUDIO_FORMAT", "message": "Unsupported audio format"}


class TestRequestHelpers:
    """Tests for the form parsing helpers."""

    @pytest.mark.parametrize("filename,content_type,expected", [
        ("call.MP3", "application/octet-stream", "mp3"),
        ("blob", "audio/wav", "wav"),
        (None, "audio/mp4; codecs=mp4a", "m4a"),
        ("blob", "audio/webm", "webm"),
    ])
    def test_resolve_audio_format(self, filename, content_type, expected):
        assert resolve_audio_format(filename, content_type) == expected

    def test_resolve_audio_format_rejects_non_audio(self):
        with pytest.raises(InvalidAudioFormatError):
            resolve_audio_format("image.png", "image/png")

    def test_parse_location(self):
        location = parse_location(json.dumps(LOCATION))

        assert (location.latitude, location.longitude, location.address) == (37.7749, -122.4194, "1 Market St")
        assert parse_location(None) is None
        assert parse_location("  ") is None

    def test_parse_location_out_of_range(self):
        with pytest.raises(InvalidRequestError):
            parse_location(json.dumps({"latitude": 10, "longitude": 200}))
