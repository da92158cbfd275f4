"""
RapidTriage - Test Configuration and Fixtures

Shared fixtures for all test modules.
"""

import os
import sys
from typing import Callable, Dict, Generator, List
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

# Ensure backend package is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rapidtriage.config import Settings
from rapidtriage.core.coordinator import EmergencyCoordinator
from rapidtriage.core.exceptions import ToolDispatchError
from rapidtriage.core.summary import TemplateSummaryGenerator
from rapidtriage.core.types import Location, Situation, ToolKind, ToolResponse, TriageCode
from rapidtriage.services.ai.dummy import DummyModel
from rapidtriage.services.classifier import RuleBasedClassifier
from rapidtriage.tools import AmbulanceTool, BookingTool, HospitalTool, LocationTool, ToolConfig, ToolRegistry


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests requiring external dependencies")


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def test_settings() -> Settings:
    """
    Create test settings with safe defaults.

    Dummy model, rule classifier with YELLOW fallback, transcripts not stored.
    """
    return Settings(
        _env_file=None,
        app_env="testing",
        app_debug=True,
        app_log_level="WARNING",  # Reduce noise in tests
        ai_model_type="dummy",
        classifier_backend="rules",
        classifier_fallback_code="YELLOW",
        store_raw_transcripts=False,
        anonymize_logs=True,
        hospital_api_endpoint="http://services.test/hospital",
        ambulance_api_endpoint="http://services.test/ambulance",
        booking_api_endpoint="http://services.test/booking",
        location_api_endpoint="http://services.test/location",
        tool_retry_attempts=3,
        tool_timeout_seconds=2,
        coordinator_timeout_seconds=30,
    )


# =============================================================================
# Domain Fixtures
# =============================================================================

@pytest.fixture
def location() -> Location:
    return Location(latitude=37.7749, longitude=-122.4194, address="1 Market St, San Francisco")


@pytest.fixture
def make_situation(location: Location) -> Callable[..., Situation]:
    """Factory for situations; located by default."""

    def _make(
        description: str = "Caller reports an emergency",
        code: TriageCode = TriageCode.UNKNOWN,
        confidence: float = 0.0,
        with_location: bool = True,
    ) -> Situation:
        return Situation(
            description=description,
            code=code,
            confidence=confidence,
            location=location if with_location else None,
        )

    return _make


@pytest.fixture
def dummy_model() -> DummyModel:
    """Create a dummy model backend."""
    return DummyModel()


# =============================================================================
# Fake Tools
# =============================================================================

class FakeTool:
    """In-memory tool recording each execution."""

    def __init__(
        self,
        name: str,
        kind: ToolKind,
        applicable: bool = True,
        fail: bool = False,
    ):
        self._name = name
        self._kind = kind
        self._applicable = applicable
        self._fail = fail
        self.executed: List[str] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def kind(self) -> ToolKind:
        return self._kind

    def is_applicable(self, situation: Situation) -> bool:
        return self._applicable

    async def execute(self, situation: Situation) -> ToolResponse:
        self.executed.append(situation.id)
        if self._fail:
            raise ToolDispatchError(f"{self._name} unreachable", attempts=3, last_status=503)
        return ToolResponse(tool_name=self._name, success=True, message=f"{self._name} done")


@pytest.fixture
def fake_tool() -> Callable[..., FakeTool]:
    return FakeTool


# =============================================================================
# Mock Response Services
# =============================================================================

FACILITIES = [
    {"id": "h-far", "name": "Far General", "type": "hospital", "latitude": 37.80, "longitude": -122.27},
    {"id": "h-near", "name": "Market Clinic", "type": "hospital", "latitude": 37.7755, "longitude": -122.4190},
    {"id": "a-1", "name": "Station 1", "type": "ambulance", "latitude": 37.7800, "longitude": -122.4100},
    {"id": "h-mid", "name": "Mission Hospital", "type": "hospital", "latitude": 37.7600, "longitude": -122.4200},
    {"id": "a-2", "name": "Station 2", "type": "ambulance", "latitude": 37.7700, "longitude": -122.4300},
]


class ServiceStub:
    """
    Routes requests for the four response services by path.

    ``status_overrides`` maps a path to a list of statuses served in order
    before falling back to 200.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_overrides: Dict[str, List[int]] = {}

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        pending = self.status_overrides.get(path)
        if pending:
            status = pending.pop(0)
            if status != 200:
                return httpx.Response(status, json={"error": "unavailable"})

        if path == "/hospital/emergencies":
            return httpx.Response(200, json={"status": "received", "bed_reserved": True})
        if path == "/ambulance/dispatch":
            return httpx.Response(200, json={"dispatch_id": "amb-42", "eta_minutes": 7})
        if path == "/booking/bookings/lookup":
            return httpx.Response(200, json={
                "booking_url": "https://book.test/slot/1",
                "hospital_id": "h-near",
                "wait_time": "25m",
            })
        if path == "/location/facilities/nearby":
            return httpx.Response(200, json={"facilities": FACILITIES})
        return httpx.Response(404, json={"error": "not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def service_stub() -> ServiceStub:
    return ServiceStub()


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Backoff sleep that returns immediately and records delays."""
    return AsyncMock(return_value=None)


def _tool_config(test_settings: Settings, endpoint: str) -> ToolConfig:
    return ToolConfig(
        endpoint=endpoint,
        api_key="test-key",
        timeout_seconds=test_settings.tool_timeout_seconds,
        retry_attempts=test_settings.tool_retry_attempts,
    )


@pytest.fixture
def tool_registry(test_settings: Settings, service_stub: ServiceStub, no_sleep: AsyncMock) -> ToolRegistry:
    """Real tools wired to the service stub."""
    transport = service_stub.transport
    registry = ToolRegistry()
    registry.register(HospitalTool(
        _tool_config(test_settings, test_settings.hospital_api_endpoint), transport=transport, sleep=no_sleep,
    ))
    registry.register(AmbulanceTool(
        _tool_config(test_settings, test_settings.ambulance_api_endpoint), transport=transport, sleep=no_sleep,
    ))
    registry.register(BookingTool(
        _tool_config(test_settings, test_settings.booking_api_endpoint), transport=transport, sleep=no_sleep,
    ))
    return registry


@pytest.fixture
def location_tool(test_settings: Settings, service_stub: ServiceStub, no_sleep: AsyncMock) -> LocationTool:
    return LocationTool(
        _tool_config(test_settings, test_settings.location_api_endpoint),
        transport=service_stub.transport,
        sleep=no_sleep,
    )


# =============================================================================
# Coordinator Fixtures
# =============================================================================

@pytest.fixture
def coordinator(tool_registry: ToolRegistry, location_tool: LocationTool) -> EmergencyCoordinator:
    """
    Coordinator with real tools against the service stub.

    The rule classifier falls back to YELLOW like the default settings.
    """
    return EmergencyCoordinator(
        classifier=RuleBasedClassifier(threshold=0.1, fallback_code=TriageCode.YELLOW),
        registry=tool_registry,
        summary_generator=TemplateSummaryGenerator(),
        location_tool=location_tool,
        timeout_seconds=5.0,
    )


# =============================================================================
# FastAPI App Fixture
# =============================================================================

@pytest.fixture
def app(test_settings: Settings):
    """Create a FastAPI app instance with test settings."""
    # Import here so sys.path is patched first
    from main import create_app

    return create_app(test_settings)


@pytest.fixture
def client(app, coordinator: EmergencyCoordinator) -> Generator[TestClient, None, None]:
    """
    Test client whose coordinator talks to the service stub.

    The lifespan builds the real coordinator; it is swapped afterwards so
    no request leaves the process.
    """
    with TestClient(app) as c:
        app.state.coordinator = coordinator
        yield c
