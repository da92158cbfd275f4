"""
RapidTriage - Core Package

Contains the central orchestration logic and domain types:
- coordinator: classify -> dispatch -> summarize state machine
- types: Domain types (Situation, ToolResponse, EmergencyResponse, ...)
- summary: Responder summary composition
- exceptions: Error taxonomy mapped to HTTP statuses
"""

from .types import (
    AudioInput,
    CoordinatorState,
    EmergencyResponse,
    Facility,
    InputModality,
    Location,
    ModelResponse,
    PatientInfo,
    RequestType,
    ResponseFormat,
    Situation,
    ToolKind,
    ToolResponse,
    TriageCode,
)
from .coordinator import (
    CoordinatorMetrics,
    EmergencyCoordinator,
    create_coordinator,
    select_for_dispatch,
    service_budget_seconds,
    validate_timeouts,
)
from .summary import SummaryGenerator, TemplateSummaryGenerator, fallback_summary

__all__ = [
    # Coordinator
    "CoordinatorMetrics",
    "EmergencyCoordinator",
    "create_coordinator",
    "select_for_dispatch",
    "service_budget_seconds",
    "validate_timeouts",
    # Summary
    "SummaryGenerator",
    "TemplateSummaryGenerator",
    "fallback_summary",
    # Types
    "AudioInput",
    "CoordinatorState",
    "EmergencyResponse",
    "Facility",
    "InputModality",
    "Location",
    "ModelResponse",
    "PatientInfo",
    "RequestType",
    "ResponseFormat",
    "Situation",
    "ToolKind",
    "ToolResponse",
    "TriageCode",
]
