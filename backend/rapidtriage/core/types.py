"""
RapidTriage - Core Domain Types

Internal type definitions for the emergency pipeline. These are domain objects
used within the core, service and tool layers, independent of API serialization.

Design Notes:
- These types are the "lingua franca" between pipeline components.
- API layer converts these to/from Pydantic schemas for external communication.
- Situation is the single mutable object of a request; everything it
  produces downstream (ToolResponse, ModelResponse) is frozen.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def format_rfc3339(ts: datetime) -> str:
    """Format a datetime as RFC3339 with second precision."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.isoformat(timespec="seconds").replace("+00:00", "Z")


# =============================================================================
# Enums
# =============================================================================

class TriageCode(str, Enum):
    """Severity code assigned to an emergency."""
    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_exact(cls, value: Any) -> "TriageCode":
        """
        Map a string to a concrete code by exact match only.

        Anything other than "RED", "YELLOW" or "GREEN" is UNKNOWN.
        """
        if value in ("RED", "YELLOW", "GREEN"):
            return cls(value)
        return cls.UNKNOWN


class ResponseFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


class RequestType(str, Enum):
    """Input modality a model can accept."""
    TEXT = "text"
    AUDIO = "audio"
    IMAGE = "image"
    MULTIMODAL = "multimodal"


class InputModality(str, Enum):
    TEXT = "text"
    AUDIO = "audio"


class ToolKind(str, Enum):
    """Capability tag carried by every action tool; dispatch policy branches on it."""
    HOSPITAL = "hospital"
    AMBULANCE = "ambulance"
    BOOKING = "booking"
    FACILITY_LOOKUP = "facility_lookup"


class CoordinatorState(str, Enum):
    """Lifecycle of a single emergency through the coordinator."""
    UNCATEGORIZED = "uncategorized"
    CLASSIFIED = "classified"
    DISPATCHED = "dispatched"
    SUMMARIZED = "summarized"


# =============================================================================
# Location / Patient
# =============================================================================

@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address or "",
        }


@dataclass
class PatientInfo:
    name: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    allergies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.name:
            data["name"] = self.name
        if self.age:
            data["age"] = self.age
        if self.gender:
            data["gender"] = self.gender
        if self.allergies:
            data["allergies"] = list(self.allergies)
        return data


@dataclass(frozen=True)
class Facility:
    """A nearby hospital or ambulance station."""
    id: str
    name: str
    type: str  # "hospital" | "ambulance"
    latitude: float
    longitude: float
    address: Optional[str] = None
    distance_km: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
            "distance_km": round(self.distance_km, 3),
        }


# =============================================================================
# Audio Input
# =============================================================================

AUDIO_MIME_TYPES: Dict[str, str] = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    "m4a": "audio/mp4",
    "aac": "audio/aac",
    "opus": "audio/opus",
}


def detect_mime_type(audio_format: str) -> str:
    """Map an audio file extension to its MIME type (default audio/mpeg)."""
    return AUDIO_MIME_TYPES.get(audio_format.lower().lstrip("."), "audio/mpeg")


@dataclass(frozen=True)
class AudioInput:
    """Raw audio payload plus the hints a model needs to decode it."""
    data: bytes
    audio_format: str = "mp3"
    mime_type: str = ""
    language: str = "en"

    @property
    def resolved_mime_type(self) -> str:
        return self.mime_type or detect_mime_type(self.audio_format)


# =============================================================================
# Situation (Core Domain Object)
# =============================================================================

@dataclass
class Situation:
    """
    Structured emergency assessment.

    Created once per request by a processor. The classifier sets
    ``code`` and ``confidence`` exactly once through ``set_triage_code``;
    everything else is read-only downstream.
    """
    description: str
    code: TriageCode = TriageCode.UNKNOWN
    confidence: float = 0.0
    location: Optional[Location] = None
    patient_info: Optional[PatientInfo] = None
    emotional_markers: Dict[str, float] = field(default_factory=dict)
    keywords: List[str] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        if not self.code:
            self.code = TriageCode.UNKNOWN
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "id" and "id" in self.__dict__:
            raise AttributeError("Situation.id is immutable once created")
        super().__setattr__(name, value)

    def set_triage_code(self, code: TriageCode, confidence: float) -> None:
        """
        Set code and confidence together.

        A concrete code is assigned once: the transition is UNKNOWN to
        RED/YELLOW/GREEN, and a situation that already carries a concrete
        code rejects any further assignment.

        Raises:
            ValueError: confidence outside [0, 1], or code already assigned
        """
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {confidence}")
        if self.code != TriageCode.UNKNOWN:
            raise ValueError(f"triage code already assigned ({self.code.value})")
        self.code = code
        self.confidence = confidence

    def is_life_threatening(self) -> bool:
        return self.code == TriageCode.RED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "code": self.code.value,
            "confidence": self.confidence,
            "location": self.location.to_dict() if self.location else None,
            "patient_info": self.patient_info.to_dict() if self.patient_info else None,
            "emotional_markers": dict(self.emotional_markers),
            "keywords": list(self.keywords),
            "metadata": dict(self.metadata),
            "timestamp": format_rfc3339(self.timestamp),
        }


# =============================================================================
# Responses
# =============================================================================

@dataclass(frozen=True)
class ToolResponse:
    """Outcome of one tool's full retry series. Never mutated once produced."""
    tool_name: str
    success: bool
    message: str
    data: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "success": self.success,
            "message": self.message,
            "data": dict(self.data),
            "timestamp": format_rfc3339(self.timestamp),
        }


@dataclass(frozen=True)
class ModelResponse:
    """
    Output of one model call.

    ``raw`` holds the vendor payload for diagnostics only. It is never
    serialized to API clients.
    """
    content: str
    format: ResponseFormat = ResponseFormat.TEXT
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw: Any = field(default=None, repr=False, compare=False)


@dataclass
class EmergencyResponse:
    """Aggregate result of one emergency. Built once, not persisted."""
    emergency_id: str
    code: TriageCode
    summary: str
    timestamp: datetime = field(default_factory=utcnow)
    tool_responses: List[ToolResponse] = field(default_factory=list)
    nearest_hospitals: List[Facility] = field(default_factory=list)
    nearest_ambulances: List[Facility] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "emergency_id": self.emergency_id,
            "code": self.code.value,
            "summary": self.summary,
            "timestamp": format_rfc3339(self.timestamp),
            "tool_responses": [r.to_dict() for r in self.tool_responses],
        }
        if self.nearest_hospitals:
            data["nearest_hospitals"] = [f.to_dict() for f in self.nearest_hospitals]
        if self.nearest_ambulances:
            data["nearest_ambulances"] = [f.to_dict() for f in self.nearest_ambulances]
        return data
