"""
RapidTriage - API Schemas

Pydantic models for request/response validation.
These define the contract between dispatch clients and the backend.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from rapidtriage.core.types import EmergencyResponse, Location


# ===========================================
# Request Schemas
# ===========================================

class LocationSchema(BaseModel):
    """Caller location as reported by the client device."""

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    address: Optional[str] = Field(default=None, max_length=500)

    def to_domain(self) -> Location:
        return Location(
            latitude=self.latitude,
            longitude=self.longitude,
            address=self.address or None,
        )


class TextEmergencyRequest(BaseModel):
    """Typed emergency report."""

    text: str = Field(
        description="Free-text description of the emergency",
        max_length=10000,
    )
    location: Optional[LocationSchema] = None


# ===========================================
# Response Schemas
# ===========================================

class ToolResponseSchema(BaseModel):
    tool_name: str
    success: bool
    message: str
    data: Dict[str, str] = Field(default_factory=dict)
    timestamp: str


class FacilitySchema(BaseModel):
    id: str
    name: str
    type: str = Field(description="hospital | ambulance")
    latitude: float
    longitude: float
    address: Optional[str] = None
    distance_km: float


class EmergencyResponseSchema(BaseModel):
    """
    Result of one emergency.

    ``tool_responses`` lists only the actions that succeeded, in the order
    they ran. The facility lists are omitted when empty.
    """

    emergency_id: str
    code: str = Field(description="RED | YELLOW | GREEN | UNKNOWN")
    summary: str
    timestamp: str = Field(description="RFC 3339, UTC")
    tool_responses: List[ToolResponseSchema] = Field(default_factory=list)
    nearest_hospitals: Optional[List[FacilitySchema]] = None
    nearest_ambulances: Optional[List[FacilitySchema]] = None

    @classmethod
    def from_domain(cls, response: EmergencyResponse) -> "EmergencyResponseSchema":
        return cls.model_validate(response.to_dict())


class ErrorResponse(BaseModel):
    """Client-safe error body. Vendor payloads never appear here."""

    error: str
    message: str


# ===========================================
# Health Schemas
# ===========================================

class HealthResponse(BaseModel):
    """System health status."""

    status: str = Field(description="Overall status: healthy | degraded")
    timestamp: str
    version: str
    model: str
    classifier: str
    tools: List[str]
    components: Dict[str, str] = Field(default_factory=dict)
