"""
RapidTriage - Action Tools

Pluggable response actions (hospital notify, ambulance dispatch, booking
lookup, facility lookup). Each carries a ToolKind, a pure applicability
predicate and a retrying execute contract.
"""

from .ambulance import AmbulanceTool
from .base import EmergencyTool, HTTPDispatcher, ToolConfig
from .booking import BookingTool
from .hospital import HospitalTool
from .location import LocationTool, haversine_km
from .registry import ToolRegistry

__all__ = [
    "AmbulanceTool",
    "BookingTool",
    "EmergencyTool",
    "HTTPDispatcher",
    "HospitalTool",
    "LocationTool",
    "ToolConfig",
    "ToolRegistry",
    "haversine_km",
]
