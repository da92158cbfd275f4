"""
RapidTriage - Hospital Booking Tool

Looks up a bookable appointment slot for non-urgent (GREEN) cases.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from rapidtriage.core.types import Situation, ToolKind, ToolResponse, TriageCode
from rapidtriage.tools.base import HTTPDispatcher, SleepFunc, ToolConfig, stringify_values

BOOKING_FIELDS = ("booking_url", "hospital_id", "wait_time")


class BookingTool:
    """POST {endpoint}/bookings/lookup; returns booking_url, hospital_id and wait_time."""

    def __init__(
        self,
        config: ToolConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        self._dispatcher = HTTPDispatcher(config, "booking", transport=transport, sleep=sleep)

    @property
    def name(self) -> str:
        return "Hospital Booking Tool"

    @property
    def kind(self) -> ToolKind:
        return ToolKind.BOOKING

    @property
    def config(self) -> ToolConfig:
        return self._dispatcher.config

    def is_applicable(self, situation: Situation) -> bool:
        return situation.code == TriageCode.GREEN

    async def execute(self, situation: Situation) -> ToolResponse:
        payload: Dict[str, Any] = {
            "emergency_id": situation.id,
            "description": situation.description,
            "keywords": list(situation.keywords),
        }
        if situation.location:
            payload["location"] = situation.location.to_dict()

        data = stringify_values(await self._dispatcher.post("/bookings/lookup", payload))

        missing = [f for f in BOOKING_FIELDS if f not in data]
        message = "Found available booking"
        if missing:
            message = f"Booking found with incomplete details (missing: {', '.join(missing)})"

        return ToolResponse(
            tool_name=self.name,
            success=True,
            message=message,
            data=data,
        )
