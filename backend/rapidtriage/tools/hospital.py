"""
RapidTriage - Hospital Notification Tool

Notifies the receiving hospital of an incoming emergency. Applicable to every
situation; the dispatch policy decides whether it actually runs.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from rapidtriage.core.types import Situation, ToolKind, ToolResponse, format_rfc3339
from rapidtriage.tools.base import HTTPDispatcher, SleepFunc, ToolConfig, stringify_values


class HospitalTool:
    """POST {endpoint}/emergencies with the triage code in X-Emergency-Code."""

    def __init__(
        self,
        config: ToolConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        self._dispatcher = HTTPDispatcher(config, "hospital", transport=transport, sleep=sleep)

    @property
    def name(self) -> str:
        return "Hospital Communication Tool"

    @property
    def kind(self) -> ToolKind:
        return ToolKind.HOSPITAL

    @property
    def config(self) -> ToolConfig:
        return self._dispatcher.config

    def is_applicable(self, situation: Situation) -> bool:
        return True

    async def execute(self, situation: Situation) -> ToolResponse:
        payload: Dict[str, Any] = {
            "emergency_id": situation.id,
            "code": situation.code.value,
            "description": situation.description,
            "timestamp": format_rfc3339(situation.timestamp),
        }
        if situation.location:
            payload["location"] = situation.location.to_dict()
        if situation.patient_info:
            payload["patient_info"] = situation.patient_info.to_dict()

        body = await self._dispatcher.post(
            "/emergencies",
            payload,
            headers={"X-Emergency-Code": situation.code.value},
        )

        return ToolResponse(
            tool_name=self.name,
            success=True,
            message="Successfully communicated emergency to hospital",
            data=stringify_values(body),
        )
