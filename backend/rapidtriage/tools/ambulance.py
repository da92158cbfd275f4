"""
RapidTriage - Ambulance Dispatch Tool
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from rapidtriage.core.exceptions import ToolExecutionError
from rapidtriage.core.types import Situation, ToolKind, ToolResponse, TriageCode, format_rfc3339
from rapidtriage.tools.base import HTTPDispatcher, SleepFunc, ToolConfig, stringify_values

PRIORITY_BY_CODE = {
    TriageCode.RED: "HIGH",
    TriageCode.YELLOW: "MEDIUM",
}


def priority_for(code: TriageCode) -> str:
    return PRIORITY_BY_CODE.get(code, "LOW")


class AmbulanceTool:
    """
    POST {endpoint}/dispatch for RED and YELLOW emergencies.

    A location is required; executing without one raises ToolExecutionError
    before any request is made.
    """

    def __init__(
        self,
        config: ToolConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        self._dispatcher = HTTPDispatcher(config, "ambulance", transport=transport, sleep=sleep)

    @property
    def name(self) -> str:
        return "Ambulance Dispatch Tool"

    @property
    def kind(self) -> ToolKind:
        return ToolKind.AMBULANCE

    @property
    def config(self) -> ToolConfig:
        return self._dispatcher.config

    def is_applicable(self, situation: Situation) -> bool:
        return situation.code in (TriageCode.RED, TriageCode.YELLOW)

    async def execute(self, situation: Situation) -> ToolResponse:
        if situation.location is None:
            raise ToolExecutionError(
                "cannot dispatch ambulance: location information missing",
                details={"emergency_id": situation.id},
            )

        payload: Dict[str, Any] = {
            "emergency_id": situation.id,
            "code": situation.code.value,
            "location": situation.location.to_dict(),
            "description": situation.description,
            "timestamp": format_rfc3339(situation.timestamp),
        }
        if situation.patient_info:
            payload["patient_info"] = situation.patient_info.to_dict()

        body = await self._dispatcher.post(
            "/dispatch",
            payload,
            headers={"X-Priority": priority_for(situation.code)},
        )

        return ToolResponse(
            tool_name=self.name,
            success=True,
            message="Successfully dispatched ambulance to the location",
            data=stringify_values(body),
        )
