"""
RapidTriage - Action Tool Contract

Architecture:
    - EmergencyTool: Protocol every response action implements
    - ToolConfig: endpoint/key/retry/timeout for one external service
    - HTTPDispatcher: shared retrying request sender

Dispatch contract:
    One request is built once and sent up to ``retry_attempts`` times.
    Before attempt n (n >= 1) the dispatcher sleeps n^2 x 100ms. It retries
    on transport errors and non-2xx statuses and stops at the first 2xx.
    Exhausting attempts, or a 2xx body that does not parse, raises
    ToolDispatchError. Partial data is never returned.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, runtime_checkable

import httpx

from rapidtriage.core.exceptions import ToolDispatchError
from rapidtriage.core.types import Situation, ToolKind, ToolResponse

logger = logging.getLogger(__name__)

BACKOFF_UNIT_SECONDS = 0.1

SleepFunc = Callable[[float], Awaitable[Any]]


# =============================================================================
# Protocol (Interface)
# =============================================================================

@runtime_checkable
class EmergencyTool(Protocol):
    """
    Protocol for response actions.

    ``kind`` is the identity the coordinator's dispatch policy branches on;
    ``name`` is the display string reported in ToolResponse.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def kind(self) -> ToolKind:
        ...

    @abstractmethod
    def is_applicable(self, situation: Situation) -> bool:
        """Pure predicate, no I/O."""
        ...

    @abstractmethod
    async def execute(self, situation: Situation) -> ToolResponse:
        """
        Run the action. Raises ToolExecutionError or ToolDispatchError.

        Must honor cancellation.
        """
        ...


# =============================================================================
# Config
# =============================================================================

@dataclass
class ToolConfig:
    endpoint: str
    api_key: str = ""
    timeout_seconds: float = 30.0
    retry_attempts: int = 3

    def __post_init__(self) -> None:
        self.endpoint = self.endpoint.rstrip("/")
        if self.timeout_seconds <= 0:
            self.timeout_seconds = 30.0
        if self.retry_attempts <= 0:
            self.retry_attempts = 3

    @property
    def worst_case_seconds(self) -> float:
        """Upper bound for one full retry series, backoff included."""
        backoff = sum(n * n * BACKOFF_UNIT_SECONDS for n in range(1, self.retry_attempts))
        return self.retry_attempts * self.timeout_seconds + backoff


def stringify_values(data: Any) -> Dict[str, str]:
    """Coerce a JSON object into the string map ToolResponse.data carries."""
    if not isinstance(data, dict):
        raise ToolDispatchError(
            "service response is not a JSON object",
            details={"type": type(data).__name__},
        )
    return {
        str(k): v if isinstance(v, str) else json.dumps(v, default=str)
        for k, v in data.items()
    }


# =============================================================================
# HTTP Dispatcher
# =============================================================================

class HTTPDispatcher:
    """
    Retrying JSON-over-HTTP sender shared by all tools.

    Args:
        config: Target service settings
        service: Short label for logs and errors (e.g. "hospital")
        transport: Optional httpx transport (tests inject MockTransport)
        sleep: Backoff sleep, cancellable (defaults to asyncio.sleep)
    """

    def __init__(
        self,
        config: ToolConfig,
        service: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        self._config = config
        self._service = service
        self._transport = transport
        self._sleep = sleep or asyncio.sleep

    @property
    def config(self) -> ToolConfig:
        return self._config

    async def post(
        self,
        path: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """POST ``payload`` to ``endpoint + path`` and return the decoded JSON body."""
        all_headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._config.api_key}",
        }
        all_headers.update(headers or {})

        attempts = self._config.retry_attempts
        last_status: Optional[int] = None
        last_error: Optional[str] = None

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout_seconds),
            transport=self._transport,
        ) as client:
            request = client.build_request(
                "POST",
                f"{self._config.endpoint}{path}",
                json=payload,
                headers=all_headers,
            )

            for attempt in range(attempts):
                if attempt > 0:
                    await self._sleep(attempt * attempt * BACKOFF_UNIT_SECONDS)

                try:
                    response = await client.send(request)
                except httpx.HTTPError as e:
                    last_status, last_error = None, type(e).__name__
                    logger.warning(
                        "%s dispatch attempt %d/%d failed: %s",
                        self._service, attempt + 1, attempts, last_error,
                    )
                    continue

                if 200 <= response.status_code < 300:
                    logger.debug(
                        "%s dispatch succeeded on attempt %d/%d",
                        self._service, attempt + 1, attempts,
                    )
                    return self._decode(response)

                last_status, last_error = response.status_code, None
                logger.warning(
                    "%s dispatch attempt %d/%d returned status %d",
                    self._service, attempt + 1, attempts, response.status_code,
                )

        reason = f"status {last_status}" if last_status is not None else last_error
        raise ToolDispatchError(
            f"{self._service} service unreachable after {attempts} attempts ({reason})",
            details={"service": self._service, "last_status": last_status, "last_error": last_error},
            attempts=attempts,
            last_status=last_status,
        )

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ToolDispatchError(
                f"failed to parse {self._service} service response",
                details={"service": self._service, "status": response.status_code},
                last_status=response.status_code,
            ) from e
