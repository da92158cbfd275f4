"""
RapidTriage - Emergency Coordinator

Central orchestration layer that turns a Situation into an EmergencyResponse.
This is the single entry point for both the audio and text ingress flows.

Architecture:
    The coordinator is a small state machine:

    1. UNCATEGORIZED -> CLASSIFIED: run the classifier once if the code is
       still UNKNOWN. A classifier failure aborts the request.
    2. CLASSIFIED -> DISPATCHED: take the applicable tools and apply the
       severity policy:
           RED    -> every applicable hospital or ambulance tool
           YELLOW -> first applicable hospital tool
           GREEN  -> first applicable booking tool
           other  -> nothing
       A failing tool is logged and omitted; siblings still run.
    3. DISPATCHED -> SUMMARIZED: compose the responder summary, falling back
       to a one-line summary if the generator fails.

    Nearby facilities are looked up best-effort alongside dispatch.

Design Principles:
    - Sequential per request: tools run in order, responses keep that order
    - Time-bounded: the whole run shares one deadline, and expiry surfaces
      as DeadlineExceededError, distinct from other failures
    - Observable: metrics callback plus request/emergency ids in log context

Usage:
    coordinator = EmergencyCoordinator(
        classifier=RuleBasedClassifier(fallback_code=TriageCode.YELLOW),
        registry=registry,
        summary_generator=TemplateSummaryGenerator(),
    )
    response = await coordinator.process_emergency(situation)
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, TYPE_CHECKING

from rapidtriage.core.exceptions import (
    ClassificationError,
    ConfigurationError,
    ContextDeadlineExceededError,
    DeadlineExceededError,
    RapidTriageError,
)
from rapidtriage.core.logging import LogContext
from rapidtriage.core.summary import SummaryGenerator, TemplateSummaryGenerator, fallback_summary
from rapidtriage.core.types import (
    CoordinatorState,
    EmergencyResponse,
    Facility,
    Situation,
    ToolKind,
    ToolResponse,
    TriageCode,
)
from rapidtriage.services.classifier import Classifier
from rapidtriage.tools.base import EmergencyTool
from rapidtriage.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from rapidtriage.config import Settings
    from rapidtriage.services.ai.registry import ModelProvider
    from rapidtriage.tools.location import LocationTool

logger = logging.getLogger(__name__)

NEAREST_HOSPITALS = 3
NEAREST_AMBULANCES = 2


# =============================================================================
# Coordinator Metrics (for observability)
# =============================================================================

@dataclass
class CoordinatorMetrics:
    """Metrics for a single coordinator run."""
    request_id: str
    emergency_id: str
    code: Optional[str] = None
    classification_ms: Optional[float] = None
    dispatch_ms: Optional[float] = None
    facility_lookup_ms: Optional[float] = None
    summary_ms: Optional[float] = None
    total_ms: Optional[float] = None
    tools_attempted: int = 0
    tools_succeeded: int = 0
    tools_failed: int = 0
    summary_fallback: bool = False
    final_state: CoordinatorState = CoordinatorState.UNCATEGORIZED
    success: bool = True
    error_stage: Optional[str] = None

    def to_dict(self) -> dict:
        def _r(v: Optional[float]) -> Optional[float]:
            return round(v, 2) if v is not None else None

        return {
            "request_id": self.request_id,
            "emergency_id": self.emergency_id[:8] + "...",
            "code": self.code,
            "classification_ms": _r(self.classification_ms),
            "dispatch_ms": _r(self.dispatch_ms),
            "facility_lookup_ms": _r(self.facility_lookup_ms),
            "summary_ms": _r(self.summary_ms),
            "total_ms": _r(self.total_ms),
            "tools_attempted": self.tools_attempted,
            "tools_succeeded": self.tools_succeeded,
            "tools_failed": self.tools_failed,
            "summary_fallback": self.summary_fallback,
            "final_state": self.final_state.value,
            "success": self.success,
            "error_stage": self.error_stage,
        }


# =============================================================================
# Dispatch Policy
# =============================================================================

def select_for_dispatch(code: TriageCode, applicable: List[EmergencyTool]) -> List[EmergencyTool]:
    """Apply the severity policy to the applicable tools, preserving order."""
    if code == TriageCode.RED:
        return [t for t in applicable if t.kind in (ToolKind.HOSPITAL, ToolKind.AMBULANCE)]
    if code == TriageCode.YELLOW:
        return [t for t in applicable if t.kind == ToolKind.HOSPITAL][:1]
    if code == TriageCode.GREEN:
        return [t for t in applicable if t.kind == ToolKind.BOOKING][:1]
    return []


# =============================================================================
# Emergency Coordinator
# =============================================================================

class EmergencyCoordinator:
    """
    Orchestrates classify -> dispatch -> summarize for one emergency.

    Attributes:
        classifier: Assigns code/confidence when the processor left UNKNOWN
        registry: Registered action tools
        summary_generator: Builds the responder summary
        location_tool: Optional facility lookup for nearest hospitals/ambulances
        timeout_seconds: Default deadline for a whole run
    """

    def __init__(
        self,
        classifier: Classifier,
        registry: ToolRegistry,
        summary_generator: Optional[SummaryGenerator] = None,
        location_tool: Optional["LocationTool"] = None,
        timeout_seconds: float = 30.0,
    ):
        self._classifier = classifier
        self._registry = registry
        self._summary = summary_generator or TemplateSummaryGenerator()
        self._location_tool = location_tool
        self._timeout_seconds = timeout_seconds

        self._metrics_callback: Optional[Callable[[CoordinatorMetrics], None]] = None

        logger.info(
            "EmergencyCoordinator initialized: classifier=%s, tools=%d, facility_lookup=%s, timeout=%.0fs",
            classifier.classifier_id,
            len(registry),
            "enabled" if location_tool else "disabled",
            timeout_seconds,
        )

    @property
    def classifier(self) -> Classifier:
        return self._classifier

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def process_emergency(
        self,
        situation: Situation,
        timeout: Optional[float] = None,
    ) -> EmergencyResponse:
        """
        Run the full state machine for ``situation``.

        Args:
            situation: Extracted situation (mutated once by classification)
            timeout: Deadline override in seconds (default: coordinator timeout)

        Returns:
            EmergencyResponse with successful tool responses in execution order

        Raises:
            ClassificationError: classifier failed
            ContextDeadlineExceededError: a model classifier call timed out
            DeadlineExceededError: deadline expired; outstanding work is cancelled
        """
        request_id = self._generate_request_id()
        deadline = timeout if timeout is not None else self._timeout_seconds
        metrics = CoordinatorMetrics(request_id=request_id, emergency_id=situation.id)
        start_time = time.perf_counter()

        with LogContext(request_id=request_id, emergency_id=situation.id):
            try:
                response = await asyncio.wait_for(self._run(situation, metrics), timeout=deadline)
                self._log_output(situation, response, metrics)
                return response

            except asyncio.TimeoutError as e:
                metrics.success = False
                metrics.error_stage = metrics.final_state.value
                logger.error(
                    "Emergency processing exceeded %.1fs deadline in state %s",
                    deadline,
                    metrics.final_state.value,
                )
                raise DeadlineExceededError(
                    f"emergency processing exceeded {deadline}s deadline",
                    details={"state": metrics.final_state.value},
                ) from e

            except RapidTriageError as e:
                metrics.success = False
                metrics.error_stage = metrics.final_state.value
                logger.error("Emergency processing failed: %s (%s)", e.code, e.message)
                raise

            finally:
                metrics.total_ms = (time.perf_counter() - start_time) * 1000
                self._emit_metrics(metrics)

    # -------------------------------------------------------------------------
    # State Machine (Internal)
    # -------------------------------------------------------------------------

    async def _run(self, situation: Situation, metrics: CoordinatorMetrics) -> EmergencyResponse:
        # --- UNCATEGORIZED -> CLASSIFIED ---
        stage_start = time.perf_counter()
        await self._classify(situation)
        metrics.classification_ms = (time.perf_counter() - stage_start) * 1000
        metrics.code = situation.code.value
        metrics.final_state = CoordinatorState.CLASSIFIED

        # --- CLASSIFIED -> DISPATCHED ---
        stage_start = time.perf_counter()
        tool_responses = await self._dispatch(situation, metrics)
        metrics.dispatch_ms = (time.perf_counter() - stage_start) * 1000

        stage_start = time.perf_counter()
        hospitals, ambulances = await self._lookup_facilities(situation)
        metrics.facility_lookup_ms = (time.perf_counter() - stage_start) * 1000
        metrics.final_state = CoordinatorState.DISPATCHED

        # --- DISPATCHED -> SUMMARIZED ---
        stage_start = time.perf_counter()
        summary = self._summarize(situation, tool_responses, metrics)
        metrics.summary_ms = (time.perf_counter() - stage_start) * 1000
        metrics.final_state = CoordinatorState.SUMMARIZED

        return EmergencyResponse(
            emergency_id=situation.id,
            code=situation.code,
            summary=summary,
            tool_responses=tool_responses,
            nearest_hospitals=hospitals,
            nearest_ambulances=ambulances,
        )

    async def _classify(self, situation: Situation) -> None:
        if situation.code != TriageCode.UNKNOWN:
            logger.debug("Code %s already assigned, skipping classification", situation.code.value)
            return

        try:
            code, confidence = await self._classifier.classify(situation)
            situation.set_triage_code(code, confidence)
        except (ClassificationError, ContextDeadlineExceededError):
            raise
        except (RapidTriageError, ValueError) as e:
            raise ClassificationError(
                f"classifier {self._classifier.classifier_id} failed: {e}",
            ) from e

        logger.info("Classified: code=%s, confidence=%.2f", situation.code.value, situation.confidence)

    async def _dispatch(self, situation: Situation, metrics: CoordinatorMetrics) -> List[ToolResponse]:
        applicable = self._registry.get_applicable(situation)
        selected = select_for_dispatch(situation.code, applicable)

        logger.info(
            "Dispatch policy for %s: %d applicable, %d selected [%s]",
            situation.code.value,
            len(applicable),
            len(selected),
            ", ".join(t.name for t in selected),
        )

        responses: List[ToolResponse] = []
        for tool in selected:
            metrics.tools_attempted += 1
            try:
                responses.append(await tool.execute(situation))
                metrics.tools_succeeded += 1
            except RapidTriageError as e:
                metrics.tools_failed += 1
                logger.warning("Tool %s failed, omitting: %s", tool.name, e.message)
            except Exception as e:
                metrics.tools_failed += 1
                logger.warning("Tool %s raised unexpectedly, omitting: %s", tool.name, e, exc_info=True)

        if selected and not responses:
            logger.error(
                "All %d dispatched tools failed for %s emergency",
                len(selected),
                situation.code.value,
            )

        return responses

    async def _lookup_facilities(self, situation: Situation) -> Tuple[List[Facility], List[Facility]]:
        """Best-effort; failures leave the lists empty."""
        if self._location_tool is None or situation.location is None:
            return [], []

        hospitals: List[Facility] = []
        ambulances: List[Facility] = []
        try:
            hospitals = await self._location_tool.get_nearest_hospitals(situation.location, NEAREST_HOSPITALS)
            if situation.code in (TriageCode.RED, TriageCode.YELLOW):
                ambulances = await self._location_tool.get_nearest_ambulances(
                    situation.location, NEAREST_AMBULANCES
                )
        except RapidTriageError as e:
            logger.warning("Facility lookup failed, continuing without it: %s", e.message)

        return hospitals, ambulances

    def _summarize(
        self,
        situation: Situation,
        responses: List[ToolResponse],
        metrics: CoordinatorMetrics,
    ) -> str:
        try:
            return self._summary.generate_summary(situation, responses)
        except Exception as e:
            metrics.summary_fallback = True
            logger.warning("Summary generation failed, using fallback: %s", e)
            return fallback_summary(situation)

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    def set_metrics_callback(self, callback: Callable[[CoordinatorMetrics], None]) -> None:
        """
        Set callback for metrics emission.

        Called after every run (success or failure).
        """
        self._metrics_callback = callback

    def _emit_metrics(self, metrics: CoordinatorMetrics) -> None:
        logger.debug(
            "Coordinator run finished in %.1fms",
            metrics.total_ms or 0.0,
            extra={"event_type": "coordinator_metrics", "data": metrics.to_dict()},
        )
        if self._metrics_callback:
            try:
                self._metrics_callback(metrics)
            except Exception as e:
                logger.warning("Metrics emission failed: %s", e)

    def _log_output(
        self,
        situation: Situation,
        response: EmergencyResponse,
        metrics: CoordinatorMetrics,
    ) -> None:
        logger.info(
            "Result: code=%s, tools=%d/%d, hospitals=%d, ambulances=%d",
            response.code.value,
            metrics.tools_succeeded,
            metrics.tools_attempted,
            len(response.nearest_hospitals),
            len(response.nearest_ambulances),
        )

        if situation.is_life_threatening():
            logger.warning("CRITICAL emergency dispatched: tools=%d", metrics.tools_succeeded)

    def _generate_request_id(self) -> str:
        return f"req_{uuid.uuid4().hex[:12]}"


# =============================================================================
# Factory Functions
# =============================================================================

def service_budget_seconds(settings: "Settings") -> float:
    """
    Worst case the coordinator can spend waiting on other services.

    RED runs hospital then ambulance, each with full retries. Facility
    lookup adds one more retry series, or two when its cache is disabled
    (hospital and ambulance lookups then both reach the service). A model
    classifier adds its own timeout when one is configured.
    """
    from rapidtriage.tools.base import ToolConfig

    per_series = ToolConfig(
        endpoint="",
        timeout_seconds=settings.tool_timeout_seconds,
        retry_attempts=settings.tool_retry_attempts,
    ).worst_case_seconds

    series = 2
    if settings.location_api_endpoint:
        series += 1 if settings.location_cache_ttl_seconds > 0 else 2

    budget = series * per_series
    if settings.classifier_backend.strip().lower() == "model":
        budget += settings.model_timeout_seconds
    return budget


def validate_timeouts(settings: "Settings") -> None:
    """
    Reject a coordinator deadline that cannot cover the service budget.

    Raises:
        ConfigurationError: coordinator_timeout_seconds <= service budget
    """
    budget = service_budget_seconds(settings)
    if settings.coordinator_timeout_seconds <= budget:
        raise ConfigurationError(
            f"coordinator_timeout_seconds={settings.coordinator_timeout_seconds} must exceed "
            f"the worst-case service budget of {budget:.1f}s",
            details={
                "coordinator_timeout_seconds": settings.coordinator_timeout_seconds,
                "service_budget_seconds": round(budget, 3),
            },
        )
    logger.debug(
        "Coordinator deadline %.1fs covers service budget %.1fs",
        settings.coordinator_timeout_seconds,
        budget,
    )


def create_tool_registry(settings: "Settings") -> ToolRegistry:
    """Register hospital, ambulance and booking tools from settings."""
    from rapidtriage.tools import AmbulanceTool, BookingTool, HospitalTool, ToolConfig

    def _config(endpoint: str, api_key: str) -> ToolConfig:
        return ToolConfig(
            endpoint=endpoint,
            api_key=api_key,
            timeout_seconds=settings.tool_timeout_seconds,
            retry_attempts=settings.tool_retry_attempts,
        )

    registry = ToolRegistry()
    registry.register(HospitalTool(_config(settings.hospital_api_endpoint, settings.hospital_api_key)))
    registry.register(AmbulanceTool(_config(settings.ambulance_api_endpoint, settings.ambulance_api_key)))
    registry.register(BookingTool(_config(settings.booking_api_endpoint, settings.booking_api_key)))
    return registry


def create_location_tool(settings: "Settings") -> Optional["LocationTool"]:
    from rapidtriage.tools import LocationTool, ToolConfig

    if not settings.location_api_endpoint:
        logger.info("Facility lookup disabled (no location_api_endpoint)")
        return None

    return LocationTool(
        ToolConfig(
            endpoint=settings.location_api_endpoint,
            api_key=settings.location_api_key,
            timeout_seconds=settings.tool_timeout_seconds,
            retry_attempts=settings.tool_retry_attempts,
        ),
        max_results=settings.location_max_results,
        max_distance_km=settings.location_max_distance_km,
        cache_ttl_seconds=settings.location_cache_ttl_seconds,
    )


def create_coordinator(
    settings: "Settings",
    provider: Optional["ModelProvider"] = None,
) -> EmergencyCoordinator:
    """
    Factory function to create a configured EmergencyCoordinator.

    Selects implementations based on settings:
    - classifier_backend: "rules" | "model"
    - location_api_endpoint: empty disables facility lookup

    Raises:
        ConfigurationError: the coordinator deadline cannot cover the service budget

    IMPORTANT SAFETY NOTICE:
        Triage codes are decision support for human dispatchers.
        They are not a clinical diagnosis.
    """
    from rapidtriage.services.classifier import create_classifier

    validate_timeouts(settings)

    coordinator = EmergencyCoordinator(
        classifier=create_classifier(settings, provider),
        registry=create_tool_registry(settings),
        summary_generator=TemplateSummaryGenerator(),
        location_tool=create_location_tool(settings),
        timeout_seconds=settings.coordinator_timeout_seconds,
    )

    logger.info(
        "Coordinator configured: classifier=%s, tools=[%s]",
        coordinator.classifier.classifier_id,
        ", ".join(t.name for t in coordinator.registry.get_all()),
    )
    return coordinator
