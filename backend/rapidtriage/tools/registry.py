"""
RapidTriage - Tool Registry

Ordered collection of action tools. Built once at startup and injected into
the coordinator; read-mostly afterwards.
"""

from __future__ import annotations

import logging
import threading
from typing import List

from rapidtriage.core.types import Situation
from rapidtriage.tools.base import EmergencyTool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Registration-ordered tool list.

    Duplicate names are permitted and both execute. The lock guards the
    list; applicability checks run outside it.
    """

    def __init__(self) -> None:
        self._tools: List[EmergencyTool] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)

    def register(self, tool: EmergencyTool) -> None:
        with self._lock:
            self._tools.append(tool)
        logger.info("Registered tool: %s (%s)", tool.name, tool.kind.value)

    def get_all(self) -> List[EmergencyTool]:
        """Snapshot copy; mutating it does not affect the registry."""
        with self._lock:
            return list(self._tools)

    def get_applicable(self, situation: Situation) -> List[EmergencyTool]:
        """Tools whose predicate accepts ``situation``, in registration order."""
        return [tool for tool in self.get_all() if tool.is_applicable(situation)]
