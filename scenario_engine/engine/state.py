from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from scenario_engine.engine.progress import ProgressTracker
from scenario_engine.engine.views import Scenario, SelectorSet

logger = logging.getLogger(__name__)


class SessionStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    TIMED_OUT = "timedOut"
    ERROR = "error"


TERMINAL_STATES = {SessionStatus.COMPLETED, SessionStatus.TIMED_OUT, SessionStatus.ERROR}
ACTIVE_STATES = {SessionStatus.RUNNING, SessionStatus.PAUSED}


@dataclass
class Session:
    """One scenario run, owned by the engine from start until it is discarded."""

    id: str
    scenario: Scenario
    selectors: SelectorSet
    tracker: ProgressTracker
    started_at: float
    tab_id: Optional[Any] = None
    status: SessionStatus = SessionStatus.RUNNING
    current_page: Optional[str] = None
    error: Optional[str] = None
    ticks: int = 0
    # Bumped on every pause/stop/finish so an interrupted tick can tell it is stale
    generation: int = 0
    # Arrival counter; entry actions run when it moves past entry_done_for
    arrival: int = 0
    entry_done_for: int = -1
    stuck_attempts: int = 0
    summary: Optional[dict[str, Any]] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATES

    def record_arrival(self, page_type: Optional[str]) -> bool:
        """Track a detected page type; True when it differs from the current one."""
        if page_type == self.current_page:
            return False
        logger.debug(f"📄 Page changed: {self.current_page} -> {page_type}")
        self.current_page = page_type
        self.arrival += 1
        self.stuck_attempts = 0
        return True
