from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from scenario_engine.engine.views import Goals
from scenario_engine.timing import Clock, SystemClock

logger = logging.getLogger(__name__)


class ProgressTracker:
    """Accumulates session metrics and answers goal/timeout questions.

    All times are milliseconds from the injected clock.
    """

    def __init__(self, goals: Optional[Goals] = None, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self.goals = goals or Goals()
        self.metrics: dict[str, float] = {}
        self.current_page: Optional[str] = None
        self.session_start: float = self.clock.now_ms()
        self.page_arrival: float = self.session_start
        self.initialize(self.goals)

    def initialize(self, goals: Goals) -> None:
        """Reset metrics to zero for every configured metric and restart the session clock."""
        self.goals = goals
        self.metrics = {name: 0.0 for name in (*goals.required_metrics, *goals.optional_metrics)}
        self.session_start = self.clock.now_ms()
        self.page_arrival = self.session_start
        self.current_page = None

    def update_metrics(self, deltas: Mapping[str, float]) -> None:
        for name, delta in deltas.items():
            self.metrics[name] = self.metrics.get(name, 0.0) + delta
        if deltas:
            logger.debug(f"📈 Metrics updated: {dict(deltas)} -> {self.metrics}")

    def get_metric(self, name: str) -> float:
        return self.metrics.get(name, 0.0)

    def update_current_page(self, page_type: Optional[str]) -> None:
        self.current_page = page_type
        self.page_arrival = self.clock.now_ms()

    def get_time_on_current_page(self) -> float:
        return self.clock.now_ms() - self.page_arrival

    def get_session_duration(self) -> float:
        return self.clock.now_ms() - self.session_start

    def are_goals_met(self) -> bool:
        required = self.goals.required_metrics
        # Without required metrics the session ends by timeout or stop only
        if not required:
            return False
        return all(self.get_metric(name) >= target for name, target in required.items())

    def is_session_timed_out(self) -> bool:
        duration = self.goals.session_duration
        if duration is None:
            return False
        _, max_ms = duration.bounds_ms()
        return self.get_session_duration() >= max_ms

    def _metric_ratio(self) -> Optional[float]:
        required = self.goals.required_metrics
        if not required:
            return None
        ratios = []
        for name, target in required.items():
            ratios.append(1.0 if target <= 0 else min(1.0, self.get_metric(name) / target))
        return sum(ratios) / len(ratios)

    def _time_ratio(self) -> Optional[float]:
        duration = self.goals.session_duration
        if duration is None:
            return None
        _, max_ms = duration.bounds_ms()
        if max_ms <= 0:
            return 1.0
        return min(1.0, self.get_session_duration() / max_ms)

    def get_overall_progress(self) -> float:
        """Percentage in [0, 100].

        Metric completion dominates: the time ratio only fills in when no
        required metrics exist, and otherwise lifts progress by a quarter of its weight.
        """
        metric_ratio = self._metric_ratio()
        time_ratio = self._time_ratio()
        if metric_ratio is None and time_ratio is None:
            return 0.0
        if metric_ratio is None:
            progress = time_ratio
        elif time_ratio is None:
            progress = metric_ratio
        else:
            progress = 0.75 * metric_ratio + 0.25 * time_ratio
        return round(progress * 100, 1)

    def get_goal_status(self) -> dict[str, dict[str, Any]]:
        status: dict[str, dict[str, Any]] = {}
        for name, target in self.goals.required_metrics.items():
            current = self.get_metric(name)
            status[name] = {'current': current, 'required': target, 'met': current >= target, 'optional': False}
        for name, target in self.goals.optional_metrics.items():
            current = self.get_metric(name)
            status[name] = {'current': current, 'required': target, 'met': current >= target, 'optional': True}
        return status

    def snapshot(self) -> dict[str, Any]:
        return {
            'metrics': dict(self.metrics),
            'goals': self.get_goal_status(),
            'progress': self.get_overall_progress(),
            'duration': self.get_session_duration(),
            'timeOnPage': self.get_time_on_current_page(),
            'currentPage': self.current_page,
        }
