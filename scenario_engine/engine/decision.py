from __future__ import annotations

import logging
import random
from typing import Optional, Sequence

from scenario_engine.dom.resolver import ElementResolver
from scenario_engine.engine.progress import ProgressTracker
from scenario_engine.engine.views import Action, Conditions

logger = logging.getLogger(__name__)


def pick_weighted(actions: Sequence[Action], draw: float) -> Optional[Action]:
    """Walk ``actions`` subtracting weights from ``draw``; the first to reach <= 0 wins.

    ``draw`` is expected in ``[0, total_weight)``. Weights are relative, not
    probabilities. Rounding leftovers fall through to the last action.
    """
    if not actions:
        return None
    remaining = draw
    for action in actions:
        remaining -= action.probability
        if remaining <= 0:
            return action
    return actions[-1]


class ActionSelector:
    """Filters a page's actions by weight and preconditions, then draws one."""

    def __init__(self, tracker: ProgressTracker, resolver: ElementResolver, rng: Optional[random.Random] = None):
        self.tracker = tracker
        self.resolver = resolver
        self.rng = rng or random.Random()

    async def check_conditions(self, conditions: Conditions) -> bool:
        """Time bounds, element presence, element absence, then goal progress; first failure wins."""
        time_on_page = self.tracker.get_time_on_current_page()
        if conditions.min_time_on_page is not None and time_on_page < conditions.min_time_on_page:
            return False
        if conditions.max_time_on_page is not None and time_on_page > conditions.max_time_on_page:
            return False

        if conditions.element_exists and not await self.resolver.exists(conditions.element_exists):
            return False
        if conditions.element_not_exists and await self.resolver.exists(conditions.element_not_exists):
            return False

        for metric, threshold in conditions.goal_progress.items():
            if self.tracker.get_metric(metric) < threshold:
                return False
        return True

    async def eligible(self, candidates: Sequence[Action]) -> list[Action]:
        eligible = []
        for action in candidates:
            if action.probability <= 0:
                continue
            if not await self.check_conditions(action.conditions):
                logger.debug(f"🚫 Action {action.name!r} filtered out by its conditions")
                continue
            eligible.append(action)
        return eligible

    def choose(self, eligible: Sequence[Action]) -> Optional[Action]:
        if not eligible:
            return None
        total = sum(action.probability for action in eligible)
        return pick_weighted(eligible, self.rng.random() * total)

    async def select(self, candidates: Sequence[Action]) -> Optional[Action]:
        """Eligible-then-weighted choice; None when nothing is eligible."""
        action = self.choose(await self.eligible(candidates))
        if action is not None:
            logger.debug(f"🎯 Selected action {action.name!r}")
        return action
