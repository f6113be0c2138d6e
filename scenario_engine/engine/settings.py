from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scenario_engine.config import CONFIG
from scenario_engine.engine.views import DurationRange

logger = logging.getLogger(__name__)


class EngineSettings(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)

    # Humanization
    slow_mode: bool = Field(
        default_factory=lambda: CONFIG.SCENARIO_ENGINE_SLOW_MODE,
        description="Double every resolved wait.",
    )
    random_delay: bool = Field(
        default_factory=lambda: CONFIG.SCENARIO_ENGINE_RANDOM_DELAY,
        description="Apply uniform jitter to resolved waits; off gives the raw sampled value.",
    )
    natural_movement: bool = Field(
        default_factory=lambda: CONFIG.SCENARIO_ENGINE_NATURAL_MOVEMENT,
        description="When false every pointer move uses the direct pattern.",
    )
    jitter_ratio: float = Field(0.2, ge=0, le=1, description="Relative jitter applied to resolved waits (0.2 = ±20%).")
    min_wait_ms: float = Field(100, ge=0, description="Lower clamp for every resolved wait.")
    seed: Optional[int] = Field(
        default_factory=lambda: CONFIG.SCENARIO_ENGINE_SEED,
        description="Run seed for the shared random source; None draws a fresh seed.",
    )

    # Bounded polling
    transition_timeout_ms: float = Field(10_000, gt=0, description="How long to wait for a navigation action's target page.")
    transition_poll_ms: float = Field(500, gt=0, description="Page re-detection interval while waiting for a transition.")
    element_wait_timeout_ms: float = Field(10_000, gt=0, description="Default deadline for element waits.")
    element_wait_poll_ms: float = Field(500, gt=0, description="Default polling interval for element waits.")

    # Stuck recovery
    recovery_wait_ms: float = Field(2_000, ge=0, description="Pause after a recovery back-navigation before re-detecting.")
    max_recovery_attempts: int = Field(3, ge=0, description="Consecutive stuck ticks tolerated before the session completes.")

    default_stay_duration: DurationRange = Field(
        default_factory=DurationRange,
        description="Inter-tick delay used when no page configuration is available.",
    )
    use_selector_cache: bool = Field(True, description="Cache resolved selectors between ticks (revalidated on reuse).")
    screenshot_dir: str = Field(
        default_factory=lambda: CONFIG.SCENARIO_ENGINE_SCREENSHOT_DIR,
        description="Directory for screenshot captures.",
    )

    def merged(self, updates: dict[str, Any]) -> 'EngineSettings':
        """Copy with ``updates`` applied; keys may be snake_case or camelCase, unknown keys are ignored."""
        names: dict[str, str] = {}
        for name, info in type(self).model_fields.items():
            names[name] = name
            if info.alias:
                names[info.alias] = name
        ignored = sorted(key for key in updates if key not in names)
        if ignored:
            logger.debug(f"Ignoring unknown settings: {', '.join(ignored)}")
        data = self.model_dump()
        data.update({names[key]: value for key, value in updates.items() if key in names})
        return type(self).model_validate(data)
