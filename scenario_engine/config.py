"""Environment-driven configuration.

Values are read from the process environment on every access so that a
``.env`` file loaded by python-dotenv, or a test that patches ``os.environ``,
is always honoured.
"""
from __future__ import annotations

import os
from typing import Optional


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


class _Config:
    @property
    def SCENARIO_ENGINE_LOGGING_LEVEL(self) -> str:
        return os.getenv('SCENARIO_ENGINE_LOGGING_LEVEL', 'info').lower()

    @property
    def SCENARIO_ENGINE_SETUP_LOGGING(self) -> bool:
        return _env_flag('SCENARIO_ENGINE_SETUP_LOGGING', True)

    @property
    def SCENARIO_ENGINE_SLOW_MODE(self) -> bool:
        return _env_flag('SCENARIO_ENGINE_SLOW_MODE', False)

    @property
    def SCENARIO_ENGINE_RANDOM_DELAY(self) -> bool:
        return _env_flag('SCENARIO_ENGINE_RANDOM_DELAY', True)

    @property
    def SCENARIO_ENGINE_NATURAL_MOVEMENT(self) -> bool:
        return _env_flag('SCENARIO_ENGINE_NATURAL_MOVEMENT', True)

    @property
    def SCENARIO_ENGINE_SCREENSHOT_DIR(self) -> str:
        return os.getenv('SCENARIO_ENGINE_SCREENSHOT_DIR', 'screenshots')

    @property
    def SCENARIO_ENGINE_SEED(self) -> Optional[int]:
        raw = os.getenv('SCENARIO_ENGINE_SEED')
        if raw is None or raw.strip() == '':
            return None
        try:
            return int(raw)
        except ValueError:
            return None


CONFIG = _Config()
