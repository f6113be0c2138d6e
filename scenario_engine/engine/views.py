from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

DurationValue = Union[float, str]
MovePattern = Literal['direct', 'natural', 'hesitant']
Speed = Literal['slow', 'normal', 'fast']

_UNIT_MS = {
    'ms': 1.0,
    'milliseconds': 1.0,
    's': 1000.0,
    'sec': 1000.0,
    'seconds': 1000.0,
    'm': 60_000.0,
    'min': 60_000.0,
    'minutes': 60_000.0,
}


class ConfigModel(BaseModel):
    """Base for scenario documents: snake_case or camelCase keys, immutable once parsed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra='ignore')


class DurationRange(ConfigModel):
    min: float = 2
    max: float = 5
    unit: str = 'seconds'

    @field_validator('unit')
    @classmethod
    def _known_unit(cls, value: str) -> str:
        unit = value.strip().lower()
        if unit not in _UNIT_MS:
            raise ValueError(f'Unknown duration unit: {value}')
        return unit

    @model_validator(mode='after')
    def _ordered(self) -> 'DurationRange':
        if self.min < 0 or self.max < self.min:
            raise ValueError(f'Invalid duration range: {self.min}-{self.max}')
        return self

    def bounds_ms(self) -> tuple[float, float]:
        factor = _UNIT_MS[self.unit]
        return self.min * factor, self.max * factor


class SessionDuration(DurationRange):
    min: float = 5
    max: float = 15
    unit: str = 'minutes'


class Goals(ConfigModel):
    required_metrics: dict[str, float] = Field(default_factory=dict)
    optional_metrics: dict[str, float] = Field(default_factory=dict)
    session_duration: Optional[SessionDuration] = None


class Conditions(ConfigModel):
    """Preconditions of an action. Time bounds are milliseconds."""

    min_time_on_page: Optional[float] = None
    max_time_on_page: Optional[float] = None
    element_exists: Optional[str] = None
    element_not_exists: Optional[str] = None
    goal_progress: dict[str, float] = Field(default_factory=dict)


# Micro-actions


class _MicroActionBase(ConfigModel):
    # Failure of an optional step is logged and the sequence carries on
    optional: bool = False


class WaitAction(_MicroActionBase):
    type: Literal['wait'] = 'wait'
    duration: DurationValue = '1-2s'


class MoveAction(_MicroActionBase):
    type: Literal['move'] = 'move'
    target: str
    pattern: MovePattern = 'natural'
    speed: Speed = 'normal'


class HoverAction(_MicroActionBase):
    type: Literal['hover'] = 'hover'
    target: str
    duration: DurationValue = '1-2s'


class ClickAction(_MicroActionBase):
    type: Literal['click'] = 'click'
    target: str
    button: Literal['left', 'right', 'middle'] = 'left'
    count: int = Field(1, ge=1)


class ScrollAction(_MicroActionBase):
    type: Literal['scroll'] = 'scroll'
    distance: Optional[Union[int, float, str]] = None
    to: Optional[str] = None
    speed: Literal['slow', 'normal', 'fast', 'smooth'] = 'normal'

    @model_validator(mode='after')
    def _has_destination(self) -> 'ScrollAction':
        if self.distance is None and self.to is None:
            raise ValueError('scroll needs either distance or to')
        return self

    def distance_px(self) -> float:
        if self.distance is None:
            return 0.0
        if isinstance(self.distance, (int, float)):
            return float(self.distance)
        match = re.fullmatch(r'\s*([+-]?\d+(?:\.\d+)?)\s*(px)?\s*', self.distance)
        if not match:
            raise ValueError(f'Invalid scroll distance: {self.distance!r}')
        return float(match.group(1))


class TypeAction(_MicroActionBase):
    type: Literal['type'] = 'type'
    target: str
    text: str
    speed: DurationValue = '100-200ms'
    clear_first: bool = False


class VerifyAction(_MicroActionBase):
    type: Literal['verify'] = 'verify'
    target: str
    exists: bool = True


class ScreenshotAction(_MicroActionBase):
    type: Literal['screenshot'] = 'screenshot'
    filename: Optional[str] = None


class LogAction(_MicroActionBase):
    type: Literal['log'] = 'log'
    message: str = ''


MicroAction = Annotated[
    Union[
        WaitAction,
        MoveAction,
        HoverAction,
        ClickAction,
        ScrollAction,
        TypeAction,
        VerifyAction,
        ScreenshotAction,
        LogAction,
    ],
    Field(discriminator='type'),
]


class MicroActionEnvelope(BaseModel):
    """Validates a single free-standing micro-action (EXECUTE_ACTION)."""

    action: MicroAction


# Scenario structure


class Action(ConfigModel):
    name: str = 'unnamed'
    probability: float = 0.5
    conditions: Conditions = Field(default_factory=Conditions)
    impact: dict[str, float] = Field(default_factory=dict)
    micro_sequence: list[MicroAction] = Field(default_factory=list)
    target_page: Optional[str] = None

    @field_validator('probability')
    @classmethod
    def _clamp_probability(cls, value: float) -> float:
        if value < 0 or value > 1:
            logger.warning(f'⚠️ Action probability {value} out of range, clamping to [0, 1]')
        return max(0.0, min(1.0, value))


class PageActions(ConfigModel):
    non_navigation: list[Action] = Field(default_factory=list)
    navigation: list[Action] = Field(default_factory=list)

    def all(self) -> list[Action]:
        return [*self.non_navigation, *self.navigation]


class PageConfig(ConfigModel):
    stay_duration: DurationRange = Field(default_factory=DurationRange)
    entry_actions: list[MicroAction] = Field(default_factory=list)
    actions: PageActions = Field(default_factory=PageActions)


class Scenario(ConfigModel):
    id: str = ''
    name: str = ''
    description: Optional[str] = None
    enabled: bool = True
    goals: Goals = Field(default_factory=lambda: Goals(session_duration=SessionDuration()))
    pages: dict[str, PageConfig] = Field(default_factory=dict)


class PageSelectors(ConfigModel):
    url_pattern: Optional[str] = None
    identifiers: dict[str, str] = Field(default_factory=dict)
    elements: dict[str, str] = Field(default_factory=dict)

    @field_validator('url_pattern')
    @classmethod
    def _valid_pattern(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        try:
            re.compile(value)
        except re.error:
            logger.warning(f'⚠️ Invalid URL pattern {value!r}, matching every URL instead')
            return '.*'
        return value


class SelectorSet(ConfigModel):
    global_selectors: dict[str, str] = Field(default_factory=dict, alias='global')
    pages: dict[str, PageSelectors] = Field(default_factory=dict)


class Website(ConfigModel):
    name: str = ''
    domain: str = ''
    type: Optional[str] = None


class WebsiteConfig(ConfigModel):
    website: Website = Field(default_factory=Website)
    selectors: SelectorSet = Field(default_factory=SelectorSet)
    scenarios: dict[str, Scenario] = Field(default_factory=dict)

    @model_validator(mode='before')
    @classmethod
    def _scenario_ids_from_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get('scenarios'), dict):
            return data
        scenarios = {}
        for scenario_id, scenario in data['scenarios'].items():
            if isinstance(scenario, dict) and not scenario.get('id'):
                scenario = {**scenario, 'id': scenario_id}
            scenarios[scenario_id] = scenario
        return {**data, 'scenarios': scenarios}


# Command protocol


class CommandType(str, Enum):
    START_AUTOMATION = 'START_AUTOMATION'
    STOP_AUTOMATION = 'STOP_AUTOMATION'
    PAUSE_AUTOMATION = 'PAUSE_AUTOMATION'
    RESUME_AUTOMATION = 'RESUME_AUTOMATION'
    GET_STATUS = 'GET_STATUS'
    TEST_SELECTOR = 'TEST_SELECTOR'
    LOG_ACTION = 'LOG_ACTION'
    GET_PAGE_INFO = 'GET_PAGE_INFO'
    EXECUTE_ACTION = 'EXECUTE_ACTION'
    TAKE_SCREENSHOT = 'TAKE_SCREENSHOT'
    SETTINGS_UPDATED = 'SETTINGS_UPDATED'


class Command(BaseModel):
    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator('data', mode='before')
    @classmethod
    def _null_data_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class CommandResponse(BaseModel):
    success: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[dict[str, Any]] = None) -> 'CommandResponse':
        return cls(success=True, data=data or {})

    @classmethod
    def fail(cls, error: str, data: Optional[dict[str, Any]] = None) -> 'CommandResponse':
        return cls(success=False, error=error, data=data)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)
