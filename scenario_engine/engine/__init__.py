from scenario_engine.engine.service import ScenarioEngine
from scenario_engine.engine.settings import EngineSettings
from scenario_engine.engine.state import Session, SessionStatus
from scenario_engine.engine.views import Command, CommandResponse, CommandType, Scenario, SelectorSet, WebsiteConfig

__all__ = [
    'Command',
    'CommandResponse',
    'CommandType',
    'EngineSettings',
    'Scenario',
    'ScenarioEngine',
    'SelectorSet',
    'Session',
    'SessionStatus',
    'WebsiteConfig',
]
