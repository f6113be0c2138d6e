from scenario_engine.dom.resolver import ElementResolver, SelectorResolution
from scenario_engine.dom.service import DomService
from scenario_engine.dom.views import Box, ElementSnapshot, VirtualElement

__all__ = ['Box', 'DomService', 'ElementResolver', 'ElementSnapshot', 'SelectorResolution', 'VirtualElement']
