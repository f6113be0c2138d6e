import os

from scenario_engine.logging_config import setup_logging

# Hosts that own logging (or test suites) opt out with SCENARIO_ENGINE_SETUP_LOGGING=false
if os.environ.get('SCENARIO_ENGINE_SETUP_LOGGING', 'true').lower() != 'false':
	logger = setup_logging()
else:
	import logging

	logger = logging.getLogger('scenario_engine')


# --- Lazy re-exports ---
# Keep `import scenario_engine` cheap: playwright and pydantic models load on first use.

_LAZY_EXPORTS = {
	# Engine
	'ScenarioEngine': ('scenario_engine.engine.service', 'ScenarioEngine'),
	'EngineSettings': ('scenario_engine.engine.settings', 'EngineSettings'),
	'SessionStatus': ('scenario_engine.engine.state', 'SessionStatus'),
	'ProgressTracker': ('scenario_engine.engine.progress', 'ProgressTracker'),
	'ActionSelector': ('scenario_engine.engine.decision', 'ActionSelector'),
	'MicroActionInterpreter': ('scenario_engine.engine.interpreter', 'MicroActionInterpreter'),
	# Configuration models
	'WebsiteConfig': ('scenario_engine.engine.views', 'WebsiteConfig'),
	'Scenario': ('scenario_engine.engine.views', 'Scenario'),
	'SelectorSet': ('scenario_engine.engine.views', 'SelectorSet'),
	'Command': ('scenario_engine.engine.views', 'Command'),
	'CommandResponse': ('scenario_engine.engine.views', 'CommandResponse'),
	# DOM and motion
	'DomService': ('scenario_engine.dom.service', 'DomService'),
	'ElementResolver': ('scenario_engine.dom.resolver', 'ElementResolver'),
	'MotionPlanner': ('scenario_engine.browser.motion', 'MotionPlanner'),
	'TimingModel': ('scenario_engine.timing', 'TimingModel'),
}


def __getattr__(name: str):
	entry = _LAZY_EXPORTS.get(name)
	if not entry:
		raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
	module_path, attr_name = entry
	try:
		from importlib import import_module

		module = import_module(module_path)
		attr = getattr(module, attr_name)
		globals()[name] = attr
		return attr
	except ImportError as e:
		raise ImportError(f'Failed to import {name} from {module_path}: {e}') from e


__all__ = list(_LAZY_EXPORTS.keys())
