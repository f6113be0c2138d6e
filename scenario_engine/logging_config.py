import locale
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from scenario_engine.config import CONFIG
from scenario_engine.timing import now_utc_iso, process_start_utc_iso, uptime_seconds

RESULT_LEVEL = 35


def addLoggingLevel(levelName, levelNum, methodName=None):
	"""
	Adds a new logging level to the `logging` module and the currently
	configured logger class.

	`levelName` becomes an attribute of `logging` with the value `levelNum`;
	`methodName` (default `levelName.lower()`) becomes a convenience method on
	both `logging` and the logger class. Raises `AttributeError` if either name
	is already taken.

	Example
	-------
	>>> addLoggingLevel('TRACE', logging.DEBUG - 5)
	>>> logging.getLogger(__name__).setLevel('TRACE')
	>>> logging.getLogger(__name__).trace('that worked')
	"""
	if not methodName:
		methodName = levelName.lower()

	if hasattr(logging, levelName):
		raise AttributeError(f'{levelName} already defined in logging module')
	if hasattr(logging, methodName):
		raise AttributeError(f'{methodName} already defined in logging module')
	if hasattr(logging.getLoggerClass(), methodName):
		raise AttributeError(f'{methodName} already defined in logger class')

	def logForLevel(self, message, *args, **kwargs):
		if self.isEnabledFor(levelNum):
			self._log(levelNum, message, args, **kwargs)

	def logToRoot(message, *args, **kwargs):
		logging.log(levelNum, message, *args, **kwargs)

	logging.addLevelName(levelNum, levelName)
	setattr(logging, levelName, levelNum)
	setattr(logging.getLoggerClass(), methodName, logForLevel)
	setattr(logging, methodName, logToRoot)


class SafeStreamHandler(logging.StreamHandler):
	"""Stream handler that survives consoles unable to encode emoji prefixes."""

	def emit(self, record):  # type: ignore[override]
		try:
			msg = self.format(record)
			stream = self.stream
			try:
				stream.write(msg + self.terminator)
			except UnicodeEncodeError:
				enc = getattr(stream, 'encoding', None) or locale.getpreferredencoding(False) or 'utf-8'
				sanitized = msg.encode(enc, errors='replace').decode(enc, errors='replace')
				stream.write(sanitized + self.terminator)
			self.flush()
		except Exception:
			self.handleError(record)


class ScenarioEngineFormatter(logging.Formatter):
	def format(self, record):
		record.utc = now_utc_iso()
		record.uptime = f'{uptime_seconds():.3f}s'
		return super().format(record)


def setup_logging(stream=None, log_level=None, force_setup=False):
	"""Setup logging configuration for scenario-engine.

	Args:
		stream: Output stream for logs (default: sys.stdout).
		log_level: Override log level (default: CONFIG.SCENARIO_ENGINE_LOGGING_LEVEL).
			One of 'result', 'debug' or 'info'.
		force_setup: Force reconfiguration even if handlers already exist
	"""
	# RESULT sits between WARNING and ERROR so session outcomes survive a quiet level
	try:
		addLoggingLevel('RESULT', RESULT_LEVEL)
	except AttributeError:
		pass

	log_type = log_level or CONFIG.SCENARIO_ENGINE_LOGGING_LEVEL

	if logging.getLogger().hasHandlers() and not force_setup:
		return logging.getLogger('scenario_engine')

	root = logging.getLogger()
	root.handlers = []

	console = SafeStreamHandler(stream or sys.stdout)
	if log_type == 'result':
		console.setLevel('RESULT')
		console.setFormatter(ScenarioEngineFormatter('%(message)s'))
	else:
		console.setFormatter(ScenarioEngineFormatter('%(levelname)-8s [%(name)s] %(utc)s (+%(uptime)s) %(message)s'))

	root.addHandler(console)

	if log_type == 'result':
		root.setLevel('RESULT')
	elif log_type == 'debug':
		root.setLevel(logging.DEBUG)
	else:
		root.setLevel(logging.INFO)

	engine_logger = logging.getLogger('scenario_engine')
	engine_logger.propagate = False
	engine_logger.handlers = [console]
	engine_logger.setLevel(root.level)

	engine_logger.debug(f'Logging initialized at {now_utc_iso()} (process_start={process_start_utc_iso()})')

	for logger_name in ('playwright', 'asyncio', 'urllib3'):
		third_party = logging.getLogger(logger_name)
		third_party.setLevel(logging.ERROR)
		third_party.propagate = False

	return engine_logger
