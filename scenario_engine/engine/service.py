from __future__ import annotations

import asyncio
import logging
import random
import uuid
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError

from scenario_engine.browser.motion import MotionPlanner
from scenario_engine.dom.resolver import ElementResolver
from scenario_engine.dom.service import DomService
from scenario_engine.engine.collaborators import (
    ActionLogger,
    LoggingActionLogger,
    PageChangeNotifier,
    PageDetector,
    PlaywrightPageChangeNotifier,
    PlaywrightScreenshotService,
    ScreenshotService,
    SelectorPageDetector,
)
from scenario_engine.engine.decision import ActionSelector
from scenario_engine.engine.interpreter import MicroActionInterpreter
from scenario_engine.engine.progress import ProgressTracker
from scenario_engine.engine.scheduler import TickScheduler
from scenario_engine.engine.settings import EngineSettings
from scenario_engine.engine.state import ACTIVE_STATES, Session, SessionStatus
from scenario_engine.engine.views import (
    Action,
    Command,
    CommandResponse,
    CommandType,
    DurationRange,
    MicroActionEnvelope,
    Scenario,
    SelectorSet,
    WebsiteConfig,
)
from scenario_engine.exceptions import (
    MicroActionFailed,
    NoEligibleActions,
    PageConfigError,
    ScenarioEngineError,
    SessionStateError,
    TransitionTimeout,
    UnknownScenario,
    format_error,
    is_fatal_error,
)
from scenario_engine.logging_config import RESULT_LEVEL
from scenario_engine.timing import Clock, SystemClock, TimingModel, now_utc_iso

if TYPE_CHECKING:
    from scenario_engine.browser.types import Page

logger = logging.getLogger(__name__)

CommandHandler = Callable[[dict[str, Any]], Awaitable[CommandResponse]]

_OUTCOME_PREFIX = {
    SessionStatus.COMPLETED: '✅',
    SessionStatus.TIMED_OUT: '⏰',
    SessionStatus.ERROR: '❌',
    SessionStatus.IDLE: '⏹️',
}


class ScenarioEngine:
    """Session state machine driving one scenario at a time on a page.

    ``start`` → running ⇄ paused → completed / timedOut / error, or ``stop`` back
    to idle. Each tick: goals, timeout, page config, entry actions, action
    selection, execution, impact, transition wait, then the next tick is scheduled.
    All per-tick errors end at the tick boundary. ``handle`` is the single
    command entry point for an external transport.
    """

    def __init__(
        self,
        page: 'Page',
        settings: Optional[EngineSettings] = None,
        *,
        dom: Optional[DomService] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        page_detector: Optional[PageDetector] = None,
        page_notifier: Optional[PageChangeNotifier] = None,
        action_logger: Optional[ActionLogger] = None,
        screenshots: Optional[ScreenshotService] = None,
    ):
        self.page = page
        self.settings = settings or EngineSettings()
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random(self.settings.seed)
        self.dom = dom or DomService(page)
        self.timing = TimingModel(
            self.rng,
            slow_mode=self.settings.slow_mode,
            jitter_ratio=self.settings.jitter_ratio,
            min_wait_ms=self.settings.min_wait_ms,
            random_delay=self.settings.random_delay,
        )
        self.motion = MotionPlanner(self.rng)
        self.resolver = ElementResolver(self.dom, self.rng, self.clock, use_cache=self.settings.use_selector_cache)
        self.page_detector = page_detector or SelectorPageDetector()
        self.page_notifier = page_notifier or PlaywrightPageChangeNotifier(page)
        self.action_logger = action_logger or LoggingActionLogger()
        self.screenshots = screenshots or PlaywrightScreenshotService(page, self.settings.screenshot_dir)
        self.interpreter = MicroActionInterpreter(
            page,
            self.dom,
            self.resolver,
            self.timing,
            self.motion,
            self.clock,
            self.settings,
            screenshots=self.screenshots,
            on_event=self._log_event,
        )
        self.scheduler = TickScheduler(self.run_tick)

        self.session: Optional[Session] = None
        self.last_session: Optional[Session] = None
        self.selector: Optional[ActionSelector] = None
        self._tick_lock = asyncio.Lock()
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._background: set[asyncio.Task] = set()
        self._commands: dict[str, CommandHandler] = {
            CommandType.START_AUTOMATION.value: self._cmd_start,
            CommandType.STOP_AUTOMATION.value: self._cmd_stop,
            CommandType.PAUSE_AUTOMATION.value: self._cmd_pause,
            CommandType.RESUME_AUTOMATION.value: self._cmd_resume,
            CommandType.GET_STATUS.value: self._cmd_status,
            CommandType.TEST_SELECTOR.value: self._cmd_test_selector,
            CommandType.LOG_ACTION.value: self._cmd_log_action,
            CommandType.GET_PAGE_INFO.value: self._cmd_page_info,
            CommandType.EXECUTE_ACTION.value: self._cmd_execute_action,
            CommandType.TAKE_SCREENSHOT.value: self._cmd_screenshot,
            CommandType.SETTINGS_UPDATED.value: self._cmd_settings,
        }

    @property
    def status(self) -> SessionStatus:
        return self.session.status if self.session is not None else SessionStatus.IDLE

    # Lifecycle

    async def start(
        self,
        scenario: Scenario,
        selectors: Optional[SelectorSet] = None,
        session_id: Optional[str] = None,
        tab_id: Any = None,
    ) -> Session:
        if self.session is not None and self.session.status in ACTIVE_STATES:
            raise SessionStateError(f'Session {self.session.id} is already {self.session.status.value}')
        if not scenario.enabled:
            raise SessionStateError(f'Scenario {scenario.id or scenario.name} is disabled')

        selectors = selectors or SelectorSet()
        tracker = ProgressTracker(scenario.goals, self.clock)
        session = Session(
            id=session_id or f'session_{uuid.uuid4().hex[:12]}',
            scenario=scenario,
            selectors=selectors,
            tracker=tracker,
            started_at=self.clock.now_ms(),
            tab_id=tab_id,
        )
        self.session = session
        self.selector = ActionSelector(tracker, self.resolver, self.rng)
        self.resolver.bind(selectors)
        self._subscribe_page_changes()

        logger.info(f'▶️ Starting scenario {scenario.name or scenario.id!r} (session {session.id})')
        await self._log_event('session_started', {'scenario': scenario.id, 'scenarioName': scenario.name})
        try:
            await self.detect_current_page()
            await self.run_tick()
        except Exception as e:
            logger.error(f'❌ Session {session.id} failed to start: {format_error(e)}')
            if session.status in ACTIVE_STATES:
                await self._finish(session, SessionStatus.ERROR, 'session_ended', reason='start_failed', error=format_error(e))
            raise
        return session

    async def pause(self) -> None:
        session = self._require_session()
        if session.status is not SessionStatus.RUNNING:
            raise SessionStateError(f'Cannot pause a {session.status.value} session')
        session.status = SessionStatus.PAUSED
        session.generation += 1
        self.scheduler.cancel()
        logger.info(f'⏸️ Session {session.id} paused')
        await self._log_event('session_paused', {'page': session.current_page})

    async def resume(self) -> None:
        session = self._require_session()
        if session.status is not SessionStatus.PAUSED:
            raise SessionStateError(f'Cannot resume a {session.status.value} session')
        session.status = SessionStatus.RUNNING
        logger.info(f'▶️ Session {session.id} resumed')
        await self._log_event('session_resumed', {'page': session.current_page})
        await self.run_tick()

    async def stop(self, reason: str = 'manual_stop') -> None:
        session = self.session
        if session is None:
            self.scheduler.cancel()
            return
        await self._finish(session, SessionStatus.IDLE, 'session_ended', reason=reason)

    async def close(self) -> None:
        """Stop any session and wait for already-fired ticks to wind down."""
        await self.stop('engine_closed')
        await self.scheduler.drain()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _require_session(self) -> Session:
        if self.session is None:
            raise SessionStateError('No active session')
        return self.session

    # Page tracking

    async def detect_current_page(self) -> Optional[str]:
        session = self.session
        if session is None:
            return None
        page_type = await self.page_detector.detect(self.dom.url, session.selectors, self.resolver)
        if session.record_arrival(page_type):
            session.tracker.update_current_page(page_type)
            self.resolver.bind(session.selectors, page_type)
            logger.info(f'📄 Current page: {page_type or "unknown"}')
            await self._log_event('page_changed', {'page': page_type})
        return page_type

    def _subscribe_page_changes(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.page_notifier.on_page_changed(self._on_page_changed)

    def _unsubscribe_page_changes(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_page_changed(self) -> None:
        if self.session is None or self.session.status not in ACTIVE_STATES:
            return
        task = asyncio.ensure_future(self.detect_current_page())
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f'⚠️ Page re-detection failed: {task.exception()}')

    # Run loop

    def _checkpoint_for(self, session: Session) -> Callable[[], bool]:
        generation = session.generation

        def checkpoint() -> bool:
            return self.session is session and session.status is SessionStatus.RUNNING and session.generation == generation

        return checkpoint

    async def run_tick(self) -> None:
        async with self._tick_lock:
            session = self.session
            if session is None or session.status is not SessionStatus.RUNNING:
                return
            checkpoint = self._checkpoint_for(session)
            session.ticks += 1
            try:
                try:
                    await self._tick(session, checkpoint)
                except (PageConfigError, NoEligibleActions) as e:
                    await self._recover_from_stuck(session, e, checkpoint)
            except Exception as e:
                await self._handle_tick_error(session, e, checkpoint)

    async def _tick(self, session: Session, checkpoint: Callable[[], bool]) -> None:
        tracker = session.tracker
        if tracker.are_goals_met():
            await self._finish(session, SessionStatus.COMPLETED, 'session_completed', reason='goals_met')
            return
        if tracker.is_session_timed_out():
            await self._finish(session, SessionStatus.TIMED_OUT, 'session_timeout', reason='session_duration')
            return

        page_config = session.scenario.pages.get(session.current_page) if session.current_page else None
        if page_config is None:
            raise PageConfigError(session.current_page)

        if session.entry_done_for != session.arrival:
            arrival = session.arrival
            if page_config.entry_actions:
                try:
                    completed = await self.interpreter.run_sequence(page_config.entry_actions, checkpoint)
                except MicroActionFailed:
                    # A failed entry sequence is not retried on the same arrival
                    session.entry_done_for = arrival
                    raise
                if not completed:
                    # Interrupted; the whole entry sequence runs again on resume
                    return
                await self._log_event('entry_actions_completed', {'page': session.current_page})
            session.entry_done_for = arrival

        eligible = await self.selector.eligible(page_config.actions.all())
        if not checkpoint():
            return
        action = self.selector.choose(eligible)
        if action is None:
            raise NoEligibleActions(session.current_page)
        session.stuck_attempts = 0

        completed = await self._execute_action(session, action, checkpoint)
        if not checkpoint():
            return
        if completed and tracker.are_goals_met():
            await self._finish(session, SessionStatus.COMPLETED, 'session_completed', reason='goals_met')
            return
        self._schedule_next(session, page_config.stay_duration)

    async def _execute_action(self, session: Session, action: Action, checkpoint: Callable[[], bool]) -> bool:
        started = self.clock.now_ms()
        logger.info(f'🎯 Executing action {action.name!r} on {session.current_page}')
        await self._log_event('action_started', {'action': action.name, 'page': session.current_page})
        try:
            finished = await self.interpreter.run_sequence(action.micro_sequence, checkpoint)
        except MicroActionFailed as e:
            await self._log_event(
                'action_failed',
                {'action': action.name, 'microAction': e.action_type, 'error': str(e.cause)},
            )
            raise
        if not finished:
            logger.debug(f'Action {action.name!r} interrupted, impact not applied')
            return False

        session.tracker.update_metrics(action.impact)
        if action.target_page and action.target_page != session.current_page:
            await self._await_transition(session, action.target_page, checkpoint)

        await self._log_event(
            'action_completed',
            {
                'action': action.name,
                'page': session.current_page,
                'duration': self.clock.now_ms() - started,
                'impact': dict(action.impact),
            },
        )
        return True

    async def _await_transition(self, session: Session, target_page: str, checkpoint: Callable[[], bool]) -> None:
        timeout_ms = self.settings.transition_timeout_ms
        deadline = self.clock.now_ms() + timeout_ms
        while self.clock.now_ms() < deadline:
            await self.clock.sleep(self.settings.transition_poll_ms)
            if not checkpoint():
                return
            if await self.detect_current_page() == target_page:
                logger.info(f'🧭 Reached {target_page}')
                return
        timeout = TransitionTimeout(target_page, session.current_page, timeout_ms)
        logger.warning(f'⚠️ {timeout}')
        await self._log_event(
            'transition_timeout',
            {'expected': target_page, 'actual': session.current_page, 'timeout': timeout_ms},
        )

    async def _recover_from_stuck(
        self, session: Session, error: ScenarioEngineError, checkpoint: Callable[[], bool]
    ) -> None:
        event = 'page_config_missing' if isinstance(error, PageConfigError) else 'no_actions_available'
        logger.warning(f'⚠️ {error}')
        await self._log_event(event, {'page': session.current_page})

        session.stuck_attempts += 1
        if session.stuck_attempts > self.settings.max_recovery_attempts:
            logger.info(f'Giving up after {session.stuck_attempts - 1} recovery attempts')
            await self._finish(session, SessionStatus.COMPLETED, 'session_completed', reason='stuck')
            return
        if await self.dom.history_length() <= 1:
            await self._finish(session, SessionStatus.COMPLETED, 'session_completed', reason='stuck')
            return

        logger.info(f'🔙 No way forward on {session.current_page or "unknown page"}, navigating back')
        await self._log_event('recovery_navigation', {'from': session.current_page, 'attempt': session.stuck_attempts})
        await self.dom.go_back()
        await self.clock.sleep(self.settings.recovery_wait_ms)
        if not checkpoint():
            return
        await self.detect_current_page()
        self._schedule_next(session, self._stay_duration(session))

    async def _handle_tick_error(self, session: Session, error: Exception, checkpoint: Callable[[], bool]) -> None:
        fatal = is_fatal_error(error)
        message = format_error(error)
        try:
            if fatal:
                logger.error(f'❌ Fatal error, stopping session: {message}')
            else:
                logger.warning(f'⚠️ Tick failed, continuing: {message}')
            await self._log_event('error', {'errorType': 'tick_failed', 'error': message, 'fatal': fatal})
            if fatal:
                await self._finish(session, SessionStatus.ERROR, 'session_ended', reason='fatal_error', error=message)
            elif checkpoint():
                self._schedule_next(session, self._stay_duration(session))
        except Exception as e:
            logger.error(f'❌ Error while handling tick failure: {e}', exc_info=True)

    def _stay_duration(self, session: Session) -> DurationRange:
        page_config = session.scenario.pages.get(session.current_page) if session.current_page else None
        return page_config.stay_duration if page_config is not None else self.settings.default_stay_duration

    def _schedule_next(self, session: Session, stay: DurationRange) -> None:
        if self.session is not session or session.status is not SessionStatus.RUNNING:
            return
        low_ms, high_ms = stay.bounds_ms()
        self.scheduler.schedule(self.timing.uniform(low_ms, high_ms))

    async def _finish(
        self,
        session: Session,
        status: SessionStatus,
        event: str,
        reason: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        session.status = status
        session.error = error
        session.generation += 1
        self.scheduler.cancel()
        self._unsubscribe_page_changes()

        summary = session.tracker.snapshot()
        session.summary = summary
        logger.log(
            RESULT_LEVEL,
            f"{_OUTCOME_PREFIX.get(status, '')} Session {session.id} {status.value}"
            f" ({reason or 'no reason'}) after {summary['duration'] / 1000:.1f}s, progress {summary['progress']}%",
        )
        await self._log_event(
            event,
            {
                'status': status.value,
                'reason': reason,
                'error': error,
                'duration': summary['duration'],
                'progress': summary['progress'],
                'metrics': summary['metrics'],
            },
        )
        self.last_session = session
        if self.session is session:
            self.session = None

    # Status

    def get_status(self) -> dict[str, Any]:
        session = self.session
        if session is not None:
            snapshot = session.tracker.snapshot()
            return {
                'isRunning': session.status in ACTIVE_STATES,
                'isPaused': session.status is SessionStatus.PAUSED,
                'currentSession': session.id,
                'currentPage': session.current_page,
                'progress': snapshot['progress'],
                'duration': snapshot['duration'],
                'status': session.status.value,
                'metrics': snapshot['metrics'],
                'goals': snapshot['goals'],
                'error': None,
            }
        status: dict[str, Any] = {
            'isRunning': False,
            'isPaused': False,
            'currentSession': None,
            'currentPage': None,
            'progress': 0,
            'duration': 0,
            'status': SessionStatus.IDLE.value,
            'metrics': {},
            'goals': {},
            'error': None,
        }
        last = self.last_session
        if last is not None and last.summary is not None:
            status.update(
                {
                    'progress': last.summary['progress'],
                    'duration': last.summary['duration'],
                    'status': last.status.value,
                    'metrics': last.summary['metrics'],
                    'goals': last.summary['goals'],
                    'error': last.error,
                }
            )
        return status

    # Element waits

    async def wait_for_element(self, selector: str, timeout_ms: Optional[float] = None) -> Any:
        return await self.resolver.wait_for_element(
            selector,
            self._known_selectors(),
            timeout_ms=timeout_ms if timeout_ms is not None else self.settings.element_wait_timeout_ms,
            interval_ms=self.settings.element_wait_poll_ms,
        )

    async def wait_for_element_to_disappear(self, selector: str, timeout_ms: Optional[float] = None) -> None:
        await self.resolver.wait_for_element_to_disappear(
            selector,
            self._known_selectors(),
            timeout_ms=timeout_ms if timeout_ms is not None else self.settings.element_wait_timeout_ms,
            interval_ms=self.settings.element_wait_poll_ms,
        )

    # Settings

    def apply_settings(self, updates: dict[str, Any]) -> EngineSettings:
        self.settings = self.settings.merged(updates)
        self.timing.slow_mode = self.settings.slow_mode
        self.timing.random_delay = self.settings.random_delay
        self.timing.jitter_ratio = self.settings.jitter_ratio
        self.timing.min_wait_ms = self.settings.min_wait_ms
        self.resolver.use_cache = self.settings.use_selector_cache
        self.interpreter.settings = self.settings
        logger.info('⚙️ Engine settings updated')
        return self.settings

    # Logging

    def _current_url(self) -> str:
        try:
            return self.dom.url
        except Exception:
            return ''

    async def _log_event(self, action_type: str, data: dict[str, Any]) -> None:
        payload = {
            'timestamp': now_utc_iso(),
            'url': self._current_url(),
            'sessionId': self.session.id if self.session is not None else None,
            **data,
        }
        try:
            await self.action_logger.log_action(action_type, payload)
        except Exception as e:
            logger.error(f'❌ Action logger failed for {action_type}: {e}')

    # Commands

    async def handle(self, command: Union[Command, dict[str, Any]]) -> CommandResponse:
        """Single entry point for the command transport; never raises."""
        command_type = command.get('type') if isinstance(command, dict) else command.type
        try:
            if isinstance(command, dict):
                try:
                    command = Command.model_validate(command)
                except ValidationError as e:
                    return CommandResponse.fail(f'Invalid {command_type or "untyped"} command: {e}')
            handler = self._commands.get(command.type)
            if handler is None:
                return CommandResponse.fail(f'Unknown message type: {command.type}')
            return await handler(command.data)
        except ValidationError as e:
            return CommandResponse.fail(format_error(e))
        except ScenarioEngineError as e:
            return CommandResponse.fail(str(e))
        except Exception as e:
            logger.error(f'❌ Command {command_type} failed: {e}', exc_info=True)
            return CommandResponse.fail(format_error(e))

    def _known_selectors(self) -> Optional[SelectorSet]:
        if self.session is not None:
            return self.session.selectors
        if self.last_session is not None:
            return self.last_session.selectors
        return None

    async def _cmd_start(self, data: dict[str, Any]) -> CommandResponse:
        scenario_id = data.get('scenarioId') or data.get('scenario_id')
        if not scenario_id:
            return CommandResponse.fail('scenarioId is required')
        config = WebsiteConfig.model_validate(data.get('websiteConfig') or data.get('website_config') or {})
        scenario = config.scenarios.get(scenario_id)
        if scenario is None:
            raise UnknownScenario(scenario_id)
        session = await self.start(
            scenario,
            config.selectors,
            session_id=data.get('sessionId'),
            tab_id=data.get('tabId'),
        )
        return CommandResponse.ok({'sessionId': session.id})

    async def _cmd_stop(self, data: dict[str, Any]) -> CommandResponse:
        await self.stop(data.get('reason', 'manual_stop'))
        return CommandResponse.ok()

    async def _cmd_pause(self, data: dict[str, Any]) -> CommandResponse:
        await self.pause()
        return CommandResponse.ok()

    async def _cmd_resume(self, data: dict[str, Any]) -> CommandResponse:
        await self.resume()
        return CommandResponse.ok()

    async def _cmd_status(self, data: dict[str, Any]) -> CommandResponse:
        return CommandResponse.ok(self.get_status())

    async def _cmd_test_selector(self, data: dict[str, Any]) -> CommandResponse:
        selector = data.get('selector')
        if not selector:
            return CommandResponse.fail('selector is required')
        result = await self.resolver.try_resolve(selector, self._known_selectors(), use_cache=False)
        if not result.found:
            return CommandResponse.ok({'found': False, 'selector': result.selector, 'error': str(result.error)})
        element = await self.resolver.describe(result.element)
        return CommandResponse.ok(
            {'found': True, 'selector': result.selector, 'strategy': result.strategy, 'element': element}
        )

    async def _cmd_log_action(self, data: dict[str, Any]) -> CommandResponse:
        context = dict(data)
        action_type = context.pop('actionType', None) or 'custom_log'
        await self._log_event(action_type, context)
        return CommandResponse.ok()

    async def _cmd_page_info(self, data: dict[str, Any]) -> CommandResponse:
        if self.session is not None:
            page_type = self.session.current_page
        else:
            selectors = self._known_selectors()
            page_type = await self.page_detector.detect(self.dom.url, selectors, self.resolver) if selectors else None
        return CommandResponse.ok(
            {
                'url': self.dom.url,
                'title': await self.dom.title(),
                'page': page_type,
                'availableElements': await self.dom.interactive_elements(limit=int(data.get('limit', 50))),
            }
        )

    async def _cmd_execute_action(self, data: dict[str, Any]) -> CommandResponse:
        if self.session is not None and self.session.status is SessionStatus.RUNNING:
            raise SessionStateError('Cannot execute a single action while a session is running')
        envelope = MicroActionEnvelope.model_validate({'action': data.get('action')})
        await self.interpreter.execute(envelope.action)
        return CommandResponse.ok({'type': envelope.action.type})

    async def _cmd_screenshot(self, data: dict[str, Any]) -> CommandResponse:
        path = await self.screenshots.capture(data.get('filename'))
        return CommandResponse.ok({'path': path})

    async def _cmd_settings(self, data: dict[str, Any]) -> CommandResponse:
        updates = data.get('settings', data)
        settings = self.apply_settings(updates)
        return CommandResponse.ok({'settings': settings.model_dump(mode='json', by_alias=True)})
