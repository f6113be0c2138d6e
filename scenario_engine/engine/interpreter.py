from __future__ import annotations

import logging
import math
import random
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Sequence

from scenario_engine.browser.motion import MotionPlanner, Point
from scenario_engine.dom.resolver import BROWSER_BACK, ElementResolver
from scenario_engine.dom.views import Box, VirtualElement
from scenario_engine.engine.views import (
    ClickAction,
    HoverAction,
    LogAction,
    MicroAction,
    MoveAction,
    ScreenshotAction,
    ScrollAction,
    TypeAction,
    VerifyAction,
    WaitAction,
)
from scenario_engine.exceptions import (
    MicroActionFailed,
    SessionInterrupted,
    VerificationFailed,
    is_fatal_error,
)
from scenario_engine.timing import Clock, DurationSpec, TimingModel

if TYPE_CHECKING:
    from scenario_engine.browser.types import Page
    from scenario_engine.dom.service import DomService
    from scenario_engine.engine.collaborators import ScreenshotService
    from scenario_engine.engine.settings import EngineSettings

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, dict[str, Any]], Awaitable[None]]

SCROLL_SETTLE_MS = 500
SCROLL_TO_ELEMENT_MS = 1000
SCROLL_STEP_PX = 50
SCROLL_STEP_DELAY_MS = {'fast': 10, 'normal': 50, 'smooth': 50, 'slow': 100}
SCROLL_PAUSE_PROBABILITY = 0.1
HOVER_JITTER_INTERVAL_MS = 200
HOVER_JITTER_PX = 2
CLICK_HOLD_MS = (50, 150)
CLICK_SETTLE_MS = (100, 300)
THINKING_PAUSE_PROBABILITY = 0.05
THINKING_PAUSE_MS = (200, 700)
TYPO_PROBABILITY = 0.03

QWERTY_NEIGHBORS = {
    'a': 'qwsz', 's': 'awedxz', 'd': 'serfcx', 'f': 'drtgvc', 'g': 'ftyhbv', 'h': 'gyujnb',
    'j': 'huikmn', 'k': 'jiolm', 'l': 'kop', 'q': 'wa', 'w': 'qeas', 'e': 'wrsd',
    'r': 'etdf', 't': 'ryfg', 'y': 'tugh', 'u': 'yihj', 'i': 'uojk', 'o': 'ipkl',
    'p': 'ol', 'z': 'asx', 'x': 'zsdc', 'c': 'xdfv', 'v': 'cfgb', 'b': 'vghn',
    'n': 'bhjm', 'm': 'njk',
}


def typo_for(char: str, rng: random.Random) -> str:
    """A plausible mistyped character for ``char`` (a keyboard neighbour when known)."""
    neighbors = QWERTY_NEIGHBORS.get(char.lower())
    if not neighbors:
        return 'x' if char != 'x' else 'z'
    typo = rng.choice(neighbors)
    return typo.upper() if char.isupper() else typo


class MicroActionInterpreter:
    """Executes micro-actions against a Playwright page.

    Every wait goes through ``_pause``, which re-checks the sequence checkpoint
    after sleeping; a failed check raises ``SessionInterrupted`` so pause/stop
    take effect at the next suspension point.
    """

    def __init__(
        self,
        page: 'Page',
        dom: 'DomService',
        resolver: ElementResolver,
        timing: TimingModel,
        motion: MotionPlanner,
        clock: Clock,
        settings: 'EngineSettings',
        screenshots: Optional['ScreenshotService'] = None,
        on_event: Optional[EventCallback] = None,
    ):
        self.page = page
        self.dom = dom
        self.resolver = resolver
        self.timing = timing
        self.motion = motion
        self.clock = clock
        self.settings = settings
        self.screenshots = screenshots
        self.on_event = on_event
        self.rng = timing.rng
        self.pointer: Point = (0.0, 0.0)
        self._checkpoint: Optional[Callable[[], bool]] = None
        self._handlers: dict[type, Callable[[Any], Awaitable[None]]] = {
            WaitAction: self._wait,
            MoveAction: self._move,
            HoverAction: self._hover,
            ClickAction: self._click,
            ScrollAction: self._scroll,
            TypeAction: self._type,
            VerifyAction: self._verify,
            ScreenshotAction: self._screenshot,
            LogAction: self._log,
        }

    async def run_sequence(
        self,
        steps: Sequence[MicroAction],
        checkpoint: Optional[Callable[[], bool]] = None,
    ) -> bool:
        """Run ``steps`` in order.

        Returns False if the checkpoint stopped the sequence early. A failing
        step raises ``MicroActionFailed`` unless it is optional and non-fatal.
        """
        previous = self._checkpoint
        self._checkpoint = checkpoint
        try:
            for index, step in enumerate(steps):
                if checkpoint is not None and not checkpoint():
                    logger.debug(f"⏸️ Sequence stopped before step {index} ({step.type})")
                    return False
                try:
                    await self.execute(step)
                except MicroActionFailed as e:
                    if not step.optional or is_fatal_error(e):
                        raise
                    logger.warning(f"⚠️ Optional {step.type} step failed, continuing: {e.cause}")
                    await self._emit('micro_action_failed', {'microAction': step.type, 'index': index, 'error': str(e.cause)})
            return True
        except SessionInterrupted:
            logger.debug("⏸️ Sequence interrupted at a suspension point")
            return False
        finally:
            self._checkpoint = previous

    async def execute(self, step: MicroAction) -> None:
        handler = self._handlers.get(type(step))
        if handler is None:
            raise MicroActionFailed(getattr(step, 'type', type(step).__name__), 'unsupported micro-action')
        logger.debug(f"🔧 Executing micro action: {step.type}")
        try:
            await handler(step)
        except (SessionInterrupted, MicroActionFailed):
            raise
        except Exception as e:
            raise MicroActionFailed(step.type, e) from e

    # Suspension points

    async def _pause(self, ms: float) -> None:
        await self.clock.sleep(ms)
        if self._checkpoint is not None and not self._checkpoint():
            raise SessionInterrupted('session is no longer running')

    async def _delay(self, spec: DurationSpec) -> None:
        await self._pause(self.timing.resolve_duration(spec))

    async def _emit(self, action_type: str, data: dict[str, Any]) -> None:
        if self.on_event is not None:
            await self.on_event(action_type, data)
        else:
            logger.info(f"📝 {action_type} {data}")

    # Pointer

    async def move_pointer(self, target: Point, pattern: str = 'natural', speed: str = 'normal') -> None:
        if not self.settings.natural_movement:
            pattern = 'direct'
        distance = math.hypot(target[0] - self.pointer[0], target[1] - self.pointer[1])
        duration = self.motion.plan_duration(distance, speed)
        steps = self.motion.plan_steps(duration)
        frame_ms = duration / steps
        path = self.motion.generate_path(self.pointer, target, pattern, steps)
        for x, y in path[1:]:
            await self.page.mouse.move(x, y)
            self.pointer = (x, y)
            await self._pause(frame_ms)

    async def _move_to_element(self, element: Any, pattern: str = 'natural', speed: str = 'normal') -> Optional[Box]:
        if isinstance(element, VirtualElement):
            return None
        if not await self.dom.is_in_viewport(element):
            await self.dom.scroll_into_view(element, smooth=True)
            await self._delay(SCROLL_SETTLE_MS)
        box = await self.dom.bounding_box(element)
        if box is None:
            raise RuntimeError('element has no bounding box (not rendered)')
        await self.move_pointer(box.center, pattern, speed)
        return box

    async def _activate_virtual(self, element: VirtualElement) -> None:
        if element.name == BROWSER_BACK:
            logger.info("🔙 Navigating back")
            await self.dom.go_back()
            await self._pause(self.timing.uniform(*CLICK_SETTLE_MS))
            return
        raise RuntimeError(f'cannot activate virtual element {element.name}')

    async def _click_element(self, element: Any, button: str = 'left', count: int = 1) -> None:
        if isinstance(element, VirtualElement):
            await self._activate_virtual(element)
            return
        box = await self._move_to_element(element)
        offset_x = (self.rng.random() - 0.5) * min(box.width * 0.3, 10)
        offset_y = (self.rng.random() - 0.5) * min(box.height * 0.3, 10)
        x, y = self.pointer[0] + offset_x, self.pointer[1] + offset_y
        await self.page.mouse.move(x, y)
        self.pointer = (x, y)

        for index in range(count):
            await self.page.mouse.down(button=button, click_count=index + 1)
            await self._pause(self.timing.uniform(*CLICK_HOLD_MS))
            await self.page.mouse.up(button=button, click_count=index + 1)
            if index < count - 1:
                await self._pause(self.timing.uniform(*CLICK_HOLD_MS))
        await self._pause(self.timing.uniform(*CLICK_SETTLE_MS))

    # Handlers

    async def _wait(self, step: WaitAction) -> None:
        await self._delay(step.duration)

    async def _move(self, step: MoveAction) -> None:
        element = await self.resolver.resolve(step.target)
        await self._move_to_element(element, step.pattern, step.speed)

    async def _hover(self, step: HoverAction) -> None:
        element = await self.resolver.resolve(step.target)
        await self._move_to_element(element)
        hold_ms = self.timing.resolve_duration(step.duration)
        anchor_x, anchor_y = self.pointer
        for _ in range(int(hold_ms // HOVER_JITTER_INTERVAL_MS)):
            await self._pause(HOVER_JITTER_INTERVAL_MS)
            await self.page.mouse.move(
                anchor_x + self.timing.uniform(-HOVER_JITTER_PX, HOVER_JITTER_PX),
                anchor_y + self.timing.uniform(-HOVER_JITTER_PX, HOVER_JITTER_PX),
            )

    async def _click(self, step: ClickAction) -> None:
        element = await self.resolver.resolve(step.target)
        logger.debug(f"🖱️ Clicking {step.target} ({step.button}, {step.count}x)")
        await self._click_element(element, step.button, step.count)

    async def _scroll(self, step: ScrollAction) -> None:
        if step.to is not None:
            element = await self.resolver.resolve(step.to)
            await self.dom.scroll_into_view(element, smooth=step.speed != 'fast')
            await self._delay(SCROLL_TO_ELEMENT_MS)
            return

        distance = step.distance_px()
        if distance == 0:
            return
        logger.debug(f"📜 Scrolling {distance:+.0f}px")
        steps = max(1, math.ceil(abs(distance) / SCROLL_STEP_PX))
        step_px = distance / steps
        step_delay = SCROLL_STEP_DELAY_MS.get(step.speed, SCROLL_STEP_DELAY_MS['normal'])
        for _ in range(steps):
            await self.dom.scroll_by(step_px)
            await self._pause(step_delay)
            if self.rng.random() < SCROLL_PAUSE_PROBABILITY:
                await self._pause(self.timing.uniform(100, 400))

    async def _type(self, step: TypeAction) -> None:
        element = await self.resolver.resolve(step.target)
        logger.debug(f"⌨️ Typing {len(step.text)} characters into {step.target}")
        await self._click_element(element)
        if step.clear_first:
            await self.dom.select_contents(element)
            await self._pause(100)

        keyboard = self.page.keyboard
        for index, char in enumerate(step.text):
            if index > 0 and self.rng.random() < TYPO_PROBABILITY:
                await keyboard.type(typo_for(char, self.rng))
                await self._pause(200)
                await keyboard.press('Backspace')
                await self._pause(100)
            await keyboard.type(char)
            await self._delay(step.speed)
            if self.rng.random() < THINKING_PAUSE_PROBABILITY:
                await self._pause(self.timing.uniform(*THINKING_PAUSE_MS))

    async def _verify(self, step: VerifyAction) -> None:
        exists = await self.resolver.exists(step.target)
        if exists != step.exists:
            raise VerificationFailed(step.target, step.exists)

    async def _screenshot(self, step: ScreenshotAction) -> None:
        if self.screenshots is None:
            raise RuntimeError('no screenshot service configured')
        await self.screenshots.capture(step.filename)

    async def _log(self, step: LogAction) -> None:
        await self._emit('custom_log', {'message': step.message})
