"""
Shared test doubles: an in-memory DOM, a recording Playwright page and a manual clock.
"""

from __future__ import annotations

import asyncio
import os
import random
import re
from typing import Any, Callable, Optional

os.environ.setdefault('SCENARIO_ENGINE_SETUP_LOGGING', 'false')

import pytest
import pytest_asyncio

from scenario_engine.dom.views import Box, ElementSnapshot
from scenario_engine.engine.service import ScenarioEngine
from scenario_engine.engine.settings import EngineSettings
from scenario_engine.timing import Clock

_COMPOUND_RE = re.compile(r'^(?P<tag>[a-zA-Z][\w-]*|\*)?(?P<rest>(?:#[\w-]+|\.[\w-]+|\[[^\]]+\])*)$')
_PART_RE = re.compile(r'#[\w-]+|\.[\w-]+|\[[^\]]+\]')
_ATTR_PART_RE = re.compile(r'^\[\s*([\w-]+)\s*(?:=\s*"([^"]*)"\s*)?\]$')


class FakeElement:
    """Element double. ``navigates_to`` makes a click load another fake URL."""

    def __init__(
        self,
        tag: str,
        id: Optional[str] = None,
        classes: tuple[str, ...] = (),
        attrs: Optional[dict[str, str]] = None,
        text: str = '',
        box: tuple[float, float, float, float] = (10, 10, 100, 20),
        depth: int = 2,
        visible: bool = True,
        in_viewport: bool = True,
        navigates_to: Optional[str] = None,
    ):
        self.tag = tag
        self.attributes = dict(attrs or {})
        if id:
            self.attributes['id'] = id
        if classes:
            self.attributes['class'] = ' '.join(classes)
        self.text = text
        self.box = Box(*box) if box else None
        self.depth = depth
        self.visible = visible
        self.in_viewport = in_viewport
        self.navigates_to = navigates_to
        self.attached = True

    def __repr__(self) -> str:
        return f'<FakeElement {self.tag} {self.attributes}>'

    def matches(self, compound: str) -> bool:
        match = _COMPOUND_RE.match(compound)
        tag, rest = match.group('tag'), match.group('rest')
        if tag and tag != '*' and tag.lower() != self.tag:
            return False
        for part in _PART_RE.findall(rest):
            if part.startswith('#'):
                if self.attributes.get('id') != part[1:]:
                    return False
            elif part.startswith('.'):
                if part[1:] not in self.attributes.get('class', '').split():
                    return False
            else:
                name, value = _ATTR_PART_RE.match(part).groups()
                if name not in self.attributes:
                    return False
                if value is not None and self.attributes[name] != value:
                    return False
        return True


def _valid_compound(compound: str) -> bool:
    match = _COMPOUND_RE.match(compound)
    if not match or not compound:
        return False
    return all(_ATTR_PART_RE.match(part) for part in _PART_RE.findall(match.group('rest')) if part.startswith('['))


class FakeDom:
    """In-memory stand-in for DomService.

    Queries understand a small CSS subset: ``tag#id.class[attr]`` and ``[attr="v"]``
    compounds joined by commas. Anything else is treated as an invalid selector.
    """

    def __init__(self, url: str = 'https://shop.test/', elements: Optional[list[FakeElement]] = None):
        self.pages: dict[str, list[FakeElement]] = {url: list(elements or [])}
        self.url = url
        self.elements = self.pages[url]
        self.history = [url]
        self.scrolled: list[float] = []
        self.scrolled_into_view: list[FakeElement] = []
        self.selected: list[FakeElement] = []
        self.on_navigate: Optional[Callable[[str], None]] = None

    def add_page(self, url: str, elements: list[FakeElement]) -> None:
        self.pages[url] = list(elements)

    def goto(self, url: str) -> None:
        for element in self.elements:
            element.attached = False
        self.history.append(url)
        self._load(url)

    def _load(self, url: str) -> None:
        self.url = url
        self.elements = self.pages.setdefault(url, [])
        for element in self.elements:
            element.attached = True
        if self.on_navigate is not None:
            self.on_navigate(url)

    def element_at(self, x: float, y: float) -> Optional[FakeElement]:
        hits = [
            e for e in self.elements
            if e.box and e.box.x <= x <= e.box.x + e.box.width and e.box.y <= y <= e.box.y + e.box.height
        ]
        return max(hits, key=lambda e: e.depth) if hits else None

    async def title(self) -> str:
        return f'Title of {self.url}'

    async def query_all(self, selector: str) -> list[FakeElement]:
        parts = [part.strip() for part in selector.split(',')]
        if not all(_valid_compound(part) for part in parts):
            return []
        return [e for e in self.elements if any(e.matches(part) for part in parts)]

    async def snapshot(self, selector: str = 'body *') -> list[ElementSnapshot]:
        return [
            ElementSnapshot(handle=e, tag=e.tag, text=e.text, attributes=dict(e.attributes), box=e.box, depth=e.depth)
            for e in self.elements
        ]

    async def is_attached(self, element: FakeElement) -> bool:
        return element.attached

    async def is_visible(self, element: FakeElement) -> bool:
        return element.visible

    async def is_in_viewport(self, element: FakeElement) -> bool:
        return element.in_viewport

    async def bounding_box(self, element: FakeElement) -> Optional[Box]:
        return element.box

    async def scroll_into_view(self, element: FakeElement, smooth: bool = True) -> None:
        self.scrolled_into_view.append(element)
        element.in_viewport = True

    async def focus(self, element: FakeElement) -> None:
        pass

    async def select_contents(self, element: FakeElement) -> bool:
        self.selected.append(element)
        return True

    async def scroll_by(self, delta: float) -> None:
        self.scrolled.append(delta)

    async def suggest_selectors(self, element: FakeElement) -> list[str]:
        if 'id' in element.attributes:
            return ['#' + element.attributes['id']]
        return [element.tag]

    async def describe(self, element: FakeElement) -> dict[str, Any]:
        return {
            'tagName': element.tag.upper(),
            'id': element.attributes.get('id', ''),
            'className': element.attributes.get('class', ''),
            'text': element.text[:100],
            'attributes': dict(element.attributes),
            'box': element.box.to_dict() if element.box else None,
            'visible': element.visible,
            'inViewport': element.in_viewport,
            'selectors': await self.suggest_selectors(element),
        }

    async def interactive_elements(self, limit: int = 50) -> list[dict[str, Any]]:
        found = []
        for element in self.elements:
            if element.tag in ('a', 'button', 'input') and element.visible:
                info = await self.describe(element)
                found.append({'tagName': info['tagName'], 'text': info['text'][:50], 'selectors': info['selectors']})
        return found[:limit]

    async def viewport_size(self) -> tuple[int, int]:
        return 1280, 720

    async def history_length(self) -> int:
        return len(self.history)

    async def go_back(self) -> None:
        if len(self.history) > 1:
            for element in self.elements:
                element.attached = False
            self.history.pop()
            self._load(self.history[-1])


class FakeMouse:
    def __init__(self, page: 'FakePage'):
        self.page = page
        self.moves: list[tuple[float, float]] = []
        self.downs: list[dict[str, Any]] = []
        self.ups: list[dict[str, Any]] = []
        self.position = (0.0, 0.0)

    async def move(self, x: float, y: float, steps: int = 1) -> None:
        self.position = (x, y)
        self.moves.append((x, y))

    async def down(self, button: str = 'left', click_count: int = 1) -> None:
        self.downs.append({'button': button, 'click_count': click_count, 'at': self.position})

    async def up(self, button: str = 'left', click_count: int = 1) -> None:
        self.ups.append({'button': button, 'click_count': click_count, 'at': self.position})
        self.page.clicked(*self.position)


class FakeKeyboard:
    def __init__(self):
        self.typed: list[str] = []
        self.pressed: list[str] = []
        self.events: list[str] = []

    async def type(self, text: str, delay: float = 0) -> None:
        self.typed.append(text)
        self.events.extend(text)

    async def press(self, key: str) -> None:
        self.pressed.append(key)
        if key == 'Backspace':
            self.events.append('\b')

    @property
    def text(self) -> str:
        """What ends up in the field once backspaces are applied."""
        out: list[str] = []
        for entry in self.events:
            if entry == '\b':
                if out:
                    out.pop()
            else:
                out.append(entry)
        return ''.join(out)


class FakePage:
    def __init__(self, dom: FakeDom):
        self.dom = dom
        self.mouse = FakeMouse(self)
        self.keyboard = FakeKeyboard()
        self.clicks: list[Optional[FakeElement]] = []
        self.screenshots: list[str] = []

    @property
    def url(self) -> str:
        return self.dom.url

    def clicked(self, x: float, y: float) -> None:
        element = self.dom.element_at(x, y)
        self.clicks.append(element)
        if element is not None and element.navigates_to:
            self.dom.goto(element.navigates_to)

    async def screenshot(self, path: str, full_page: bool = False) -> bytes:
        self.screenshots.append(path)
        return b''


class FakeClock(Clock):
    """Manual clock: ``sleep`` advances virtual time and yields once to the loop."""

    def __init__(self, start_ms: float = 1_000_000.0):
        self.now = start_ms
        self.sleeps: list[float] = []

    def now_ms(self) -> float:
        return self.now

    async def sleep(self, ms: float) -> None:
        self.sleeps.append(ms)
        self.now += max(0.0, ms)
        await asyncio.sleep(0)

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeNotifier:
    def __init__(self):
        self.callbacks: list[Callable[[], Any]] = []

    def on_page_changed(self, callback: Callable[[], Any]) -> Callable[[], None]:
        self.callbacks.append(callback)
        return lambda: self.callbacks.remove(callback)

    def fire(self) -> None:
        for callback in list(self.callbacks):
            callback()


class RecordingActionLogger:
    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def log_action(self, action_type: str, data: dict[str, Any]) -> None:
        self.events.append((action_type, data))

    def types(self) -> list[str]:
        return [action_type for action_type, _ in self.events]

    def of(self, action_type: str) -> list[dict[str, Any]]:
        return [data for kind, data in self.events if kind == action_type]


class FakeScreenshots:
    def __init__(self):
        self.captured: list[Optional[str]] = []

    async def capture(self, filename: Optional[str] = None) -> str:
        self.captured.append(filename)
        return f'screenshots/{filename or "capture.png"}'


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dom() -> FakeDom:
    return FakeDom()


@pytest.fixture
def page(dom: FakeDom) -> FakePage:
    return FakePage(dom)


@pytest.fixture
def action_log() -> RecordingActionLogger:
    return RecordingActionLogger()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(seed=1234, slow_mode=False, random_delay=True, natural_movement=True, screenshot_dir='screenshots')


@pytest_asyncio.fixture
async def engine(page, dom, clock, rng, notifier, action_log, settings):
    engine = ScenarioEngine(
        page,
        settings,
        dom=dom,
        clock=clock,
        rng=rng,
        page_notifier=notifier,
        action_logger=action_log,
        screenshots=FakeScreenshots(),
    )
    yield engine
    await engine.close()
