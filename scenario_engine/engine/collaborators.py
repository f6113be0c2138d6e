"""
External collaborators of the engine and their default implementations.

The engine only talks to these through the protocols below, so a host can plug
in its own page classifier, change feed, log sink or capture service.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

from scenario_engine.logging_config import RESULT_LEVEL
from scenario_engine.timing import now_utc_iso

if TYPE_CHECKING:
    from scenario_engine.browser.types import Frame, Page
    from scenario_engine.dom.resolver import ElementResolver
    from scenario_engine.engine.views import SelectorSet

logger = logging.getLogger(__name__)

# Events reported at RESULT level by the default action logger
OUTCOME_EVENTS = {'session_completed', 'session_timeout', 'session_ended', 'error'}
FAILURE_EVENTS = {'action_failed', 'micro_action_failed', 'transition_timeout', 'no_actions_available', 'page_config_missing'}


class PageDetector(Protocol):
    async def detect(self, url: str, selectors: 'SelectorSet', resolver: 'ElementResolver') -> Optional[str]:
        """Classify the current page; None when nothing matches."""
        ...


class PageChangeNotifier(Protocol):
    def on_page_changed(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        ...


class ActionLogger(Protocol):
    async def log_action(self, action_type: str, data: dict[str, Any]) -> None:
        ...


class ScreenshotService(Protocol):
    async def capture(self, filename: Optional[str] = None) -> str:
        """Capture the page and return where the image went."""
        ...


class SelectorPageDetector:
    """Classifies a page by ``url_pattern`` and required ``identifiers`` from the selector set.

    Page types are tried in declaration order; the first whose URL pattern matches
    and whose identifiers are all present wins. A page with neither constraint
    never matches.
    """

    async def detect(self, url: str, selectors: 'SelectorSet', resolver: 'ElementResolver') -> Optional[str]:
        for page_type, page in selectors.pages.items():
            if page.url_pattern is None and not page.identifiers:
                continue
            if page.url_pattern is not None and not re.search(page.url_pattern, url):
                continue
            present = True
            for identifier in page.identifiers.values():
                if not await resolver.exists(identifier, selectors):
                    present = False
                    break
            if present:
                logger.debug(f"📄 Detected page type {page_type!r} for {url}")
                return page_type
        return None


class PlaywrightPageChangeNotifier:
    """Fires callbacks on main-frame navigations of a Playwright page."""

    def __init__(self, page: 'Page'):
        self.page = page

    def on_page_changed(self, callback: Callable[[], Any]) -> Callable[[], None]:
        def _handler(frame: 'Frame') -> None:
            if frame == self.page.main_frame:
                callback()

        self.page.on('framenavigated', _handler)

        def _unsubscribe() -> None:
            self.page.remove_listener('framenavigated', _handler)

        return _unsubscribe


class LoggingActionLogger:
    """Writes action events to the ``scenario_engine.actions`` logger."""

    def __init__(self, sink: Optional[logging.Logger] = None):
        self.sink = sink or logging.getLogger('scenario_engine.actions')

    async def log_action(self, action_type: str, data: dict[str, Any]) -> None:
        if action_type in OUTCOME_EVENTS:
            level = RESULT_LEVEL
        elif action_type in FAILURE_EVENTS:
            level = logging.WARNING
        else:
            level = logging.INFO
        context = ' '.join(f'{key}={value}' for key, value in data.items() if key not in ('timestamp', 'url'))
        self.sink.log(level, f'📝 {action_type} {context}'.rstrip())


class PlaywrightScreenshotService:
    def __init__(self, page: 'Page', directory: str | Path = 'screenshots'):
        self.page = page
        self.directory = Path(directory)

    async def capture(self, filename: Optional[str] = None) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        name = filename or f"screenshot_{now_utc_iso().replace(':', '-')}.png"
        path = self.directory / name
        await self.page.screenshot(path=str(path), full_page=False)
        logger.info(f"📸 Screenshot saved to {path}")
        return str(path)
