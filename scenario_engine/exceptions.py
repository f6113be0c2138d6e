from __future__ import annotations

import traceback
from typing import Iterable, Optional

from pydantic import ValidationError


# Lowercased substrings that mark an error as fatal to the whole session.
FATAL_ERROR_MARKERS = (
    'network error',
    'network_error',
    'page crash',
    'page_crash',
    'extension error',
    'extension_error',
    # Playwright's wording when the page under automation went away
    'target page, context or browser has been closed',
)


class ScenarioEngineError(Exception):
    """Base class for every error raised by the scenario engine."""


class ElementNotFound(ScenarioEngineError):
    def __init__(self, selector: str, strategies: Iterable[str] = ()):
        self.selector = selector
        self.strategies = list(strategies)
        exhausted = ', '.join(self.strategies) or 'none'
        super().__init__(f'Element not found: {selector} (exhausted strategies: {exhausted})')


class UnknownGlobalSelector(ScenarioEngineError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Global selector not found: @{name}')


class VerificationFailed(ScenarioEngineError):
    def __init__(self, selector: str, expected: bool):
        self.selector = selector
        self.expected = expected
        state = 'present' if expected else 'absent'
        super().__init__(f'Verification failed: expected {selector} to be {state}')


class MicroActionFailed(ScenarioEngineError):
    """A single micro-action could not complete.

    ``cause`` keeps the originating exception so fatal classification can look
    through the wrapper.
    """

    def __init__(self, action_type: str, cause: BaseException | str):
        self.action_type = action_type
        self.cause = cause
        super().__init__(f'{action_type} failed: {cause}')


class PageConfigError(ScenarioEngineError):
    def __init__(self, page_type: Optional[str]):
        self.page_type = page_type
        super().__init__(f'No configuration for page type: {page_type or "unknown"}')


class NoEligibleActions(ScenarioEngineError):
    def __init__(self, page_type: Optional[str]):
        self.page_type = page_type
        super().__init__(f'No eligible actions on page: {page_type or "unknown"}')


class TransitionTimeout(ScenarioEngineError):
    def __init__(self, expected: str, actual: Optional[str], timeout_ms: float):
        self.expected = expected
        self.actual = actual
        self.timeout_ms = timeout_ms
        super().__init__(
            f'Expected page {expected} not reached within {timeout_ms:.0f}ms (still on {actual or "unknown"})'
        )


class SessionStateError(ScenarioEngineError):
    """Raised for a lifecycle transition the current session status does not allow."""


class UnknownScenario(ScenarioEngineError):
    def __init__(self, scenario_id: str):
        self.scenario_id = scenario_id
        super().__init__(f'Scenario not found: {scenario_id}')


def _error_chain(error: BaseException):
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        cause = getattr(current, 'cause', None)
        if isinstance(cause, BaseException):
            current = cause
        elif isinstance(cause, str):
            yield RuntimeError(cause)
            current = None
        else:
            current = current.__cause__


def is_fatal_error(error: BaseException) -> bool:
    """True if ``error`` (or anything it wraps) matches a fatal marker."""
    for item in _error_chain(error):
        message = str(item).lower()
        if any(marker in message for marker in FATAL_ERROR_MARKERS):
            return True
    return False


def format_error(error: BaseException, include_trace: bool = False) -> str:
    """Format an error for status display, optionally with the stack trace."""
    if isinstance(error, ValidationError):
        return f'Invalid scenario configuration\nDetails: {str(error)}'
    if include_trace:
        return f'{str(error)}\nStacktrace:\n{"".join(traceback.format_exception(error))}'
    return str(error) or type(error).__name__


class SessionInterrupted(ScenarioEngineError):
    """Raised at a suspension point once the session is no longer running."""
