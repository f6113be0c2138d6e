# centralize imports for browser typing

from playwright.async_api import Browser, BrowserContext, ElementHandle, Frame, Page, Playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

__all__ = [
	'Browser',
	'BrowserContext',
	'ElementHandle',
	'Frame',
	'Page',
	'Playwright',
	'PlaywrightError',
	'PlaywrightTimeoutError',
	'async_playwright',
]
