"""
Fixtures for end-to-end tests against a real headless Chromium.
"""

import pytest
import pytest_asyncio

pytest.importorskip("playwright.async_api")

from scenario_engine.browser.types import async_playwright


@pytest_asyncio.fixture
async def chromium_page():
    """A fresh page in headless Chromium; skips when no browser is installed."""
    async with async_playwright() as playwright:
        try:
            browser = await playwright.chromium.launch(headless=True)
        except Exception as e:
            pytest.skip(f"Chromium not available for end-to-end tests: {e}")
        try:
            page = await browser.new_page(viewport={"width": 1024, "height": 768})
            yield page
        finally:
            await browser.close()
