"""Run one scenario from a website configuration file against a live Chromium.

    python -m scenario_engine site.json --scenario browse --url https://example.com
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import random
from pathlib import Path

from scenario_engine.browser.types import async_playwright
from scenario_engine.engine.service import ScenarioEngine
from scenario_engine.engine.settings import EngineSettings
from scenario_engine.engine.views import WebsiteConfig
from scenario_engine.exceptions import UnknownScenario, format_error

logger = logging.getLogger('scenario_engine.cli')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='scenario_engine', description='Drive a browser through a declarative scenario')
    parser.add_argument('config', type=Path, help='Website configuration JSON (website, selectors, scenarios)')
    parser.add_argument('--scenario', required=True, help='Scenario id to run')
    parser.add_argument('--url', required=True, help='Start URL')
    parser.add_argument('--seed', type=int, default=None, help='Seed for reproducible timing and choices')
    parser.add_argument('--headless', action='store_true', help='Run Chromium without a window')
    parser.add_argument('--slow', action='store_true', help='Double every resolved delay')
    parser.add_argument('--poll', type=float, default=1.0, help='Seconds between status checks')
    return parser


async def run(args: argparse.Namespace) -> int:
    config = WebsiteConfig.model_validate(json.loads(args.config.read_text(encoding='utf-8')))
    scenario = config.scenarios.get(args.scenario)
    if scenario is None:
        raise UnknownScenario(args.scenario)

    updates = {'slowMode': True} if args.slow else {}
    if args.seed is not None:
        updates['seed'] = args.seed
    settings = EngineSettings().merged(updates)
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=args.headless)
        try:
            page = await browser.new_page()
            await page.goto(args.url)
            engine = ScenarioEngine(page, settings, rng=random.Random(settings.seed))
            await engine.start(scenario, config.selectors)
            while engine.session is not None:
                await asyncio.sleep(args.poll)
            await engine.close()
            status = engine.get_status()
        finally:
            await browser.close()

    print(json.dumps(status, indent=2, default=str))
    return 0 if status['status'] in ('completed', 'timedOut') else 1


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info('🛑 Interrupted')
        return 130
    except Exception as e:
        logger.error(f'❌ {format_error(e)}')
        return 1


if __name__ == '__main__':
    raise SystemExit(main())
