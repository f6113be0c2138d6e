from __future__ import annotations

import random
from collections import Counter

import pytest

from scenario_engine.dom.resolver import ElementResolver
from scenario_engine.engine.decision import ActionSelector, pick_weighted
from scenario_engine.engine.progress import ProgressTracker
from scenario_engine.engine.views import Action, Goals

from tests.conftest import FakeClock, FakeDom, FakeElement


def _action(name: str, probability: float = 0.5, **conditions) -> Action:
    return Action.model_validate({"name": name, "probability": probability, "conditions": conditions})


@pytest.fixture
def setup():
    clock = FakeClock()
    dom = FakeDom(elements=[FakeElement("button", id="buy"), FakeElement("div", classes=("modal",))])
    tracker = ProgressTracker(Goals.model_validate({"requiredMetrics": {"views": 3}}), clock)
    tracker.update_current_page("home")
    resolver = ElementResolver(dom, random.Random(0), clock)
    return clock, tracker, ActionSelector(tracker, resolver, random.Random(11))


def test_pick_weighted_walks_cumulative_weights():
    actions = [_action("a", 0.2), _action("b", 0.3), _action("c", 0.5)]
    assert pick_weighted(actions, 0.0).name == "a"
    assert pick_weighted(actions, 0.2).name == "a"
    assert pick_weighted(actions, 0.21).name == "b"
    assert pick_weighted(actions, 0.99).name == "c"
    # Rounding leftovers land on the last action
    assert pick_weighted(actions, 5.0).name == "c"
    assert pick_weighted([], 0.1) is None


@pytest.mark.asyncio
async def test_time_conditions_in_milliseconds(setup):
    clock, tracker, selector = setup
    early = _action("early", maxTimeOnPage=3000)
    late = _action("late", minTimeOnPage=2000)
    assert [a.name for a in await selector.eligible([early, late])] == ["early"]
    clock.advance(2500)
    assert [a.name for a in await selector.eligible([early, late])] == ["early", "late"]
    clock.advance(1000)
    assert [a.name for a in await selector.eligible([early, late])] == ["late"]


@pytest.mark.asyncio
async def test_element_conditions(setup):
    _, _, selector = setup
    needs_buy = _action("needs buy", elementExists="#buy")
    needs_cart = _action("needs cart", elementExists="#cart")
    no_modal = _action("no modal", elementNotExists=".modal")
    no_popup = _action("no popup", elementNotExists=".popup")
    eligible = await selector.eligible([needs_buy, needs_cart, no_modal, no_popup])
    assert [a.name for a in eligible] == ["needs buy", "no popup"]


@pytest.mark.asyncio
async def test_goal_progress_condition(setup):
    _, tracker, selector = setup
    checkout = _action("checkout", goalProgress={"views": 2})
    assert await selector.eligible([checkout]) == []
    tracker.update_metrics({"views": 2})
    assert await selector.eligible([checkout]) == [checkout]


@pytest.mark.asyncio
async def test_zero_probability_is_never_eligible(setup):
    _, _, selector = setup
    assert await selector.eligible([_action("never", 0)]) == []
    assert await selector.select([_action("never", 0)]) is None


def test_choice_follows_relative_weights(setup):
    _, _, selector = setup
    actions = [_action("rare", 0.1), _action("common", 0.9)]
    counts = Counter(selector.choose(actions).name for _ in range(2000))
    assert counts["common"] > counts["rare"] * 4
    assert counts["rare"] > 0


def test_weights_are_relative_not_absolute(setup):
    _, _, selector = setup
    # Sum well below 1: something is still always chosen
    actions = [_action("a", 0.05), _action("b", 0.05)]
    assert all(selector.choose(actions) is not None for _ in range(100))
