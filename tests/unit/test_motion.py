from __future__ import annotations

import math
import random

import pytest

np = pytest.importorskip("numpy")

from scenario_engine.browser.motion import MIN_MOVE_DURATION_MS, MIN_STEPS, MotionPlanner


def test_duration_scales_with_speed_and_has_floor():
    planner = MotionPlanner(random.Random(0))
    assert planner.plan_duration(1000, "normal") == 2000
    assert planner.plan_duration(1000, "fast") == 1000
    assert planner.plan_duration(1000, "slow") == 5000
    assert planner.plan_duration(5, "fast") == MIN_MOVE_DURATION_MS


def test_steps_follow_frame_rate_with_minimum():
    planner = MotionPlanner(random.Random(0))
    assert planner.plan_steps(1600) == 100
    assert planner.plan_steps(50) == MIN_STEPS


@pytest.mark.parametrize("pattern", ["direct", "natural", "hesitant"])
def test_path_has_exact_endpoints(pattern):
    planner = MotionPlanner(random.Random(5))
    path = planner.generate_path((12.0, 30.0), (412.0, 230.0), pattern, steps=40)
    assert len(path) == 41
    assert path[0] == (12.0, 30.0)
    assert path[-1] == (412.0, 230.0)


def test_direct_path_stays_on_the_line():
    planner = MotionPlanner(random.Random(0))
    path = planner.generate_path((0.0, 0.0), (100.0, 100.0), "direct", steps=10)
    assert all(abs(x - y) <= 1 for x, y in path)


def test_natural_path_bends_away_from_the_line():
    planner = MotionPlanner(random.Random(3))
    path = planner.generate_path((0.0, 0.0), (400.0, 0.0), "natural", steps=50)
    assert max(abs(y) for _, y in path) >= 8


def test_hesitant_path_is_slow_before_the_midpoint():
    planner = MotionPlanner(random.Random(0))
    path = planner.generate_path((0.0, 0.0), (1000.0, 0.0), "hesitant", steps=10)
    # Half the time covers only 30% of the distance
    assert path[5] == (300.0, 0.0)
    xs = [x for x, _ in path]
    assert xs == sorted(xs)


def test_unknown_pattern_falls_back_to_direct():
    planner = MotionPlanner(random.Random(0))
    path = planner.generate_path((0.0, 0.0), (10.0, 0.0), "zigzag", steps=10)
    assert path == [(float(i), 0.0) for i in range(11)]


def test_same_seed_same_path():
    a = MotionPlanner(random.Random(99)).generate_path((0, 0), (300, 200), "natural", 30)
    b = MotionPlanner(random.Random(99)).generate_path((0, 0), (300, 200), "natural", 30)
    assert a == b


def test_zero_distance_move():
    planner = MotionPlanner(random.Random(0))
    path = planner.generate_path((50.0, 50.0), (50.0, 50.0), "natural", steps=10)
    assert all(math.isclose(x, 50, abs_tol=2) and math.isclose(y, 50, abs_tol=2) for x, y in path)
