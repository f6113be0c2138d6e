"""
Synthetic pointer paths.

Three patterns are supported:
- direct: straight linear interpolation
- natural: quadratic Bézier through a control point pushed off the straight line,
  with small jitter in the middle of the curve
- hesitant: linear geometry with a time-warp that slows progress before the midpoint
"""
from __future__ import annotations

import logging
import math
import random
from typing import List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

Point = Tuple[float, float]

SPEED_PX_PER_SECOND = {
    'slow': 200.0,
    'normal': 500.0,
    'fast': 1000.0,
}

FRAME_MS = 16.0
MIN_MOVE_DURATION_MS = 200.0
MIN_STEPS = 10

# Perpendicular offset range (px) for the natural curve's control point
CONTROL_OFFSET_RANGE = (20.0, 70.0)
JITTER_PX = 1.5


class MotionPlanner:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def plan_duration(self, distance: float, speed: str = 'normal') -> float:
        """Animation length in ms for a move of ``distance`` px at a named speed."""
        px_per_second = SPEED_PX_PER_SECOND.get(speed, SPEED_PX_PER_SECOND['normal'])
        return max(MIN_MOVE_DURATION_MS, distance / px_per_second * 1000.0)

    def plan_steps(self, duration_ms: float) -> int:
        return max(MIN_STEPS, int(duration_ms // FRAME_MS))

    def generate_path(self, start: Point, end: Point, pattern: str = 'natural', steps: int = MIN_STEPS) -> List[Point]:
        """Return ``steps + 1`` rounded points from ``start`` to ``end`` inclusive."""
        steps = max(1, int(steps))
        t = np.linspace(0.0, 1.0, steps + 1)

        if pattern == 'direct':
            points = self._linear(start, end, t)
        elif pattern == 'hesitant':
            points = self._linear(start, end, self._hesitant_warp(t))
        elif pattern == 'natural':
            points = self._natural(start, end, t)
        else:
            logger.warning(f"⚠️ Unknown movement pattern {pattern!r}, falling back to direct")
            points = self._linear(start, end, t)

        path = [(float(round(x)), float(round(y))) for x, y in points]
        # Endpoints are exact regardless of jitter/rounding
        path[0] = (float(round(start[0])), float(round(start[1])))
        path[-1] = (float(round(end[0])), float(round(end[1])))
        return path

    @staticmethod
    def _linear(start: Point, end: Point, t: np.ndarray) -> np.ndarray:
        p0 = np.asarray(start, dtype=np.float64)
        p1 = np.asarray(end, dtype=np.float64)
        return p0 + np.outer(t, p1 - p0)

    @staticmethod
    def _hesitant_warp(t: np.ndarray) -> np.ndarray:
        return np.where(t < 0.5, t * 0.6, 0.3 + (t - 0.5) * 1.4)

    def _control_point(self, start: Point, end: Point) -> Point:
        dx, dy = end[0] - start[0], end[1] - start[1]
        distance = math.hypot(dx, dy)
        mid_x, mid_y = (start[0] + end[0]) / 2, (start[1] + end[1]) / 2
        if distance == 0:
            return mid_x, mid_y
        offset = self.rng.uniform(*CONTROL_OFFSET_RANGE)
        if self.rng.random() < 0.5:
            offset = -offset
        # Unit normal to the movement vector
        return mid_x + (-dy / distance) * offset, mid_y + (dx / distance) * offset

    def _natural(self, start: Point, end: Point, t: np.ndarray) -> np.ndarray:
        p0 = np.asarray(start, dtype=np.float64)
        p1 = np.asarray(self._control_point(start, end), dtype=np.float64)
        p2 = np.asarray(end, dtype=np.float64)

        u = 1.0 - t
        points = np.outer(u * u, p0) + np.outer(2 * u * t, p1) + np.outer(t * t, p2)

        middle = (t > 0.1) & (t < 0.9)
        jitter = np.array(
            [[self.rng.uniform(-JITTER_PX, JITTER_PX), self.rng.uniform(-JITTER_PX, JITTER_PX)] for _ in range(len(t))]
        )
        points[middle] += jitter[middle]
        return points
