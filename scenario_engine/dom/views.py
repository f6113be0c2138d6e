from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class Box:
	x: float
	y: float
	width: float
	height: float

	@property
	def center(self) -> tuple[float, float]:
		return (self.x + self.width / 2, self.y + self.height / 2)

	def distance_from_center(self, x: float, y: float) -> float:
		cx, cy = self.center
		return math.hypot(cx - x, cy - y)

	@classmethod
	def from_dict(cls, data: Optional[dict]) -> Optional['Box']:
		if not data:
			return None
		return cls(
			x=float(data.get('x', 0)),
			y=float(data.get('y', 0)),
			width=float(data.get('width', 0)),
			height=float(data.get('height', 0)),
		)

	def to_dict(self) -> dict[str, float]:
		return {'x': self.x, 'y': self.y, 'width': self.width, 'height': self.height}


@dataclass
class ElementSnapshot:
	"""Serializable view of one element, paired with its live handle."""

	handle: Any
	tag: str
	text: str = ''
	attributes: dict[str, str] = field(default_factory=dict)
	box: Optional[Box] = None
	depth: int = 0


@dataclass
class VirtualElement:
	"""Element-like target that does not exist in the tree (e.g. history back)."""

	name: str

	def __repr__(self) -> str:
		return f'<virtual {self.name}>'
