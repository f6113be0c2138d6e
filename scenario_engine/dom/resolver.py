import logging
import random
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from scenario_engine.dom.views import ElementSnapshot, VirtualElement
from scenario_engine.exceptions import ElementNotFound, ScenarioEngineError, UnknownGlobalSelector
from scenario_engine.timing import Clock, SystemClock

if TYPE_CHECKING:
	from scenario_engine.dom.service import DomService
	from scenario_engine.engine.views import SelectorSet

logger = logging.getLogger(__name__)

BROWSER_BACK = 'browser_back'
CURRENT = 'current'

STRATEGY_VIRTUAL = 'virtual'
STRATEGY_DIRECT = 'direct'
STRATEGY_FALLBACK = 'fallback'
STRATEGY_TEXT = 'text'
STRATEGY_ATTRIBUTE = 'attribute'
STRATEGY_POSITION = 'position'
STRATEGIES = (
	STRATEGY_VIRTUAL,
	STRATEGY_DIRECT,
	STRATEGY_FALLBACK,
	STRATEGY_TEXT,
	STRATEGY_ATTRIBUTE,
	STRATEGY_POSITION,
)

DEFAULT_POSITION_TOLERANCE = 10.0

_MODIFIER_RE = re.compile(r'^(?P<base>.*?):(?P<mod>random|visible|inviewport|first|last|nth\((?P<n>\d+)\))$')
_TEXT_RE = re.compile(r'^text:"(?P<text>[^"]+)"$')
_ATTRIBUTE_RE = re.compile(r'^\[\s*(?P<name>[^\]=*\s]+)\s*(?P<partial>\*?)=\s*"(?P<value>[^"]*)"\s*\]$')
_NUM = r'-?\d+(?:\.\d+)?'
_POSITION_RE = re.compile(rf'^position\(\s*(?P<x>{_NUM})\s*,\s*(?P<y>{_NUM})\s*(?:,\s*(?P<tol>{_NUM})\s*)?\)$')


@dataclass
class SelectorResolution:
	"""Outcome of resolving one selector: the element and the strategy that found it, or the error."""

	selector: str
	element: Any = None
	strategy: Optional[str] = None
	error: Optional[ScenarioEngineError] = None

	@property
	def found(self) -> bool:
		return self.element is not None


class ElementResolver:
	"""Maps declarative selectors to live elements.

	Strategies run in a fixed order and the first hit wins:
	alias expansion, virtual tokens, direct query, comma fallback list,
	``text:"..."``, ``[attr="..."]`` / ``[attr*="..."]`` and ``position(x,y[,tol])``.
	Hits are cached by the post-alias selector and revalidated before reuse.
	"""

	def __init__(
		self,
		dom: 'DomService',
		rng: Optional[random.Random] = None,
		clock: Optional[Clock] = None,
		use_cache: bool = True,
	):
		self.dom = dom
		self.rng = rng or random.Random()
		self.clock = clock or SystemClock()
		self.use_cache = use_cache
		self.selectors: Optional['SelectorSet'] = None
		self.page_type: Optional[str] = None
		self.last_found: Any = None
		self._cache: dict[str, Any] = {}
		self._hits = 0
		self._misses = 0

	def bind(self, selectors: Optional['SelectorSet'], page_type: Optional[str] = None) -> None:
		"""Set the selector set and page used for ``@name`` expansion."""
		if selectors is not self.selectors:
			self.clear_cache()
		self.selectors = selectors
		self.page_type = page_type

	def expand_alias(self, selector: str, selectors: Optional['SelectorSet'] = None) -> str:
		selector = selector.strip()
		if not selector.startswith('@'):
			return selector
		name = selector[1:]
		selectors = selectors or self.selectors
		if selectors is not None:
			if name in selectors.global_selectors:
				return selectors.global_selectors[name].strip()
			page = selectors.pages.get(self.page_type) if self.page_type else None
			if page is not None and name in page.elements:
				return page.elements[name].strip()
		raise UnknownGlobalSelector(name)

	async def resolve(self, selector: str, selectors: Optional['SelectorSet'] = None, use_cache: Optional[bool] = None) -> Any:
		"""Resolve or raise. The only lookup that moves ``current``."""
		result = await self.try_resolve(selector, selectors, use_cache=use_cache)
		if result.error is not None:
			raise result.error
		if not isinstance(result.element, VirtualElement):
			self.last_found = result.element
		return result.element

	async def try_resolve(
		self, selector: str, selectors: Optional['SelectorSet'] = None, use_cache: Optional[bool] = None
	) -> SelectorResolution:
		try:
			expanded = self.expand_alias(selector, selectors)
		except UnknownGlobalSelector as e:
			return SelectorResolution(selector=selector, error=e)

		cache_enabled = self.use_cache if use_cache is None else use_cache
		if cache_enabled and expanded in self._cache:
			cached = self._cache[expanded]
			if await self.dom.is_attached(cached):
				self._hits += 1
				return SelectorResolution(selector=expanded, element=cached, strategy='cache')
			del self._cache[expanded]
		self._misses += 1

		element, strategy = await self._run_strategies(expanded)
		if element is None:
			return SelectorResolution(selector=expanded, error=ElementNotFound(expanded, STRATEGIES))

		logger.debug(f'🔍 Resolved {expanded!r} via {strategy}')
		if cache_enabled and strategy != STRATEGY_VIRTUAL and not isinstance(element, VirtualElement):
			self._cache[expanded] = element
		return SelectorResolution(selector=expanded, element=element, strategy=strategy)

	async def exists(self, selector: str, selectors: Optional['SelectorSet'] = None) -> bool:
		result = await self.try_resolve(selector, selectors)
		if isinstance(result.error, UnknownGlobalSelector):
			logger.warning(f'⚠️ {result.error}')
		return result.found

	async def _run_strategies(self, selector: str) -> tuple[Any, Optional[str]]:
		element = await self._find_virtual(selector)
		if element is not None:
			return element, STRATEGY_VIRTUAL

		matches = await self.dom.query_all(selector)
		if matches:
			return matches[0], STRATEGY_DIRECT

		if ',' in selector:
			# Parts hold no commas, so this recurses exactly one level
			for part in (p.strip() for p in selector.split(',')):
				if not part:
					continue
				element, _ = await self._run_strategies(part)
				if element is not None:
					return element, STRATEGY_FALLBACK

		for strategy, finder in (
			(STRATEGY_TEXT, self._find_by_text),
			(STRATEGY_ATTRIBUTE, self._find_by_attribute),
			(STRATEGY_POSITION, self._find_by_position),
		):
			element = await finder(selector)
			if element is not None:
				return element, strategy
		return None, None

	async def _find_virtual(self, selector: str) -> Any:
		if selector == BROWSER_BACK:
			return VirtualElement(BROWSER_BACK)
		if selector == CURRENT:
			if self.last_found is not None and await self.dom.is_attached(self.last_found):
				return self.last_found
			return None

		match = _MODIFIER_RE.match(selector)
		if not match:
			return None
		base = match.group('base').strip()
		# A bare modifier has no candidate set to pick from
		if not base:
			return None
		candidates = await self.dom.query_all(base)
		if not candidates:
			return None

		modifier = match.group('mod')
		if modifier == 'random':
			return self.rng.choice(candidates)
		if modifier == 'first':
			return candidates[0]
		if modifier == 'last':
			return candidates[-1]
		if modifier == 'visible':
			return await self._first_matching(candidates, self.dom.is_visible)
		if modifier == 'inviewport':
			return await self._first_matching(candidates, self.dom.is_in_viewport)
		index = int(match.group('n')) - 1
		if 0 <= index < len(candidates):
			return candidates[index]
		return None

	@staticmethod
	async def _first_matching(candidates: list[Any], predicate: Callable[[Any], Awaitable[bool]]) -> Any:
		for candidate in candidates:
			if await predicate(candidate):
				return candidate
		return None

	async def _find_by_text(self, selector: str) -> Any:
		match = _TEXT_RE.match(selector)
		if not match:
			return None
		needle = match.group('text').strip().lower()
		snapshots = await self.dom.snapshot()

		exact = [s for s in snapshots if s.text.strip().lower() == needle]
		if exact:
			# Wrappers share their child's text; the deepest element is the one that owns it
			return max(exact, key=lambda s: s.depth).handle

		partial = [s for s in snapshots if needle in s.text.lower()]
		if partial:
			return min(partial, key=lambda s: (len(s.text), -s.depth)).handle
		return None

	async def _find_by_attribute(self, selector: str) -> Any:
		match = _ATTRIBUTE_RE.match(selector)
		if not match:
			return None
		name, value = match.group('name'), match.group('value')
		partial = bool(match.group('partial'))
		for snapshot in await self.dom.snapshot():
			actual = snapshot.attributes.get(name)
			if actual is None:
				continue
			if (partial and value in actual) or (not partial and actual == value):
				return snapshot.handle
		return None

	async def _find_by_position(self, selector: str) -> Any:
		match = _POSITION_RE.match(selector)
		if not match:
			return None
		x, y = float(match.group('x')), float(match.group('y'))
		tolerance = float(match.group('tol')) if match.group('tol') else DEFAULT_POSITION_TOLERANCE

		hits: list[tuple[float, ElementSnapshot]] = []
		for snapshot in await self.dom.snapshot():
			if snapshot.box is None or snapshot.box.width <= 0 or snapshot.box.height <= 0:
				continue
			cx, cy = snapshot.box.center
			# Square window around the point; the nearest centre wins among hits
			if abs(cx - x) <= tolerance and abs(cy - y) <= tolerance:
				hits.append((snapshot.box.distance_from_center(x, y), snapshot))
		if not hits:
			return None
		return min(hits, key=lambda hit: (hit[0], -hit[1].depth))[1].handle

	async def resolve_all(
		self,
		selector: str,
		selectors: Optional['SelectorSet'] = None,
		visible_only: bool = False,
		in_viewport_only: bool = False,
		limit: Optional[int] = None,
	) -> list[Any]:
		"""Every element a selector matches, optionally filtered and capped."""
		expanded = self.expand_alias(selector, selectors)
		elements = await self.dom.query_all(expanded)
		if not elements:
			result = await self.try_resolve(expanded, use_cache=False)
			elements = [result.element] if result.found and not isinstance(result.element, VirtualElement) else []

		filtered = []
		for element in elements:
			if visible_only and not await self.dom.is_visible(element):
				continue
			if in_viewport_only and not await self.dom.is_in_viewport(element):
				continue
			filtered.append(element)
			if limit is not None and len(filtered) >= limit:
				break
		return filtered

	async def wait_for_element(
		self,
		selector: str,
		selectors: Optional['SelectorSet'] = None,
		timeout_ms: float = 10_000,
		interval_ms: float = 500,
	) -> Any:
		deadline = self.clock.now_ms() + timeout_ms
		while True:
			result = await self.try_resolve(selector, selectors, use_cache=False)
			if isinstance(result.error, UnknownGlobalSelector):
				raise result.error
			if result.found:
				return result.element
			if self.clock.now_ms() >= deadline:
				raise TimeoutError(f'Element {selector} not found within {timeout_ms:.0f}ms')
			await self.clock.sleep(interval_ms)

	async def wait_for_element_to_disappear(
		self,
		selector: str,
		selectors: Optional['SelectorSet'] = None,
		timeout_ms: float = 10_000,
		interval_ms: float = 500,
	) -> None:
		deadline = self.clock.now_ms() + timeout_ms
		while True:
			result = await self.try_resolve(selector, selectors, use_cache=False)
			if isinstance(result.error, UnknownGlobalSelector):
				raise result.error
			if not result.found:
				return
			if self.clock.now_ms() >= deadline:
				raise TimeoutError(f'Element {selector} still present after {timeout_ms:.0f}ms')
			await self.clock.sleep(interval_ms)

	async def describe(self, element: Any) -> dict[str, Any]:
		if isinstance(element, VirtualElement):
			return {'tagName': 'VIRTUAL', 'id': '', 'className': '', 'text': element.name}
		return await self.dom.describe(element)

	def clear_cache(self) -> None:
		self._cache.clear()
		self.last_found = None

	def cache_stats(self) -> dict[str, int]:
		return {'size': len(self._cache), 'hits': self._hits, 'misses': self._misses}
