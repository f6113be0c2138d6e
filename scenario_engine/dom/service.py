import logging
from typing import TYPE_CHECKING, Any, Optional

from scenario_engine.browser.types import PlaywrightError
from scenario_engine.dom.views import Box, ElementSnapshot

if TYPE_CHECKING:
	from scenario_engine.browser.types import ElementHandle, Page


INTERACTIVE_SELECTOR = 'a[href], button, input, select, textarea, [role="button"], [role="link"], [onclick], [tabindex]'

_SNAPSHOT_JS = """
(elements) => elements.map((el) => {
	const rect = el.getBoundingClientRect();
	const attributes = {};
	for (const attr of el.attributes) attributes[attr.name] = attr.value;
	let depth = 0;
	for (let node = el.parentElement; node; node = node.parentElement) depth++;
	return {
		tag: el.tagName.toLowerCase(),
		text: (el.textContent || '').trim(),
		attributes,
		box: {x: rect.x, y: rect.y, width: rect.width, height: rect.height},
		depth,
	};
})
"""

_IS_VISIBLE_JS = """
(el) => {
	const style = window.getComputedStyle(el);
	const rect = el.getBoundingClientRect();
	return style.display !== 'none'
		&& style.visibility !== 'hidden'
		&& style.opacity !== '0'
		&& rect.width > 0
		&& rect.height > 0;
}
"""

_IS_IN_VIEWPORT_JS = """
(el) => {
	const rect = el.getBoundingClientRect();
	return rect.top >= 0
		&& rect.left >= 0
		&& rect.bottom <= (window.innerHeight || document.documentElement.clientHeight)
		&& rect.right <= (window.innerWidth || document.documentElement.clientWidth);
}
"""

_SUGGEST_SELECTORS_JS = """
(el) => {
	const selectors = [];
	const tag = el.tagName.toLowerCase();
	if (el.id) selectors.push('#' + CSS.escape(el.id));
	const testId = el.getAttribute('data-testid');
	if (testId) selectors.push(`[data-testid="${testId}"]`);
	if (typeof el.className === 'string' && el.className.trim()) {
		const classes = el.className.trim().split(/\\s+/).map((c) => '.' + CSS.escape(c)).join('');
		selectors.push(tag + classes);
	}
	const name = el.getAttribute('name');
	if (name) selectors.push(`${tag}[name="${name}"]`);
	const text = (el.textContent || '').trim();
	if (text && text.length < 50 && !text.includes('"')) selectors.push(`text:"${text}"`);
	return selectors;
}
"""

_SELECT_CONTENTS_JS = """
(el) => {
	if (typeof el.select === 'function') {
		el.select();
		return true;
	}
	if (el.isContentEditable) {
		const range = document.createRange();
		range.selectNodeContents(el);
		const selection = window.getSelection();
		selection.removeAllRanges();
		selection.addRange(range);
		return true;
	}
	return false;
}
"""


class DomService:
	"""Read and mutate the live element tree of a Playwright page.

	Everything the resolver and the interpreter need from the DOM goes through
	this class, so tests can swap it for an in-memory double.
	"""

	logger: logging.Logger

	def __init__(self, page: 'Page', logger: logging.Logger | None = None):
		self.page = page
		self.logger = logger or logging.getLogger(__name__)

	@property
	def url(self) -> str:
		return self.page.url

	async def title(self) -> str:
		return await self.page.title()

	async def query_all(self, selector: str) -> list['ElementHandle']:
		"""Structural query; an invalid selector yields no elements."""
		try:
			return await self.page.query_selector_all(selector)
		except PlaywrightError as e:
			self.logger.debug(f'🔍 Selector query failed for {selector!r}: {e}')
			return []

	async def snapshot(self, selector: str = 'body *') -> list[ElementSnapshot]:
		"""Handles plus tag/text/attributes/box for every element matching ``selector``."""
		handles = await self.query_all(selector)
		if not handles:
			return []
		try:
			infos: list[dict[str, Any]] = await self.page.eval_on_selector_all(selector, _SNAPSHOT_JS)
		except PlaywrightError as e:
			self.logger.debug(f'🔍 Snapshot failed for {selector!r}: {e}')
			return []
		# Both calls walk the tree in document order; a mutation in between shortens the pairing
		return [
			ElementSnapshot(
				handle=handle,
				tag=info['tag'],
				text=info.get('text', ''),
				attributes=info.get('attributes') or {},
				box=Box.from_dict(info.get('box')),
				depth=int(info.get('depth', 0)),
			)
			for handle, info in zip(handles, infos)
		]

	async def is_attached(self, element: 'ElementHandle') -> bool:
		try:
			return bool(await element.evaluate('(el) => el.isConnected'))
		except PlaywrightError:
			return False

	async def is_visible(self, element: 'ElementHandle') -> bool:
		try:
			return bool(await element.evaluate(_IS_VISIBLE_JS))
		except PlaywrightError:
			return False

	async def is_in_viewport(self, element: 'ElementHandle') -> bool:
		try:
			return bool(await element.evaluate(_IS_IN_VIEWPORT_JS))
		except PlaywrightError:
			return False

	async def bounding_box(self, element: 'ElementHandle') -> Optional[Box]:
		return Box.from_dict(await element.bounding_box())

	async def scroll_into_view(self, element: 'ElementHandle', smooth: bool = True) -> None:
		await element.evaluate(
			"(el, smooth) => el.scrollIntoView({behavior: smooth ? 'smooth' : 'auto', block: 'center'})",
			smooth,
		)

	async def focus(self, element: 'ElementHandle') -> None:
		await element.focus()

	async def select_contents(self, element: 'ElementHandle') -> bool:
		return bool(await element.evaluate(_SELECT_CONTENTS_JS))

	async def scroll_by(self, delta: float) -> None:
		await self.page.evaluate('(delta) => window.scrollBy(0, delta)', delta)

	async def suggest_selectors(self, element: 'ElementHandle') -> list[str]:
		try:
			return list(await element.evaluate(_SUGGEST_SELECTORS_JS))
		except PlaywrightError:
			return []

	async def describe(self, element: 'ElementHandle') -> dict[str, Any]:
		info = await element.evaluate(
			"""(el) => ({
				tagName: el.tagName,
				id: el.id,
				className: typeof el.className === 'string' ? el.className : '',
				text: (el.textContent || '').trim().substring(0, 100),
				attributes: Object.fromEntries(Array.from(el.attributes).map((a) => [a.name, a.value])),
			})"""
		)
		box = await self.bounding_box(element)
		info['box'] = box.to_dict() if box else None
		info['visible'] = await self.is_visible(element)
		info['inViewport'] = await self.is_in_viewport(element)
		info['selectors'] = await self.suggest_selectors(element)
		return info

	async def interactive_elements(self, limit: int = 50) -> list[dict[str, Any]]:
		elements = []
		for handle in await self.query_all(INTERACTIVE_SELECTOR):
			if len(elements) >= limit:
				break
			if not await self.is_visible(handle):
				continue
			info = await self.describe(handle)
			elements.append(
				{
					'tagName': info['tagName'],
					'text': info['text'][:50],
					'selectors': info['selectors'],
				}
			)
		return elements

	async def viewport_size(self) -> tuple[int, int]:
		viewport = self.page.viewport_size
		if viewport:
			return int(viewport['width']), int(viewport['height'])
		size = await self.page.evaluate('() => [window.innerWidth, window.innerHeight]')
		return int(size[0]), int(size[1])

	async def history_length(self) -> int:
		return int(await self.page.evaluate('() => window.history.length'))

	async def go_back(self) -> None:
		self.logger.debug('🔙 Navigating back in history')
		await self.page.go_back(wait_until='domcontentloaded')
