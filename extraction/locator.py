"""Finds the related-questions container on a rendered results page."""

from __future__ import annotations

import logging
import unicodedata

from playwright.async_api import ElementHandle, Page

log = logging.getLogger(__name__)

MIN_CONTAINER_HEIGHT = 200
MIN_CONTROLS = 3
LANDMARK_BONUS = 2

# Heading phrases tried in priority order when structural scoring finds nothing.
HEADING_PHRASES = [
    "people also ask",                 # en
    "les gens demandent aussi",        # fr
    "die leute fragen auch",           # de
    "también se pregunta",             # es
    "la gente también pregunta",       # es
    "as pessoas também perguntam",     # pt
    "as pessoas também pesquisam",     # pt-BR
    "लोग यह भी पूछते हैं",              # hi
    "人们也会问",                       # zh-Hans
    "people also search for",          # en
    "related questions",               # en
    "as pessoas também querem saber",  # pt
]

# Highest scoring block: accordion controls below it, plus a bonus for
# region landmarks. Array.sort is stable, so ties keep document order.
FIND_CONTAINER_JS = """
({minHeight, minControls, landmarkBonus}) => {
  const candidates = [];
  for (const el of document.querySelectorAll('div,section')) {
    if (el.offsetHeight <= minHeight) continue;
    const controls = el.querySelectorAll('[aria-expanded]').length;
    if (controls < minControls) continue;
    const role = (el.getAttribute('role') || '').toLowerCase();
    candidates.push({el, score: controls + (role === 'region' ? landmarkBonus : 0)});
  }
  candidates.sort((a, b) => b.score - a.score);
  return candidates.length ? candidates[0].el : null;
}
"""

FIND_BY_HEADING_JS = """
(phrases) => {
  const fold = (s) => (s || '').normalize('NFD').replace(/\\p{M}/gu, '')
    .replace(/\\s+/g, ' ').trim().toLowerCase();
  const headings = Array.from(document.querySelectorAll('h1,h2,h3,h4,[role="heading"]'))
    .map((el) => ({el, text: fold(el.innerText || el.textContent)}));
  for (const phrase of phrases) {
    const hit = headings.find((h) => h.text.includes(phrase));
    if (hit && hit.el.parentElement) return hit.el.parentElement;
  }
  return null;
}
"""


def fold_heading(text: str) -> str:
    """Case and diacritic insensitive form, mirrored by ``FIND_BY_HEADING_JS``."""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.category(ch).startswith("M"))
    return " ".join(stripped.split()).lower()


async def _element_or_none(page: Page, expression: str, arg) -> ElementHandle | None:
    handle = await page.evaluate_handle(expression, arg)
    element = handle.as_element()
    if element is None:
        await handle.dispose()
    return element


async def locate_container(
    page: Page,
    *,
    min_height: int = MIN_CONTAINER_HEIGHT,
    min_controls: int = MIN_CONTROLS,
    phrases: list[str] | None = None,
) -> ElementHandle | None:
    """Return the question-tree container, or None when the page has none.

    Structural scoring runs first; the localized heading search is only a
    fallback for pages whose markup does not expose accordion controls.
    """
    container = await _element_or_none(
        page,
        FIND_CONTAINER_JS,
        {"minHeight": min_height, "minControls": min_controls, "landmarkBonus": LANDMARK_BONUS},
    )
    if container is not None:
        log.debug("Container located by structure")
        return container

    folded = [fold_heading(p) for p in (phrases or HEADING_PHRASES)]
    try:
        container = await _element_or_none(page, FIND_BY_HEADING_JS, folded)
    except Exception as exc:
        log.debug("Heading search failed: %s", exc)
        return None
    if container is not None:
        log.debug("Container located by heading")
    return container
