"""Best-effort evidence capture. Every helper returns None instead of raising."""

from __future__ import annotations

import base64
import logging

from playwright.async_api import ElementHandle, Page

log = logging.getLogger(__name__)

OUTER_HTML_JS = "(el) => el.outerHTML"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


async def capture_full_page(page: Page) -> str | None:
    try:
        return _b64(await page.screenshot(full_page=True))
    except Exception as exc:
        log.debug("Full-page screenshot failed: %s", exc)
        return None


async def capture_element(element: ElementHandle) -> str | None:
    try:
        return _b64(await element.screenshot())
    except Exception as exc:
        log.debug("Element screenshot failed: %s", exc)
        return None


async def capture_markup(element: ElementHandle) -> str | None:
    try:
        return await element.evaluate(OUTER_HTML_JS)
    except Exception as exc:
        log.debug("Markup capture failed: %s", exc)
        return None
