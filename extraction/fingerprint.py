from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from urllib.parse import urlsplit

from playwright.async_api import Page

log = logging.getLogger(__name__)

NO_HASH = "nohash"
FINGERPRINT_LENGTH = 16
MAX_LINKS = 10

OUTBOUND_LINKS_JS = """
() => Array.from(document.querySelectorAll('a[href^="http"]'))
  .slice(0, 300)
  .map((a) => a.href)
"""


def _site_label(host: str) -> str:
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host.split(".", 1)[0]


def fingerprint_links(hrefs: Iterable[str], search_url: str, limit: int = MAX_LINKS) -> str:
    """Digest of the first ``limit`` distinct outbound links, in document order.

    Links on any host of the search engine named by ``search_url`` are not
    outbound, whichever of its hosts (consent, maps, ...) the page landed on.
    """
    own = _site_label(urlsplit(search_url).hostname or "")
    picked: list[str] = []
    for href in hrefs:
        host = (urlsplit(href).hostname or "").lower()
        if not host or (own and own in host.split(".")):
            continue
        if href in picked:
            continue
        picked.append(href)
        if len(picked) >= limit:
            break
    canon = "|".join(picked)
    return hashlib.sha256(canon.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


async def drift_fingerprint(page: Page, search_url: str) -> str:
    try:
        hrefs = await page.evaluate(OUTBOUND_LINKS_JS)
        return fingerprint_links(hrefs or [], search_url)
    except Exception as exc:
        log.debug("Drift fingerprint unavailable: %s", exc)
        return NO_HASH
