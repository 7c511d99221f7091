from __future__ import annotations

import logging
import time
from contextlib import suppress

import httpx
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from core.deadline import Deadline
from core.models import EngineConfig, Evidence, ExtractionParams, RunResult
from core.query import compose_search_request
from extraction.evidence import capture_element, capture_full_page, capture_markup
from extraction.fingerprint import drift_fingerprint
from extraction.locator import locate_container
from extraction.session import ProxySelector, RandomProxySelector, SessionFactory, open_session
from extraction.walker import walk_tree

log = logging.getLogger(__name__)

# Tried in order; the first button that can be clicked wins.
CONSENT_LABELS = ["I agree", "Accept all", "accept", "Accept"]
CONSENT_CLICK_TIMEOUT_MS = 3000
EGRESS_TIMEOUT_S = 5.0


async def load_page(page: Page, url: str, config: EngineConfig, deadline: Deadline) -> None:
    """Navigate and wait for the page to settle; timeouts leave the page as rendered."""
    try:
        await page.goto(
            url,
            wait_until="domcontentloaded",
            timeout=max(1, deadline.remaining_ms(cap_ms=config.navigation_timeout_ms)),
        )
    except PlaywrightTimeoutError:
        log.debug("Navigation timed out; continuing with what rendered")

    with suppress(PlaywrightTimeoutError):
        await page.wait_for_load_state(
            "networkidle",
            timeout=max(1, deadline.remaining_ms(cap_ms=config.network_idle_timeout_ms)),
        )


async def dismiss_consent(page: Page, config: EngineConfig, deadline: Deadline) -> bool:
    for label in CONSENT_LABELS:
        if deadline.expired:
            break
        try:
            button = await page.query_selector(f'button:has-text("{label}")')
            if button is None:
                continue
            await button.click(timeout=max(1, deadline.remaining_ms(cap_ms=CONSENT_CLICK_TIMEOUT_MS)))
            await page.wait_for_timeout(deadline.remaining_ms(cap_ms=config.consent_wait_ms))
        except Exception as exc:
            log.debug("Consent button %r not usable: %s", label, exc)
            continue
        log.debug("Consent overlay dismissed via %r", label)
        return True
    return False


async def lookup_egress(lookup_url: str, proxy: str | None) -> tuple[str | None, str | None]:
    """Country and network the run egressed from, if a lookup service is configured."""
    if not lookup_url:
        return None, None
    try:
        async with httpx.AsyncClient(proxy=proxy, timeout=EGRESS_TIMEOUT_S) as client:
            resp = await client.get(lookup_url)
            resp.raise_for_status()
            data = resp.json()
    except Exception as exc:
        log.debug("Egress lookup failed: %s", exc)
        return None, None
    country = data.get("country") or data.get("country_code")
    network = data.get("org") or data.get("asn")
    return country, (str(network) if network else None)


async def run_single(
    params: ExtractionParams,
    config: EngineConfig | None = None,
    *,
    session_factory: SessionFactory = open_session,
    proxy_selector: ProxySelector | None = None,
) -> RunResult:
    """One extraction pass against a fresh rendering session.

    A page without a question container is a valid outcome: the result has
    no items and carries only the full-page screenshot.
    """
    config = config or EngineConfig()
    selector = proxy_selector or RandomProxySelector(config.proxy_pool)
    proxy = selector.select()
    request = compose_search_request(params, config)
    deadline = Deadline.after_ms(config.max_runtime_ms)
    evidence = Evidence()
    items = []
    start = time.monotonic()

    async with session_factory(request, proxy, config) as page:
        await load_page(page, request.url, config, deadline)
        await dismiss_consent(page, config, deadline)
        fingerprint = await drift_fingerprint(page, config.search_base_url)

        container = await locate_container(page)
        if container is None:
            log.info("No question container for '%s' (%s/%s)", params.keyword, params.country, params.language)
        else:
            evidence.container_html = await capture_markup(container)
            crop = await capture_element(container)
            if crop is not None:
                evidence.crops.append(crop)
            walk = await walk_tree(container, params.depth, config, deadline, evidence)
            items = walk.items

        evidence.full_screenshot = await capture_full_page(page)

    country, network = await lookup_egress(config.egress_lookup_url, proxy)

    log.info(
        "Run for '%s': %d questions | depth %d | fingerprint %s | %.1fs",
        params.keyword, len(items), params.depth, fingerprint, time.monotonic() - start,
    )
    return RunResult(
        items=items,
        evidence=evidence,
        drift_fingerprint=fingerprint,
        egress_country=country,
        egress_network=network,
    )
