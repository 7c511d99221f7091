from __future__ import annotations

import base64
from urllib.parse import urlencode

from core.models import EngineConfig, ExtractionParams, SearchRequest

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Mobile Safari/537.36"
)
DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)

# Tall viewports let more of the results page render without scrolling.
_VIEWPORTS: dict[str, dict[str, int]] = {
    "mobile": {"width": 390, "height": 2000},
    "desktop": {"width": 1366, "height": 2200},
}

_CITY_BIAS_PREFIX = "w+CAIQICI"


def user_agent_for(device: str) -> str:
    return MOBILE_USER_AGENT if device == "mobile" else DESKTOP_USER_AGENT


def viewport_for(device: str) -> dict[str, int]:
    return dict(_VIEWPORTS["mobile" if device == "mobile" else "desktop"])


def encode_city_bias(place: str) -> str:
    """Build an opaque city-bias token for a place name such as "Mumbai, India"."""
    payload = base64.b64encode(place.encode("utf-8")).decode("ascii")
    return f"{_CITY_BIAS_PREFIX}{payload}"


def compose_search_request(
    params: ExtractionParams, config: EngineConfig | None = None
) -> SearchRequest:
    """Describe the results page to render for ``params``. No network access."""
    base_url = (config or EngineConfig()).search_base_url
    query = urlencode(
        {
            "q": params.keyword,
            "hl": params.language,
            "gl": params.country,
            "pws": "0",  # no personalised results
        }
    )
    url = f"{base_url}?{query}"
    if params.city_bias:
        # Already encoded by whoever produced it; appended untouched.
        url = f"{url}&uule={params.city_bias}"

    return SearchRequest(
        url=url,
        locale=params.language,
        user_agent=user_agent_for(params.device),
        viewport=viewport_for(params.device),
        device=params.device,
    )
