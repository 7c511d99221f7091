from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from core.errors import InvalidParams

Device = Literal["mobile", "desktop"]
DEVICES: tuple[str, ...] = ("mobile", "desktop")

MAX_ENGINE_DEPTH = 3
MAX_REQUEST_DEPTH = 2
MAX_CONSENSUS_RUNS = 3


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(int(value), high))


def parse_proxy_pool(text: str) -> tuple[str, ...]:
    """Split a comma-separated proxy list, dropping blanks."""
    return tuple(p.strip() for p in (text or "").split(",") if p.strip())


# ── engine configuration ─────────────────────────────────────────────


@dataclass(frozen=True)
class EngineConfig:
    """Explicit configuration handed to every extraction entry point."""

    proxy_pool: tuple[str, ...] = ()
    max_nodes: int = 220
    max_runtime_ms: int = 45000
    default_device: Device = "mobile"
    navigation_timeout_ms: int = 30000
    network_idle_timeout_ms: int = 10000
    consent_wait_ms: int = 1000
    child_wait_timeout_ms: int = 5000
    child_poll_interval_ms: int = 150
    click_delay_ms: int = 25
    consensus_parallelism: int = 1
    headless: bool = True
    search_base_url: str = "https://www.google.com/search"
    egress_lookup_url: str = ""

    @classmethod
    def from_settings(cls, settings: Any) -> EngineConfig:
        device = settings.DEFAULT_DEVICE if settings.DEFAULT_DEVICE in DEVICES else "mobile"
        return cls(
            proxy_pool=parse_proxy_pool(settings.PROXY_POOL),
            max_nodes=settings.MAX_NODES,
            max_runtime_ms=settings.MAX_RUNTIME_MS,
            default_device=device,
            navigation_timeout_ms=settings.NAVIGATION_TIMEOUT_MS,
            network_idle_timeout_ms=settings.NETWORK_IDLE_TIMEOUT_MS,
            consent_wait_ms=settings.CONSENT_WAIT_MS,
            child_wait_timeout_ms=settings.CHILD_WAIT_TIMEOUT_MS,
            child_poll_interval_ms=settings.CHILD_POLL_INTERVAL_MS,
            click_delay_ms=settings.CLICK_DELAY_MS,
            consensus_parallelism=max(1, settings.CONSENSUS_PARALLELISM),
            headless=settings.HEADLESS,
            search_base_url=settings.SEARCH_BASE_URL,
            egress_lookup_url=settings.EGRESS_LOOKUP_URL,
        )


# ── extraction ───────────────────────────────────────────────────────


@dataclass
class ExtractionParams:
    """What to extract and how hard to try.

    ``depth`` counts completed expansions: 0 records the top-level questions
    only, 1 expands each of them once, and so on.
    """

    keyword: str
    country: str = "US"
    language: str = "en"
    device: Device = "mobile"
    depth: int = 0
    runs: int = 1
    city_bias: str | None = None
    strict: bool = False

    def __post_init__(self) -> None:
        self.keyword = (self.keyword or "").strip()
        if not self.keyword:
            raise InvalidParams("keyword must not be empty")
        if self.device not in DEVICES:
            raise InvalidParams(f"device must be one of {DEVICES}, got {self.device!r}")
        self.country = self.country.strip().upper()
        self.language = self.language.strip()
        self.depth = _clamp(self.depth, 0, MAX_ENGINE_DEPTH)
        self.runs = _clamp(self.runs, 1, MAX_CONSENSUS_RUNS)
        self.city_bias = self.city_bias or None

    @classmethod
    def from_request(
        cls,
        keyword: str,
        country: str,
        language: str,
        *,
        device: str | None = None,
        depth: int = 0,
        runs: int = 1,
        city_bias: str | None = None,
        strict: bool = False,
        config: EngineConfig | None = None,
    ) -> ExtractionParams:
        """Constructor for the request-serving path, where depth tops out at 2."""
        default_device = config.default_device if config else "mobile"
        return cls(
            keyword=keyword,
            country=country,
            language=language,
            device=device or default_device,
            depth=_clamp(depth, 0, MAX_REQUEST_DEPTH),
            runs=runs,
            city_bias=city_bias,
            strict=strict,
        )


@dataclass(frozen=True)
class SearchRequest:
    url: str
    locale: str
    user_agent: str
    viewport: dict[str, int]
    device: Device


@dataclass
class QuestionItem:
    """One question node discovered during a single run."""

    raw: str
    norm: str
    depth: int
    parent: str | None = None
    path: str = ""  # structural path, only used to re-locate the node
    order_index: int = 0


@dataclass
class Evidence:
    full_screenshot: str | None = None  # base64 PNG
    container_html: str | None = None
    crops: list[str] = field(default_factory=list)  # base64 PNGs

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.full_screenshot is not None:
            out["full_screenshot"] = self.full_screenshot
        if self.container_html is not None:
            out["container_html"] = self.container_html
        if self.crops:
            out["crops"] = list(self.crops)
        return out


@dataclass
class RunResult:
    items: list[QuestionItem]
    evidence: Evidence
    drift_fingerprint: str
    egress_country: str | None = None
    egress_network: str | None = None


@dataclass
class RunAudit:
    drift_fingerprint: str
    evidence: Evidence
    egress_country: str | None = None
    egress_network: str | None = None

    @classmethod
    def from_run(cls, run: RunResult) -> RunAudit:
        return cls(
            drift_fingerprint=run.drift_fingerprint,
            evidence=run.evidence,
            egress_country=run.egress_country,
            egress_network=run.egress_network,
        )


@dataclass
class ConsensusResult:
    question: str  # most frequent surface form
    norm: str
    depth: int
    order_index: int
    parent: str | None
    appearances: int
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "norm": self.norm,
            "depth": self.depth,
            "order_index": self.order_index,
            "parent": self.parent,
            "appearances": self.appearances,
            "confidence": self.confidence,
        }


@dataclass
class ConsensusOutcome:
    results: list[ConsensusResult]
    runs: list[RunAudit]


# ── tracking ─────────────────────────────────────────────────────────


class QuestionType(str, Enum):
    DEFINITION = "definition"
    STEPS = "steps"
    COMPARISON = "comparison"
    LIST = "list"
    EXPLANATION = "explanation"
    YESNO = "yesno"
    PARAGRAPH = "paragraph"


class ChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    POSITION_CHANGED = "position_changed"


@dataclass
class TrackedTarget:
    id: str
    keyword: str
    country: str = "US"
    language: str = "en"
    device: Device = "mobile"
    city_bias: str | None = None
    check_interval_hours: int = 24
    last_checked_at: datetime | None = None
    is_active: bool = True


@dataclass
class QuestionRecord:
    target_id: str
    question_hash: str
    question: str
    question_type: QuestionType
    first_seen_at: datetime
    last_seen_at: datetime
    times_seen: int = 1
    avg_position: float = 0.0
    is_current: bool = True
    last_position: int | None = None
    id: str | None = None


@dataclass
class ChangeRecord:
    target_id: str
    kind: ChangeKind
    question: str
    question_hash: str
    detected_at: datetime
    old_position: int | None = None
    new_position: int | None = None


@dataclass
class Snapshot:
    target_id: str
    captured_at: datetime
    questions: list[dict[str, Any]]
    cycle_id: str | None = None


@dataclass
class DiffResult:
    added: list[QuestionRecord] = field(default_factory=list)
    removed: list[QuestionRecord] = field(default_factory=list)
    retained: list[QuestionRecord] = field(default_factory=list)
    changes: list[ChangeRecord] = field(default_factory=list)

    @property
    def position_changes(self) -> list[ChangeRecord]:
        return [c for c in self.changes if c.kind is ChangeKind.POSITION_CHANGED]

    @property
    def change_count(self) -> int:
        return len(self.changes)
