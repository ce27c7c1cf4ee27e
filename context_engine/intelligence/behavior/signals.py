"""Turn-level signal extraction for behavior model updates.

The predictor only depends on ``SignalExtractor``; the keyword heuristic
below can be replaced by a trained classifier without changing how the
model is updated.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

BRIEF_CUES = ("brief", "quick", "summary", "summarize", "tl;dr")
DETAIL_CUES = ("detail", "explain", "comprehensive", "in depth", "elaborate")
TECHNICAL_CUES = ("algorithm", "api", "database", "optimization", "correlation", "regression")
VISUAL_CUES = ("chart", "graph", "visual", "plot", "dashboard")
DEPTH_CUES = ("why", "root cause", "deep dive", "drill down", "breakdown")
SPEED_CUES = ("asap", "quickly", "fast", "right now")
PROACTIVE_CUES = ("suggest", "recommend", "what should", "advise")
FORMAL_CUES = ("please", "could you", "would you", "kindly")
CASUAL_CUES = ("hey", "can you", "show me", "what's")
DIRECT_PREFIXES = ("what", "how", "show")

COMPLEX_TERMS = (
    "analyze", "optimize", "correlation", "regression", "algorithm",
    "prediction", "forecast", "segmentation", "attribution",
)
COMPLEX_QUESTIONS = ("why", "how", "what if", "compare")

BUSINESS_TOPICS = (
    "sales", "revenue", "customers", "marketing", "performance", "analytics",
    "dashboard", "reports", "optimization", "conversion", "retention", "churn",
    "roi", "cost", "profit", "growth",
)

DOMAIN_KEYWORDS: dict[str, tuple[str, ...]] = {
    "finance": ("revenue", "profit", "cost", "budget", "roi", "financial"),
    "marketing": ("campaign", "leads", "conversion", "brand", "advertising"),
    "sales": ("deals", "pipeline", "quota", "prospects", "closing"),
    "operations": ("efficiency", "process", "workflow", "productivity"),
    "analytics": ("data", "metrics", "kpi", "dashboard", "report"),
    "customer_service": ("support", "tickets", "satisfaction", "resolution"),
}

QUERY_TYPE_CUES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("visualization", ("show", "display")),
    ("optimization", ("optimize", "improve")),
    ("analysis", ("analyze", "analysis")),
    ("prediction", ("predict", "forecast")),
    ("comparison", ("compare", "versus")),
)


@dataclass
class TurnSignals:
    """Preference and style cues found in one user query."""

    conciseness: int = 0  # +1 brief, -1 detailed
    technical_terms: int = 0
    visual: bool = False
    analysis_depth: bool = False
    speed: bool = False
    proactive: bool = False
    formality: int = 0  # +1 formal, -1 casual
    direct: bool = False
    domains: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    complexity: float = 0.1
    query_type: str = "information"

    @property
    def context_tags(self) -> list[str]:
        """Query type, topics, domains and a complexity band, deduplicated."""
        if self.complexity > 0.7:
            band = "complex"
        elif self.complexity < 0.3:
            band = "simple"
        else:
            band = "moderate"
        return list(dict.fromkeys([self.query_type, *self.topics, *self.domains, band]))


@runtime_checkable
class SignalExtractor(Protocol):
    """Extracts ``TurnSignals`` from query text."""

    def extract(self, query: str) -> TurnSignals:
        ...

    def complexity(self, query: str) -> float:
        ...

    def topics(self, query: str) -> list[str]:
        ...


def _count(text: str, cues: tuple[str, ...]) -> int:
    return sum(1 for cue in cues if cue in text)


class KeywordSignalExtractor:
    """Substring keyword heuristics."""

    def complexity(self, query: str) -> float:
        """0.1 base + length (up to 0.3) + 0.1 per complex term and per analytic question cue."""
        text = query.lower()
        score = 0.1 + min(len(text) / 200, 0.3)
        score += _count(text, COMPLEX_TERMS) * 0.1
        score += _count(text, COMPLEX_QUESTIONS) * 0.1
        return min(score, 1.0)

    def topics(self, query: str) -> list[str]:
        text = query.lower()
        return [topic for topic in BUSINESS_TOPICS if topic in text]

    def domains(self, query: str) -> list[str]:
        text = query.lower()
        found = [
            domain for domain, keywords in DOMAIN_KEYWORDS.items()
            if any(keyword in text for keyword in keywords)
        ]
        return found or ["general"]

    def query_type(self, query: str) -> str:
        text = query.lower()
        for label, cues in QUERY_TYPE_CUES:
            if any(cue in text for cue in cues):
                return label
        return "information"

    def extract(self, query: str) -> TurnSignals:
        text = query.lower().strip()

        conciseness = 0
        if _count(text, BRIEF_CUES):
            conciseness = 1
        elif _count(text, DETAIL_CUES):
            conciseness = -1

        formal, casual = _count(text, FORMAL_CUES), _count(text, CASUAL_CUES)

        return TurnSignals(
            conciseness=conciseness,
            technical_terms=_count(text, TECHNICAL_CUES),
            visual=bool(_count(text, VISUAL_CUES)),
            analysis_depth=bool(_count(text, DEPTH_CUES)),
            speed=bool(_count(text, SPEED_CUES)),
            proactive=bool(_count(text, PROACTIVE_CUES)),
            formality=(formal > casual) - (casual > formal),
            direct=text.startswith(DIRECT_PREFIXES),
            domains=self.domains(text),
            topics=self.topics(text),
            complexity=self.complexity(text),
            query_type=self.query_type(text),
        )
