"""
Data model for batch scans.

Records persisted by the storage layer and passed around by the engine:

- BatchScan: one run over a fixed set of questions and providers
- SettingsSnapshot: frozen copy of the settings a batch was created with
- Question: one prompt with per-provider progress counters
- ProviderProgress: counters of one (question, provider) pair
- Iteration: one provider call, append-only once written
- ProviderResult: in-memory outcome of a successful call plus its analysis
- ResumePoint: where a stopped batch will pick up again
- BatchRunResult: what an engine invocation returns to its caller

Statuses are plain strings, validated at the storage boundary:

    batch:     pending -> running <-> paused -> completed | failed
    question:  pending -> running -> completed
    iteration: success | failed
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from visibility_scanner.extractor.mention_analyzer import MentionAnalysis

BatchStatus = Literal["pending", "running", "paused", "completed", "failed"]
QuestionStatus = Literal["pending", "running", "completed"]
IterationStatus = Literal["success", "failed"]
PauseReason = Literal[
    "rate_limit", "network_error", "auth_error", "insufficient_credits", "user_paused"
]

BATCH_STATUSES = frozenset(["pending", "running", "paused", "completed", "failed"])
TERMINAL_STATUSES = frozenset(["completed", "failed"])
PAUSE_REASONS = frozenset(
    ["rate_limit", "network_error", "auth_error", "insufficient_credits", "user_paused"]
)


@dataclass
class ProviderSnapshot:
    """
    Provider settings frozen into a batch.

    API keys are deliberately absent: snapshots are persisted as JSON.
    """

    name: str
    provider: str
    model_name: str
    iterations: int
    credit_cost: int


@dataclass
class SettingsSnapshot:
    """
    Settings a batch was created with.

    Later config edits never change a running batch; the engine only reads
    this snapshot.
    """

    providers: list[ProviderSnapshot]
    timeout_per_call_ms: int
    brand_name: str
    brand_keywords: list[str] = field(default_factory=list)
    brand_competitors: list[str] = field(default_factory=list)
    pause_check_interval: int = 10
    max_concurrent_questions: int = 3
    match_mode: str = "substring"
    fuzzy_threshold: int = 85
    sentiment_method: str = "llm"
    sentiment_provider: str | None = None

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self.providers]

    @property
    def iterations_per_question(self) -> int:
        return sum(p.iterations for p in self.providers)

    def get_provider(self, name: str) -> ProviderSnapshot:
        for provider in self.providers:
            if provider.name == name:
                return provider
        raise KeyError(name)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SettingsSnapshot":
        values = dict(data)
        values["providers"] = [ProviderSnapshot(**p) for p in data["providers"]]
        return cls(**values)


@dataclass
class BatchScan:
    """
    One batch scan.

    Invariants:
        completed_iterations <= total_iterations
        used_credits <= estimated_credits is expected, overage only logged
    """

    id: str
    owner: str
    brand_name: str
    status: str
    settings: SettingsSnapshot
    total_questions: int
    total_iterations: int
    estimated_credits: int
    completed_questions: int = 0
    completed_iterations: int = 0
    used_credits: int = 0
    pause_reason: str | None = None
    overall_exposure_rate: float | None = None
    metrics: dict[str, Any] | None = None
    created_at: str | None = None
    started_at: str | None = None
    paused_at: str | None = None
    resumed_at: str | None = None
    completed_at: str | None = None

    @property
    def progress_percent(self) -> float:
        if self.total_iterations == 0:
            return 0.0
        return round(self.completed_iterations / self.total_iterations * 100, 1)


@dataclass
class ProviderProgress:
    """
    Counters for one (question, provider) pair.

    ``completed`` counts successful iterations only; failed iterations are
    visible in the iteration log.
    """

    provider: str
    total: int
    completed: int = 0
    mention_count: int = 0
    sentiment_positive: int = 0
    sentiment_neutral: int = 0
    sentiment_negative: int = 0
    exposure_rate: float | None = None


@dataclass
class Question:
    """One natural-language prompt in a batch."""

    id: str
    batch_scan_id: str
    question_text: str
    question_order: int
    status: str = "pending"
    progress: dict[str, ProviderProgress] = field(default_factory=dict)
    last_error: str | None = None
    retry_count: int = 0
    avg_exposure_rate: float | None = None
    created_at: str | None = None
    completed_at: str | None = None


@dataclass
class Iteration:
    """
    One provider call for one question.

    Identified by (question_id, provider, iteration_index); never updated
    after insertion.
    """

    question_id: str
    provider: str
    iteration_index: int
    status: str
    response_text: str | None = None
    brand_mentioned: bool = False
    mention_position: int | None = None
    sentiment: str | None = None
    competitors_mentioned: dict[str, bool] = field(default_factory=dict)
    response_time_ms: int | None = None
    error_message: str | None = None
    error_kind: str | None = None
    created_at: str | None = None


@dataclass
class ProviderResult:
    """Successful provider call plus its mention analysis (not persisted as is)."""

    text: str
    latency_ms: int
    analysis: MentionAnalysis
    sentiment: str | None = None

    @property
    def brand_mentioned(self) -> bool:
        return self.analysis.brand_mentioned


@dataclass
class ResumePoint:
    """Next unit of work of a batch that stopped before finishing."""

    question_id: str
    provider: str
    iteration_index: int


@dataclass
class BatchRunResult:
    """Outcome of one engine invocation (start or resume)."""

    batch_scan_id: str
    status: str
    pause_reason: str | None = None
    resume_point: ResumePoint | None = None
    overall_exposure_rate: float | None = None
