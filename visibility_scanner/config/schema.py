"""
Configuration schema models for the visibility scanner.

Pydantic v2 models that validate a scan configuration YAML file and the
runtime variants that carry resolved API keys.

Models:
    ProviderConfig: One AI provider to query (type, model, env key, iterations)
    BrandConfig: Target brand name, detection keywords and competitors
    SentimentConfig: How mention sentiment is enriched (llm, lexical, none)
    CircuitBreakerSettings: Failure threshold and cool-down
    ScanSettings: Timeouts, concurrency, pause cadence, storage path
    ScanConfig: Root configuration model (validates entire YAML)
    RuntimeProvider: ProviderConfig with its resolved API key
    RuntimeScanConfig: ScanConfig with resolved providers
"""

from typing import Literal

from pydantic import BaseModel, field_validator, model_validator

from .constants import (
    DEFAULT_CREDIT_COST,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_ITERATIONS,
    DEFAULT_MAX_CONCURRENT_QUESTIONS,
    DEFAULT_PAUSE_CHECK_INTERVAL,
    DEFAULT_RESET_TIMEOUT_S,
    DEFAULT_TIMEOUT_PER_CALL_MS,
    MAX_CONCURRENT_QUESTIONS,
    MAX_ITERATIONS,
    MAX_QUESTION_LENGTH,
    MAX_TIMEOUT_PER_CALL_MS,
    MIN_ITERATIONS,
    MIN_TIMEOUT_PER_CALL_MS,
    PROVIDER_CREDIT_COSTS,
)


def _clean_names(values: list[str]) -> list[str]:
    """Strip entries, drop blanks and duplicates while keeping order."""
    cleaned: list[str] = []
    seen: set[str] = set()
    for value in values:
        if not value or value.isspace():
            continue
        stripped = value.strip()
        if stripped.lower() in seen:
            continue
        seen.add(stripped.lower())
        cleaned.append(stripped)
    return cleaned


class ProviderConfig(BaseModel):
    """
    One AI answer engine to query.

    Attributes:
        name: Identifier used for progress tracking and reports. Defaults to
              the provider type; set it explicitly to query two models of the
              same provider in one batch.
        provider: Provider type ("openai" or "gemini")
        model_name: Model identifier (e.g. "gpt-4o-mini")
        env_api_key: Environment variable holding the API key
        iterations: How many times each question is asked (1-100)
        credit_cost: Credits charged per successful call. Defaults to the
                     provider's standard cost (openai 2, gemini 1).

    Example:
        providers:
          - provider: "openai"
            model_name: "gpt-4o-mini"
            env_api_key: "OPENAI_API_KEY"
            iterations: 10
    """

    name: str | None = None
    provider: Literal["openai", "gemini"]
    model_name: str
    env_api_key: str
    iterations: int = DEFAULT_ITERATIONS
    credit_cost: int | None = None

    @field_validator("model_name", "env_api_key")
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        """Validate string fields are non-empty."""
        if not v or v.isspace():
            raise ValueError("value cannot be empty")
        return v

    @field_validator("iterations")
    @classmethod
    def validate_iterations(cls, v: int) -> int:
        """Validate iterations is within the allowed range."""
        if not MIN_ITERATIONS <= v <= MAX_ITERATIONS:
            raise ValueError(
                f"iterations must be between {MIN_ITERATIONS} and {MAX_ITERATIONS}, got: {v}"
            )
        return v

    @field_validator("credit_cost")
    @classmethod
    def validate_credit_cost(cls, v: int | None) -> int | None:
        """Validate credit cost is non-negative if specified."""
        if v is not None and v < 0:
            raise ValueError(f"credit_cost must be >= 0, got: {v}")
        return v

    @model_validator(mode="after")
    def fill_defaults(self) -> "ProviderConfig":
        """Default name to the provider type and cost to the provider's rate."""
        if not self.name:
            self.name = self.provider
        if self.credit_cost is None:
            self.credit_cost = PROVIDER_CREDIT_COSTS.get(
                self.provider, DEFAULT_CREDIT_COST
            )
        return self


class BrandConfig(BaseModel):
    """
    Target brand and the names it competes with.

    A response mentions the brand when it contains the brand name or any
    keyword (case-insensitive). Competitors are scanned independently.

    Example:
        brand:
          name: "Acme"
          keywords: ["acme cloud", "acme.io"]
          competitors: ["Globex", "Initech"]
    """

    name: str
    keywords: list[str] = []
    competitors: list[str] = []

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate brand name is non-empty."""
        if not v or v.isspace():
            raise ValueError("brand name cannot be empty")
        return v.strip()

    @field_validator("keywords", "competitors")
    @classmethod
    def validate_lists(cls, v: list[str]) -> list[str]:
        """Remove blank and duplicate entries."""
        return _clean_names(v)


class SentimentConfig(BaseModel):
    """
    Sentiment enrichment settings.

    Attributes:
        method: "llm" asks a provider to classify the mention, "lexical" uses
                a deterministic word list, "none" records neutral sentiment
        provider: Name of the configured provider used when method is "llm".
                  Defaults to the first provider.
    """

    method: Literal["llm", "lexical", "none"] = "llm"
    provider: str | None = None


class CircuitBreakerSettings(BaseModel):
    """Per-provider circuit breaker configuration."""

    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    reset_timeout_s: float = DEFAULT_RESET_TIMEOUT_S

    @field_validator("failure_threshold")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"failure_threshold must be >= 1, got: {v}")
        return v

    @field_validator("reset_timeout_s")
    @classmethod
    def validate_reset_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"reset_timeout_s must be positive, got: {v}")
        return v


class ScanSettings(BaseModel):
    """
    Runtime settings for batch execution.

    Attributes:
        sqlite_db_path: SQLite database holding batches and iterations
        timeout_per_call_ms: Hard timeout per provider call (5000-120000)
        pause_check_interval: Re-read batch status every N iterations
        max_concurrent_questions: Questions processed concurrently (1-10)
        match_mode: Brand matching strategy ("substring", "word_boundary", "fuzzy")
        fuzzy_threshold: Similarity threshold (0-100) for fuzzy matching
        circuit_breaker: Breaker threshold and cool-down
    """

    sqlite_db_path: str = "./output/visibility_scans.db"
    timeout_per_call_ms: int = DEFAULT_TIMEOUT_PER_CALL_MS
    pause_check_interval: int = DEFAULT_PAUSE_CHECK_INTERVAL
    max_concurrent_questions: int = DEFAULT_MAX_CONCURRENT_QUESTIONS
    match_mode: Literal["substring", "word_boundary", "fuzzy"] = "substring"
    fuzzy_threshold: int = 85
    circuit_breaker: CircuitBreakerSettings = CircuitBreakerSettings()

    @field_validator("timeout_per_call_ms")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate per-call timeout is within bounds."""
        if not MIN_TIMEOUT_PER_CALL_MS <= v <= MAX_TIMEOUT_PER_CALL_MS:
            raise ValueError(
                f"timeout_per_call_ms must be between {MIN_TIMEOUT_PER_CALL_MS} "
                f"and {MAX_TIMEOUT_PER_CALL_MS}, got: {v}"
            )
        return v

    @field_validator("pause_check_interval")
    @classmethod
    def validate_pause_check_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"pause_check_interval must be >= 1, got: {v}")
        return v

    @field_validator("max_concurrent_questions")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if not 1 <= v <= MAX_CONCURRENT_QUESTIONS:
            raise ValueError(
                f"max_concurrent_questions must be between 1 and "
                f"{MAX_CONCURRENT_QUESTIONS}, got: {v}"
            )
        return v

    @field_validator("fuzzy_threshold")
    @classmethod
    def validate_fuzzy_threshold(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError(f"fuzzy_threshold must be between 0 and 100, got: {v}")
        return v


class ScanConfig(BaseModel):
    """
    Root configuration model for a scan config YAML file.

    Attributes:
        owner: Owner identifier recorded on every batch
        brand: Target brand, keywords and competitors
        providers: Providers to query (names must be unique)
        questions: Natural-language questions, asked in order
        sentiment: Sentiment enrichment settings
        settings: Execution settings
    """

    owner: str = "local"
    brand: BrandConfig
    providers: list[ProviderConfig]
    questions: list[str]
    sentiment: SentimentConfig = SentimentConfig()
    settings: ScanSettings = ScanSettings()

    @field_validator("providers")
    @classmethod
    def validate_providers(cls, v: list[ProviderConfig]) -> list[ProviderConfig]:
        """
        Validate at least one provider is configured and names are unique.

        Raises:
            ValueError: If no providers configured or duplicate names found
        """
        if not v:
            raise ValueError("At least one provider must be configured")

        names = [p.name for p in v]
        if len(names) != len(set(names)):
            duplicates = {n for n in names if names.count(n) > 1}
            raise ValueError(f"Duplicate provider names found: {duplicates}")

        return v

    @field_validator("questions")
    @classmethod
    def validate_questions(cls, v: list[str]) -> list[str]:
        """Validate questions are non-empty and within length limits."""
        cleaned = [q.strip() for q in v if q and not q.isspace()]
        if not cleaned:
            raise ValueError("At least one question must be configured")
        for question in cleaned:
            if len(question) > MAX_QUESTION_LENGTH:
                raise ValueError(
                    f"Question exceeds {MAX_QUESTION_LENGTH} characters: "
                    f"{question[:50]}..."
                )
        return cleaned

    @model_validator(mode="after")
    def validate_sentiment_provider(self) -> "ScanConfig":
        """Ensure the sentiment provider, if named, is a configured provider."""
        if self.sentiment.method == "llm" and self.sentiment.provider:
            names = {p.name for p in self.providers}
            if self.sentiment.provider not in names:
                raise ValueError(
                    f"sentiment.provider '{self.sentiment.provider}' is not a "
                    f"configured provider. Available: {sorted(names)}"
                )
        return self


class RuntimeProvider(BaseModel):
    """
    Provider configuration with its resolved API key.

    Attributes:
        name: Progress-tracking identifier
        provider: Provider type
        model_name: Model identifier
        api_key: Resolved API key (NEVER log this)
        iterations: Iterations per question
        credit_cost: Credits per successful call
    """

    name: str
    provider: str
    model_name: str
    api_key: str
    iterations: int
    credit_cost: int

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Validate API key is non-empty."""
        if not v or v.isspace():
            raise ValueError("API key cannot be empty")
        return v


class RuntimeScanConfig(BaseModel):
    """
    Scan configuration with resolved API keys.

    Created by config.loader; this is what the CLI hands to the planner and
    the engine.
    """

    owner: str
    brand: BrandConfig
    providers: list[RuntimeProvider]
    questions: list[str]
    sentiment: SentimentConfig
    settings: ScanSettings

    def get_provider(self, name: str) -> RuntimeProvider:
        """
        Look up a resolved provider by name.

        Raises:
            KeyError: If no provider has that name
        """
        for provider in self.providers:
            if provider.name == name:
                return provider
        raise KeyError(name)
