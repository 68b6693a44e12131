"""Configuration management for the topicfeed ingestion core."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SNIPPET_INDICATORS = [
    "read more",
    "continue reading",
    "full story",
    "view more",
    "the post",
    "appeared first",
    "original article",
    "click here",
    "see more",
    "read the full",
    "subscribe",
    "follow us",
    "newsletter",
]


class Settings(BaseSettings):
    """Main application settings."""

    # ── Storage ────────────────────────────────────────────────────────────
    database_path: Path = Field(Path("./data/topicfeed.db"), description="SQLite database file")
    tenants_file: Path = Field(Path("./tenants.yaml"), description="Tenant (topic) configuration file")

    # ── Admission ──────────────────────────────────────────────────────────
    min_word_count: int = Field(100, description="Minimum body word count for admission")
    recency_days: int = Field(7, description="Maximum article age for freshness-sensitive tenants")
    min_sentence_periods: int = Field(3, description="Minimum number of periods in a full article body")
    snippet_indicators: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SNIPPET_INDICATORS),
        description="Phrases that mark a teaser/snippet body",
    )

    # ── Processed gating ───────────────────────────────────────────────────
    processed_min_quality: int = Field(60, description="Quality needed to mark a link processed")
    processed_min_relevance: int = Field(5, description="Relevance needed to mark a link processed")
    processed_min_words: int = Field(150, description="Word count needed to mark a link processed")

    # ── Retention ──────────────────────────────────────────────────────────
    new_link_retention_days: int = Field(14, description="Days a link may stay 'new' before discard")
    discarded_retention_days: int = Field(30, description="Days before discarded links are purged")

    # ── Source health ──────────────────────────────────────────────────────
    deactivate_below: float = Field(10, description="Deactivate a source below this success rate")
    method_change_below: float = Field(30, description="Consider a method change below this success rate")
    investigate_below: float = Field(40, description="Flag for investigation below this success rate")
    method_change_margin: float = Field(20, description="Required lead of an alternative method")
    opportunistic_margin: float = Field(30, description="Lead that justifies a change above the threshold")
    min_method_sample: int = Field(3, description="Sources needed before a method average counts")
    probe_timeout_seconds: float = Field(10, description="Timeout for source accessibility probes")
    probe_max_calls: int = Field(5, description="Probes allowed per probe window, across processes")
    probe_time_window: float = Field(1.0, description="Probe rate limit window in seconds")
    probe_cache_seconds: int = Field(300, description="Reuse a probe result for this long")

    # ── HTTP ───────────────────────────────────────────────────────────────
    user_agent: str = Field(
        "TopicfeedHealthBot/0.1 (+source health monitoring)",
        description="User agent for health probes",
    )

    # ── Logging ────────────────────────────────────────────────────────────
    log_level: str = Field("INFO", description="Log level")
    json_logging: bool = Field(True, description="Enable JSON logging")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("deactivate_below", "method_change_below", "investigate_below",
                     "method_change_margin", "opportunistic_margin")
    @classmethod
    def validate_rate(cls, v: float) -> float:
        """Validate success-rate thresholds are percentages."""
        if not 0 <= v <= 100:
            raise ValueError("Success rate thresholds must be between 0 and 100")
        return v

    @field_validator("processed_min_quality", "processed_min_relevance")
    @classmethod
    def validate_score(cls, v: int) -> int:
        """Validate score thresholds."""
        if not 0 <= v <= 100:
            raise ValueError("Score thresholds must be between 0 and 100")
        return v

    @field_validator("min_word_count", "processed_min_words", "recency_days", "min_method_sample",
                     "probe_max_calls")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be a positive integer")
        return v

    @field_validator("snippet_indicators")
    @classmethod
    def normalize_indicators(cls, v: list[str]) -> list[str]:
        return [phrase.lower().strip() for phrase in v if phrase.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings."""
    return Settings()


def validate_config(settings: Settings) -> bool:
    """Validate configuration completeness."""
    try:
        if not settings.deactivate_below < settings.method_change_below < settings.investigate_below:
            raise ValueError(
                "Health thresholds must increase: deactivate < method change < investigate"
            )

        if settings.processed_min_words < settings.min_word_count:
            raise ValueError("processed_min_words must not be below min_word_count")

        if not settings.tenants_file.exists():
            raise ValueError(f"Tenant config file not found: {settings.tenants_file}")

        return True

    except ValueError as e:
        print(f"Configuration validation failed: {e}")
        return False


if __name__ == "__main__":
    if validate_config(get_settings()):
        print("✅ Configuration is valid")
    else:
        print("❌ Configuration validation failed")
        exit(1)
