"""Environment-backed configuration for the chat pipeline."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChatConfig(BaseSettings):
    """Environment-backed configuration for the chat pipeline.

    Config usage map (selected):
    - app_env: budget/rate_limit.py (fail open vs closed), core/orchestrator.py (debug payloads), api/app.py
    - planner_*: planner/service.py
    - answer_*: answer/service.py
    - retrieval_default_top_k/retrieval_max_top_k: retrieval/engine.py
    - *_timeout_seconds: core/orchestrator.py
    - rate_limit_*: budget/rate_limit.py
    - cost_*: budget/cost_ledger.py
    - *_moderation_*: core/orchestrator.py, llm/moderation.py
    - debug_log_*: core/debug_log.py
    - corpus_*: retrieval/lexical.py
    - test_fixtures_*: protocol/strategies.py
    - langsmith_*: tracing hooks
    """
    model_config = SettingsConfigDict(extra="ignore", case_sensitive=False, populate_by_name=True)

    app_env: str = Field(default="development", alias="APP_ENV")
    app_id: str = Field(default="portfolio", alias="CHAT_APP_ID")

    # Model knobs
    planner_model: str = Field(default="gpt-4o-mini", alias="CHAT_PLANNER_MODEL")
    planner_temperature: float = Field(default=0.0, alias="CHAT_PLANNER_TEMPERATURE")
    answer_model: str = Field(default="gpt-4o-mini", alias="CHAT_ANSWER_MODEL")
    answer_temperature: float = Field(default=0.2, alias="CHAT_ANSWER_TEMPERATURE")

    # Pipeline behavior
    retrieval_default_top_k: int = Field(default=8, alias="CHAT_RETRIEVAL_DEFAULT_TOP_K")
    retrieval_max_top_k: int = Field(default=10, alias="CHAT_RETRIEVAL_MAX_TOP_K")
    max_display_cards: int = Field(default=10, alias="CHAT_MAX_DISPLAY_CARDS")
    chat_history_limit: int = Field(default=6, alias="CHAT_HISTORY_LIMIT")
    planner_timeout_seconds: float = Field(default=30.0, alias="CHAT_PLANNER_TIMEOUT_SECONDS")
    retrieval_timeout_seconds: float = Field(default=15.0, alias="CHAT_RETRIEVAL_TIMEOUT_SECONDS")
    answer_timeout_seconds: float = Field(default=60.0, alias="CHAT_ANSWER_TIMEOUT_SECONDS")

    # Budget gate
    rate_limit_per_minute: int = Field(default=5, alias="CHAT_RATE_LIMIT_PER_MINUTE")
    rate_limit_per_hour: int = Field(default=40, alias="CHAT_RATE_LIMIT_PER_HOUR")
    rate_limit_per_day: int = Field(default=120, alias="CHAT_RATE_LIMIT_PER_DAY")
    rate_limit_redis_url: str | None = Field(default=None, alias="RATE_LIMIT_REDIS_URL")
    rate_limit_prefix: str = Field(default="ratelimit:chat:", alias="CHAT_RATE_LIMIT_PREFIX")
    rate_limit_init_backoff_seconds: float = Field(default=60.0, alias="CHAT_RATE_LIMIT_INIT_BACKOFF_SECONDS")
    cost_budget_usd: float = Field(default=0.0, alias="CHAT_COST_BUDGET_USD")
    cost_ledger_redis_url: str | None = Field(default=None, alias="COST_LEDGER_REDIS_URL")
    cost_ledger_prefix: str = Field(default="chat:cost:", alias="CHAT_COST_LEDGER_PREFIX")

    # Moderation
    input_moderation_enabled: bool = Field(default=False, alias="CHAT_INPUT_MODERATION_ENABLED")
    output_moderation_enabled: bool = Field(default=False, alias="CHAT_OUTPUT_MODERATION_ENABLED")
    moderation_model: str = Field(default="omni-moderation-latest", alias="CHAT_MODERATION_MODEL")
    moderation_refusal_message: str = Field(
        default="I can only answer questions about my portfolio and professional background.",
        alias="CHAT_MODERATION_REFUSAL_MESSAGE",
    )

    # Observability
    debug_log_level: int = Field(default=1, alias="CHAT_DEBUG_LOG_LEVEL")
    debug_log_limit: int = Field(default=500, alias="CHAT_DEBUG_LOG_LIMIT")
    langsmith_tracing: bool = Field(default=False, alias="LANGCHAIN_TRACING_V2")
    langsmith_project: str = Field(default="portfolio-chat", alias="LANGCHAIN_PROJECT")

    # Corpora and fixtures
    corpus_dir: str = Field(default="data/corpus", alias="CHAT_CORPUS_DIR")
    corpus_sources: str = Field(default="projects,resume", alias="CHAT_CORPUS_SOURCES")
    test_fixtures_enabled: bool = Field(default=False, alias="CHAT_TEST_FIXTURES")
    test_mode_header: str = Field(default="x-portfolio-test-mode", alias="CHAT_TEST_MODE_HEADER")
    test_mode_value: str = Field(default="e2e", alias="CHAT_TEST_MODE_VALUE")

    @field_validator(
        "retrieval_default_top_k",
        "retrieval_max_top_k",
        "max_display_cards",
        "chat_history_limit",
        "rate_limit_per_minute",
        "rate_limit_per_hour",
        "rate_limit_per_day",
        "planner_timeout_seconds",
        "retrieval_timeout_seconds",
        "answer_timeout_seconds",
        "rate_limit_init_backoff_seconds",
    )
    @classmethod
    def _strictly_positive(cls, value):
        if value <= 0:
            raise ValueError("must be > 0")
        return value

    @field_validator("planner_temperature", "answer_temperature")
    @classmethod
    def _valid_temperature(cls, value: float) -> float:
        if value < 0 or value > 2:
            raise ValueError("must be in [0, 2]")
        return value

    @field_validator("debug_log_level")
    @classmethod
    def _valid_debug_level(cls, value: int) -> int:
        if value < 0 or value > 3:
            raise ValueError("must be in [0, 3]")
        return value

    @field_validator("debug_log_limit")
    @classmethod
    def _min_debug_limit(cls, value: int) -> int:
        return max(50, value)

    @field_validator("cost_budget_usd")
    @classmethod
    def _non_negative_budget(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() in {"production", "prod"}

    @property
    def fixtures_enabled(self) -> bool:
        return self.test_fixtures_enabled and not self.is_production

    @property
    def sources(self) -> list[str]:
        return [source.strip() for source in self.corpus_sources.split(",") if source.strip()]

    @classmethod
    def from_env(cls) -> "ChatConfig":
        return cls()
