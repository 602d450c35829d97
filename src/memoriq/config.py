"""
Configuration for the memoriq journal.

Every section is a ``pydantic-settings`` class with its own environment
prefix, so a single value can be overridden without touching the others::

    MEMORIQ_RETRIEVAL_SIMILARITY_THRESHOLD=0.6
    MEMORIQ_EMBEDDING_DEBOUNCE_MS=500

Sections are aggregated in :class:`Settings`; the module-level ``settings``
instance is what the runtime reads at startup.  Services receive their
section explicitly so tests can pass hand-built settings.
"""

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Stop sequences shared by every completion the journal issues
DEFAULT_STOP_SEQUENCES = ["</s>", "<|end|>", "<|eot_id|>", "<|end_of_text|>", "<|im_end|>"]


class SamplingDefaults(BaseModel):
    """Sampling parameters for one kind of completion."""

    n_predict: int = Field(default=256, ge=1)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    top_k: int | None = Field(default=None, ge=1)
    min_p: float | None = Field(default=None, ge=0.0, le=1.0)
    stop: list[str] = Field(default_factory=lambda: list(DEFAULT_STOP_SEQUENCES))


class StorageSettings(BaseSettings):
    """SQLite store location and locking."""

    model_config = SettingsConfigDict(env_prefix="MEMORIQ_STORAGE_", extra="ignore")

    db_path: Path = Field(default_factory=lambda: Path.home() / ".memoriq" / "memoriq.db")
    busy_timeout_ms: int = Field(default=5000, ge=0)


class ModelSettings(BaseSettings):
    """Which models back the three inference contexts."""

    model_config = SettingsConfigDict(env_prefix="MEMORIQ_MODEL_", extra="ignore")

    embedding_model: str = "nomic-ai/nomic-embed-text-v1.5"
    embedding_dimension: int = Field(default=768, ge=1)
    device: str | None = None

    # OpenAI-compatible chat endpoint (llama.cpp server, LM Studio, ...)
    completion_base_url: str = "http://127.0.0.1:8080"
    rag_model: str = "qwen2.5-1.5b-instruct"
    recall_model: str = "llama-3.2-1b-instruct"
    api_key: SecretStr | None = None
    request_timeout_seconds: float = Field(default=120.0, gt=0.0)


class EmbeddingSettings(BaseSettings):
    """Embedding pipeline behaviour."""

    model_config = SettingsConfigDict(env_prefix="MEMORIQ_EMBEDDING_", extra="ignore")

    debounce_ms: int = Field(default=300, ge=0)
    # Declared for parity with the reference pipeline; failed embeddings are
    # only regenerated after a content edit, never on a timer.
    max_retries: int = Field(default=2, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)


class ScriptSettings(BaseSettings):
    """Recall-script generation."""

    model_config = SettingsConfigDict(env_prefix="MEMORIQ_SCRIPT_", extra="ignore")

    debounce_ms: int = Field(default=300, ge=0)
    sampling: SamplingDefaults = Field(
        default_factory=lambda: SamplingDefaults(
            n_predict=260,
            temperature=0.3,
            top_p=0.85,
            top_k=40,
            stop=[*DEFAULT_STOP_SEQUENCES, "\n\n\n"],
        )
    )


class RetrievalSettings(BaseSettings):
    """Similarity retrieval thresholds."""

    model_config = SettingsConfigDict(env_prefix="MEMORIQ_RETRIEVAL_", extra="ignore")

    top_k: int = Field(default=2, ge=1)
    chat_top_k: int = Field(default=3, ge=1)
    similarity_threshold: float = Field(default=0.5, ge=-1.0, le=1.0)
    relative_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    timeout_ms: int = Field(default=5000, ge=1)


class ReminisceSettings(BaseSettings):
    """Reminiscence session size and memory selection weights."""

    model_config = SettingsConfigDict(env_prefix="MEMORIQ_REMINISCE_", extra="ignore")

    session_size: int = Field(default=5, ge=1)
    image_bonus: float = 50.0
    age_weight: float = 0.5
    length_weight: float = 0.01
    last_shown_weight: float = 2.0
    never_shown_days: int = Field(default=9999, ge=0)
    script_bonus: float = 10.0
    missing_script_penalty: float = -100.0


class ChatSettings(BaseSettings):
    """Conversational retrieval."""

    model_config = SettingsConfigDict(env_prefix="MEMORIQ_CHAT_", extra="ignore")

    sampling: SamplingDefaults = Field(
        default_factory=lambda: SamplingDefaults(n_predict=512, temperature=0.5, top_p=0.9, min_p=0.05)
    )


class QuizSettings(BaseSettings):
    """Quiz generation."""

    model_config = SettingsConfigDict(env_prefix="MEMORIQ_QUIZ_", extra="ignore")

    total_questions: int = Field(default=5, ge=1, le=20)
    sampling: SamplingDefaults = Field(
        default_factory=lambda: SamplingDefaults(
            n_predict=300,
            temperature=0.1,
            top_p=0.95,
            top_k=40,
            stop=[*DEFAULT_STOP_SEQUENCES, "\n\n\n"],
        )
    )


class DebugSettings(BaseSettings):
    """Logging verbosity."""

    model_config = SettingsConfigDict(env_prefix="MEMORIQ_DEBUG_", extra="ignore")

    log_level: str = "INFO"

    @model_validator(mode="after")
    def normalise_level(self) -> "DebugSettings":
        self.log_level = self.log_level.upper()
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {self.log_level}")
        return self


class Settings(BaseSettings):
    """All configuration sections."""

    model_config = SettingsConfigDict(env_prefix="MEMORIQ_", extra="ignore")

    storage: StorageSettings = Field(default_factory=StorageSettings)
    model: ModelSettings = Field(default_factory=ModelSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    script: ScriptSettings = Field(default_factory=ScriptSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    reminisce: ReminisceSettings = Field(default_factory=ReminisceSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    quiz: QuizSettings = Field(default_factory=QuizSettings)
    debug: DebugSettings = Field(default_factory=DebugSettings)


settings = Settings()
