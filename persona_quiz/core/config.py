import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from persona_quiz.core.constants import (
    CONCURRENT_LIMIT,
    DEFAULT_MODEL,
    DEFAULT_RESPONSE_LANGUAGE,
    MAX_ATTEMPTS,
    PLACEHOLDER_API_KEY,
    REQUEST_TIMEOUT_S,
    RETRY_DELAY_S,
)


class GatewayConfig(BaseModel):
    """Everything the language-model gateway needs, passed in explicitly."""

    model_config = ConfigDict(frozen=True)

    api_key: str | None = Field(default=None, repr=False)
    base_url: str | None = None
    model: str = DEFAULT_MODEL
    request_timeout_s: float = Field(default=REQUEST_TIMEOUT_S, gt=0)
    max_attempts: int = Field(default=MAX_ATTEMPTS, ge=1)
    retry_delay_s: float = Field(default=RETRY_DELAY_S, ge=0)
    concurrent_limit: int = Field(default=CONCURRENT_LIMIT, ge=1)
    response_language: str = DEFAULT_RESPONSE_LANGUAGE

    @field_validator("api_key", "base_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("model")
    @classmethod
    def _model_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("model name cannot be empty")
        return value.strip()

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key) and self.api_key != PLACEHOLDER_API_KEY

    @classmethod
    def from_env(cls, **overrides: object) -> "GatewayConfig":
        """Build from `PERSONA_QUIZ_*` variables (after loading `.env`); explicit overrides win."""
        load_dotenv()
        values: dict[str, object] = {
            "api_key": os.getenv("PERSONA_QUIZ_API_KEY") or os.getenv("OPENAI_API_KEY"),
            "base_url": os.getenv("PERSONA_QUIZ_BASE_URL") or os.getenv("OPENAI_BASE_URL"),
            "model": os.getenv("PERSONA_QUIZ_MODEL") or DEFAULT_MODEL,
            "response_language": os.getenv("PERSONA_QUIZ_LANGUAGE") or DEFAULT_RESPONSE_LANGUAGE,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
