import json
import logging
import random
from typing import Any

import openai

from persona_quiz.core.logging import log_event
from persona_quiz.core.models import ChatReply, GeneratedItem, PersonalityAnalysis, QuizItemTemplate

AUTH_STATUS_CODES = {401}


class GatewayError(Exception):
    """Base exception for language-model gateway operations."""

    pass


class ConfigurationError(GatewayError):
    """Raised when the gateway cannot be built, e.g. no API key is configured."""

    pass


class TransportError(GatewayError):
    """Raised on network failures and non-2xx responses."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code in AUTH_STATUS_CODES


class CallTimeoutError(GatewayError, TimeoutError):
    """Raised when one call exceeds its time budget."""

    pass


class MalformedResponseError(GatewayError):
    """Raised when the response body is empty, not JSON, or misses required fields."""

    pass


def is_retryable(error: BaseException) -> bool:
    """Auth and configuration failures will not fix themselves on retry."""
    if isinstance(error, ConfigurationError):
        return False
    if isinstance(error, TransportError) and error.is_auth_failure:
        return False
    return True


def classify_openai_error(error: Exception) -> GatewayError:
    """Map an SDK exception onto the gateway taxonomy."""
    if isinstance(error, GatewayError):
        return error
    if isinstance(error, openai.APITimeoutError):
        return CallTimeoutError(str(error) or "Request timed out")
    if isinstance(error, openai.AuthenticationError):
        return TransportError(f"Authentication failed: {error}", status_code=401)
    if isinstance(error, openai.APIStatusError):
        return TransportError(f"HTTP {error.status_code}: {error}", status_code=error.status_code)
    if isinstance(error, openai.APIConnectionError):
        return TransportError(f"Connection failed: {error}")
    return TransportError(f"{type(error).__name__}: {error}")


def extract_message_content(completion: Any) -> str:
    """Return the text of the first choice of a chat completion."""
    try:
        content = completion.choices[0].message.content
    except (AttributeError, IndexError, TypeError) as e:
        raise MalformedResponseError(f"Failed to extract content: {e}") from e
    if not content or not content.strip():
        raise MalformedResponseError("Empty response content")
    return content


def parse_json_response(content: str, error_context: dict[str, Any]) -> dict[str, Any]:
    """
    Parse a JSON-object response body.

    Args:
        content: The raw message text
        error_context: Fields added to the parse-failure log record

    Returns:
        The decoded JSON object

    Raises:
        MalformedResponseError: If the body is empty, invalid JSON, or not an object
    """
    if not content:
        raise MalformedResponseError("Empty response content")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        log_event(
            "llm.json_parse_error",
            component="gateway",
            operation=error_context.get("operation", "unknown"),
            model=error_context.get("model", "unknown"),
            error_msg=str(e),
            content_length=len(content),
            level=logging.WARNING,
        )
        raise MalformedResponseError(f"Invalid JSON response: {e}") from e

    if not isinstance(data, dict):
        raise MalformedResponseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class FallbackFactory:
    """Builds the values used when a call cannot produce a usable result."""

    CHAT_REPLIES = (
        "That's a great question about your {type} personality! Based on your type, you tend to approach "
        "situations in your own distinctive way. Would you like me to elaborate on any specific aspect?",
        "As a {type}, you have unique strengths that can help with this. Your natural preferences often "
        "guide you well in these situations.",
        "That's an interesting aspect of being a {type}! You likely approach this with your characteristic "
        "values and style. How does this resonate with your experience?",
    )

    @staticmethod
    def template_item(template: QuizItemTemplate) -> GeneratedItem:
        """Fallback for question generation: the untouched template."""
        return GeneratedItem.from_template(template)

    @staticmethod
    def default_analysis(personality_type: str) -> PersonalityAnalysis:
        return PersonalityAnalysis(
            summary=(
                f"As a {personality_type}, you have a unique personality with distinctive traits and "
                "preferences that shape how you interact with the world."
            ),
            strengths=["Authentic self-expression", "Strong values alignment", "Adaptability", "Creative problem-solving"],
            challenges=[
                "Balancing idealism with practicality",
                "Managing stress in high-pressure situations",
                "Difficulty with routine tasks",
            ],
            career_suggestions=["Creative Director", "Counselor", "Writer", "Teacher", "Entrepreneur", "Designer"],
            relationships=(
                "You value deep, meaningful connections and tend to be warm and supportive in your "
                "relationships. You appreciate authenticity and honest communication."
            ),
            growth_tips=[
                "Practice mindfulness to stay present",
                "Develop structured routines for important tasks",
                "Find healthy outlets for emotional expression",
                "Set boundaries to prevent burnout",
            ],
        )

    @classmethod
    def chat_reply(cls, personality_type: str, rng: random.Random | None = None) -> ChatReply:
        picker = rng or random
        return ChatReply(content=picker.choice(cls.CHAT_REPLIES).format(type=personality_type))
