import logging
from collections.abc import Sequence
from typing import TypeVar

from pydantic import BaseModel

from persona_quiz.core.config import GatewayConfig
from persona_quiz.core.logging import log_event
from persona_quiz.core.models import (
    ChatMessage,
    ChatReply,
    Dimension,
    GeneratedItem,
    PersonalityAnalysis,
    QuestionPayload,
    QuizItemTemplate,
    UserProfile,
)
from persona_quiz.core.prompts import (
    SYSTEM_INSTRUCTIONS,
    chat_prompt,
    personality_analysis_prompt,
    personalize_question_prompt,
)

from .exceptions import ConfigurationError, MalformedResponseError

ShapeT = TypeVar("ShapeT", bound=BaseModel)


class Provider:
    """Gateway to a chat-style language model that answers in JSON objects.

    Subclasses implement `call`; the quiz operations are built on top of it.
    Nothing here retries: that is the executor's job.
    """

    def __init__(self, model: str, response_language: str = "English"):
        self.model = model
        self.response_language = response_language

    @staticmethod
    def from_config(config: GatewayConfig) -> "Provider":
        from . import openai as impl

        return impl.ProviderImpl(config)

    @staticmethod
    def from_config_or_offline(config: GatewayConfig) -> "Provider":
        """Like `from_config`, but a missing credential yields a provider that never calls out."""
        try:
            return Provider.from_config(config)
        except ConfigurationError as e:
            log_event(
                "llm.configuration_missing",
                component="gateway",
                operation="build",
                model=config.model,
                error_msg=str(e),
                level=logging.WARNING,
            )
            return UnconfiguredProvider(config, e)

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        response_shape: type[ShapeT],
        history: Sequence[ChatMessage] = (),
        temperature: float | None = None,
    ) -> ShapeT:
        raise NotImplementedError

    async def generate_single_question(self, profile: UserProfile, template: QuizItemTemplate) -> GeneratedItem:
        """Personalize one template. The result keeps the template's id, dimension and option values."""
        prompt = personalize_question_prompt(profile, template, self.response_language)
        payload = await self.call(SYSTEM_INSTRUCTIONS["questions"], prompt, QuestionPayload, temperature=0.7)
        return self._to_generated_item(payload, template)

    async def analyze_personality(
        self, personality_type: str, scores: dict[str, int], profile: UserProfile
    ) -> PersonalityAnalysis:
        prompt = personality_analysis_prompt(personality_type, scores, profile)
        return await self.call(SYSTEM_INSTRUCTIONS["analysis"], prompt, PersonalityAnalysis, temperature=0.7)

    async def answer_question(
        self,
        question: str,
        personality_type: str,
        scores: dict[str, int],
        profile: UserProfile,
        history: Sequence[ChatMessage] = (),
    ) -> ChatReply:
        prompt = chat_prompt(question, personality_type, scores, profile)
        return await self.call(SYSTEM_INSTRUCTIONS["chat"], prompt, ChatReply, history=history, temperature=0.8)

    @staticmethod
    def _to_generated_item(payload: QuestionPayload, template: QuizItemTemplate) -> GeneratedItem:
        if payload.dimension:
            try:
                dimension = Dimension.parse(payload.dimension)
            except ValueError as e:
                raise MalformedResponseError(f"Unknown dimension {payload.dimension!r}") from e
            if dimension != template.dimension:
                raise MalformedResponseError(
                    f"Dimension changed from {template.dimension.value} to {dimension.value}"
                )

        expected = {template.choice_a.value, template.choice_b.value}
        returned = {payload.option_a.value, payload.option_b.value}
        if returned != expected:
            raise MalformedResponseError(f"Option values {sorted(returned)} do not match {sorted(expected)}")

        return GeneratedItem(
            id=template.id,
            rendered_text=payload.text.strip(),
            dimension=template.dimension,
            choice_a=payload.option_a,
            choice_b=payload.option_b,
        )


class UnconfiguredProvider(Provider):
    """Stands in when no credential is configured; every call fails without touching the network."""

    def __init__(self, config: GatewayConfig, error: ConfigurationError):
        super().__init__(config.model, config.response_language)
        self.error = error

    async def call(self, system_prompt, user_prompt, response_shape, history=(), temperature=None):
        raise ConfigurationError(str(self.error))
