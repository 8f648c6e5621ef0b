from collections.abc import Sequence
from functools import lru_cache
from typing import Any

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from persona_quiz.core.config import GatewayConfig
from persona_quiz.core.logging import span
from persona_quiz.core.models import ChatMessage

from .base import Provider, ShapeT
from .exceptions import (
    ConfigurationError,
    MalformedResponseError,
    classify_openai_error,
    extract_message_content,
    parse_json_response,
)


@lru_cache(maxsize=8)
def get_client(api_key: str, base_url: str | None, timeout_s: float) -> AsyncOpenAI:
    """One shared client per configuration; it holds no per-call state."""
    # Retries belong to the executor, so the SDK's own retry loop is disabled.
    return AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout_s, max_retries=0)


class ProviderImpl(Provider):
    def __init__(self, config: GatewayConfig):
        if not config.has_credentials:
            raise ConfigurationError("No API key configured; set PERSONA_QUIZ_API_KEY or OPENAI_API_KEY")
        super().__init__(config.model, config.response_language)
        self.base_url = config.base_url
        self.client = get_client(config.api_key, config.base_url, config.request_timeout_s)

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        response_shape: type[ShapeT],
        history: Sequence[ChatMessage] = (),
        temperature: float | None = None,
    ) -> ShapeT:
        messages = self._build_messages(system_prompt, user_prompt, history)
        params: dict[str, Any] = {}
        if temperature is not None:
            params["temperature"] = temperature

        with span(
            "llm.call",
            component="gateway",
            operation="call",
            model=self.model,
            shape=response_shape.__name__,
            prompt_len=len(user_prompt),
            history_len=len(history),
        ):
            try:
                completion = await self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    response_format={"type": "json_object"},
                    **params,
                )
            except openai.OpenAIError as e:
                raise classify_openai_error(e) from e

            content = extract_message_content(completion)
            data = parse_json_response(content, {"operation": response_shape.__name__, "model": self.model})

            token = getattr(completion.choices[0].message, "reasoning_details", None)
            if token is not None and "reasoning_details" not in data:
                data["reasoning_details"] = token

            try:
                return response_shape.model_validate(data)
            except ValidationError as e:
                raise MalformedResponseError(f"Response does not match {response_shape.__name__}: {e}") from e

    @staticmethod
    def _build_messages(
        system_prompt: str, user_prompt: str, history: Sequence[ChatMessage]
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        for turn in history:
            message: dict[str, Any] = {"role": turn.role, "content": turn.content}
            if turn.role == "assistant" and turn.continuation is not None:
                message["reasoning_details"] = turn.continuation
            messages.append(message)
        messages.append({"role": "user", "content": user_prompt})
        return messages
