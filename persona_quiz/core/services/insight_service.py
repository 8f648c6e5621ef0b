import logging
import random
from collections.abc import Sequence

from persona_quiz.core.constants import CHAT_HISTORY_LIMIT
from persona_quiz.core.flow_state import FlowStep
from persona_quiz.core.logging import log_event, mask_text
from persona_quiz.core.models import ChatMessage, PersonalityAnalysis, SessionState
from persona_quiz.core.services.resilient_executor import ResilientCallExecutor
from persona_quiz.providers.base import Provider
from persona_quiz.providers.exceptions import FallbackFactory

SUGGESTED_QUESTIONS = (
    "What are my biggest strengths?",
    "How do I handle stress best?",
    "What careers suit me well?",
    "How can I improve my relationships?",
    "What should I work on for personal growth?",
    "How do I learn most effectively?",
)


class ChatTranscript:
    """Ordered chat messages; only the most recent ones are sent as context."""

    def __init__(self, history_limit: int = CHAT_HISTORY_LIMIT):
        self.history_limit = history_limit
        self.messages: list[ChatMessage] = []

    def add(self, message: ChatMessage) -> None:
        self.messages.append(message)

    def recent(self) -> list[ChatMessage]:
        return self.messages[-self.history_limit :] if self.history_limit > 0 else []

    def __len__(self) -> int:
        return len(self.messages)


class PersonalityInsightService:
    """Narrative analysis and follow-up chat for a finished quiz.

    Both are single calls run through the same executor as question
    generation, so they degrade to canned content instead of failing.
    """

    def __init__(
        self,
        provider: Provider,
        executor: ResilientCallExecutor,
        state: SessionState,
        rng: random.Random | None = None,
    ):
        if state.flow_step != FlowStep.RESULTS or not state.derived_type:
            raise ValueError("Insights need a finished quiz with a derived type")
        self.provider = provider
        self.executor = executor
        self.state = state
        self.rng = rng
        self.transcript = ChatTranscript()
        self.transcript.add(ChatMessage(role="assistant", content=self.welcome_message()))

    def welcome_message(self) -> str:
        name = self.state.profile.display_name or "there"
        return (
            f"Hi {name}! I'm here to help you understand your {self.state.derived_type} personality better. "
            "Ask me anything about your traits, strengths, or how to grow."
        )

    async def analyze(self) -> PersonalityAnalysis:
        personality_type = self.state.derived_type
        log_event(
            "insight.analyze",
            component="insight",
            operation="analyze",
            personality_type=personality_type,
        )
        return await self.executor.run(
            lambda: self.provider.analyze_personality(
                personality_type, self.state.dimension_scores, self.state.profile
            ),
            FallbackFactory.default_analysis(personality_type),
            operation="analyze_personality",
        )

    async def ask(self, question: str) -> ChatMessage:
        """Send one chat question and record both sides in the transcript."""
        question = question.strip()
        if not question:
            raise ValueError("Question cannot be empty")

        history: Sequence[ChatMessage] = self.transcript.recent()
        self.transcript.add(ChatMessage(role="user", content=question))

        log_event(
            "insight.ask",
            component="insight",
            operation="ask",
            question=mask_text(question),
            history_len=len(history),
            level=logging.DEBUG,
        )
        personality_type = self.state.derived_type
        reply = await self.executor.run(
            lambda: self.provider.answer_question(
                question, personality_type, self.state.dimension_scores, self.state.profile, history
            ),
            FallbackFactory.chat_reply(personality_type, self.rng),
            operation="answer_question",
        )

        answer = ChatMessage(role="assistant", content=reply.content, continuation=reply.reasoning_details)
        self.transcript.add(answer)
        return answer
