"""Mock language-model gateway for testing without API calls."""

import asyncio

from persona_quiz.core.models import (
    ChatReply,
    GeneratedItem,
    PersonalityAnalysis,
    QuizItemTemplate,
    UserProfile,
)
from persona_quiz.providers.base import Provider
from persona_quiz.providers.exceptions import MalformedResponseError, TransportError


class MockProvider(Provider):
    """Predictable gateway that records how many calls overlap.

    Behaviour knobs:
        delay: seconds each call takes
        gate: when set, every call waits for this event before finishing
        fail_with: exception raised by every call (after the delay)
        malformed: raise MalformedResponseError instead of answering
        hang: never finish (until cancelled by a timeout)
    """

    def __init__(
        self,
        model: str = "mock:test-model",
        delay: float = 0.0,
        gate: asyncio.Event | None = None,
        fail_with: Exception | None = None,
        malformed: bool = False,
        hang: bool = False,
    ):
        super().__init__(model)
        self.delay = delay
        self.gate = gate
        self.fail_with = fail_with
        self.malformed = malformed
        self.hang = hang

        self.calls: list[tuple[int, UserProfile]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.analysis_calls = 0
        self.chat_calls: list[tuple[str, list]] = []

    async def generate_single_question(self, profile: UserProfile, template: QuizItemTemplate) -> GeneratedItem:
        self.calls.append((template.id, profile))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self._behave()
            return GeneratedItem(
                id=template.id,
                rendered_text=f"[{profile.occupation or 'anyone'}] {template.prompt_text}",
                dimension=template.dimension,
                choice_a=template.choice_a,
                choice_b=template.choice_b,
            )
        finally:
            self.in_flight -= 1

    async def analyze_personality(self, personality_type, scores, profile) -> PersonalityAnalysis:
        self.analysis_calls += 1
        await self._behave()
        return PersonalityAnalysis(
            summary=f"Mock analysis for {personality_type} working as {profile.occupation}",
            strengths=["Focus"],
            challenges=["Patience"],
            career_suggestions=["Tester"],
            relationships="Mock relationships",
            growth_tips=["Rest"],
        )

    async def answer_question(self, question, personality_type, scores, profile, history=()) -> ChatReply:
        self.chat_calls.append((question, list(history)))
        await self._behave()
        return ChatReply(
            content=f"Mock answer {len(self.chat_calls)} for {personality_type}",
            reasoning_details={"turn": len(self.chat_calls)},
        )

    def template_ids_called(self) -> list[int]:
        return [template_id for template_id, _ in self.calls]

    async def _behave(self) -> None:
        if self.hang:
            await asyncio.Event().wait()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        if self.malformed:
            raise MalformedResponseError("Mock malformed response")


def auth_failure() -> TransportError:
    return TransportError("Authentication failed: invalid key", status_code=401)
