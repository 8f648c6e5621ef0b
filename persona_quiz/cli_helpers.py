import asyncio
from collections.abc import Sequence
from dataclasses import dataclass

import typer

from persona_quiz.core.config import GatewayConfig
from persona_quiz.core.constants import DEFAULT_DB_PATH, EXIT_SIGNAL, GENDER_OPTIONS, MAX_AGE, MIN_AGE
from persona_quiz.core.flow_state import FlowStep, ProfileField
from persona_quiz.core.io_interface import IOInterface
from persona_quiz.core.logging import log_event
from persona_quiz.core.models import GeneratedItem, SessionState
from persona_quiz.core.question_bank import type_name
from persona_quiz.core.quiz_controller import QuizFlowController
from persona_quiz.core.services import PersonalityInsightService, ResilientCallExecutor, RetryPolicy
from persona_quiz.core.services.insight_service import SUGGESTED_QUESTIONS
from persona_quiz.core.storage import DatabaseStateStore
from persona_quiz.core.storage_interface import StateStore
from persona_quiz.providers.base import Provider

PROFILE_PROMPTS = {
    ProfileField.AGE: f"How old are you? ({MIN_AGE}-{MAX_AGE}): ",
    ProfileField.OCCUPATION: "What is your occupation? ",
    ProfileField.GENDER: f"Gender ({', '.join(GENDER_OPTIONS)}): ",
    ProfileField.INTERESTS: "Interests, comma separated (optional): ",
}


@dataclass
class Runtime:
    config: GatewayConfig
    provider: Provider
    executor: ResilientCallExecutor
    store: StateStore


def build_runtime(
    db_path: str = DEFAULT_DB_PATH, model: str | None = None, base_url: str | None = None
) -> Runtime:
    """Wire configuration, gateway, executor and store for one CLI invocation."""
    config = GatewayConfig.from_env(model=model, base_url=base_url)
    return Runtime(
        config=config,
        provider=Provider.from_config_or_offline(config),
        executor=ResilientCallExecutor(RetryPolicy.from_config(config)),
        store=DatabaseStateStore(db_path),
    )


class QuizRunner:
    """Drives a `QuizFlowController` from console input.

    Input is read on a worker thread so question generation keeps running
    on the event loop while the user is typing.
    """

    def __init__(self, controller: QuizFlowController, io: IOInterface):
        self.controller = controller
        self.io = io

    async def run(self) -> SessionState:
        controller = self.controller
        controller.resume()
        try:
            while True:
                step = controller.state.flow_step
                if step == FlowStep.RESULTS:
                    self.show_results(controller.state)
                    return controller.state

                handlers = {
                    FlowStep.WELCOME: self._welcome,
                    FlowStep.PROFILE_COLLECTION: self._profile_field,
                    FlowStep.QUIZ: self._question,
                    FlowStep.NAMING: self._naming,
                }
                if not await handlers[step]():
                    return controller.state
        finally:
            await controller.shutdown(wait=False)

    def show_results(self, state: SessionState) -> None:
        label = type_name(state.derived_type)
        name = state.profile.display_name or "You"
        self.io.print_success(f"{name}: {state.derived_type}" + (f" ({label})" if label else ""))
        self.io.print_scores(state.dimension_scores)
        self.io.print_info("Run `persona-quiz analyze` for a full analysis or `persona-quiz chat` to ask about it.")

    async def _ask(self, prompt: str, completions: Sequence[str] = ()) -> str | None:
        """Read one line; None when the user asked to stop."""
        response = await asyncio.to_thread(self.io.input, prompt, completions)
        if response == EXIT_SIGNAL:
            return None
        if self.controller.check_idle():
            self.io.print_info("You were away for a while, so the quiz started over.")
            return ""
        self.controller.touch()
        return response

    async def _welcome(self) -> bool:
        self.io.print("Welcome! Answer a few questions about yourself, then a personalized personality quiz.")
        if await self._ask("Press Enter to begin: ") is None:
            return False
        self.controller.start()
        return True

    async def _profile_field(self) -> bool:
        field = self.controller.current_profile_field()
        completions = GENDER_OPTIONS if field == ProfileField.GENDER else ()
        response = await self._ask(PROFILE_PROMPTS[field], completions)
        if response is None:
            return False
        if self.controller.state.flow_step != FlowStep.PROFILE_COLLECTION:
            return True
        try:
            self.controller.submit_profile_field(response)
        except ValueError as e:
            self.io.print_error(str(e))
        return True

    async def _question(self) -> bool:
        controller = self.controller
        number = controller.state.current_question_index + 1
        total = len(controller.templates)

        item = controller.current_question()
        if item is None:
            self.io.print_thinking(f"Generating question {number}...")
            item = await controller.wait_for_current_question()

        self.io.print_question(item, number, total)
        response = await self._ask("Your answer (A/B): ", ("A", "B"))
        if response is None:
            return False
        if controller.state.flow_step != FlowStep.QUIZ:
            return True

        value = self._choice_value(item, response)
        if value is None:
            self.io.print_error("Please answer A or B.")
            return True
        controller.answer(value)
        return True

    async def _naming(self) -> bool:
        response = await self._ask("All done! What name should we put on your result? ")
        if response is None:
            return False
        if self.controller.state.flow_step != FlowStep.NAMING:
            return True
        try:
            personality_type = self.controller.submit_name(response)
        except ValueError as e:
            self.io.print_error(str(e))
            return True
        log_event("quiz.completed", component="cli", operation="naming", personality_type=personality_type)
        return True

    @staticmethod
    def _choice_value(item: GeneratedItem, response: str) -> str | None:
        cleaned = response.strip().upper()
        if cleaned in ("A", "1"):
            return item.choice_a.value
        if cleaned in ("B", "2"):
            return item.choice_b.value
        if cleaned in item.choice_values():
            return cleaned
        return None


class InsightRunner:
    """Console front end for the analysis and the follow-up chat."""

    def __init__(self, service: PersonalityInsightService, io: IOInterface):
        self.service = service
        self.io = io

    async def show_analysis(self) -> None:
        self.io.print_thinking(f"Analyzing your {self.service.state.derived_type} personality...")
        analysis = await self.service.analyze()
        self.io.print_analysis(analysis)

    async def chat(self) -> int:
        """Loop until the user exits. Returns the number of questions asked."""
        self.io.print(self.service.transcript.messages[0].content)
        self.io.print_info("Try: " + " | ".join(SUGGESTED_QUESTIONS[:3]))
        asked = 0
        while True:
            question = await asyncio.to_thread(self.io.input, "You: ", SUGGESTED_QUESTIONS)
            if question == EXIT_SIGNAL:
                return asked
            if not question.strip():
                continue
            self.io.print_thinking("Thinking...")
            reply = await self.service.ask(question)
            asked += 1
            self.io.print(reply.content)


def load_finished_state(store: StateStore) -> SessionState:
    """The persisted state of a finished quiz, or exit with a message."""
    state = store.load()
    if state is None or state.flow_step != FlowStep.RESULTS or not state.derived_type:
        typer.echo("No finished quiz found. Run `persona-quiz quiz` first.", err=True)
        raise typer.Exit(1)
    return state
