import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

from persona_quiz.core.constants import (
    CONCURRENT_LIMIT,
    GENDER_OPTIONS,
    IDLE_TIMEOUT_S,
    MAX_AGE,
    MIN_AGE,
    SCHEDULE_DEBOUNCE_S,
)
from persona_quiz.core.flow_state import (
    FlowStep,
    FlowTransitionError,
    ProfileField,
    QuestionNotReadyError,
    validate_transition,
)
from persona_quiz.core.logging import log_event, mask_text, span
from persona_quiz.core.models import GeneratedItem, QuizItemTemplate, SessionState, normalize_interest_tags
from persona_quiz.core.question_bank import load_templates
from persona_quiz.core.scoring import derive_type, tally_answers
from persona_quiz.core.services.generation_scheduler import ConcurrentGenerationScheduler, compute_trigger_key
from persona_quiz.core.services.resilient_executor import ResilientCallExecutor
from persona_quiz.core.storage import StorageError
from persona_quiz.core.storage_interface import StateStore
from persona_quiz.providers.base import Provider


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _SessionItems:
    """The scheduler's view of one session's item list.

    Bound to the session epoch it was created for: after a reset the old
    scheduler may still settle calls, and those results belong to a snapshot
    that no longer exists.
    """

    def __init__(self, controller: "QuizFlowController", epoch: int):
        self.controller = controller
        self.epoch = epoch

    def generated_items(self) -> Sequence[GeneratedItem | None]:
        return self.controller.state.generated_items

    def write_generated_item(self, index: int, item: GeneratedItem) -> None:
        if self.epoch != self.controller.epoch:
            log_event(
                "generation.discarded",
                component="flow",
                operation="write_item",
                index=index,
                template_id=item.id,
                reason="session_reset",
                level=logging.DEBUG,
            )
            return
        self.controller.write_generated_item(index, item)


class QuizFlowController:
    """Sequences welcome, profile collection, quiz, naming and results.

    Owns the in-memory `SessionState`, persists it on every change and is
    the only place that starts question generation (on entering the quiz).
    """

    def __init__(
        self,
        store: StateStore,
        provider: Provider,
        executor: ResilientCallExecutor,
        templates: Sequence[QuizItemTemplate] | None = None,
        concurrent_limit: int = CONCURRENT_LIMIT,
        debounce_s: float = SCHEDULE_DEBOUNCE_S,
        idle_timeout_s: float = IDLE_TIMEOUT_S,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.provider = provider
        self.executor = executor
        self.templates = list(templates) if templates is not None else load_templates()
        self.concurrent_limit = concurrent_limit
        self.debounce_s = debounce_s
        self.idle_timeout = timedelta(seconds=idle_timeout_s)
        self._clock = clock

        self.state = SessionState.fresh(len(self.templates))
        self.epoch = 0
        self.scheduler = self._new_scheduler()
        self._item_written = asyncio.Event()

    # Lifecycle

    def resume(self) -> SessionState:
        """Load the persisted snapshot (if any) and pick up where it left off."""
        loaded = self._load()
        self.state = self._reconcile(loaded) if loaded else SessionState.fresh(len(self.templates))

        log_event(
            "flow.resumed",
            component="flow",
            operation="resume",
            restored=loaded is not None,
            flow_step=self.state.flow_step.value,
            generated=self.state.generated_count(),
            answered=len(self.state.answers),
        )

        if self.check_idle():
            return self.state

        if self.state.flow_step == FlowStep.QUIZ:
            if self.state.current_question_index >= len(self.templates):
                self._transition(FlowStep.NAMING)
            else:
                self._start_generation()
        elif self.state.flow_step == FlowStep.RESULTS and not self.state.derived_type:
            self._compute_result()
            self._save()
        return self.state

    def pause_generation(self) -> None:
        """Leaving the quiz view: stop new calls, let outstanding ones land."""
        self.scheduler.cancel()

    def resume_generation(self) -> None:
        """Returning to the quiz view."""
        if self.state.flow_step == FlowStep.QUIZ:
            self._start_generation()

    async def shutdown(self, wait: bool = True) -> None:
        self.scheduler.cancel()
        if wait:
            await self.scheduler.wait_settled()

    def reset(self, reason: str = "user") -> None:
        """Back to Welcome with an empty snapshot."""
        previous = self.state.flow_step
        self.scheduler.cancel()
        self.epoch += 1
        self.scheduler = self._new_scheduler()

        try:
            self.store.clear()
        except StorageError as e:
            log_event(
                "state.clear_failed",
                component="flow",
                operation="reset",
                error=str(e),
                level=logging.WARNING,
            )

        self.state = SessionState.fresh(len(self.templates))
        self.state.last_activity_at = self._clock()
        log_event(
            "flow.transition",
            component="flow",
            operation="reset",
            from_step=previous.value,
            to_step=FlowStep.WELCOME.value,
            reason=reason,
        )

    def touch(self) -> None:
        self.state.last_activity_at = self._clock()

    def check_idle(self) -> bool:
        """Reset when no input arrived for longer than the idle timeout."""
        if self.state.flow_step == FlowStep.WELCOME:
            return False
        idle_for = self._clock() - self.state.last_activity_at
        if idle_for <= self.idle_timeout:
            return False
        log_event(
            "flow.idle_timeout",
            component="flow",
            operation="check_idle",
            flow_step=self.state.flow_step.value,
            idle_s=round(idle_for.total_seconds(), 1),
        )
        self.reset(reason="idle_timeout")
        return True

    # Steps

    def start(self) -> None:
        self._require_step(FlowStep.WELCOME)
        self.state.profile_collection_index = 0
        self._transition(FlowStep.PROFILE_COLLECTION)

    def current_profile_field(self) -> ProfileField | None:
        if self.state.flow_step != FlowStep.PROFILE_COLLECTION:
            return None
        try:
            return ProfileField(self.state.profile_collection_index)
        except ValueError:
            return None

    def submit_profile_field(self, value: object) -> ProfileField | None:
        """Store one profile answer and move on. Returns the next field, or None once the quiz started."""
        self._require_step(FlowStep.PROFILE_COLLECTION)
        field = self.current_profile_field()
        if field is None:
            raise FlowTransitionError(f"No profile field at index {self.state.profile_collection_index}")

        update = self._validate_profile_value(field, value)
        self.state.profile = self.state.profile.model_copy(update=update)
        self.state.profile_collection_index += 1

        if self.state.profile_collection_index >= len(ProfileField):
            self.state.current_question_index = 0
            self.state.answers = {}
            self._transition(FlowStep.QUIZ)
            self._start_generation()
            return None

        self._transition(FlowStep.PROFILE_COLLECTION)
        return self.current_profile_field()

    def current_question(self) -> GeneratedItem | None:
        """The item at the current index, or None while it is still being generated."""
        if self.state.flow_step != FlowStep.QUIZ:
            return None
        index = self.state.current_question_index
        if index >= len(self.state.generated_items):
            return None
        return self.state.generated_items[index]

    async def wait_for_current_question(self, timeout_s: float | None = None) -> GeneratedItem:
        """Block until the current item has settled. Other indices do not matter."""
        async with asyncio.timeout(timeout_s):
            while True:
                self._item_written.clear()
                item = self.current_question()
                if item is not None:
                    return item
                if self.state.flow_step != FlowStep.QUIZ:
                    raise FlowTransitionError(f"Not in the quiz step ({self.state.flow_step.value})")
                await self._item_written.wait()

    def answer(self, value: str) -> GeneratedItem | None:
        """Record the answer for the current item. Returns the next item (None if not ready or finished)."""
        self._require_step(FlowStep.QUIZ)
        item = self.current_question()
        if item is None:
            raise QuestionNotReadyError(f"Question {self.state.current_question_index + 1} is still being generated")

        value = value.strip().upper()
        if value not in item.choice_values():
            raise ValueError(f"Answer must be one of {sorted(item.choice_values())}, got {value!r}")

        self.state.answers[item.id] = value
        self.state.current_question_index += 1

        if self.state.current_question_index >= len(self.templates):
            self.scheduler.cancel()
            self._transition(FlowStep.NAMING)
            return None

        self._transition(FlowStep.QUIZ)
        return self.current_question()

    def submit_name(self, name: str) -> str:
        """Name the run, derive the type and move to results. Returns the four-letter type."""
        self._require_step(FlowStep.NAMING)
        name = name.strip()
        if not name:
            raise ValueError("Name cannot be empty")

        self.state.profile = self.state.profile.model_copy(update={"display_name": name})
        self._compute_result()
        self._transition(FlowStep.RESULTS)
        return self.state.derived_type

    # GenerationStore

    def generated_items(self) -> Sequence[GeneratedItem | None]:
        return self.state.generated_items

    def write_generated_item(self, index: int, item: GeneratedItem) -> None:
        self.state.generated_items[index] = item
        self._save()
        self._item_written.set()

    # Internals

    def progress(self) -> dict[str, int]:
        return {
            "total": len(self.templates),
            "generated": self.state.generated_count(),
            "answered": len(self.state.answers),
            "current": self.state.current_question_index,
        }

    def _new_scheduler(self) -> ConcurrentGenerationScheduler:
        return ConcurrentGenerationScheduler(
            self.provider.generate_single_question,
            self.executor,
            _SessionItems(self, self.epoch),
            concurrent_limit=self.concurrent_limit,
            debounce_s=self.debounce_s,
        )

    def _start_generation(self) -> None:
        key = compute_trigger_key(self.state.flow_step, self.state.profile)
        if self.scheduler.is_completed(key) and self.state.all_generated():
            return
        self.scheduler.start(self.state.profile, self.templates, self.state.flow_step)

    def _compute_result(self) -> None:
        scores = tally_answers(self.state.answers.values())
        self.state.dimension_scores = scores
        self.state.derived_type = derive_type(scores)

    def _require_step(self, step: FlowStep) -> None:
        if self.state.flow_step != step:
            raise FlowTransitionError(f"Expected step {step.value}, currently {self.state.flow_step.value}")

    def _transition(self, new_step: FlowStep) -> None:
        current = self.state.flow_step
        if not validate_transition(current, new_step):
            raise FlowTransitionError(f"Invalid transition from {current.value} to {new_step.value}")

        self.state.flow_step = new_step
        self.touch()
        log_event(
            "flow.transition",
            component="flow",
            operation="transition",
            from_step=current.value,
            to_step=new_step.value,
            question_index=self.state.current_question_index,
            profile_field=self.state.profile_collection_index,
            level=logging.INFO if current != new_step else logging.DEBUG,
        )
        self._save()

    def _validate_profile_value(self, field: ProfileField, value: object) -> dict[str, object]:
        if field == ProfileField.AGE:
            try:
                age = int(str(value).strip())
            except ValueError as e:
                raise ValueError(f"Age must be a whole number, got {value!r}") from e
            if not MIN_AGE <= age <= MAX_AGE:
                raise ValueError(f"Age must be between {MIN_AGE} and {MAX_AGE}")
            return {"age": age}

        if field == ProfileField.OCCUPATION:
            occupation = str(value or "").strip()
            if not occupation:
                raise ValueError("Occupation cannot be empty")
            log_event(
                "flow.profile_occupation",
                component="flow",
                operation="submit_profile_field",
                occupation=mask_text(occupation),
                level=logging.DEBUG,
            )
            return {"occupation": occupation}

        if field == ProfileField.GENDER:
            raw = str(value or "").strip()
            for option in GENDER_OPTIONS:
                if raw.lower() == option.lower():
                    return {"gender_label": option}
            raise ValueError(f"Gender must be one of {', '.join(GENDER_OPTIONS)}")

        return {"interest_tags": normalize_interest_tags(value)}

    def _load(self) -> SessionState | None:
        try:
            return self.store.load()
        except StorageError as e:
            log_event(
                "state.load_failed",
                component="flow",
                operation="resume",
                error=str(e),
                level=logging.WARNING,
            )
            return None

    def _save(self) -> None:
        try:
            with span(
                "state.save",
                component="flow",
                operation="save_state",
                flow_step=self.state.flow_step.value,
                generated=self.state.generated_count(),
                answers=len(self.state.answers),
            ):
                self.store.save(self.state)
        except Exception as e:
            log_event(
                "state.save_failed",
                component="flow",
                operation="save_state",
                flow_step=self.state.flow_step.value,
                error=str(e),
                level=logging.WARNING,
            )

    def _reconcile(self, loaded: SessionState) -> SessionState:
        """Fit a restored snapshot to the current template list."""
        total = len(self.templates)
        items = list(loaded.generated_items[:total]) + [None] * max(0, total - len(loaded.generated_items))
        for index, (item, template) in enumerate(zip(items, self.templates)):
            if item is not None and item.id != template.id:
                items[index] = None

        template_ids = {template.id for template in self.templates}
        answers = {key: value for key, value in loaded.answers.items() if key in template_ids}
        return loaded.model_copy(
            update={
                "generated_items": items,
                "answers": answers,
                "current_question_index": min(loaded.current_question_index, total),
            }
        )
