import asyncio
import hashlib
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import Any, Protocol

from persona_quiz.core.constants import CONCURRENT_LIMIT, SCHEDULE_DEBOUNCE_S
from persona_quiz.core.flow_state import FlowStep
from persona_quiz.core.logging import log_event
from persona_quiz.core.models import GeneratedItem, QuizItemTemplate, UserProfile
from persona_quiz.core.services.resilient_executor import ResilientCallExecutor
from persona_quiz.providers.exceptions import FallbackFactory

ItemGenerator = Callable[[UserProfile, QuizItemTemplate], Awaitable[GeneratedItem]]


class GenerationStore(Protocol):
    """Where settled items live. Presence of an item is what marks its index settled."""

    def generated_items(self) -> Sequence[GeneratedItem | None]: ...

    def write_generated_item(self, index: int, item: GeneratedItem) -> None: ...


class SlotState(Enum):
    NOT_STARTED = "not_started"
    IN_FLIGHT = "in_flight"
    SETTLED = "settled"


def compute_trigger_key(flow_step: FlowStep, profile: UserProfile) -> str:
    """Stable digest of the inputs a generation run depends on."""
    material = json.dumps(
        {"step": flow_step.value, "profile": profile.model_dump(mode="json")},
        sort_keys=True,
        ensure_ascii=False,
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class ConcurrentGenerationScheduler:
    """Personalizes every template with at most `concurrent_limit` calls in flight.

    Two flags are kept apart on purpose: `_accepting` decides whether new calls
    may start, while settlement always writes its item to the store. So
    `cancel()` stops new work but a call already dispatched still lands.

    Calls dispatched by an earlier run that have not settled yet ("orphans")
    are never dispatched again and still occupy a slot, so the limit holds
    across cancel/start cycles too.
    """

    def __init__(
        self,
        generator: ItemGenerator,
        executor: ResilientCallExecutor,
        store: GenerationStore,
        concurrent_limit: int = CONCURRENT_LIMIT,
        debounce_s: float = SCHEDULE_DEBOUNCE_S,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if concurrent_limit < 1:
            raise ValueError("concurrent_limit must be at least 1")
        self.generator = generator
        self.executor = executor
        self.store = store
        self.concurrent_limit = concurrent_limit
        self.debounce_s = debounce_s
        self._sleep = sleep

        self._accepting = False
        self._run_id = 0
        self._trigger_key: str | None = None
        self._completed_keys: set[str] = set()
        self._profile: UserProfile | None = None
        self._templates: list[QuizItemTemplate] = []

        # Per-run slot bookkeeping, reset by cancel().
        self._active_slots = 0
        self._in_flight: set[int] = set()
        # Every dispatched, unsettled index regardless of run.
        self._outstanding: set[int] = set()
        self._tasks: set[asyncio.Task] = set()
        self.peak_in_flight = 0

    @property
    def is_running(self) -> bool:
        return self._accepting

    @property
    def trigger_key(self) -> str | None:
        return self._trigger_key

    @property
    def in_flight_count(self) -> int:
        return len(self._outstanding)

    def is_completed(self, trigger_key: str) -> bool:
        return trigger_key in self._completed_keys

    def start(
        self,
        profile: UserProfile,
        templates: Sequence[QuizItemTemplate],
        flow_step: FlowStep = FlowStep.QUIZ,
    ) -> None:
        """Begin (or resume) generation. Must be called from inside a running event loop."""
        templates = list(templates)
        items = self.store.generated_items()
        if len(items) != len(templates):
            raise ValueError(f"Store holds {len(items)} slots for {len(templates)} templates")

        key = compute_trigger_key(flow_step, profile)
        if key in self._completed_keys and all(item is not None for item in items):
            log_event("generation.skipped", component="scheduler", operation="start", reason="already_completed")
            return
        if self._accepting and key == self._trigger_key:
            return
        if self._accepting:
            log_event("generation.superseded", component="scheduler", operation="start", run_id=self._run_id)
            self.cancel()

        self._run_id += 1
        self._trigger_key = key
        self._profile = profile
        self._templates = templates
        self._accepting = True
        self._active_slots = 0
        self._in_flight.clear()

        log_event(
            "generation.start",
            component="scheduler",
            operation="start",
            run_id=self._run_id,
            total=len(templates),
            pending=sum(1 for item in items if item is None),
            orphaned=len(self._outstanding),
            concurrent_limit=self.concurrent_limit,
        )
        self._fill_slots()

    def cancel(self) -> None:
        """Stop starting new calls. Calls already dispatched keep running and still write."""
        if not self._accepting and not self._in_flight:
            return
        self._accepting = False
        self._active_slots = 0
        self._in_flight.clear()
        log_event(
            "generation.cancelled",
            component="scheduler",
            operation="cancel",
            run_id=self._run_id,
            orphaned=len(self._outstanding),
        )

    def slot_state(self, index: int) -> SlotState:
        if index in self._outstanding:
            return SlotState.IN_FLIGHT
        if self.store.generated_items()[index] is not None:
            return SlotState.SETTLED
        return SlotState.NOT_STARTED

    async def wait_settled(self) -> None:
        """Wait until every dispatched call, including follow-up dispatches, has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _occupied_slots(self) -> int:
        orphans = len(self._outstanding - self._in_flight)
        return self._active_slots + orphans

    def _fill_slots(self) -> None:
        if not self._accepting:
            return

        items = self.store.generated_items()
        for index, template in enumerate(self._templates):
            if self._occupied_slots() >= self.concurrent_limit:
                break
            if items[index] is not None or index in self._in_flight or index in self._outstanding:
                continue
            self._dispatch(index, template)

        self._check_completion()

    def _dispatch(self, index: int, template: QuizItemTemplate) -> None:
        self._in_flight.add(index)
        self._outstanding.add(index)
        self._active_slots += 1
        self.peak_in_flight = max(self.peak_in_flight, len(self._outstanding))

        log_event(
            "generation.dispatch",
            component="scheduler",
            operation="dispatch",
            run_id=self._run_id,
            index=index,
            template_id=template.id,
            active=self._active_slots,
            level=logging.DEBUG,
        )
        task = asyncio.get_running_loop().create_task(
            self._generate(self._run_id, index, template, self._profile),
            name=f"generate-question-{template.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _generate(self, run_id: int, index: int, template: QuizItemTemplate, profile: UserProfile) -> None:
        fallback = FallbackFactory.template_item(template)
        item = await self.executor.run(
            lambda: self.generator(profile, template),
            fallback,
            operation="generate_question",
            template_id=template.id,
        )

        try:
            self.store.write_generated_item(index, item)
        finally:
            self._outstanding.discard(index)
            if run_id == self._run_id and index in self._in_flight:
                self._in_flight.discard(index)
                self._active_slots = max(0, self._active_slots - 1)

        log_event(
            "generation.settled",
            component="scheduler",
            operation="settle",
            run_id=run_id,
            index=index,
            template_id=template.id,
            used_fallback=item == fallback,
            stale=run_id != self._run_id,
        )

        if self._accepting:
            await self._sleep(self.debounce_s)
            self._fill_slots()

    def _check_completion(self) -> None:
        if not self._accepting or self._outstanding:
            return
        if all(item is not None for item in self.store.generated_items()):
            self._completed_keys.add(self._trigger_key)
            self._accepting = False
            log_event(
                "generation.completed",
                component="scheduler",
                operation="complete",
                run_id=self._run_id,
                total=len(self._templates),
            )
