from enum import Enum


class FlowStep(Enum):
    """User-facing steps of one quiz run, in order."""

    WELCOME = "welcome"
    PROFILE_COLLECTION = "data-collection"
    QUIZ = "quiz"
    NAMING = "naming"
    RESULTS = "results"

    @classmethod
    def parse(cls, raw: object) -> "FlowStep":
        """Unknown or missing values fall back to the initial step."""
        try:
            return cls(raw)
        except ValueError:
            return cls.WELCOME


class ProfileField(Enum):
    """Sub-steps of profile collection, in the order they are asked."""

    AGE = 0
    OCCUPATION = 1
    GENDER = 2
    INTERESTS = 3


# Every step may return to WELCOME (explicit reset or idle timeout).
VALID_TRANSITIONS: dict[FlowStep, set[FlowStep]] = {
    FlowStep.WELCOME: {FlowStep.PROFILE_COLLECTION, FlowStep.WELCOME},
    FlowStep.PROFILE_COLLECTION: {FlowStep.PROFILE_COLLECTION, FlowStep.QUIZ, FlowStep.WELCOME},
    FlowStep.QUIZ: {FlowStep.QUIZ, FlowStep.NAMING, FlowStep.WELCOME},
    FlowStep.NAMING: {FlowStep.RESULTS, FlowStep.WELCOME},
    FlowStep.RESULTS: {FlowStep.WELCOME},
}


class FlowTransitionError(Exception):
    """Raised when a step change is not allowed from the current step."""

    pass


class QuestionNotReadyError(Exception):
    """Raised when answering a question whose generated item has not settled yet."""

    pass


def validate_transition(from_step: FlowStep, to_step: FlowStep) -> bool:
    if not isinstance(from_step, FlowStep):
        raise ValueError(f"Invalid from_step type: {type(from_step)}")
    if not isinstance(to_step, FlowStep):
        raise ValueError(f"Invalid to_step type: {type(to_step)}")
    return to_step in VALID_TRANSITIONS.get(from_step, set())


def validate_flow_completeness() -> list[str]:
    """Report steps without transitions and steps unreachable from WELCOME."""
    issues = []
    all_steps = set(FlowStep)

    orphaned = all_steps - set(VALID_TRANSITIONS)
    if orphaned:
        issues.append(f"Steps without transitions: {sorted(s.value for s in orphaned)}")

    reachable = {FlowStep.WELCOME}
    frontier = [FlowStep.WELCOME]
    while frontier:
        for target in VALID_TRANSITIONS.get(frontier.pop(), set()):
            if target not in reachable:
                reachable.add(target)
                frontier.append(target)

    unreachable = all_steps - reachable
    if unreachable:
        issues.append(f"Unreachable steps: {sorted(s.value for s in unreachable)}")

    return issues
