from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from persona_quiz.core.constants import DEFAULT_AGE, MAX_INTEREST_TAGS
from persona_quiz.core.flow_state import FlowStep

SCORE_LETTERS = ("E", "I", "S", "N", "T", "F", "J", "P")


class Dimension(str, Enum):
    EI = "EI"
    SN = "SN"
    TF = "TF"
    JP = "JP"

    @property
    def letters(self) -> tuple[str, str]:
        return self.value[0], self.value[1]

    @classmethod
    def parse(cls, raw: "str | Dimension") -> "Dimension":
        """Accept `EI`, `E-I`, `E/I` and lower-case spellings."""
        if isinstance(raw, Dimension):
            return raw
        cleaned = "".join(ch for ch in str(raw).upper() if ch.isalpha())
        return cls(cleaned)


class Choice(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    value: str


class QuizItemTemplate(BaseModel):
    """A base question from the static bank. Never mutated."""

    model_config = ConfigDict(frozen=True)

    id: int
    dimension: Dimension
    prompt_text: str
    choice_a: Choice
    choice_b: Choice


class GeneratedItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    rendered_text: str
    dimension: Dimension
    choice_a: Choice
    choice_b: Choice

    @classmethod
    def from_template(cls, template: QuizItemTemplate) -> "GeneratedItem":
        return cls(
            id=template.id,
            rendered_text=template.prompt_text,
            dimension=template.dimension,
            choice_a=template.choice_a,
            choice_b=template.choice_b,
        )

    def choice_values(self) -> set[str]:
        return {self.choice_a.value, self.choice_b.value}


def normalize_interest_tags(raw: object) -> tuple[str, ...]:
    """Trim, drop a leading '#', de-duplicate and cap the tag list.

    Older snapshots stored interests as one comma separated string.
    """
    if raw is None:
        return ()
    if isinstance(raw, str):
        candidates = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        candidates = [str(item) for item in raw]
    else:
        return ()

    tags: list[str] = []
    for candidate in candidates:
        tag = candidate.strip().lstrip("#").strip()
        if tag and tag not in tags:
            tags.append(tag)
        if len(tags) >= MAX_INTEREST_TAGS:
            break
    return tuple(tags)


class UserProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    age: int = DEFAULT_AGE
    occupation: str = ""
    gender_label: str = ""
    interest_tags: tuple[str, ...] = ()
    display_name: str = ""

    @field_validator("interest_tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: object) -> tuple[str, ...]:
        return normalize_interest_tags(value)


def empty_scores() -> dict[str, int]:
    return {letter: 0 for letter in SCORE_LETTERS}


class SessionState(BaseModel):
    """The single persisted aggregate of one quiz run."""

    flow_step: FlowStep = FlowStep.WELCOME
    profile_collection_index: int = 0
    profile: UserProfile = Field(default_factory=UserProfile)
    generated_items: list[GeneratedItem | None] = Field(default_factory=list)
    current_question_index: int = 0
    answers: dict[int, str] = Field(default_factory=dict)
    derived_type: str = ""
    dimension_scores: dict[str, int] = Field(default_factory=empty_scores)
    last_activity_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("last_activity_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value

    @model_validator(mode="after")
    def _check_bounds(self) -> "SessionState":
        total = len(self.generated_items)
        if not 0 <= self.current_question_index <= total:
            raise ValueError(f"current_question_index {self.current_question_index} outside 0..{total}")
        if len(self.answers) > total:
            raise ValueError(f"{len(self.answers)} answers recorded for {total} questions")
        return self

    @classmethod
    def fresh(cls, template_count: int) -> "SessionState":
        return cls(generated_items=[None] * template_count)

    def generated_count(self) -> int:
        return sum(1 for item in self.generated_items if item is not None)

    def all_generated(self) -> bool:
        return all(item is not None for item in self.generated_items)


class QuestionPayload(BaseModel):
    """Shape (a): one personalized question as returned by the model."""

    id: int | str | None = None
    text: str = Field(min_length=1)
    dimension: str | None = None
    option_a: Choice = Field(validation_alias=AliasChoices("optionA", "option_a"))
    option_b: Choice = Field(validation_alias=AliasChoices("optionB", "option_b"))


class PersonalityAnalysis(BaseModel):
    """Shape (b): the narrative analysis. Accepts the older key names too."""

    summary: str = Field(validation_alias=AliasChoices("summary", "overview"))
    strengths: list[str] = []
    challenges: list[str] = Field(default=[], validation_alias=AliasChoices("challenges", "growthAreas"))
    career_suggestions: list[str] = Field(
        default=[], validation_alias=AliasChoices("careerSuggestions", "career_suggestions")
    )
    relationships: str = Field(default="", validation_alias=AliasChoices("relationships", "communicationStyle"))
    growth_tips: list[str] = Field(
        default=[], validation_alias=AliasChoices("growthTips", "developmentTips", "growth_tips")
    )


class ChatReply(BaseModel):
    """Shape (c): a chat answer plus the provider's opaque continuation token."""

    content: str = Field(min_length=1)
    reasoning_details: object | None = None


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    continuation: object | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
