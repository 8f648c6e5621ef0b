"""Encoding of `SessionState` to the single persisted JSON document, and back.

Decoding is forgiving about older layouts: the first release persisted a
camelCase document (`step`, `dataStep`, `userContext`, `questions`, ...) with
interests as one comma separated string and questions carrying an `options`
list. Those are migrated here so the stores only ever see `SessionState`.
"""

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from persona_quiz.core.flow_state import FlowStep, ProfileField
from persona_quiz.core.models import SCORE_LETTERS, Dimension, GeneratedItem, SessionState, empty_scores


class SnapshotError(ValueError):
    """Raised when a persisted document cannot be turned into a `SessionState`."""

    pass


_LEGACY_KEYS = {
    "step": "flow_step",
    "flowStep": "flow_step",
    "dataStep": "profile_collection_index",
    "profileCollectionIndex": "profile_collection_index",
    "userContext": "profile",
    "questions": "generated_items",
    "generatedItems": "generated_items",
    "currentQuestionIndex": "current_question_index",
    "result": "derived_type",
    "derivedType": "derived_type",
    "scores": "dimension_scores",
    "dimensionScores": "dimension_scores",
    "lastActivityAt": "last_activity_at",
}

_LEGACY_PROFILE_KEYS = {
    "gender": "gender_label",
    "genderLabel": "gender_label",
    "interests": "interest_tags",
    "interestTags": "interest_tags",
    "name": "display_name",
    "displayName": "display_name",
}


def dump_snapshot(state: SessionState) -> str:
    return state.model_dump_json()


def load_snapshot(raw: str | bytes) -> SessionState:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise SnapshotError(f"Snapshot is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise SnapshotError(f"Snapshot must be a JSON object, got {type(data).__name__}")

    try:
        return SessionState.model_validate(upgrade_snapshot(data))
    except ValidationError as e:
        raise SnapshotError(f"Snapshot does not describe a session: {e}") from e


def upgrade_snapshot(data: dict[str, Any]) -> dict[str, Any]:
    """Rename legacy keys and coerce fields whose type changed between releases."""
    upgraded = {_LEGACY_KEYS.get(key, key): value for key, value in data.items()}

    step = FlowStep.parse(upgraded.get("flow_step"))
    upgraded["flow_step"] = step.value
    upgraded["profile_collection_index"] = _upgrade_profile_index(upgraded.get("profile_collection_index"), step)

    profile = upgraded.get("profile")
    if isinstance(profile, dict):
        upgraded["profile"] = {_LEGACY_PROFILE_KEYS.get(key, key): value for key, value in profile.items()}
    else:
        upgraded.pop("profile", None)

    items = upgraded.get("generated_items")
    upgraded["generated_items"] = [_upgrade_item(item) for item in items] if isinstance(items, list) else []

    upgraded["answers"] = _upgrade_answers(upgraded.get("answers"))

    derived = upgraded.get("derived_type")
    upgraded["derived_type"] = derived if isinstance(derived, str) else ""

    upgraded["dimension_scores"] = _upgrade_scores(upgraded.get("dimension_scores"))

    _clamp_progress(upgraded)
    last_activity = _upgrade_timestamp(upgraded.get("last_activity_at"))
    if last_activity is None:
        upgraded.pop("last_activity_at", None)
    else:
        upgraded["last_activity_at"] = last_activity
    return upgraded


def _upgrade_item(raw: Any) -> dict[str, Any] | None:
    # An item that cannot be read is treated as not generated yet.
    if not isinstance(raw, dict):
        return None

    item = dict(raw)
    if "rendered_text" not in item and "text" in item:
        item["rendered_text"] = item.pop("text")
    options = item.pop("options", None)
    if isinstance(options, list) and len(options) == 2:
        item.setdefault("choice_a", options[0])
        item.setdefault("choice_b", options[1])
    for legacy, current in (("optionA", "choice_a"), ("optionB", "choice_b"), ("choiceA", "choice_a"), ("choiceB", "choice_b")):
        if legacy in item:
            item.setdefault(current, item.pop(legacy))

    try:
        item["dimension"] = Dimension.parse(item.get("dimension", "")).value
        return GeneratedItem.model_validate(item).model_dump(mode="json")
    except (ValueError, ValidationError):
        return None


def _upgrade_answers(raw: Any) -> dict[int, str]:
    if not isinstance(raw, dict):
        return {}
    answers: dict[int, str] = {}
    for key, value in raw.items():
        try:
            answers[int(key)] = str(value)
        except (TypeError, ValueError):
            continue
    return answers


def _upgrade_scores(raw: Any) -> dict[str, int]:
    scores = empty_scores()
    if isinstance(raw, dict):
        for letter in SCORE_LETTERS:
            value = raw.get(letter)
            if isinstance(value, int):
                scores[letter] = value
    return scores


def _clamp_progress(data: dict[str, Any]) -> None:
    total = len(data["generated_items"])
    index = data.get("current_question_index")
    if not isinstance(index, int):
        index = 0
    data["current_question_index"] = min(max(index, 0), total)
    if len(data["answers"]) > total:
        kept = sorted(data["answers"])[:total]
        data["answers"] = {key: data["answers"][key] for key in kept}


def _upgrade_profile_index(raw: Any, step: FlowStep) -> int:
    if not isinstance(raw, int) or isinstance(raw, bool) or raw < 0:
        return 0
    # While collecting, the index must name a field that can still be asked.
    if step == FlowStep.PROFILE_COLLECTION:
        return min(raw, len(ProfileField) - 1)
    return min(raw, len(ProfileField))


def _upgrade_timestamp(raw: Any) -> datetime | None:
    """Timestamps without an offset were written in UTC."""
    if isinstance(raw, str):
        try:
            raw = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if not isinstance(raw, datetime):
        return None
    if raw.tzinfo is None:
        raw = raw.replace(tzinfo=UTC)
    return raw
