from collections.abc import Iterable

from persona_quiz.core.models import Dimension, empty_scores


def tally_answers(answer_values: Iterable[str]) -> dict[str, int]:
    scores = empty_scores()
    for value in answer_values:
        if value in scores:
            scores[value] += 1
    return scores


def derive_type(scores: dict[str, int]) -> str:
    """Pick one letter per axis; ties go to the axis' first letter."""
    letters = []
    for dimension in Dimension:
        first, second = dimension.letters
        letters.append(first if scores.get(first, 0) >= scores.get(second, 0) else second)
    return "".join(letters)
