from collections import Counter

import pytest

from persona_quiz.core.models import Dimension, SCORE_LETTERS
from persona_quiz.core.question_bank import TYPE_NAMES, load_templates, type_name
from persona_quiz.core.scoring import derive_type, tally_answers


class TestQuestionBank:
    def test_thirty_templates_with_sequential_ids(self):
        templates = load_templates()

        assert [t.id for t in templates] == list(range(1, 31))

    def test_items_per_dimension(self):
        counts = Counter(t.dimension for t in load_templates())

        assert counts == {Dimension.EI: 8, Dimension.SN: 8, Dimension.TF: 7, Dimension.JP: 7}

    def test_choices_score_the_dimension_letters(self):
        for template in load_templates():
            assert (template.choice_a.value, template.choice_b.value) == template.dimension.letters

    def test_sixteen_named_types(self):
        assert len(TYPE_NAMES) == 16
        assert type_name("intj") == "The Architect"
        assert type_name("XXXX") == ""


class TestTallyAnswers:
    def test_counts_every_answer(self):
        scores = tally_answers(["E", "E", "I", "N", "T", "J", "J", "P"])

        assert scores == {"E": 2, "I": 1, "S": 0, "N": 1, "T": 1, "F": 0, "J": 2, "P": 1}

    def test_unknown_letters_are_ignored(self):
        scores = tally_answers(["E", "X", ""])

        assert scores["E"] == 1
        assert set(scores) == set(SCORE_LETTERS)

    def test_empty_answers(self):
        assert sum(tally_answers([]).values()) == 0


class TestDeriveType:
    def test_majority_per_axis(self):
        scores = {"E": 1, "I": 7, "S": 2, "N": 6, "T": 5, "F": 2, "J": 0, "P": 7}

        assert derive_type(scores) == "INTP"

    def test_ties_go_to_first_letter(self):
        scores = {"E": 4, "I": 4, "S": 4, "N": 4, "T": 3, "F": 3, "J": 0, "P": 0}

        assert derive_type(scores) == "ESTJ"

    def test_missing_letters_count_as_zero(self):
        assert derive_type({"I": 1, "F": 2}) == "ISFJ"

    @pytest.mark.parametrize("answer_letter_index,expected", [(0, "ESTJ"), (1, "INFP")])
    def test_uniform_answers(self, answer_letter_index, expected):
        answers = [t.dimension.letters[answer_letter_index] for t in load_templates()]

        assert derive_type(tally_answers(answers)) == expected
