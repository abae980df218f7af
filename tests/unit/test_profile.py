"""Tests for questionnaire scoring and the ritual phase table."""

import pytest

from serenis.domain.profile import QUESTION_CATEGORIES, calculate_profile
from serenis.domain.ritual import RITUAL_PHASES, find_phase, get_phase, is_last_phase
from serenis.domain.types import ProfileCategory


def _answers(a, b, c, d):
    """Same answer for all six questions of each category."""
    values = {ProfileCategory.A: a, ProfileCategory.B: b, ProfileCategory.C: c, ProfileCategory.D: d}
    return {qid: values[category] for qid, category in QUESTION_CATEGORIES.items()}


class TestQuestionCategories:
    def test_question_ranges(self):
        assert QUESTION_CATEGORIES[1] == ProfileCategory.A
        assert QUESTION_CATEGORIES[6] == ProfileCategory.A
        assert QUESTION_CATEGORIES[7] == ProfileCategory.B
        assert QUESTION_CATEGORIES[13] == ProfileCategory.C
        assert QUESTION_CATEGORIES[24] == ProfileCategory.D
        assert len(QUESTION_CATEGORIES) == 24


class TestCalculateProfile:
    def test_clear_primary(self):
        result = calculate_profile(_answers(5, 2, 1, 1))

        assert result.profile == ProfileCategory.A
        assert result.scores.A == 30
        assert result.scores.B == 12
        assert result.secondary_profile is None
        assert result.mixed_profile is None

    def test_mixed_profile(self):
        # 30 vs 26 is above the 85% threshold (25.5)
        answers = _answers(1, 5, 1, 4)
        answers[19] = 5
        answers[20] = 5

        result = calculate_profile(answers)

        assert result.profile == ProfileCategory.B
        assert result.secondary_profile == ProfileCategory.D
        assert result.mixed_profile.name == "Narrating Wound"

    def test_below_mixed_threshold(self):
        # 30 vs 25 is below the 85% threshold
        answers = _answers(1, 5, 1, 4)
        answers[19] = 5

        result = calculate_profile(answers)
        assert result.secondary_profile is None

    def test_ties_keep_category_order(self):
        result = calculate_profile(_answers(3, 3, 3, 3))

        assert result.profile == ProfileCategory.A
        assert result.secondary_profile == ProfileCategory.B
        assert result.mixed_profile.name == "Inner Storm"

    def test_unanswered_questions_count_zero(self):
        result = calculate_profile({13: 5})

        assert result.profile == ProfileCategory.C
        assert result.scores.C == 5

    def test_out_of_range_answer_rejected(self):
        with pytest.raises(ValueError, match="between 1 and 5"):
            calculate_profile({1: 6})

    def test_unknown_question_ids_ignored(self):
        result = calculate_profile({**_answers(5, 1, 1, 1), 99: 5})
        assert result.scores.A == 30

    def test_scores_get(self):
        result = calculate_profile(_answers(1, 2, 3, 4))
        assert result.scores.get(ProfileCategory.D) == 24


class TestRitualPhases:
    def test_six_phases_in_order(self):
        assert [p.id for p in RITUAL_PHASES] == [
            "certeza",
            "evidencia",
            "origen",
            "funcion",
            "defusion",
            "valores",
        ]

    def test_static_question_quotes_belief(self):
        question = get_phase(0).static_question("I am not enough")
        assert '"I am not enough"' in question

    def test_get_phase_clamps(self):
        assert get_phase(-1).id == "certeza"
        assert get_phase(42).id == "valores"

    def test_find_phase(self):
        assert find_phase("origen").name == "Origin"
        assert find_phase("missing") is None

    def test_is_last_phase(self):
        assert not is_last_phase(4)
        assert is_last_phase(5)
