"""ACT profile questionnaire scoring.

The questionnaire has 24 Likert items (1-5), six per category:
ids 1-6 score A (cognitive), 7-12 B (emotional), 13-18 C (somatic) and
19-24 D (narrative). Unanswered items count as 0.
"""

from typing import Dict, Mapping

from serenis.domain.types import (
    MixedProfile,
    ProfileCategory,
    ProfileResult,
    ProfileScores,
)


QUESTIONS_PER_CATEGORY = 6
MIN_ANSWER = 1
MAX_ANSWER = 5

# Secondary category qualifies when its score reaches this share of the primary
MIXED_PROFILE_RATIO = 0.85

QUESTION_CATEGORIES: Dict[int, ProfileCategory] = {
    question_id: category
    for offset, category in enumerate(ProfileCategory)
    for question_id in range(
        offset * QUESTIONS_PER_CATEGORY + 1, (offset + 1) * QUESTIONS_PER_CATEGORY + 1
    )
}


PROFILE_LABELS: Dict[ProfileCategory, Dict[str, str]] = {
    ProfileCategory.A: {
        "name": "Cognitive",
        "emoji": "🧠",
        "act_micro": 'Defusion: "I am having the thought that..."',
    },
    ProfileCategory.B: {
        "name": "Emotional",
        "emoji": "❤️",
        "act_micro": "Brief RAIN: Recognize, Allow, Investigate, Nurture",
    },
    ProfileCategory.C: {
        "name": "Somatic",
        "emoji": "💪",
        "act_micro": "Body presence: hand on the tense area, breathe in 4s and out 6s",
    },
    ProfileCategory.D: {
        "name": "Narrative",
        "emoji": "📖",
        "act_micro": 'Values: "The story I tell myself is... and today I choose to move on"',
    },
}


MIXED_PROFILES: Dict[str, MixedProfile] = {
    "AB": MixedProfile(
        name="Inner Storm",
        description="Rigid thinking + intense emotion",
        emoji="🌪️",
    ),
    "AC": MixedProfile(
        name="Embodied Tension",
        description="Rigid mind + contracted body",
        emoji="⚡",
    ),
    "AD": MixedProfile(
        name="Trapped Architect",
        description="Rigid stories + literal thoughts",
        emoji="🏗️",
    ),
    "BC": MixedProfile(
        name="Weeping Body",
        description="Dense emotion + bodily knot",
        emoji="🌊",
    ),
    "BD": MixedProfile(
        name="Narrating Wound",
        description="Strong emotion + old story",
        emoji="📜",
    ),
    "CD": MixedProfile(
        name="Remembering Body",
        description="Chronic tension + script from the past",
        emoji="🎭",
    ),
}


def calculate_profile(answers: Mapping[int, int]) -> ProfileResult:
    """Score questionnaire answers into a primary (and maybe mixed) profile.

    Args:
        answers: Question id -> Likert answer. Ids outside 1-24 are ignored.

    Returns:
        ProfileResult with per-category scores. ``secondary_profile`` and
        ``mixed_profile`` are set only when the runner-up scores at least 85%
        of the primary score.

    Raises:
        ValueError: If an answer is outside 1-5
    """
    totals = {category: 0 for category in ProfileCategory}

    for question_id, category in QUESTION_CATEGORIES.items():
        answer = answers.get(question_id, 0) or 0
        if answer and not MIN_ANSWER <= answer <= MAX_ANSWER:
            raise ValueError(
                f"Answer for question {question_id} must be between "
                f"{MIN_ANSWER} and {MAX_ANSWER}, got {answer}"
            )
        totals[category] += answer

    # sorted() is stable, so ties keep A-B-C-D order
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    (primary, primary_score), (secondary, secondary_score) = ranked[0], ranked[1]

    is_mixed = secondary_score >= primary_score * MIXED_PROFILE_RATIO
    mixed_key = "".join(sorted((primary.value, secondary.value)))

    return ProfileResult(
        profile=primary,
        scores=ProfileScores(**{c.value: score for c, score in totals.items()}),
        secondary_profile=secondary if is_mixed else None,
        mixed_profile=MIXED_PROFILES.get(mixed_key) if is_mixed else None,
    )
