"""The six phases of the Socratic ritual.

Each phase carries the instruction handed to the question generator and a
deterministic static question used whenever AI questions are unavailable.
"""

from dataclasses import dataclass
from typing import List, Optional

from serenis.domain.types import RITUAL_PHASE_COUNT


@dataclass(frozen=True)
class RitualPhase:
    id: str
    name: str
    instruction: str
    question_template: str

    def static_question(self, core_belief: str) -> str:
        return self.question_template.format(belief=core_belief)


RITUAL_PHASES: List[RitualPhase] = [
    RitualPhase(
        id="certeza",
        name="Verification",
        instruction="Examine how certain the user is that the belief is true.",
        question_template='How do you know for certain that "{belief}" is true?',
    ),
    RitualPhase(
        id="evidencia",
        name="Evidence",
        instruction="Invite the user to look for evidence that contradicts the belief.",
        question_template='What moments in your life do not fit with "{belief}"?',
    ),
    RitualPhase(
        id="origen",
        name="Origin",
        instruction="Explore where and when the belief was learned.",
        question_template='When do you first remember believing "{belief}"?',
    ),
    RitualPhase(
        id="funcion",
        name="Function",
        instruction="Explore what the belief protects the user from and what it costs.",
        question_template='What does "{belief}" protect you from, and what does it cost you?',
    ),
    RitualPhase(
        id="defusion",
        name="Defusion",
        instruction="Help the user observe the belief as a thought, not a fact.",
        question_template='What changes when you say "I am having the thought that {belief}"?',
    ),
    RitualPhase(
        id="valores",
        name="Values",
        instruction="Connect with what matters to the user beyond the belief.",
        question_template='If "{belief}" had less power over you, what would you do today?',
    ),
]

assert len(RITUAL_PHASES) == RITUAL_PHASE_COUNT


def get_phase(index: int) -> RitualPhase:
    """Phase at ``index``, clamped to the valid range."""
    return RITUAL_PHASES[max(0, min(index, RITUAL_PHASE_COUNT - 1))]


def find_phase(phase_id: str) -> Optional[RitualPhase]:
    return next((phase for phase in RITUAL_PHASES if phase.id == phase_id), None)


def is_last_phase(index: int) -> bool:
    return index >= RITUAL_PHASE_COUNT - 1
