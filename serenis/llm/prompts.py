"""
Prompts for Socratic question and summary generation.

Tone guidance follows the user's ACT profile; the belief is always quoted
verbatim so generated questions stay anchored to the user's words.
"""

from typing import Any, Dict, List

from serenis.domain.profile import PROFILE_LABELS
from serenis.domain.types import ProfileCategory


PROFILE_TONES: Dict[ProfileCategory, str] = {
    ProfileCategory.A: "analytical, precise and logical; invite observing thoughts",
    ProfileCategory.B: "empathetic, warm and compassionate; invite feeling without avoiding",
    ProfileCategory.C: "bodily, sensory and present; invite noticing physical sensations",
    ProfileCategory.D: "reflective and narrative; invite questioning old stories",
}


def _previous_answers_block(previous_answers: List[Dict[str, str]]) -> str:
    if not previous_answers:
        return ""
    lines = [
        f'- Phase "{a["phaseId"]}": Question: "{a["question"]}" -> Answer: "{a["answer"]}"'
        for a in previous_answers
    ]
    return "\n\nPrevious answers from the user:\n" + "\n".join(lines)


def get_question_system_prompt(request: Dict[str, Any]) -> str:
    """
    Get system prompt for Socratic question generation.

    Args:
        request: Question request payload (see build_question_request)

    Returns:
        System prompt string
    """
    profile = ProfileCategory(request["profile"])
    emotions = ", ".join(request["emotions"]) or "not specified"
    triggers = ", ".join(request["triggers"]) or "not specified"

    return f"""You are an ACT (Acceptance and Commitment Therapy) guide using the Socratic method.
Your role is to write ONE deep, personal and transformative Socratic question.

USER PROFILE:
- ACT profile: {profile.value} ({request["profileName"]})
- Core belief: "{request["coreBelief"]}"
- Associated emotions: {emotions}
- Triggers: {triggers}
- Origin: {request["origin"] or "not specified"}
- Current intensity: {request["intensity"]}/10

CURRENT PHASE: {request["phaseName"]}
PHASE INSTRUCTION: {request["phaseInstruction"]}{_previous_answers_block(request["previousAnswers"])}

TONE: {PROFILE_TONES[profile]}

REQUIREMENTS:
1. Quote the user's core belief verbatim
2. Follow the intent of the current phase
3. Build on previous answers when there are any
4. No yes/no questions
5. At most 2-3 sentences"""


def get_question_user_prompt(request: Dict[str, Any]) -> str:
    return (
        f'Write a Socratic question for the phase "{request["phaseName"]}" '
        f'({request["phaseInstruction"]}).\n\n'
        f'Belief: "{request["coreBelief"]}"\n'
        f'Profile: {request["profileName"]}\n\n'
        "Reply with the question only, no explanations."
    )


def get_summary_system_prompt() -> str:
    return (
        "You are an ACT guide writing a closing summary of a Socratic ritual. "
        "Write in second person, in Markdown, under 400 words. Reflect the "
        "user's own words, name the shift in intensity, suggest the ACT "
        "micro-practice provided and one small values-aligned action for the "
        "next 24-48 hours. Do not diagnose."
    )


def get_summary_user_prompt(summary_request: Dict[str, Any]) -> str:
    dialogue = "\n".join(
        f'- {d["phaseName"]}: Q: "{d["question"]}" A: "{d["answer"]}"'
        for d in summary_request["dialogueEntries"]
    )
    return (
        f'Core belief: "{summary_request["coreBelief"]}"\n'
        f'Profile: {summary_request["profileName"]}\n'
        f'Emotions: {", ".join(summary_request["emotions"])}\n'
        f'Triggers: {", ".join(summary_request["triggers"])}\n'
        f'Intensity: {summary_request["initialIntensity"]}/10 -> '
        f'{summary_request["finalIntensity"]}/10\n'
        f'ACT practice: {summary_request["actMicro"]}\n\n'
        f"Dialogue:\n{dialogue}"
    )


def profile_name(profile: ProfileCategory) -> str:
    return PROFILE_LABELS[profile]["name"]


def clean_question(text: str) -> str:
    """Strip wrapping quotes and whitespace the model sometimes adds."""
    return text.strip().strip('"').strip("“”").strip()
