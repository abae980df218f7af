"""Ritual summaries.

The textual summary uses only the user's own words: no inference, no
interpretation. ``prepare_summary_request`` builds the structured payload the
AI summary prompt is rendered from.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from serenis.core.exceptions import SessionIncompleteError
from serenis.domain.profile import PROFILE_LABELS
from serenis.domain.ritual import find_phase
from serenis.domain.types import Session, utcnow


def _require_complete(session: Session) -> None:
    if session.act_profile is None or session.diagnosis is None:
        raise SessionIncompleteError("Session incomplete for summary")


def get_transformation_level(percent_drop: float) -> Dict[str, str]:
    """Qualitative label for the relative intensity drop."""
    if percent_drop >= 70:
        return {"level": "profound", "emoji": "🌟", "title": "Profound Transformation"}
    if percent_drop >= 40:
        return {"level": "notable", "emoji": "✨", "title": "Notable Change"}
    if percent_drop > 0:
        return {"level": "seed", "emoji": "🌱", "title": "Seed of Change"}
    return {"level": "process", "emoji": "💎", "title": "Process Underway"}


def percent_drop(initial_intensity: float, final_intensity: float) -> int:
    if initial_intensity <= 0:
        return 0
    return round((initial_intensity - final_intensity) / initial_intensity * 100)


def generate_textual_summary(
    session: Session, final_intensity: float, now: Optional[datetime] = None
) -> str:
    """Markdown summary built exclusively from what the user wrote.

    Raises:
        SessionIncompleteError: If the session has no profile or diagnosis
    """
    _require_complete(session)
    profile = PROFILE_LABELS[session.act_profile.profile]
    diagnosis = session.diagnosis
    date = (now or utcnow()).strftime("%d %B %Y")
    drop = diagnosis.intensity - final_intensity

    lines = [
        "# Transformation Record",
        "*Verbatim record of the Socratic ritual*",
        f"*{date}*",
        "",
        "---",
        "",
        "## ACT Profile",
        f"**{profile['emoji']} {profile['name']}**",
        "",
        "## Belief Worked On",
        f'> "{diagnosis.core_belief}"',
        "",
        f"**Initial intensity:** {diagnosis.intensity}/10",
        f"**Final intensity:** {final_intensity:g}/10",
    ]
    if drop > 0:
        lines.append(f"**Reduction:** {drop:g} points")

    lines += [
        "",
        "## Emotional Context",
        f"**Emotions:** {', '.join(diagnosis.emotional_history)}",
        f"**Triggers:** {', '.join(diagnosis.triggers)}",
    ]
    if diagnosis.origin:
        lines.append(f"**Origin:** {diagnosis.origin}")

    lines += ["", "## Socratic Dialogue - In My Words", ""]
    for entry in session.dialogue:
        phase = find_phase(entry.phase_id)
        marker = phase.name if phase else "•"
        lines += [
            f"### {marker}: {entry.phase_name}",
            f"**Question:** {entry.question}",
            "",
            "**My answer:**",
            f"> {entry.answer}",
            "",
        ]

    lines += [
        "## Recommended ACT Practice",
        profile["act_micro"],
        "",
        "---",
        "*This document contains only your own words, with no added interpretation.*",
    ]
    return "\n".join(lines) + "\n"


def prepare_summary_request(session: Session, final_intensity: float) -> Dict[str, Any]:
    """Structured input for AI summary generation.

    Raises:
        SessionIncompleteError: If the session has no profile or diagnosis
    """
    _require_complete(session)
    profile = PROFILE_LABELS[session.act_profile.profile]
    diagnosis = session.diagnosis

    return {
        "coreBelief": diagnosis.core_belief,
        "profile": session.act_profile.profile.value,
        "profileName": profile["name"],
        "emotions": list(diagnosis.emotional_history),
        "triggers": list(diagnosis.triggers),
        "origin": diagnosis.origin,
        "initialIntensity": diagnosis.intensity,
        "finalIntensity": final_intensity,
        "dialogueEntries": [
            {
                "phaseId": d.phase_id,
                "phaseName": d.phase_name,
                "question": d.question,
                "answer": d.answer,
            }
            for d in session.dialogue
        ],
        "actMicro": profile["act_micro"],
        "transformation": get_transformation_level(
            percent_drop(diagnosis.intensity, final_intensity)
        ),
    }
