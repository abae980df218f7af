"""Crisis detection and somatic-break triggers.

Detection never blocks the ritual: it reports what it found and a suggestion
the client can show alongside support resources.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from serenis.core.config import ritual_config
from serenis.domain.types import (
    CRISIS_INTENSITY_THRESHOLD,
    CRISIS_KEYWORDS,
    CRISIS_SUSTAINED_COUNT,
    CRISIS_SUSTAINED_HIGH_THRESHOLD,
    ACTMetrics,
)


@dataclass(frozen=True)
class CrisisCheckResult:
    is_crisis: bool
    reason: Optional[str] = None  # "keywords" | "high_intensity" | "sustained_high"
    matched_keywords: List[str] = field(default_factory=list)
    suggestion: Optional[str] = None


NO_CRISIS = CrisisCheckResult(is_crisis=False)


def detect_crisis(
    text: str,
    current_metrics: Optional[ACTMetrics] = None,
    metrics_history: Optional[Sequence[ACTMetrics]] = None,
) -> CrisisCheckResult:
    """Check an answer and recent metrics for crisis indicators.

    Keywords take precedence over intensity checks.
    """
    lower_text = text.lower()
    matched = [kw for kw in CRISIS_KEYWORDS if kw.lower() in lower_text]

    if matched:
        return CrisisCheckResult(
            is_crisis=True,
            reason="keywords",
            matched_keywords=matched,
            suggestion=(
                "It sounds like you are going through a very hard moment. "
                "Would you like to see support resources?"
            ),
        )

    if current_metrics is not None and current_metrics.intensity >= CRISIS_INTENSITY_THRESHOLD:
        return CrisisCheckResult(
            is_crisis=True,
            reason="high_intensity",
            suggestion="The intensity is very high. Would you like to pause and regulate?",
        )

    if metrics_history and len(metrics_history) >= CRISIS_SUSTAINED_COUNT:
        recent = metrics_history[-CRISIS_SUSTAINED_COUNT:]
        if all(m.intensity >= CRISIS_SUSTAINED_HIGH_THRESHOLD for m in recent):
            return CrisisCheckResult(
                is_crisis=True,
                reason="sustained_high",
                suggestion=(
                    "Intensity has stayed high for several phases. "
                    "This may be a good moment for a pause."
                ),
            )

    return NO_CRISIS


def should_trigger_somatic_break(
    previous_intensity: float,
    current_intensity: float,
    somatic_breaks_taken: int,
) -> bool:
    """Suggest a break on a sharp intensity spike or a high reading.

    High readings only trigger while fewer than the configured maximum of
    breaks has been taken; spikes always trigger.
    """
    somatic = ritual_config.somatic
    spike = current_intensity - previous_intensity

    return spike >= somatic.intensity_jump_threshold or (
        current_intensity >= somatic.high_intensity_threshold
        and somatic_breaks_taken < somatic.max_breaks
    )


CRISIS_RESOURCES = {
    "spain": {
        "name": "Teléfono de la Esperanza",
        "phone": "717 003 717",
        "description": "Suicide prevention line (24h)",
    },
    "spain_general": {
        "name": "Línea 024",
        "phone": "024",
        "description": "Short crisis line",
    },
    "international": {
        "name": "International Association for Suicide Prevention",
        "url": "https://www.iasp.info/resources/Crisis_Centres/",
        "description": "Directory of crisis centres by country",
    },
}
