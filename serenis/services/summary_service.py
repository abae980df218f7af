"""Closing summary generation (textual or AI).

The textual summary is always available. AI summaries fall back to it on any
provider failure, and the result reports which mode was actually used.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from serenis.core.exceptions import LLMError
from serenis.domain.summary import generate_textual_summary, prepare_summary_request
from serenis.domain.types import Session, SummaryMode
from serenis.llm.client import SUMMARY_MAX_TOKENS, LLMClient
from serenis.llm.prompts import get_summary_system_prompt, get_summary_user_prompt

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SummaryResult:
    text: str
    mode: SummaryMode
    fell_back: bool = False


class SummaryService:
    def __init__(self, llm_client: Optional[LLMClient] = None):
        self.llm = llm_client

    async def generate(
        self,
        session: Session,
        final_intensity: float,
        mode: SummaryMode = SummaryMode.TEXTUAL,
    ) -> SummaryResult:
        """Build the summary in the requested mode.

        Raises:
            SessionIncompleteError: If the session has no profile or diagnosis
        """
        textual = generate_textual_summary(session, final_intensity)

        if mode == SummaryMode.TEXTUAL:
            return SummaryResult(text=textual, mode=SummaryMode.TEXTUAL)

        if self.llm is None:
            return SummaryResult(text=textual, mode=SummaryMode.TEXTUAL, fell_back=True)

        request = prepare_summary_request(session, final_intensity)
        try:
            response = await self.llm.complete(
                prompt=get_summary_user_prompt(request),
                system=get_summary_system_prompt(),
                max_tokens=SUMMARY_MAX_TOKENS,
            )
        except (LLMError, httpx.HTTPError) as e:
            log.warning("summary_generation_failed", session_id=session.id, error=str(e))
            return SummaryResult(text=textual, mode=SummaryMode.TEXTUAL, fell_back=True)

        text = response.content.strip()
        if not text:
            return SummaryResult(text=textual, mode=SummaryMode.TEXTUAL, fell_back=True)

        log.info("summary_generated", session_id=session.id, mode=SummaryMode.AI.value)
        return SummaryResult(text=text, mode=SummaryMode.AI)
