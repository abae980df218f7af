"""
Client for the AI gateway used by question and summary generation.

The gateway speaks the OpenAI chat-completions protocol. Calls are retried
once on timeouts and rate limits with exponential backoff; exhausted credits
(HTTP 402) fail immediately. Every caller keeps a deterministic fallback, so
the service runs without a client configured.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import structlog

from serenis.core.config import settings
from serenis.core.exceptions import (
    LLMQuotaExhaustedError,
    LLMRateLimitError,
    LLMTimeoutError,
)

log = structlog.get_logger(__name__)


QUESTION_MAX_TOKENS = 300
SUMMARY_MAX_TOKENS = 1500

HTTP_PAYMENT_REQUIRED = 402
HTTP_TOO_MANY_REQUESTS = 429


@dataclass
class LLMResponse:
    """Completion text plus call metadata."""

    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)
    latency_ms: float = 0.0
    raw_response: Optional[Dict[str, Any]] = None


class LLMClient(ABC):
    """Anything that can turn a prompt into completion text."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        """
        Args:
            prompt: User message
            system: Optional system prompt
            temperature: Sampling temperature override
            max_tokens: Completion length override
            timeout: Per-attempt timeout override in seconds

        Raises:
            LLMTimeoutError: Every attempt timed out
            LLMRateLimitError: Every attempt was rate limited
            LLMQuotaExhaustedError: The provider reports no remaining credits
        """


def _messages(prompt: str, system: Optional[str]) -> List[Dict[str, str]]:
    messages = [{"role": "system", "content": system}] if system else []
    messages.append({"role": "user", "content": prompt})
    return messages


def _parse_completion(data: Dict[str, Any], fallback_model: str, latency_ms: float) -> LLMResponse:
    content = ""
    choices = data.get("choices") or []
    if choices:
        content = (choices[0].get("message") or {}).get("content") or ""
    usage = data.get("usage") or {}

    return LLMResponse(
        content=content,
        model=data.get("model", fallback_model),
        usage={
            "input_tokens": usage.get("prompt_tokens", 0),
            "output_tokens": usage.get("completion_tokens", 0),
        },
        latency_ms=latency_ms,
        raw_response=data,
    )


class OpenAICompatibleClient(LLMClient):
    """Chat-completions client posting to ``{base_url}/chat/completions``."""

    def __init__(
        self,
        model: str,
        base_url: str,
        api_key: str,
        temperature: float = 0.7,
        max_tokens: int = QUESTION_MAX_TOKENS,
        timeout: float = 20.0,
        max_attempts: int = 2,
        backoff_seconds: float = 1.0,
    ):
        """
        Raises:
            ValueError: If no API key is given
        """
        if not api_key:
            raise ValueError("LLM_API_KEY not configured. Set it in .env.")

        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

        log.info("llm_client_initialized", model=self.model, base_url=self.base_url)

    @property
    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _post(self, payload: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(self._endpoint, headers=self._headers(), json=payload)
            response.raise_for_status()
            return response.json()

    async def _backoff(self, attempt: int) -> None:
        await asyncio.sleep(self.backoff_seconds * (2 ** (attempt - 1)))

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        """
        Raises:
            LLMTimeoutError: Every attempt timed out
            LLMRateLimitError: Every attempt was rate limited (429)
            LLMQuotaExhaustedError: Credits exhausted (402), not retried
            httpx.HTTPStatusError: Any other error status, not retried
        """
        timeout = timeout if timeout is not None else self.timeout
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": _messages(prompt, system),
            "temperature": temperature if temperature is not None else self.temperature,
            "max_tokens": max_tokens if max_tokens is not None else self.max_tokens,
        }

        for attempt in range(1, self.max_attempts + 1):
            last_attempt = attempt == self.max_attempts
            start = time.perf_counter()
            log.debug("llm_call_start", model=self.model, prompt_length=len(prompt), attempt=attempt)

            try:
                data = await self._post(payload, timeout)
            except httpx.TimeoutException as e:
                log.warning("llm_timeout", attempt=attempt, timeout_seconds=timeout)
                if last_attempt:
                    raise LLMTimeoutError(
                        f"AI gateway timed out after {attempt} attempts (timeout={timeout}s)"
                    ) from e
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if status_code == HTTP_PAYMENT_REQUIRED:
                    log.warning("llm_quota_exhausted")
                    raise LLMQuotaExhaustedError("AI credits exhausted") from e
                if status_code != HTTP_TOO_MANY_REQUESTS:
                    log.error("llm_http_error", status_code=status_code)
                    raise
                log.warning("llm_rate_limit", attempt=attempt)
                if last_attempt:
                    raise LLMRateLimitError(
                        f"AI gateway rate limit exceeded after {attempt} attempts"
                    ) from e
            else:
                result = _parse_completion(
                    data, self.model, (time.perf_counter() - start) * 1000
                )
                log.info(
                    "llm_call_complete",
                    model=result.model,
                    latency_ms=round(result.latency_ms, 2),
                    input_tokens=result.usage["input_tokens"],
                    output_tokens=result.usage["output_tokens"],
                    attempt=attempt,
                )
                return result

            await self._backoff(attempt)

        raise AssertionError("unreachable: the last attempt returns or raises")


def get_llm_client() -> Optional[LLMClient]:
    """Gateway client from settings, or None when AI is disabled or unkeyed."""
    if not settings.llm_configured:
        log.info("llm_client_disabled", ai_enabled=settings.ai_enabled)
        return None

    return OpenAICompatibleClient(
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key or "",
        temperature=settings.llm_temperature,
        timeout=settings.llm_timeout,
    )
