"""Tests for LLM client."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from serenis.core.exceptions import LLMQuotaExhaustedError, LLMRateLimitError, LLMTimeoutError
from serenis.llm.client import LLMResponse, OpenAICompatibleClient, get_llm_client


def _client(**kwargs):
    return OpenAICompatibleClient(
        model="google/gemini-3-flash-preview",
        base_url="https://gateway.test/v1/",
        api_key="test-key",
        **kwargs,
    )


def _status_error(status_code: int) -> httpx.HTTPStatusError:
    response = MagicMock()
    response.status_code = status_code
    return httpx.HTTPStatusError(
        f"HTTP {status_code}", request=MagicMock(), response=response
    )


def _mock_http(MockClient, response_json=None, post_side_effect=None):
    mock_client = AsyncMock()
    if post_side_effect is not None:
        mock_client.post.side_effect = post_side_effect
    else:
        mock_response_obj = MagicMock()
        mock_response_obj.json.return_value = response_json
        mock_response_obj.raise_for_status = MagicMock()
        mock_client.post.return_value = mock_response_obj
    MockClient.return_value.__aenter__.return_value = mock_client
    return mock_client


class TestOpenAICompatibleClient:
    """Tests for OpenAICompatibleClient."""

    def test_init_with_api_key(self):
        client = _client(timeout=15.0)

        assert client.api_key == "test-key"
        assert client.base_url == "https://gateway.test/v1"
        assert client.timeout == 15.0

    def test_init_without_api_key_raises(self):
        with pytest.raises(ValueError, match="LLM_API_KEY"):
            OpenAICompatibleClient(model="m", base_url="https://gateway.test", api_key="")

    async def test_complete_success(self):
        """complete() returns LLMResponse on success."""
        mock_response = {
            "choices": [{"message": {"content": "What do you notice?"}}],
            "model": "google/gemini-3-flash-preview",
            "usage": {"prompt_tokens": 42, "completion_tokens": 7},
        }

        with patch("httpx.AsyncClient") as MockClient:
            mock_client = _mock_http(MockClient, response_json=mock_response)

            response = await _client().complete("Ask a question", system="Be kind")

        assert isinstance(response, LLMResponse)
        assert response.content == "What do you notice?"
        assert response.usage == {"input_tokens": 42, "output_tokens": 7}

        call = mock_client.post.call_args
        assert call.args[0] == "https://gateway.test/v1/chat/completions"
        assert call.kwargs["headers"]["Authorization"] == "Bearer test-key"
        messages = call.kwargs["json"]["messages"]
        assert messages[0] == {"role": "system", "content": "Be kind"}
        assert messages[1] == {"role": "user", "content": "Ask a question"}

    async def test_complete_without_choices_returns_empty_content(self):
        with patch("httpx.AsyncClient") as MockClient:
            _mock_http(MockClient, response_json={"model": "m"})

            response = await _client().complete("prompt")

        assert response.content == ""

    async def test_timeout_retries_once_then_raises(self):
        with patch("httpx.AsyncClient") as MockClient, patch(
            "serenis.llm.client.asyncio.sleep", new=AsyncMock()
        ) as mock_sleep:
            mock_client = _mock_http(
                MockClient, post_side_effect=httpx.TimeoutException("timed out")
            )

            with pytest.raises(LLMTimeoutError):
                await _client().complete("prompt")

        assert mock_client.post.call_count == 2
        mock_sleep.assert_awaited_once()

    async def test_rate_limit_raises_after_retry(self):
        with patch("httpx.AsyncClient") as MockClient, patch(
            "serenis.llm.client.asyncio.sleep", new=AsyncMock()
        ):
            mock_client = _mock_http(MockClient, post_side_effect=_status_error(429))

            with pytest.raises(LLMRateLimitError):
                await _client().complete("prompt")

        assert mock_client.post.call_count == 2

    async def test_quota_exhausted_is_not_retried(self):
        with patch("httpx.AsyncClient") as MockClient:
            mock_client = _mock_http(MockClient, post_side_effect=_status_error(402))

            with pytest.raises(LLMQuotaExhaustedError):
                await _client().complete("prompt")

        assert mock_client.post.call_count == 1

    async def test_other_http_errors_propagate(self):
        with patch("httpx.AsyncClient") as MockClient:
            _mock_http(MockClient, post_side_effect=_status_error(500))

            with pytest.raises(httpx.HTTPStatusError):
                await _client().complete("prompt")


class TestGetLLMClient:
    def test_returns_none_when_not_configured(self):
        with patch("serenis.llm.client.settings") as mock_settings:
            mock_settings.llm_configured = False

            assert get_llm_client() is None

    def test_builds_client_from_settings(self):
        with patch("serenis.llm.client.settings") as mock_settings:
            mock_settings.llm_configured = True
            mock_settings.llm_model = "test-model"
            mock_settings.llm_base_url = "https://gateway.test/v1"
            mock_settings.llm_api_key = "settings-key"
            mock_settings.llm_temperature = 0.5
            mock_settings.llm_timeout = 12.0

            client = get_llm_client()

        assert isinstance(client, OpenAICompatibleClient)
        assert client.model == "test-model"
        assert client.api_key == "settings-key"
        assert client.timeout == 12.0
