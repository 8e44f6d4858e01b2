"""
Unit tests for model invocation.

Provider SDK clients are replaced with AsyncMock doubles; SDK exceptions are
built from real httpx requests and responses.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import openai
import pytest

from modelchain.config import InvocationConfig
from modelchain.invocation import (
    ModelInvoker,
    Provider,
    ProviderInvoker,
    SimulatedInvoker,
    is_retryable,
    resolve_route,
    translate_error,
)
from modelchain.types import (
    ConfigurationError,
    InvocationTimeoutError,
    ProviderRejectedError,
    ProviderUnavailableError,
)

_REQUEST = httpx.Request("POST", "https://api.example.com/v1/messages")


def status_error(sdk, status: int):
    response = httpx.Response(status, request=_REQUEST)
    return sdk.APIStatusError(f"HTTP {status}", response=response, body=None)


def anthropic_response(text: str = "hello", input_tokens: int = 10, output_tokens: int = 5):
    response = MagicMock()
    block = MagicMock()
    block.type = "text"
    block.text = text
    response.content = [block]
    response.usage.input_tokens = input_tokens
    response.usage.output_tokens = output_tokens
    return response


def openai_response(text: str = "hello", prompt_tokens: int = 12, completion_tokens: int = 4):
    response = MagicMock()
    choice = MagicMock()
    choice.message.content = text
    response.choices = [choice]
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens
    return response


@pytest.fixture
def no_keys(monkeypatch):
    """Clear provider API keys from the environment."""
    for var in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OPENROUTER_API_KEY"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def fast_config():
    """Invocation config without backoff delays."""
    return InvocationConfig(max_retries=2, backoff_min_seconds=0, backoff_max_seconds=0)


class TestResolveRoute:
    """Tests for resolve_route."""

    def test_anthropic_native(self):
        """Anthropic ids go to the Anthropic API with the native model id."""
        provider, api_model = resolve_route(
            "anthropic/claude-3.5-sonnet", {Provider.ANTHROPIC, Provider.OPENROUTER}
        )
        assert provider == Provider.ANTHROPIC
        assert api_model == "claude-3-5-sonnet-20241022"

    def test_openai_native(self):
        """OpenAI ids go to the OpenAI API."""
        assert resolve_route("openai/o1-mini", {Provider.OPENAI}) == (Provider.OPENAI, "o1-mini")

    def test_others_via_openrouter(self):
        """Other vendors go through OpenRouter."""
        assert resolve_route("google/gemini-pro-1.5", {Provider.ANTHROPIC, Provider.OPENROUTER}) == (
            Provider.OPENROUTER,
            "google/gemini-pro-1.5",
        )

    def test_openrouter_id_mapping(self):
        """Catalog ids are mapped to OpenRouter ids where they differ."""
        _, api_model = resolve_route("groq/llama-3.1-70b-versatile", {Provider.OPENROUTER})
        assert api_model == "meta-llama/llama-3.1-70b-instruct"

    def test_openrouter_only_serves_everything(self):
        """With only OpenRouter configured every id routes there."""
        provider, api_model = resolve_route("anthropic/claude-3-opus", {Provider.OPENROUTER})
        assert provider == Provider.OPENROUTER
        assert api_model == "anthropic/claude-3-opus"

    def test_no_route(self):
        """Models no configured provider can serve are rejected."""
        with pytest.raises(ProviderRejectedError):
            resolve_route("google/gemini-pro-1.5", {Provider.ANTHROPIC})


class TestTranslateError:
    """Tests for translate_error."""

    def test_asyncio_timeout(self):
        """asyncio timeouts become InvocationTimeoutError."""
        error = translate_error("m", asyncio.TimeoutError(), 30)
        assert isinstance(error, InvocationTimeoutError)
        assert error.timeout == 30
        assert error.retryable is True

    def test_sdk_timeout(self):
        """SDK timeouts become InvocationTimeoutError."""
        error = translate_error("m", openai.APITimeoutError(request=_REQUEST), 10)
        assert isinstance(error, InvocationTimeoutError)

    def test_connection_error(self):
        """Connection failures are retryable."""
        error = translate_error("m", anthropic.APIConnectionError(request=_REQUEST))
        assert isinstance(error, ProviderUnavailableError)
        assert error.retryable is True

    @pytest.mark.parametrize("status", [408, 409, 429, 500, 503])
    def test_retryable_status(self, status):
        """Rate limits, conflicts, timeouts and server errors are retryable."""
        error = translate_error("m", status_error(anthropic, status))
        assert isinstance(error, ProviderUnavailableError)
        assert error.status_code == status

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_rejected_status(self, status):
        """Other client errors are not retryable."""
        error = translate_error("m", status_error(openai, status))
        assert isinstance(error, ProviderRejectedError)
        assert error.retryable is False
        assert not is_retryable(error)

    def test_unrelated_exception(self):
        """Non-provider exceptions are not translated."""
        assert translate_error("m", KeyError("x")) is None

    def test_message_names_model(self):
        """Translated errors name the model."""
        error = translate_error("openai/o1", status_error(openai, 400))
        assert str(error).startswith("openai/o1: HTTP 400")


class TestProviderInvoker:
    """Tests for ProviderInvoker."""

    def test_requires_a_key(self, no_keys):
        """Without any API key the invoker cannot be built."""
        with pytest.raises(ConfigurationError):
            ProviderInvoker()

    def test_available_providers(self, no_keys):
        """Only providers with keys are available."""
        invoker = ProviderInvoker(anthropic_key="a", openrouter_key="r")
        assert invoker.available_providers == {Provider.ANTHROPIC, Provider.OPENROUTER}

    def test_reads_keys_from_environment(self, no_keys, monkeypatch):
        """Keys default to the environment."""
        monkeypatch.setenv("OPENAI_API_KEY", "o")
        assert ProviderInvoker().available_providers == {Provider.OPENAI}

    def test_satisfies_protocol(self, no_keys):
        """ProviderInvoker implements ModelInvoker."""
        assert isinstance(ProviderInvoker(anthropic_key="a"), ModelInvoker)

    @pytest.mark.asyncio
    async def test_anthropic_call(self, no_keys, fast_config):
        """Anthropic calls send the prompts and report usage and cost."""
        invoker = ProviderInvoker(fast_config, anthropic_key="a")
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=anthropic_response("hi", 1000, 500))
        invoker._clients[Provider.ANTHROPIC] = client

        result = await invoker.invoke("anthropic/claude-3.5-sonnet", "system", "task", timeout=5)

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-3-5-sonnet-20241022"
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "task"}]
        assert result.text == "hi"
        assert result.input_tokens == 1000
        assert result.output_tokens == 500
        # 1000 * $3/M + 500 * $15/M
        assert result.cost == pytest.approx(0.0105)

    @pytest.mark.asyncio
    async def test_openai_reasoning_model_params(self, no_keys, fast_config):
        """Reasoning models get max_completion_tokens and no temperature."""
        invoker = ProviderInvoker(fast_config, openai_key="o")
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=openai_response())
        invoker._clients[Provider.OPENAI] = client

        await invoker.invoke("openai/o1", "system", "task")

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["max_completion_tokens"] == fast_config.max_tokens
        assert "temperature" not in kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_openrouter_call(self, no_keys, fast_config):
        """Non-native vendors are sent through the OpenRouter client."""
        invoker = ProviderInvoker(fast_config, openrouter_key="r")
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=openai_response("ok", 20, 10))
        invoker._clients[Provider.OPENROUTER] = client

        result = await invoker.invoke("deepseek/deepseek-chat", "s", "t")

        assert client.chat.completions.create.call_args.kwargs["model"] == "deepseek/deepseek-chat"
        assert result.text == "ok"
        assert result.tokens_used == 30

    @pytest.mark.asyncio
    async def test_retries_retryable_errors(self, no_keys, fast_config):
        """Retryable failures are retried until a call succeeds."""
        invoker = ProviderInvoker(fast_config, anthropic_key="a")
        client = MagicMock()
        client.messages.create = AsyncMock(
            side_effect=[status_error(anthropic, 429), status_error(anthropic, 503), anthropic_response()]
        )
        invoker._clients[Provider.ANTHROPIC] = client

        result = await invoker.invoke("anthropic/claude-3-haiku", "s", "t")

        assert result.text == "hello"
        assert client.messages.create.await_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, no_keys, fast_config):
        """After max_retries the last retryable error is raised."""
        invoker = ProviderInvoker(fast_config, anthropic_key="a")
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=status_error(anthropic, 500))
        invoker._clients[Provider.ANTHROPIC] = client

        with pytest.raises(ProviderUnavailableError):
            await invoker.invoke("anthropic/claude-3-haiku", "s", "t")
        assert client.messages.create.await_count == 3

    @pytest.mark.asyncio
    async def test_rejected_not_retried(self, no_keys, fast_config):
        """Rejected requests fail on the first attempt."""
        invoker = ProviderInvoker(fast_config, anthropic_key="a")
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=status_error(anthropic, 400))
        invoker._clients[Provider.ANTHROPIC] = client

        with pytest.raises(ProviderRejectedError):
            await invoker.invoke("anthropic/claude-3-haiku", "s", "t")
        assert client.messages.create.await_count == 1

    @pytest.mark.asyncio
    async def test_timeout_per_attempt(self, no_keys):
        """A hung call times out and is reported as InvocationTimeoutError."""
        invoker = ProviderInvoker(InvocationConfig(max_retries=0), anthropic_key="a")

        async def hang(**kwargs):
            await asyncio.sleep(5)

        client = MagicMock()
        client.messages.create = hang
        invoker._clients[Provider.ANTHROPIC] = client

        with pytest.raises(InvocationTimeoutError):
            await invoker.invoke("anthropic/claude-3-haiku", "s", "t", timeout=0.05)


class TestSimulatedInvoker:
    """Tests for SimulatedInvoker."""

    @pytest.mark.asyncio
    async def test_deterministic_output(self):
        """Simulated output names the model and the task line."""
        invoker = SimulatedInvoker(seconds_per_speed_point=0)
        result = await invoker.invoke("openai/o1", "system", "# Task\nBuild a login form\n")

        assert result.text == "[simulated] OpenAI o1 (openai/o1) response.\nTask: Build a login form"
        assert invoker.calls == ["openai/o1"]
        assert result.input_tokens > 0
        assert result.cost > 0

    def test_latency_from_speed(self):
        """Slower models take longer."""
        invoker = SimulatedInvoker(seconds_per_speed_point=0.01)
        assert invoker.latency_for("openai/o1") == pytest.approx(0.07)
        assert invoker.latency_for("groq/llama-3.1-8b-instant") == 0
        assert invoker.latency_for("acme/unknown") == pytest.approx(0.05)

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Calls slower than the timeout raise InvocationTimeoutError."""
        invoker = SimulatedInvoker(seconds_per_speed_point=1.0)
        with pytest.raises(InvocationTimeoutError):
            await invoker.invoke("openai/o1", "s", "t", timeout=0.01)

    def test_satisfies_protocol(self):
        """SimulatedInvoker implements ModelInvoker."""
        assert isinstance(SimulatedInvoker(), ModelInvoker)
