"""
Model invocation for chain roles.

ProviderInvoker calls Anthropic, OpenAI or OpenRouter depending on the model
id prefix and which API keys are configured. Provider SDK errors are
translated into the InvocationError family so callers can tell rejected
requests from transient failures. SimulatedInvoker is an offline stand-in
for dry runs.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import anthropic
import openai
from dotenv import load_dotenv
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .catalog import MODEL_CATALOG
from .config import InvocationConfig
from .cost_tracker import estimate_call_cost, estimate_tokens
from .types import (
    Capability,
    ConfigurationError,
    InvocationError,
    InvocationResult,
    InvocationTimeoutError,
    ProviderRejectedError,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)

# Auto-load .env from project root
_project_root = Path(__file__).parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


class Provider(Enum):
    """API a model call is sent to."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OPENROUTER = "openrouter"


# Catalog id -> id on the vendor's own API
NATIVE_MODEL_IDS: dict[str, str] = {
    "anthropic/claude-3-opus": "claude-3-opus-20240229",
    "anthropic/claude-3.5-sonnet": "claude-3-5-sonnet-20241022",
    "anthropic/claude-3-haiku": "claude-3-haiku-20240307",
    "openai/o1": "o1",
    "openai/o1-mini": "o1-mini",
    "openai/gpt-4-turbo": "gpt-4-turbo",
    "openai/gpt-3.5-turbo": "gpt-3.5-turbo",
}

# Catalog id -> OpenRouter id, where they differ
OPENROUTER_MODEL_IDS: dict[str, str] = {
    "deepseek/qwen-3-480b-coder": "qwen/qwen3-coder",
    "groq/llama-3.1-70b-versatile": "meta-llama/llama-3.1-70b-instruct",
    "groq/llama-3.1-8b-instant": "meta-llama/llama-3.1-8b-instruct",
}

RETRYABLE_STATUS_CODES = frozenset({408, 409, 429})

# OpenAI reasoning models take max_completion_tokens and a fixed temperature
_REASONING_MODEL_PREFIXES = ("o1", "o3", "gpt-5")


@runtime_checkable
class ModelInvoker(Protocol):
    """Turns (model id, system prompt, task prompt) into generated text."""

    async def invoke(
        self,
        model_id: str,
        system_prompt: str,
        task_prompt: str,
        timeout: float | None = None,
    ) -> InvocationResult: ...


def resolve_route(model_id: str, available: set[Provider] | frozenset[Provider]) -> tuple[Provider, str]:
    """
    Pick the API for a model id.

    Returns:
        (provider, model id on that provider's API)

    Raises:
        ProviderRejectedError: If no configured provider can serve the model
    """
    vendor, _, name = model_id.partition("/")
    if vendor == "anthropic" and Provider.ANTHROPIC in available:
        return Provider.ANTHROPIC, NATIVE_MODEL_IDS.get(model_id, name or model_id)
    if vendor == "openai" and Provider.OPENAI in available:
        return Provider.OPENAI, NATIVE_MODEL_IDS.get(model_id, name or model_id)
    if Provider.OPENROUTER in available:
        return Provider.OPENROUTER, OPENROUTER_MODEL_IDS.get(model_id, model_id)
    raise ProviderRejectedError(model_id, "no configured provider can serve this model")


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, InvocationError) and exc.retryable


def translate_error(
    model_id: str, exc: BaseException, timeout: float | None = None
) -> InvocationError | None:
    """Map a provider SDK or asyncio error onto the InvocationError family.

    Returns None for exceptions that are not provider failures.
    """
    if isinstance(exc, InvocationError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, anthropic.APITimeoutError, openai.APITimeoutError)):
        return InvocationTimeoutError(model_id, timeout or 0.0)
    if isinstance(exc, (anthropic.APIConnectionError, openai.APIConnectionError)):
        return ProviderUnavailableError(model_id, f"connection error: {exc}")
    if isinstance(exc, (anthropic.APIStatusError, openai.APIStatusError)):
        status = exc.status_code
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            return ProviderUnavailableError(model_id, f"HTTP {status}: {exc}", status_code=status)
        return ProviderRejectedError(model_id, f"HTTP {status}: {exc}", status_code=status)
    if isinstance(exc, (anthropic.APIError, openai.APIError)):
        return ProviderUnavailableError(model_id, str(exc))
    return None


class ProviderInvoker:
    """
    Invokes models through the provider SDKs.

    Retries retryable failures with exponential backoff; the caller's
    timeout applies to each attempt.
    """

    def __init__(
        self,
        config: InvocationConfig | None = None,
        anthropic_key: str | None = None,
        openai_key: str | None = None,
        openrouter_key: str | None = None,
    ):
        """
        Initialize provider clients for every API key available.

        Raises:
            ConfigurationError: If no API key is configured
        """
        self.config = config or InvocationConfig()
        self._clients: dict[Provider, Any] = {}

        anthropic_key = anthropic_key or os.environ.get("ANTHROPIC_API_KEY")
        openai_key = openai_key or os.environ.get("OPENAI_API_KEY")
        openrouter_key = openrouter_key or os.environ.get("OPENROUTER_API_KEY")

        # SDK-level retries are disabled; retry policy lives in invoke()
        if anthropic_key:
            self._clients[Provider.ANTHROPIC] = anthropic.AsyncAnthropic(
                api_key=anthropic_key, max_retries=0
            )
        if openai_key:
            self._clients[Provider.OPENAI] = openai.AsyncOpenAI(api_key=openai_key, max_retries=0)
        if openrouter_key:
            self._clients[Provider.OPENROUTER] = openai.AsyncOpenAI(
                api_key=openrouter_key,
                base_url=self.config.openrouter_base_url,
                max_retries=0,
            )

        if not self._clients:
            raise ConfigurationError(
                "At least one API key required. "
                "Set ANTHROPIC_API_KEY, OPENAI_API_KEY or OPENROUTER_API_KEY."
            )

    @property
    def available_providers(self) -> frozenset[Provider]:
        return frozenset(self._clients)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries + 1),
            wait=wait_exponential(
                multiplier=self.config.backoff_min_seconds,
                min=self.config.backoff_min_seconds,
                max=self.config.backoff_max_seconds,
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def invoke(
        self,
        model_id: str,
        system_prompt: str,
        task_prompt: str,
        timeout: float | None = None,
    ) -> InvocationResult:
        provider, api_model = resolve_route(model_id, self.available_providers)
        logger.debug(f"Invoking {model_id} via {provider.value} as {api_model}")

        start = time.perf_counter()
        async for attempt in self._retrying():
            with attempt:
                text, input_tokens, output_tokens = await self._call(
                    provider, api_model, model_id, system_prompt, task_prompt, timeout
                )

        latency_ms = (time.perf_counter() - start) * 1000
        return InvocationResult(
            text=text,
            model_id=model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=estimate_call_cost(input_tokens, output_tokens, model_id),
            latency_ms=latency_ms,
        )

    async def _call(
        self,
        provider: Provider,
        api_model: str,
        model_id: str,
        system_prompt: str,
        task_prompt: str,
        timeout: float | None,
    ) -> tuple[str, int, int]:
        if provider is Provider.ANTHROPIC:
            request = self._complete_anthropic(api_model, system_prompt, task_prompt, timeout)
        else:
            request = self._complete_openai(provider, api_model, system_prompt, task_prompt, timeout)

        try:
            if timeout is not None:
                return await asyncio.wait_for(request, timeout)
            return await request
        except Exception as e:
            error = translate_error(model_id, e, timeout)
            if error is None:
                raise
            raise error from e

    async def _complete_anthropic(
        self, api_model: str, system_prompt: str, task_prompt: str, timeout: float | None
    ) -> tuple[str, int, int]:
        client = self._clients[Provider.ANTHROPIC]
        request_params: dict[str, Any] = {
            "model": api_model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": task_prompt}],
        }
        if timeout is not None:
            request_params["timeout"] = timeout

        response = await client.messages.create(**request_params)

        text = ""
        for block in response.content:
            if block.type == "text":
                text += block.text

        return text, response.usage.input_tokens, response.usage.output_tokens

    async def _complete_openai(
        self,
        provider: Provider,
        api_model: str,
        system_prompt: str,
        task_prompt: str,
        timeout: float | None,
    ) -> tuple[str, int, int]:
        client = self._clients[provider]
        request_params: dict[str, Any] = {
            "model": api_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": task_prompt},
            ],
        }
        if api_model.startswith(_REASONING_MODEL_PREFIXES):
            request_params["max_completion_tokens"] = self.config.max_tokens
        else:
            request_params["max_tokens"] = self.config.max_tokens
            request_params["temperature"] = self.config.temperature
        if timeout is not None:
            request_params["timeout"] = timeout

        response = await client.chat.completions.create(**request_params)

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        if response.usage:
            input_tokens = response.usage.prompt_tokens
            output_tokens = response.usage.completion_tokens
        else:
            input_tokens = estimate_tokens(system_prompt) + estimate_tokens(task_prompt)
            output_tokens = estimate_tokens(text)

        return text, input_tokens, output_tokens


class SimulatedInvoker:
    """
    Offline invoker for dry runs.

    Produces deterministic text. Latency scales with how slow the catalog
    rates the model; cost uses catalog pricing.
    """

    def __init__(self, seconds_per_speed_point: float = 0.05):
        """
        Args:
            seconds_per_speed_point: Delay per point below a speed rating of 10
        """
        self.seconds_per_speed_point = seconds_per_speed_point
        self.calls: list[str] = []

    def latency_for(self, model_id: str) -> float:
        profile = MODEL_CATALOG.get(model_id)
        speed = profile.score(Capability.SPEED) if profile else 5
        return max(0, 10 - speed) * self.seconds_per_speed_point

    async def invoke(
        self,
        model_id: str,
        system_prompt: str,
        task_prompt: str,
        timeout: float | None = None,
    ) -> InvocationResult:
        self.calls.append(model_id)
        delay = self.latency_for(model_id)
        if timeout is not None and delay > timeout:
            await asyncio.sleep(timeout)
            raise InvocationTimeoutError(model_id, timeout)
        await asyncio.sleep(delay)

        profile = MODEL_CATALOG.get(model_id)
        name = profile.name if profile else model_id
        task_line = next(
            (line for line in task_prompt.splitlines() if line.strip() and not line.startswith("#")),
            "",
        )
        text = f"[simulated] {name} ({model_id}) response.\nTask: {task_line}"

        input_tokens = estimate_tokens(system_prompt) + estimate_tokens(task_prompt)
        output_tokens = estimate_tokens(text)
        return InvocationResult(
            text=text,
            model_id=model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=estimate_call_cost(input_tokens, output_tokens, model_id),
            latency_ms=delay * 1000,
        )


__all__ = [
    "ModelInvoker",
    "NATIVE_MODEL_IDS",
    "OPENROUTER_MODEL_IDS",
    "Provider",
    "ProviderInvoker",
    "RETRYABLE_STATUS_CODES",
    "SimulatedInvoker",
    "is_retryable",
    "resolve_route",
    "translate_error",
]
