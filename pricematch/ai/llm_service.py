"""LLM service for an OpenAI-compatible chat completions gateway."""

import hashlib
import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

import openai
import redis.asyncio as redis
from openai import AsyncOpenAI

from pricematch import metrics
from pricematch.ai.json_parsing import extract_json_object
from pricematch.config import settings

logger = logging.getLogger(__name__)


class LLMServiceError(RuntimeError):
    """Base error for LLM calls."""

    error_type = "transport"


class LLMRateLimitedError(LLMServiceError):
    """Raised when the gateway answers 429."""

    error_type = "rate_limited"

    def __init__(self, message: str = "LLM rate limited", retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class LLMQuotaExceededError(LLMServiceError):
    """Raised on 402 (credits exhausted) or when the daily cost limit is hit."""

    error_type = "quota_exceeded"


class LLMUnavailableError(LLMServiceError):
    """Raised on timeouts and connection failures."""

    error_type = "transport"


class LLMConfigurationError(LLMServiceError):
    """Raised when no API key is configured."""

    error_type = "configuration"


class LLMResponseError(LLMServiceError):
    """Raised when the response has no usable content."""

    error_type = "malformed"


class LLMService:
    """
    Service for LLM interactions.

    Features:
    - OpenAI-compatible API integration (any gateway via base_url)
    - Structured JSON output via forced tool calls or JSON extraction
    - Optional Redis response cache (fails soft)
    - Distinct errors for rate limiting, quota and transport failures
    - Cost tracking
    """

    def __init__(self):
        self._client: Optional[AsyncOpenAI] = None
        self._redis: Optional[redis.Redis] = None
        self._daily_cost: float = 0.0
        self._call_count: int = 0
        self._cost_day: date = self._today()

    @staticmethod
    def _today() -> date:
        return datetime.now(timezone.utc).date()

    async def _get_client(self) -> AsyncOpenAI:
        """Get or create the API client."""
        if self._client is None:
            if not settings.llm_api_key:
                raise LLMConfigurationError("LLM API key not configured")
            self._client = AsyncOpenAI(
                api_key=settings.llm_api_key,
                base_url=settings.llm_base_url,
                timeout=settings.llm_timeout_seconds,
                max_retries=settings.llm_max_retries,
            )
        return self._client

    async def _get_redis(self) -> Optional[redis.Redis]:
        """Get or create Redis connection for caching."""
        if not settings.llm_cache_enabled:
            return None

        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    settings.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
            except Exception as e:
                logger.warning(f"Failed to connect to Redis for LLM cache: {e}")
                return None
        return self._redis

    def _get_cache_key(self, prompt: str, system_prompt: str, model: str) -> str:
        """Generate cache key for prompt."""
        combined = f"{system_prompt}:{prompt}:{model}"
        key_hash = hashlib.sha256(combined.encode('utf-8')).hexdigest()
        return f"llm_cache:{key_hash}"

    async def _cache_get(self, cache_key: str) -> Optional[str]:
        redis_client = await self._get_redis()
        if not redis_client:
            return None
        try:
            return await redis_client.get(cache_key)
        except redis.RedisError as e:
            logger.warning(f"LLM cache read failed: {e}")
            return None

    async def _cache_set(self, cache_key: str, value: str) -> None:
        redis_client = await self._get_redis()
        if not redis_client:
            return
        try:
            await redis_client.setex(cache_key, settings.llm_cache_ttl_seconds, value)
        except redis.RedisError as e:
            logger.warning(f"LLM cache write failed: {e}")

    def _check_cost_limit(self) -> None:
        """Raise if the daily cost limit is exceeded."""
        if not settings.track_llm_costs:
            return

        # Counters belong to one UTC day
        today = self._today()
        if today != self._cost_day:
            self.reset_daily_stats()
            self._cost_day = today

        if self._daily_cost >= settings.llm_cost_limit_per_day:
            logger.warning(
                f"Daily LLM cost limit reached: ${self._daily_cost:.2f} >= "
                f"${settings.llm_cost_limit_per_day:.2f}"
            )
            raise LLMQuotaExceededError("Daily LLM cost limit exceeded")

    def _estimate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        """Estimate cost for an LLM call from configured per-1K token rates."""
        input_cost = (prompt_tokens / 1000) * settings.llm_input_cost_per_1k
        output_cost = (completion_tokens / 1000) * settings.llm_output_cost_per_1k
        return input_cost + output_cost

    def _track_usage(self, response) -> None:
        self._call_count += 1
        usage = getattr(response, "usage", None)
        if not settings.track_llm_costs or usage is None:
            return
        cost = self._estimate_cost(usage.prompt_tokens or 0, usage.completion_tokens or 0)
        self._daily_cost += cost
        logger.debug(
            f"LLM call cost: ${cost:.4f} "
            f"(tokens: {usage.prompt_tokens}+{usage.completion_tokens}, total: ${self._daily_cost:.2f})"
        )

    async def _create_completion(self, **kwargs):
        """Run a chat completion, translating SDK errors into service errors."""
        self._check_cost_limit()
        client = await self._get_client()

        try:
            response = await client.chat.completions.create(
                max_tokens=settings.llm_max_tokens,
                **kwargs,
            )
        except openai.RateLimitError as e:
            metrics.record_llm_call("rate_limited")
            retry_after = e.response.headers.get("retry-after") if e.response is not None else None
            raise LLMRateLimitedError(
                "LLM rate limited",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            ) from e
        except openai.APIStatusError as e:
            if e.status_code == 402:
                metrics.record_llm_call("quota_exceeded")
                raise LLMQuotaExceededError("LLM credits exhausted (402)") from e
            metrics.record_llm_call("error")
            raise LLMServiceError(f"LLM gateway error: HTTP {e.status_code}") from e
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            metrics.record_llm_call("unavailable")
            raise LLMUnavailableError(f"LLM gateway unreachable: {e}") from e

        metrics.record_llm_call("success")
        self._track_usage(response)
        return response

    @staticmethod
    def _messages(prompt: str, system_prompt: str) -> list:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def call_llm(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: Optional[float] = None,
        model: Optional[str] = None,
        use_cache: bool = True,
    ) -> str:
        """
        Call LLM with a prompt and return text response.

        Args:
            prompt: User prompt
            system_prompt: System prompt/instructions
            temperature: Temperature (defaults to settings.llm_temperature)
            model: Model name (defaults to settings.llm_model)
            use_cache: Whether to use the response cache

        Returns:
            LLM response text

        Raises:
            LLMServiceError: on any transport, quota or rate-limit failure
        """
        model = model or settings.llm_model
        temperature = temperature if temperature is not None else settings.llm_temperature

        cache_key = self._get_cache_key(prompt, system_prompt, model)
        if use_cache:
            cached = await self._cache_get(cache_key)
            if cached:
                logger.debug(f"LLM cache hit for prompt: {prompt[:50]}...")
                return cached

        response = await self._create_completion(
            model=model,
            messages=self._messages(prompt, system_prompt),
            temperature=temperature,
        )

        result = response.choices[0].message.content if response.choices else None
        if not result:
            raise LLMResponseError("LLM returned no content")

        if use_cache:
            await self._cache_set(cache_key, result)

        return result

    async def call_llm_structured(
        self,
        prompt: str,
        response_schema: Dict[str, Any],
        system_prompt: str = "",
        tool_name: str = "respond",
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Call LLM with structured JSON output.

        With ``settings.llm_use_tool_calls`` the model is forced to call a
        function whose parameters are ``response_schema``; otherwise the schema
        is appended to the system prompt and the first JSON object in the reply
        is parsed.

        Returns:
            Decoded JSON object (not yet validated against the schema)

        Raises:
            LLMServiceError: on transport failures
            LLMResponseError: when no JSON object can be recovered
        """
        model = model or settings.llm_model
        temperature = temperature if temperature is not None else settings.llm_temperature

        if settings.llm_use_tool_calls:
            response = await self._create_completion(
                model=model,
                messages=self._messages(prompt, system_prompt),
                temperature=temperature,
                tools=[{
                    "type": "function",
                    "function": {"name": tool_name, "parameters": response_schema},
                }],
                tool_choice={"type": "function", "function": {"name": tool_name}},
            )
            message = response.choices[0].message if response.choices else None
            tool_calls = getattr(message, "tool_calls", None) if message else None
            if tool_calls:
                raw_arguments = getattr(getattr(tool_calls[0], "function", None), "arguments", None)
                if raw_arguments is None:
                    raise LLMResponseError("Tool call has no arguments")
                try:
                    arguments = json.loads(raw_arguments)
                except (TypeError, json.JSONDecodeError) as e:
                    raise LLMResponseError(f"Invalid tool call arguments: {e}") from e
                if not isinstance(arguments, dict):
                    raise LLMResponseError("Tool call arguments are not an object")
                return arguments
            # Some gateways ignore tool_choice and answer in text
            response_text = message.content if message else None
        else:
            enhanced_system = system_prompt
            if enhanced_system:
                enhanced_system += "\n\n"
            enhanced_system += (
                f"Respond with valid JSON matching this schema: {json.dumps(response_schema, ensure_ascii=False)}\n"
                "Return only the JSON object, no additional text."
            )
            response_text = await self.call_llm(
                prompt=prompt,
                system_prompt=enhanced_system,
                temperature=temperature,
                model=model,
            )

        parsed = extract_json_object(response_text or "")
        if parsed is None:
            logger.warning(f"Failed to parse LLM JSON response: {(response_text or '')[:200]}")
            raise LLMResponseError("Invalid JSON response from LLM")
        return parsed

    def get_stats(self) -> Dict[str, Any]:
        """
        Get LLM service statistics.

        Returns:
            Dictionary with call count, daily cost, etc.
        """
        return {
            "call_count": self._call_count,
            "daily_cost": self._daily_cost,
            "cost_limit": settings.llm_cost_limit_per_day,
            "cache_enabled": settings.llm_cache_enabled,
        }

    def reset_daily_stats(self):
        """Reset daily cost and call count (done automatically on the first call of a new UTC day)."""
        self._daily_cost = 0.0
        self._call_count = 0
        logger.info("LLM daily stats reset")

    async def close(self):
        """Close connections."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
        if self._client:
            await self._client.close()
            self._client = None


# Global LLM service instance
llm_service = LLMService()
