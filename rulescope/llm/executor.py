"""
Model Call Executor — Primary attempt plus a single fallback hop.

No retry loop and no backoff: the request is tried once against the
primary provider and, on any error, once against the fallback.
"""

from __future__ import annotations

import logging
from typing import Callable

from rulescope.config import settings
from rulescope.errors import ProviderFailure
from rulescope.llm.gateway import ModelClient, get_model_client
from rulescope.llm.parser import parse_structured
from rulescope.models.llm_models import (
    ByokConfig,
    Completion,
    ModelCallResult,
    ModelRequest,
    ParserMode,
    ProviderConfig,
    Tier,
    TokenUsage,
    UsageTracker,
)

logger = logging.getLogger("rulescope.llm.executor")

ClientFactory = Callable[[ProviderConfig], ModelClient]


def default_primary() -> ProviderConfig:
    return ProviderConfig(provider=settings.primary_provider, model=settings.primary_model)


def default_fallback() -> ProviderConfig:
    return ProviderConfig(provider=settings.fallback_provider, model=settings.fallback_model)


class ModelCallExecutor:
    """
    Executes immutable ModelRequests.

    Every attempt is tagged with its provider and tier, and its usage is
    appended to the caller's UsageTracker.
    """

    def __init__(self, client_factory: ClientFactory | None = None) -> None:
        self.client_factory = client_factory or get_model_client

    async def execute(
        self,
        request: ModelRequest,
        primary: ProviderConfig | None,
        fallback: ProviderConfig | None,
        usage: UsageTracker,
        byok: ByokConfig | None = None,
    ) -> ModelCallResult:
        """
        Run a request, falling back once on failure.

        Returns:
            ModelCallResult tagged with the tier that served it. Structured
            requests carry either `parsed` or a `parse_failure`.

        Raises:
            ProviderFailure: if both tiers fail.
        """
        primary = primary or default_primary()
        fallback = fallback or default_fallback()
        if byok is not None:
            primary = byok.main
            fallback = byok.fallback or fallback

        try:
            completion, record = await self._attempt(request, primary, "primary", usage)
        except Exception as primary_error:
            logger.warning(
                f"[{request.run_name}] primary {primary.provider}/{primary.model} failed: "
                f"{primary_error}; trying fallback {fallback.provider}/{fallback.model}"
            )

            try:
                completion, record = await self._attempt(request, fallback, "fallback", usage)
            except Exception as fallback_error:
                logger.error(
                    f"[{request.run_name}] fallback {fallback.provider}/{fallback.model} "
                    f"failed: {fallback_error}"
                )
                raise ProviderFailure(
                    f"{request.run_name}: primary and fallback providers failed",
                    primary_error=primary_error,
                ) from fallback_error

            return self._build_result(request, completion, record, fallback, "fallback")

        return self._build_result(request, completion, record, primary, "primary")

    async def _attempt(
        self,
        request: ModelRequest,
        config: ProviderConfig,
        tier: Tier,
        usage: UsageTracker,
    ) -> tuple[Completion, TokenUsage]:
        client = self.client_factory(config)
        completion = await client.complete(request, config)

        record = TokenUsage(
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            total_tokens=completion.total_tokens,
            model=completion.model or config.model,
            parent_run_id=usage.parent_run_id,
            run_name=request.run_name,
            tier=tier,
            tags=attempt_tags(request, config, tier),
        )
        usage.record(record)
        return completion, record

    def _build_result(
        self,
        request: ModelRequest,
        completion: Completion,
        record: TokenUsage,
        config: ProviderConfig,
        tier: Tier,
    ) -> ModelCallResult:
        result = ModelCallResult(
            content=completion.content,
            tier=tier,
            provider=config.provider,
            model=completion.model or config.model,
            usage=record,
            tags=attempt_tags(request, config, tier),
        )

        if request.parser_mode == ParserMode.STRUCTURED and request.response_schema is not None:
            parsed = parse_structured(completion.content, request.response_schema)
            if isinstance(parsed, Exception):
                logger.warning(f"[{request.run_name}] {parsed}: {parsed.raw_response[:200]!r}")
                result.parse_failure = parsed
            else:
                result.parsed = parsed
        else:
            result.parsed = completion.content

        return result


def attempt_tags(request: ModelRequest, config: ProviderConfig, tier: Tier) -> list[str]:
    return [f"model:{config.provider}", f"tier:{tier}", *request.tags]
