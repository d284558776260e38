"""
LLM Gateway — Provider clients behind a single `complete` interface.

Groq serves primary calls by default; AWS Bedrock (Amazon Nova message
format) serves the fallback tier. Both SDKs are synchronous and are run in
a worker thread so the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import io
import json
import logging
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod

from groq import Groq

from rulescope.config import settings
from rulescope.errors import ProviderNotFoundError, ProviderUnavailableError
from rulescope.models.llm_models import Completion, ModelRequest, ProviderConfig

logger = logging.getLogger("rulescope.llm.gateway")


class ModelClient(ABC):
    """One provider. Raises on any transport or provider error."""

    provider: str = ""

    @abstractmethod
    async def complete(self, request: ModelRequest, config: ProviderConfig) -> Completion:
        ...


class GroqModelClient(ModelClient):
    provider = "groq"

    def __init__(self, api_key: str | None = None) -> None:
        key = api_key or settings.groq_api_key
        if not key:
            raise ProviderUnavailableError("GROQ_API_KEY is not configured")
        self.client = Groq(api_key=key, timeout=settings.llm_timeout)

    async def complete(self, request: ModelRequest, config: ProviderConfig) -> Completion:
        response = await asyncio.to_thread(self._sync_complete, request, config)

        content = response.choices[0].message.content or ""
        usage = response.usage
        return Completion(
            content=content,
            model=getattr(response, "model", None) or config.model,
            input_tokens=getattr(usage, "prompt_tokens", 0) if usage else 0,
            output_tokens=getattr(usage, "completion_tokens", 0) if usage else 0,
            total_tokens=getattr(usage, "total_tokens", 0) if usage else 0,
        )

    def _sync_complete(self, request: ModelRequest, config: ProviderConfig):
        kwargs = {}
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        return self.client.chat.completions.create(
            model=config.model,
            messages=[
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            temperature=request.temperature,
            max_tokens=settings.llm_max_tokens,
            **kwargs,
        )


class BedrockBearerClient:
    """Minimal Bedrock Runtime client using bearer token auth.

    Exposes the same invoke_model signature as the boto3 client.
    """

    def __init__(self, token: str, region: str = "us-east-1") -> None:
        self._token = token
        self._endpoint = f"https://bedrock-runtime.{region}.amazonaws.com"

    def invoke_model(self, *, modelId: str, body: str | bytes) -> dict:
        encoded_model = urllib.parse.quote(modelId, safe="")
        url = f"{self._endpoint}/model/{encoded_model}/invoke"
        if isinstance(body, str):
            body = body.encode("utf-8")

        req = urllib.request.Request(
            url,
            data=body,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            method="POST",
        )

        with urllib.request.urlopen(req, timeout=settings.llm_timeout) as resp:
            return {"body": io.BytesIO(resp.read())}


def get_bedrock_runtime(api_key: str | None = None):
    """Bearer-token client when a token is available, otherwise boto3 SigV4."""
    region = settings.aws_default_region
    token = (api_key or settings.aws_bearer_token_bedrock).strip()

    if token:
        logger.info(f"Using Bedrock bearer token auth (region={region})")
        return BedrockBearerClient(token, region)

    import boto3

    logger.info(f"Using boto3 IAM auth for Bedrock (region={region})")
    return boto3.client("bedrock-runtime", region_name=region)


class BedrockModelClient(ModelClient):
    provider = "bedrock"

    def __init__(self, api_key: str | None = None, runtime=None) -> None:
        self.runtime = runtime or get_bedrock_runtime(api_key)

    async def complete(self, request: ModelRequest, config: ProviderConfig) -> Completion:
        body = json.dumps({
            "system": [{"text": request.system_prompt}],
            "messages": [{"role": "user", "content": [{"text": request.user_prompt}]}],
            "inferenceConfig": {
                "maxTokens": settings.llm_max_tokens,
                "temperature": request.temperature,
            },
        })

        response = await asyncio.to_thread(
            self.runtime.invoke_model, modelId=config.model, body=body
        )
        result = json.loads(response["body"].read())

        # Amazon Nova format: output.message.content[0].text
        text = result["output"]["message"]["content"][0]["text"]
        usage = result.get("usage", {})
        return Completion(
            content=text,
            model=config.model,
            input_tokens=usage.get("inputTokens", 0),
            output_tokens=usage.get("outputTokens", 0),
            total_tokens=usage.get("totalTokens", 0),
        )


PROVIDERS: dict[str, type[ModelClient]] = {
    GroqModelClient.provider: GroqModelClient,
    BedrockModelClient.provider: BedrockModelClient,
}


def get_model_client(config: ProviderConfig) -> ModelClient:
    """Build the client for a provider config. Raises for unknown providers."""
    client_cls = PROVIDERS.get(config.provider.lower())
    if client_cls is None:
        raise ProviderNotFoundError(f"Unknown model provider: {config.provider}")
    return client_cls(api_key=config.api_key)
