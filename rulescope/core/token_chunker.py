"""
Token Chunker — Greedy, order-preserving bin packing of items under a token budget.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Generic, Sequence, TypeVar

import tiktoken
from pydantic import BaseModel

from rulescope.config import settings

logger = logging.getLogger("rulescope.core.token_chunker")

T = TypeVar("T")

CHARS_PER_TOKEN = 4

TokenEstimator = Callable[[Any], int]


@dataclass
class ChunkingResult(Generic[T]):
    chunks: list[list[T]] = field(default_factory=list)
    tokens_per_chunk: list[int] = field(default_factory=list)
    token_limit: int = 0
    total_chunks: int = 0


@lru_cache(maxsize=None)
def encoding_for_model(model: str | None):
    """
    tiktoken encoding for a model, or the configured default encoding.

    Returns None when no encoding can be loaded (e.g. the encoding files
    cannot be fetched); callers then fall back to a length estimate.
    """
    try:
        if model:
            try:
                return tiktoken.encoding_for_model(model)
            except KeyError:
                pass
        return tiktoken.get_encoding(settings.tokenizer_encoding)
    except Exception as e:
        logger.warning(
            f"No tokenizer available for model {model!r} "
            f"(encoding {settings.tokenizer_encoding!r}): {e}; estimating by length"
        )
        return None


def estimate_tokens(model: str | None, item: Any) -> int:
    """Token cost of an item's serialized form under the model's tokenizer."""
    if isinstance(item, BaseModel):
        payload = item.model_dump_json(by_alias=True)
    elif isinstance(item, str):
        payload = item
    else:
        payload = json.dumps(item, default=str)

    encoding = encoding_for_model(model)
    if encoding is None:
        return -(-len(payload) // CHARS_PER_TOKEN)
    return len(encoding.encode(payload, disallowed_special=()))

def token_limit_for_model(model: str | None) -> int:
    if model and model in settings.token_limits_by_model:
        return settings.token_limits_by_model[model]
    return settings.default_model_token_limit


def chunk(
    items: Sequence[T],
    model_budget: int,
    usage_percentage: float | None = None,
    estimator: TokenEstimator | None = None,
    model: str | None = None,
) -> ChunkingResult[T]:
    """
    Split items into ordered chunks whose estimated cost stays under the budget.

    Args:
        items: Items to pack, in order.
        model_budget: Token window of the target model.
        usage_percentage: Share of the window each chunk may use, in (0, 100].
        estimator: Callable returning an item's token cost.
        model: Model name passed to the default estimator.

    Returns:
        ChunkingResult. An item that alone exceeds the limit becomes its own chunk.
    """
    if usage_percentage is None:
        usage_percentage = settings.chunk_usage_percentage
    if not 0 < usage_percentage <= 100:
        raise ValueError(f"usage_percentage must be in (0, 100], got {usage_percentage}")

    token_limit = int(model_budget * usage_percentage / 100)
    estimate = estimator or (lambda item: estimate_tokens(model, item))

    chunks: list[list[T]] = []
    tokens_per_chunk: list[int] = []
    current: list[T] = []
    current_tokens = 0

    for item in items:
        cost = estimate(item)

        if current and current_tokens + cost > token_limit:
            chunks.append(current)
            tokens_per_chunk.append(current_tokens)
            current, current_tokens = [], 0

        if cost > token_limit:
            logger.warning(
                f"Item of ~{cost} tokens exceeds chunk limit {token_limit}, isolating it"
            )

        current.append(item)
        current_tokens += cost

    if current:
        chunks.append(current)
        tokens_per_chunk.append(current_tokens)

    logger.info(
        f"Chunked {len(items)} items into {len(chunks)} chunks (limit={token_limit} tokens)"
    )

    return ChunkingResult(
        chunks=chunks,
        tokens_per_chunk=tokens_per_chunk,
        token_limit=token_limit,
        total_chunks=len(chunks),
    )
