"""
LLM Data Models — Request descriptors, provider configs and usage records.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from rulescope.errors import ParseFailure
from rulescope.models.rule_models import CamelModel

Tier = Literal["primary", "fallback"]


class ParserMode(str, Enum):
    STRING = "string"
    STRUCTURED = "structured"


class ProviderConfig(CamelModel):
    """Which provider/model serves a call, optionally with caller-supplied credentials."""

    provider: str
    model: str
    api_key: str | None = Field(default=None, repr=False)
    base_url: str | None = None


class ByokConfig(CamelModel):
    """Bring-your-own-key override for the primary (and optionally fallback) provider."""

    main: ProviderConfig
    fallback: ProviderConfig | None = None


class ModelRequest(BaseModel):
    """Immutable description of a single model call."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    system_prompt: str
    user_prompt: str
    run_name: str
    parser_mode: ParserMode = ParserMode.STRING
    response_schema: type[BaseModel] | None = None
    temperature: float = 0.0
    json_mode: bool = True
    tags: tuple[str, ...] = ()
    metadata: dict[str, Any] = Field(default_factory=dict)


class TokenUsage(CamelModel):
    """Token usage of one model call."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    model: str = "unknown"
    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    parent_run_id: str | None = None
    run_name: str = ""
    tier: Tier = "primary"
    tags: list[str] = Field(default_factory=list)


class UsageTracker:
    """Collects usage for exactly one top-level analysis invocation.

    Not shared: every orchestrator call creates its own instance and threads
    it through the model calls it makes.
    """

    def __init__(self, parent_run_id: str | None = None) -> None:
        self.parent_run_id = parent_run_id or str(uuid.uuid4())
        self._usages: list[TokenUsage] = []

    def record(self, usage: TokenUsage) -> None:
        self._usages.append(usage)

    def reset(self) -> None:
        self._usages = []

    @property
    def usages(self) -> list[TokenUsage]:
        return list(self._usages)

    def totals(self) -> dict[str, int]:
        return {
            "calls": len(self._usages),
            "input_tokens": sum(u.input_tokens for u in self._usages),
            "output_tokens": sum(u.output_tokens for u in self._usages),
            "total_tokens": sum(u.total_tokens for u in self._usages),
        }


@dataclass
class Completion:
    """Raw provider response."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ModelCallResult:
    """Outcome of an executed request, tagged with the tier that served it."""

    content: str
    tier: Tier
    provider: str
    model: str
    parsed: Any = None
    parse_failure: ParseFailure | None = None
    usage: TokenUsage | None = None
    tags: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.parse_failure is None
