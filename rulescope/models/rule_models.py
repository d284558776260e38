"""
Rule Data Models — Organization-authored review rules and their targeting.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

GLOBAL_REPOSITORY_ID = "global"


class CamelModel(BaseModel):
    """Base model accepting both camelCase (wire) and snake_case names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_RANKS: dict[str, int] = {
    Severity.LOW.value: 1,
    Severity.MEDIUM.value: 2,
    Severity.HIGH.value: 3,
    Severity.CRITICAL.value: 4,
}


def severity_rank(severity: str | Severity | None) -> int | None:
    """Rank of a severity value, or None when missing or unrecognized."""
    if severity is None:
        return None
    value = severity.value if isinstance(severity, Severity) else str(severity)
    return SEVERITY_RANKS.get(value.strip().lower())


class RuleScope(str, Enum):
    FILE = "file"
    PULL_REQUEST = "pull_request"


class RuleStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DELETED = "deleted"


class RuleOrigin(str, Enum):
    USER = "user"
    LIBRARY = "library"


class RuleInheritance(CamelModel):
    """Controls which directories/repositories inherit a rule."""

    inheritable: bool = True
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)


class RuleExample(CamelModel):
    snippet: str
    is_correct: bool = True


class ExternalReference(CamelModel):
    """A repository file a rule refers to (style guide, schema, template...)."""

    file_path: str
    description: str | None = None


class LoadedReference(CamelModel):
    file_path: str
    content: str
    description: str | None = None


class Rule(CamelModel):
    """A natural-language review policy. Never mutated by the engine."""

    uuid: str
    title: str = ""
    rule: str = Field(default="", description="Natural-language rule text")
    severity: str | None = Field(
        default=None,
        description="low/medium/high/critical; unknown values are kept as-is",
    )
    scope: RuleScope = RuleScope.FILE
    path_pattern: str | None = None
    repository_id: str = GLOBAL_REPOSITORY_ID
    directory_id: str | None = None
    inheritance: RuleInheritance = Field(default_factory=RuleInheritance)
    status: RuleStatus = RuleStatus.ACTIVE
    origin: RuleOrigin = RuleOrigin.USER
    examples: list[RuleExample] = Field(default_factory=list)
    external_references: list[ExternalReference] = Field(default_factory=list)
    created_at: datetime | None = None

    @property
    def is_global(self) -> bool:
        return self.repository_id == GLOBAL_REPOSITORY_ID

    def prompt_view(self, references: list[LoadedReference] | None = None) -> dict:
        """Compact representation sent to the model."""
        view = {
            "uuid": self.uuid,
            "title": self.title,
            "rule": self.rule,
            "severity": self.severity,
            "examples": [e.model_dump(by_alias=True) for e in self.examples],
        }
        if references:
            view["externalReferences"] = [r.model_dump(by_alias=True) for r in references]
        return view
