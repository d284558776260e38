"""
Analysis Context Models — Read-only snapshot of one analysis invocation.
"""

from __future__ import annotations

from pydantic import Field

from rulescope.models.llm_models import ByokConfig
from rulescope.models.rule_models import CamelModel, Rule, Severity


class OrganizationAndTeam(CamelModel):
    organization_id: str
    team_id: str | None = None


class PullRequestInfo(CamelModel):
    number: int
    title: str = ""
    body: str = ""


class RepositoryInfo(CamelModel):
    id: str
    name: str = ""
    language: str | None = None


class FileChange(CamelModel):
    """A changed file as delivered by the code host collaborator."""

    filename: str
    sha: str | None = None
    status: str = "modified"
    patch: str = ""
    file_content: str | None = None
    additions: int = 0
    deletions: int = 0


class FileChangeContext(CamelModel):
    """Per-file review input."""

    file: FileChange
    patch_with_lines: str = ""
    directory_id: str | None = None


class AnalysisContext(CamelModel):
    """Everything an analysis invocation reads. Lifetime = one invocation."""

    organization_and_team: OrganizationAndTeam
    pull_request: PullRequestInfo
    repository: RepositoryInfo
    rules: list[Rule] = Field(default_factory=list)
    severity_floor: Severity | None = None
    language: str = "en-US"
    byok: ByokConfig | None = None
    max_suggestions: int | None = None
    changed_files: list[FileChange] = Field(default_factory=list)
