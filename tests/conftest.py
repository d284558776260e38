"""
Test fixtures shared across all RuleScope tests.

Model providers are replaced by scripted in-memory clients keyed on the
request's run name.
"""

import json
from datetime import datetime, timezone

import pytest

from rulescope.llm.executor import ModelCallExecutor
from rulescope.llm.gateway import ModelClient
from rulescope.models.context_models import (
    AnalysisContext,
    FileChange,
    FileChangeContext,
    OrganizationAndTeam,
    PullRequestInfo,
    RepositoryInfo,
)
from rulescope.models.llm_models import Completion, ProviderConfig
from rulescope.models.rule_models import Rule


class ScriptedModels:
    """
    Records every call and answers from `script[run_name]`.

    A script entry may be a string, a JSON-serializable value, an exception
    instance, or a callable taking the request.
    """

    def __init__(self) -> None:
        self.script: dict = {}
        self.calls: list[tuple[str, str, str]] = []
        self.failing_providers: set[str] = set()

    def factory(self, config: ProviderConfig) -> ModelClient:
        return _ScriptedClient(self)

    def run_names(self) -> list[str]:
        return [name for name, _, _ in self.calls]


class _ScriptedClient(ModelClient):
    def __init__(self, models: ScriptedModels) -> None:
        self.models = models

    async def complete(self, request, config):
        self.models.calls.append((request.run_name, config.provider, config.model))

        if config.provider in self.models.failing_providers:
            raise RuntimeError(f"{config.provider} is down")

        if request.run_name not in self.models.script:
            raise KeyError(f"no scripted response for {request.run_name}")

        response = self.models.script[request.run_name]
        if callable(response):
            response = response(request)
        if isinstance(response, Exception):
            raise response

        content = response if isinstance(response, str) else json.dumps(response)
        return Completion(
            content=content,
            model=config.model,
            input_tokens=100,
            output_tokens=20,
            total_tokens=120,
        )


@pytest.fixture
def models():
    return ScriptedModels()


@pytest.fixture
def executor(models):
    return ModelCallExecutor(client_factory=models.factory)


@pytest.fixture
def make_rule():
    """Factory for rules with sensible defaults."""

    def _make(uuid: str, **overrides) -> Rule:
        data = {
            "uuid": uuid,
            "title": f"Rule {uuid[:8]}",
            "rule": f"Rule text for {uuid}",
            "severity": "medium",
            "repository_id": "repo-1",
            "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        }
        data.update(overrides)
        return Rule(**data)

    return _make


@pytest.fixture
def make_context():
    def _make(rules, **overrides) -> AnalysisContext:
        data = {
            "organization_and_team": OrganizationAndTeam(organization_id="org-1", team_id="team-1"),
            "pull_request": PullRequestInfo(number=42, title="Add users API", body="Adds routes"),
            "repository": RepositoryInfo(id="repo-1", name="api"),
            "rules": rules,
        }
        data.update(overrides)
        return AnalysisContext(**data)

    return _make


@pytest.fixture
def file_context():
    return FileChangeContext(
        file=FileChange(
            filename="src/users/controller.ts",
            sha="sha-controller",
            patch="@@ -1,2 +1,3 @@\n+console.log(user)\n",
        ),
        patch_with_lines="1 +console.log(user)",
    )


@pytest.fixture
def changed_files():
    return [
        FileChange(filename=f"src/module_{i}.ts", sha=f"sha-{i}", patch="+x" * 50, file_content="body" * 500)
        for i in range(4)
    ]
