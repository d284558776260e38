"""
Rule Catalog — Read-only access to organization rules.

Persistence lives outside this service; the in-memory catalog backs the
HTTP surface (rules arrive with each request) and the tests.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable

from rulescope.models.rule_models import Rule

logger = logging.getLogger("rulescope.repositories.rule_catalog")


class RuleCatalog(ABC):
    @abstractmethod
    async def list_rules(self, organization_id: str) -> list[Rule]:
        ...

    @abstractmethod
    async def find_rule_by_id(self, uuid: str) -> Rule | None:
        """Return the rule or None. May raise on persistence errors."""


class InMemoryRuleCatalog(RuleCatalog):
    """Rules keyed by organization, looked up by uuid across all of them."""

    def __init__(self, rules: Iterable[Rule] = (), organization_id: str | None = None) -> None:
        self._by_org: dict[str, list[Rule]] = {}
        self._by_id: dict[str, Rule] = {}
        self.lookups = 0
        if organization_id is not None:
            self.add_rules(organization_id, rules)

    def add_rules(self, organization_id: str, rules: Iterable[Rule]) -> None:
        bucket = self._by_org.setdefault(organization_id, [])
        for rule in rules:
            bucket.append(rule)
            self._by_id[rule.uuid] = rule

    async def list_rules(self, organization_id: str) -> list[Rule]:
        return list(self._by_org.get(organization_id, []))

    async def find_rule_by_id(self, uuid: str) -> Rule | None:
        self.lookups += 1
        return self._by_id.get(uuid)
