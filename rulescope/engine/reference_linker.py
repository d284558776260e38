"""
Reference Linker — Replaces raw rule ids in suggestion text with markdown links.

Rule ids are resolved with a fixed precedence:
  1. canonical UUIDs already present in the content
  2. the suggestion's attached broken rule ids
  3. a small extraction model call over the content
Ids that already sit inside a rule link are never matched again, so
linking the same content twice leaves it unchanged.
"""

from __future__ import annotations

import logging
import re

from rulescope.config import settings
from rulescope.errors import ProviderFailure, RuleLookupFailure
from rulescope.llm.executor import ModelCallExecutor
from rulescope.llm.prompt_builder import build_extract_ids_request
from rulescope.models.context_models import AnalysisContext
from rulescope.models.llm_models import UsageTracker
from rulescope.models.response_models import ExtractedRuleIds
from rulescope.models.rule_models import GLOBAL_REPOSITORY_ID, Rule
from rulescope.models.suggestion_models import Suggestion
from rulescope.repositories.rule_catalog import RuleCatalog

logger = logging.getLogger("rulescope.engine.reference_linker")

LINK_SEGMENT = "kody-rules/"

_UUID = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
UUID_RE = re.compile(rf"(?<!{LINK_SEGMENT})(?<![0-9a-fA-F-]){_UUID}(?![0-9a-fA-F-])")
LINKED_ID_RE = re.compile(rf"{LINK_SEGMENT}([^\s)]+)")
MARKDOWN_SPECIAL_RE = re.compile(r"([\[\]\\`*_{}()#+\-.!])")

VIOLATION_LINE = "Kody Rule violation: `{rule_id}`"


def escape_markdown(text: str) -> str:
    return MARKDOWN_SPECIAL_RE.sub(r"\\\1", text)


def rule_url(rule: Rule, base_url: str | None = None) -> str:
    base = (settings.web_base_url if base_url is None else base_url).rstrip("/")
    scope = GLOBAL_REPOSITORY_ID if rule.is_global else rule.repository_id
    return f"{base}/settings/code-review/{scope}/kody-rules/{rule.uuid}"


def rule_link(rule: Rule, base_url: str | None = None) -> str:
    title = escape_markdown(rule.title or rule.uuid)
    return f"[{title}]({rule_url(rule, base_url)})"


def extract_rule_ids(content: str) -> list[str]:
    """Unlinked canonical UUIDs in order of first appearance."""
    seen: list[str] = []
    for match in UUID_RE.findall(content or ""):
        if match not in seen:
            seen.append(match)
    return seen


def append_violation_lines(content: str, rule_ids: list[str]) -> str:
    if not rule_ids:
        return content
    lines = "\n".join(VIOLATION_LINE.format(rule_id=rid) for rid in rule_ids)
    return f"{content.rstrip()}\n\n{lines}" if content.strip() else lines


def replace_rule_id(content: str, rule_id: str, link: str) -> str:
    """Substitute `rule_id` with `link`: single backticks, then triple, then bare."""
    escaped = re.escape(rule_id)
    patterns = (
        rf"(?<!`)`{escaped}`(?!`)",
        rf"```{escaped}```",
        rf"(?<!{LINK_SEGMENT}){escaped}",
    )
    for pattern in patterns:
        replaced, count = re.subn(pattern, lambda _m: link, content)
        if count:
            return replaced
    return content


class ReferenceLinker:
    """Post-processes rule-based suggestions, one linking pass per call."""

    def __init__(
        self,
        catalog: RuleCatalog,
        executor: ModelCallExecutor | None = None,
        base_url: str | None = None,
        cache_enabled: bool | None = None,
    ) -> None:
        self.catalog = catalog
        self.executor = executor or ModelCallExecutor()
        self.base_url = base_url
        self.cache_enabled = (
            settings.link_cache_enabled if cache_enabled is None else cache_enabled
        )

    async def linkify(
        self,
        suggestions: list[Suggestion],
        context: AnalysisContext,
        usage: UsageTracker,
    ) -> list[Suggestion]:
        cache: dict[str, Rule | None] | None = {} if self.cache_enabled else None
        linked: list[Suggestion] = []

        for suggestion in suggestions:
            if not suggestion.is_rule_based:
                linked.append(suggestion)
                continue
            linked.append(await self._link_one(suggestion, context, usage, cache))

        return linked

    async def resolve_rule_ids(
        self,
        suggestion: Suggestion,
        context: AnalysisContext,
        usage: UsageTracker,
    ) -> tuple[list[str], str]:
        """
        Find the rule ids a suggestion refers to.

        Returns:
            (ids, content) where content may have a violation line appended.
        """
        content = suggestion.suggestion_content or ""

        ids = extract_rule_ids(content)
        if ids:
            return ids, content

        if LINKED_ID_RE.search(content):
            return [], content

        if suggestion.broken_rule_ids:
            ids = list(suggestion.broken_rule_ids)
            return ids, append_violation_lines(content, ids)

        ids = await self._extract_with_model(content, context, usage)
        missing = [rid for rid in ids if rid not in content]
        return ids, append_violation_lines(content, missing)

    async def _link_one(
        self,
        suggestion: Suggestion,
        context: AnalysisContext,
        usage: UsageTracker,
        cache: dict[str, Rule | None] | None,
    ) -> Suggestion:
        ids, content = await self.resolve_rule_ids(suggestion, context, usage)

        for rule_id in ids:
            try:
                rule = await self._lookup(rule_id, cache)
            except RuleLookupFailure as e:
                logger.warning(f"Skipping rule link for {rule_id}: {e}")
                continue
            content = replace_rule_id(content, rule_id, rule_link(rule, self.base_url))

        if content == suggestion.suggestion_content:
            return suggestion
        return suggestion.model_copy(update={"suggestion_content": content})

    async def _lookup(self, rule_id: str, cache: dict[str, Rule | None] | None) -> Rule:
        if cache is not None and rule_id in cache:
            rule = cache[rule_id]
        else:
            try:
                rule = await self.catalog.find_rule_by_id(rule_id)
            except Exception as e:
                raise RuleLookupFailure(f"lookup of {rule_id} failed: {e}") from e
            if cache is not None:
                cache[rule_id] = rule

        if rule is None:
            raise RuleLookupFailure(f"rule {rule_id} not found")
        return rule

    async def _extract_with_model(
        self,
        content: str,
        context: AnalysisContext,
        usage: UsageTracker,
    ) -> list[str]:
        if not content.strip():
            return []

        known = [{"uuid": r.uuid, "title": r.title} for r in context.rules]
        request = build_extract_ids_request(content, known)
        try:
            result = await self.executor.execute(request, None, None, usage, context.byok)
        except ProviderFailure as e:
            logger.warning(f"Rule id extraction failed: {e}")
            return []

        if not result.ok or not isinstance(result.parsed, ExtractedRuleIds):
            return []
        return [rid for rid in result.parsed.ids if rid]
