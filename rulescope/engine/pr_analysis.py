"""
PR-Level Analysis Orchestrator — Cross-file rules evaluated once per pull request.

Changed files are stripped of their contents, packed into token-budgeted
chunks and analyzed chunk by chunk. A failing chunk contributes nothing
and never stops the remaining chunks.
"""

from __future__ import annotations

import logging
from typing import Any

from rulescope.config import settings
from rulescope.core.rule_resolver import RuleScopeResolver, filter_by_scope
from rulescope.core.token_chunker import chunk, estimate_tokens, token_limit_for_model
from rulescope.engine.reference_linker import ReferenceLinker
from rulescope.engine.reference_loader import ReferenceLoader, apply_reference_loading
from rulescope.engine.suggestions import attach_severity
from rulescope.errors import ChunkFailure
from rulescope.llm.executor import ModelCallExecutor, default_primary
from rulescope.llm.parser import try_parse_json
from rulescope.llm.prompt_builder import build_pr_analyzer_request, build_pr_grouping_request
from rulescope.models.context_models import AnalysisContext, FileChange
from rulescope.models.llm_models import ProviderConfig, UsageTracker
from rulescope.models.response_models import PrRuleResult
from rulescope.models.rule_models import Rule, RuleScope
from rulescope.models.suggestion_models import (
    RULE_LABEL,
    AIAnalysisResultPrLevel,
    Suggestion,
    ViolatedRule,
)
from rulescope.observability.tracing import Tracer
from rulescope.repositories.rule_catalog import InMemoryRuleCatalog, RuleCatalog

logger = logging.getLogger("rulescope.engine.pr_analysis")


def merge_violated_rules(
    accumulated: list[ViolatedRule],
    incoming: list[ViolatedRule],
) -> list[ViolatedRule]:
    """
    Merge by rule uuid, concatenating violation lists.

    Order of first appearance is preserved; inputs are not mutated.
    """
    merged: dict[str, ViolatedRule] = {}
    for item in [*accumulated, *incoming]:
        existing = merged.get(item.rule.uuid)
        if existing is None:
            merged[item.rule.uuid] = ViolatedRule(rule=item.rule, violations=list(item.violations))
        else:
            existing.violations.extend(item.violations)
    return list(merged.values())


def strip_file_contents(files: list[FileChange]) -> list[FileChange]:
    return [f.model_copy(update={"file_content": None}) for f in files]


class PrLevelAnalysisOrchestrator:
    def __init__(
        self,
        executor: ModelCallExecutor | None = None,
        resolver: RuleScopeResolver | None = None,
        catalog: RuleCatalog | None = None,
        reference_loader: ReferenceLoader | None = None,
        tracer: Tracer | None = None,
        primary: ProviderConfig | None = None,
        fallback: ProviderConfig | None = None,
        usage_percentage: float | None = None,
        group_duplicates: bool | None = None,
    ) -> None:
        self.executor = executor or ModelCallExecutor()
        self.resolver = resolver or RuleScopeResolver()
        self.catalog = catalog
        self.reference_loader = reference_loader
        self.tracer = tracer or Tracer()
        self.primary = primary
        self.fallback = fallback
        self.usage_percentage = usage_percentage or settings.chunk_usage_percentage
        self.group_duplicates = (
            settings.pr_group_duplicates if group_duplicates is None else group_duplicates
        )

    async def analyze(self, context: AnalysisContext) -> AIAnalysisResultPrLevel:
        usage = UsageTracker()
        span = self.tracer.start_span(
            "kodyRulesAnalyzePullRequest",
            {
                "organization_id": context.organization_and_team.organization_id,
                "pull_request": context.pull_request.number,
                "files": len(context.changed_files),
            },
        )

        try:
            result = await self._run(context, usage)
        except Exception as e:
            logger.error(
                f"PR-level rule analysis failed for PR#{context.pull_request.number}: {e}",
                exc_info=True,
            )
            self.tracer.end_span(span, usage, {"status": "error", "error": str(e)})
            raise

        self.tracer.end_span(
            span,
            usage,
            {"status": "ok", "suggestions": len(result.code_suggestions)},
        )
        return result

    async def _run(self, context: AnalysisContext, usage: UsageTracker) -> AIAnalysisResultPrLevel:
        rules = self.resolver.resolve(
            filter_by_scope(context.rules, RuleScope.PULL_REQUEST),
            context.repository.id,
            None,
            context.severity_floor,
        )
        rules, references = await apply_reference_loading(rules, context, self.reference_loader)

        if not rules:
            logger.info(f"No pull-request rules for PR#{context.pull_request.number}")
            return AIAnalysisResultPrLevel(token_usage=usage.usages)

        files = strip_file_contents(context.changed_files)
        model = (context.byok.main if context.byok else (self.primary or default_primary())).model
        chunking = chunk(
            files,
            token_limit_for_model(model),
            self.usage_percentage,
            estimator=lambda f: estimate_tokens(model, f),
        )

        rules_view = [r.prompt_view(references.get(r.uuid)) for r in rules]
        violated: list[ViolatedRule] = []

        for index, files_chunk in enumerate(chunking.chunks):
            try:
                chunk_result = await self._analyze_chunk(
                    index, files_chunk, rules, rules_view, context, usage
                )
            except Exception as e:
                failure = e if isinstance(e, ChunkFailure) else ChunkFailure(str(e), index)
                logger.error(
                    f"Chunk {index + 1}/{chunking.total_chunks} failed, skipping: {failure}",
                    exc_info=True,
                )
                continue
            violated = merge_violated_rules(violated, chunk_result)

        logger.info(
            f"PR#{context.pull_request.number}: {len(violated)} rules violated across "
            f"{chunking.total_chunks} chunks"
        )

        suggestions = self._to_suggestions(violated, context.changed_files)
        if self.group_duplicates:
            suggestions = await self._group(suggestions, violated, context, usage)

        suggestions = attach_severity(suggestions, context.rules)
        linked = await self._linker(context).linkify(suggestions, context, usage)

        return AIAnalysisResultPrLevel(code_suggestions=linked, token_usage=usage.usages)

    async def _analyze_chunk(
        self,
        index: int,
        files: list[FileChange],
        rules: list[Rule],
        rules_view: list[dict[str, Any]],
        context: AnalysisContext,
        usage: UsageTracker,
    ) -> list[ViolatedRule]:
        request = build_pr_analyzer_request(
            rules_view,
            [f.model_dump(by_alias=True, exclude_none=True) for f in files],
            context.pull_request.title,
            context.pull_request.body,
            context.language,
            chunk_index=index,
        )
        result = await self.executor.execute(
            request, self.primary, self.fallback, usage, context.byok
        )

        data = try_parse_json(result.content)
        if isinstance(data, dict):
            data = data.get("rules", [data] if "ruleId" in data else None)
        if not isinstance(data, list):
            raise ChunkFailure(f"unparseable analyzer output: {result.content[:200]!r}", index)

        by_id = {r.uuid: r for r in rules}
        found: list[ViolatedRule] = []
        for item in data:
            entry = PrRuleResult.model_validate(item)
            rule = by_id.get(entry.rule_id)
            if rule is None:
                logger.warning(f"Chunk {index + 1} referenced unknown rule {entry.rule_id}")
                continue
            if entry.violations:
                found.append(ViolatedRule(rule=rule, violations=entry.violations))
        return found

    def _to_suggestions(
        self,
        violated: list[ViolatedRule],
        files: list[FileChange],
    ) -> list[Suggestion]:
        """One suggestion per violation, tagged with its rule uuid only."""
        suggestions: list[Suggestion] = []
        for item in violated:
            for violation in item.violations:
                suggestions.append(
                    Suggestion(
                        suggestion_content=violation.suggestion_content or violation.reason or "",
                        one_sentence_summary=violation.one_sentence_summary or violation.reason,
                        relevant_file=_file_name(violation.primary_file_id, files),
                        label=RULE_LABEL,
                        broken_rule_ids=[item.rule.uuid],
                    )
                )
        return suggestions

    async def _group(
        self,
        suggestions: list[Suggestion],
        violated: list[ViolatedRule],
        context: AnalysisContext,
        usage: UsageTracker,
    ) -> list[Suggestion]:
        """Consolidate rules with several suggestions into one; failures keep originals."""
        grouped: list[Suggestion] = []
        for item in violated:
            own = [s for s in suggestions if s.broken_rule_ids == [item.rule.uuid]]
            if len(own) <= 1:
                grouped.extend(own)
                continue

            request = build_pr_grouping_request(
                item.rule.prompt_view(),
                [s.model_dump(by_alias=True, exclude_none=True) for s in own],
                context.language,
            )
            try:
                result = await self.executor.execute(
                    request, self.primary, self.fallback, usage, context.byok
                )
            except Exception as e:
                logger.warning(f"Grouping failed for rule {item.rule.uuid}: {e}")
                grouped.extend(own)
                continue

            data = try_parse_json(result.content)
            if not isinstance(data, dict) or not data.get("suggestionContent"):
                logger.warning(f"Grouping output unusable for rule {item.rule.uuid}")
                grouped.extend(own)
                continue

            grouped.append(
                own[0].model_copy(update={
                    "suggestion_content": data["suggestionContent"],
                    "one_sentence_summary": data.get("oneSentenceSummary")
                    or own[0].one_sentence_summary,
                })
            )
        return grouped

    def _linker(self, context: AnalysisContext) -> ReferenceLinker:
        catalog = self.catalog or InMemoryRuleCatalog(
            context.rules, context.organization_and_team.organization_id
        )
        return ReferenceLinker(catalog, self.executor)


def _file_name(file_id: str | None, files: list[FileChange]) -> str | None:
    if not file_id:
        return None
    for f in files:
        if file_id in (f.sha, f.filename):
            return f.filename
    return file_id
