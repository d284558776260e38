"""
File Analysis Orchestrator — Rule-based suggestions for one changed file.

Pipeline:
  1. Resolve file-scoped candidate rules (path, inheritance, severity, cap)
  2. Classify relevant rules and, when suggestions already exist, update
     them against the rules (issued together; one failing cancels the other)
  3. Generate suggestions for classified rules not already resolved
  4. Optional guardian pass over generated suggestions (advisory)
  5. Attach severity and link rule references
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from rulescope.config import settings
from rulescope.core.rule_resolver import RuleScopeResolver, filter_by_scope
from rulescope.engine.reference_linker import ReferenceLinker
from rulescope.engine.reference_loader import ReferenceLoader, apply_reference_loading
from rulescope.engine.suggestions import (
    attach_severity,
    cap_suggestions,
    normalize_generated,
    normalize_updated,
    resolved_rule_ids,
)
from rulescope.llm.executor import ModelCallExecutor
from rulescope.llm.parser import try_parse_json
from rulescope.llm.prompt_builder import (
    build_classifier_request,
    build_generate_request,
    build_guardian_request,
    build_updater_request,
)
from rulescope.models.context_models import AnalysisContext, FileChangeContext
from rulescope.models.llm_models import ProviderConfig, UsageTracker
from rulescope.models.response_models import (
    ClassifiedRule,
    CodeSuggestionsResponse,
    GuardianResponse,
)
from rulescope.models.rule_models import LoadedReference, Rule, RuleScope
from rulescope.models.suggestion_models import AIAnalysisResult, Suggestion
from rulescope.observability.tracing import Tracer
from rulescope.repositories.rule_catalog import InMemoryRuleCatalog, RuleCatalog

logger = logging.getLogger("rulescope.engine.file_analysis")


class FileAnalysisOrchestrator:
    """
    Runs the per-file rule pipeline.

    Each `analyze` call owns its UsageTracker; instances can serve
    concurrent files.
    """

    def __init__(
        self,
        executor: ModelCallExecutor | None = None,
        resolver: RuleScopeResolver | None = None,
        catalog: RuleCatalog | None = None,
        reference_loader: ReferenceLoader | None = None,
        tracer: Tracer | None = None,
        primary: ProviderConfig | None = None,
        fallback: ProviderConfig | None = None,
        guardian_enabled: bool | None = None,
    ) -> None:
        self.executor = executor or ModelCallExecutor()
        self.resolver = resolver or RuleScopeResolver()
        self.catalog = catalog
        self.reference_loader = reference_loader
        self.tracer = tracer or Tracer()
        self.primary = primary
        self.fallback = fallback
        self.guardian_enabled = (
            settings.guardian_enabled if guardian_enabled is None else guardian_enabled
        )

    async def analyze(
        self,
        context: AnalysisContext,
        file_context: FileChangeContext,
        existing_suggestions: list[Suggestion] | None = None,
    ) -> AIAnalysisResult:
        usage = UsageTracker()
        file_path = file_context.file.filename
        span = self.tracer.start_span(
            "kodyRulesAnalyzeFile",
            {
                "organization_id": context.organization_and_team.organization_id,
                "pull_request": context.pull_request.number,
                "file": file_path,
            },
        )

        try:
            result = await self._run(context, file_context, existing_suggestions or [], usage)
        except Exception as e:
            logger.error(f"Rule analysis failed for {file_path}: {e}", exc_info=True)
            self.tracer.end_span(span, usage, {"status": "error", "error": str(e)})
            raise

        self.tracer.end_span(
            span,
            usage,
            {"status": "ok", "suggestions": len(result.code_suggestions)},
        )
        return result

    async def _run(
        self,
        context: AnalysisContext,
        file_context: FileChangeContext,
        existing: list[Suggestion],
        usage: UsageTracker,
    ) -> AIAnalysisResult:
        file_path = file_context.file.filename

        candidates = self.resolver.resolve_for_file(
            filter_by_scope(context.rules, RuleScope.FILE),
            file_path,
            context.repository.id,
            file_context.directory_id,
            context.severity_floor,
        )
        candidates, references = await apply_reference_loading(
            candidates, context, self.reference_loader
        )

        if not candidates:
            logger.info(f"No rules apply to {file_path}, skipping model calls")
            return AIAnalysisResult(token_usage=usage.usages)

        rules_view = [r.prompt_view(references.get(r.uuid)) for r in candidates]
        patch = file_context.patch_with_lines or file_context.file.patch

        update_task = None
        try:
            async with asyncio.TaskGroup() as group:
                classify_task = group.create_task(
                    self._classify(rules_view, candidates, file_path, patch, context, usage)
                )
                if existing:
                    update_task = group.create_task(
                        self._update(rules_view, existing, file_path, patch, context, usage)
                    )
        except ExceptionGroup as eg:
            # Sibling call is cancelled; surface the original failure
            raise eg.exceptions[0]

        classified: list[ClassifiedRule] = classify_task.result()
        updated, updated_summary = update_task.result() if update_task else ([], "")

        logger.info(
            f"{file_path}: {len(classified)}/{len(candidates)} rules classified, "
            f"{len(updated)} existing suggestions updated"
        )

        generated: list[Suggestion] = []
        generated_summary = ""
        if classified:
            generated, generated_summary = await self._generate(
                classified, candidates, references, updated, file_context, patch, context, usage
            )
            if generated and self.guardian_enabled:
                generated = await self._guard(generated, rules_view, patch, context, usage)
            generated = cap_suggestions(generated, context.max_suggestions)

        combined = attach_severity(generated + updated, context.rules)
        linked = await self._linker(context).linkify(combined, context, usage)

        return AIAnalysisResult(
            code_suggestions=linked,
            overall_summary=updated_summary or generated_summary,
            token_usage=usage.usages,
        )


    async def _classify(
        self,
        rules_view: list[dict[str, Any]],
        candidates: list[Rule],
        file_path: str,
        patch: str,
        context: AnalysisContext,
        usage: UsageTracker,
    ) -> list[ClassifiedRule]:
        request = build_classifier_request(rules_view, file_path, patch, context.language)
        result = await self.executor.execute(
            request, self.primary, self.fallback, usage, context.byok
        )

        data = try_parse_json(result.content)
        if isinstance(data, dict):
            data = data.get("rules", data.get("classifiedRules"))
        if not isinstance(data, list):
            logger.warning(f"Classifier returned unparseable output for {file_path}")
            return []

        known = {r.uuid for r in candidates}
        classified: list[ClassifiedRule] = []
        for item in data:
            if not isinstance(item, dict) or item.get("uuid") not in known:
                continue
            if any(c.uuid == item["uuid"] for c in classified):
                continue
            classified.append(
                ClassifiedRule(uuid=item["uuid"], reason=str(item.get("reason") or ""))
            )
        return classified

    async def _update(
        self,
        rules_view: list[dict[str, Any]],
        existing: list[Suggestion],
        file_path: str,
        patch: str,
        context: AnalysisContext,
        usage: UsageTracker,
    ) -> tuple[list[Suggestion], str]:
        suggestions_view = [s.model_dump(by_alias=True) for s in existing]
        request = build_updater_request(
            rules_view, suggestions_view, file_path, patch, context.language
        )
        result = await self.executor.execute(
            request, self.primary, self.fallback, usage, context.byok
        )

        if not result.ok:
            logger.warning(f"Updater output unusable for {file_path}, no updated suggestions")
            return [], ""

        response: CodeSuggestionsResponse = result.parsed
        return normalize_updated(response.code_suggestions), response.overall_summary

    async def _generate(
        self,
        classified: list[ClassifiedRule],
        candidates: list[Rule],
        references: dict[str, list[LoadedReference]],
        updated: list[Suggestion],
        file_context: FileChangeContext,
        patch: str,
        context: AnalysisContext,
        usage: UsageTracker,
    ) -> tuple[list[Suggestion], str]:
        file_path = file_context.file.filename
        resolved = resolved_rule_ids(updated)
        reasons = {c.uuid: c.reason for c in classified}

        pending = [r for r in candidates if r.uuid in reasons and r.uuid not in resolved]
        if not pending:
            logger.info(f"{file_path}: every classified rule already resolved by update")
            return [], ""

        rules_view = [
            {**r.prompt_view(references.get(r.uuid)), "reason": reasons[r.uuid]}
            for r in pending
        ]
        existing_view = [s.model_dump(by_alias=True) for s in updated if s.broken_rule_ids]
        request = build_generate_request(
            rules_view, existing_view, file_path, patch, context.language
        )
        result = await self.executor.execute(
            request, self.primary, self.fallback, usage, context.byok
        )

        if not result.ok:
            logger.warning(f"Generated suggestions unusable for {file_path}")
            return [], ""

        response: CodeSuggestionsResponse = result.parsed
        generated = normalize_generated(response.code_suggestions)

        kept: list[Suggestion] = []
        for s in generated:
            if s.broken_rule_ids and set(s.broken_rule_ids) <= resolved:
                continue
            if not s.relevant_file:
                s = s.model_copy(update={"relevant_file": file_path})
            kept.append(s)

        return kept, response.overall_summary

    async def _guard(
        self,
        generated: list[Suggestion],
        rules_view: list[dict[str, Any]],
        patch: str,
        context: AnalysisContext,
        usage: UsageTracker,
    ) -> list[Suggestion]:
        request = build_guardian_request(
            [s.model_dump(by_alias=True) for s in generated], rules_view, patch
        )
        try:
            result = await self.executor.execute(
                request, self.primary, self.fallback, usage, context.byok
            )
        except Exception as e:
            logger.warning(f"Guardian pass failed, keeping unvalidated suggestions: {e}")
            return generated

        if not result.ok:
            logger.warning("Guardian output unusable, keeping unvalidated suggestions")
            return generated

        response: GuardianResponse = result.parsed
        removed = {d.id for d in response.decisions if d.should_remove}
        if removed:
            logger.info(f"Guardian removed {len(removed)} suggestions")
        return [s for s in generated if s.id not in removed]

    def _linker(self, context: AnalysisContext) -> ReferenceLinker:
        catalog = self.catalog or InMemoryRuleCatalog(
            context.rules, context.organization_and_team.organization_id
        )
        return ReferenceLinker(catalog, self.executor)
