"""
Tests for PR-Level Analysis Orchestrator — chunking, merge and failure isolation.
"""

import asyncio

import pytest

from rulescope.config import settings
from rulescope.engine.pr_analysis import (
    PrLevelAnalysisOrchestrator,
    merge_violated_rules,
    strip_file_contents,
)
from rulescope.models.llm_models import ProviderConfig
from rulescope.models.rule_models import RuleScope
from rulescope.models.suggestion_models import Violation, ViolatedRule

TINY = ProviderConfig(provider="groq", model="tiny-model")


@pytest.fixture
def pr_rule(make_rule):
    return make_rule("r2", title="Routes must be documented", severity="High", scope=RuleScope.PULL_REQUEST)


@pytest.fixture
def one_file_per_chunk(monkeypatch):
    monkeypatch.setitem(settings.token_limits_by_model, "tiny-model", 10)


def _violation(file_id, reason):
    return {"ruleId": "r2", "violations": [{"primaryFileId": file_id, "reason": reason}]}


def _analyze(orchestrator, context):
    return asyncio.run(orchestrator.analyze(context))


def test_two_chunks_merge_into_one_rule(pr_rule, make_context, changed_files, executor, models, monkeypatch):
    monkeypatch.setitem(settings.token_limits_by_model, "tiny-model", 200)
    prompts = []

    def analyzer(request):
        prompts.append(request.user_prompt)
        chunk = request.metadata["chunk"]
        return [_violation(f"sha-{chunk * 2}", f"route in chunk {chunk} undocumented")]

    models.script["prLevelKodyRulesAnalyzer"] = analyzer
    orchestrator = PrLevelAnalysisOrchestrator(executor=executor, primary=TINY, usage_percentage=60)

    result = _analyze(orchestrator, make_context([pr_rule], changed_files=changed_files[:4]))

    assert len(prompts) >= 2
    assert all("bodybody" not in p for p in prompts)
    assert all(s.broken_rule_ids == ["r2"] for s in result.code_suggestions)
    assert len(result.code_suggestions) == len(prompts)
    assert result.code_suggestions[0].relevant_file == "src/module_0.ts"
    assert all(s.severity == "high" for s in result.code_suggestions)


def test_failing_chunks_are_skipped(
    pr_rule, make_context, changed_files, executor, models, one_file_per_chunk
):
    def analyzer(request):
        chunk = request.metadata["chunk"]
        if chunk == 0:
            return [_violation("sha-0", "first")]
        if chunk == 1:
            return _violation("src/module_1.ts", "second")
        if chunk == 2:
            return RuntimeError("provider timeout")
        return "I could not find anything"

    models.script["prLevelKodyRulesAnalyzer"] = analyzer
    orchestrator = PrLevelAnalysisOrchestrator(executor=executor, primary=TINY, usage_percentage=60)

    result = _analyze(orchestrator, make_context([pr_rule], changed_files=changed_files))

    assert [s.relevant_file for s in result.code_suggestions] == ["src/module_0.ts", "src/module_1.ts"]
    assert [s.broken_rule_ids for s in result.code_suggestions] == [["r2"], ["r2"]]
    assert result.code_suggestions[0].suggestion_content.startswith("first")
    assert "/kody-rules/r2)" in result.code_suggestions[0].suggestion_content
    # chunk 2 tried both tiers
    assert len(models.calls) == 5
    assert len(result.token_usage) == 3


def test_unknown_rules_in_output_are_ignored(pr_rule, make_context, changed_files, executor, models):
    models.script["prLevelKodyRulesAnalyzer"] = [
        {"ruleId": "made-up", "violations": [{"reason": "x"}]},
        {"ruleId": "r2", "violations": []},
    ]

    result = _analyze(
        PrLevelAnalysisOrchestrator(executor=executor),
        make_context([pr_rule], changed_files=changed_files),
    )

    assert result.code_suggestions == []


def test_no_pull_request_rules_makes_no_calls(make_rule, make_context, changed_files, executor, models):
    context = make_context([make_rule("file-rule")], changed_files=changed_files)

    result = _analyze(PrLevelAnalysisOrchestrator(executor=executor), context)

    assert result.code_suggestions == []
    assert models.calls == []


def test_severity_floor_excludes_rules(make_rule, make_context, changed_files, executor, models):
    rule = make_rule("r-low", severity="low", scope=RuleScope.PULL_REQUEST)
    context = make_context([rule], changed_files=changed_files, severity_floor="high")

    result = _analyze(PrLevelAnalysisOrchestrator(executor=executor), context)

    assert result.code_suggestions == []
    assert models.calls == []


def test_grouping_consolidates_duplicate_rule_suggestions(pr_rule, make_context, changed_files, executor, models):
    models.script["prLevelKodyRulesAnalyzer"] = [
        {
            "ruleId": "r2",
            "violations": [
                {"primaryFileId": "sha-0", "reason": "undocumented GET"},
                {"primaryFileId": "sha-1", "reason": "undocumented POST"},
            ],
        }
    ]
    models.script["prLevelKodyRulesGrouping"] = {
        "suggestionContent": "Document both new routes in the API guide",
        "oneSentenceSummary": "Document routes",
    }
    orchestrator = PrLevelAnalysisOrchestrator(executor=executor, group_duplicates=True)

    result = _analyze(orchestrator, make_context([pr_rule], changed_files=changed_files))

    [suggestion] = result.code_suggestions
    assert suggestion.suggestion_content.startswith("Document both new routes")
    assert suggestion.one_sentence_summary == "Document routes"
    assert suggestion.relevant_file == "src/module_0.ts"


def test_grouping_failure_keeps_originals(pr_rule, make_context, changed_files, executor, models):
    models.script["prLevelKodyRulesAnalyzer"] = [
        {"ruleId": "r2", "violations": [{"reason": "a"}, {"reason": "b"}]}
    ]
    models.script["prLevelKodyRulesGrouping"] = RuntimeError("grouping down")
    orchestrator = PrLevelAnalysisOrchestrator(executor=executor, group_duplicates=True)

    result = _analyze(orchestrator, make_context([pr_rule], changed_files=changed_files))

    assert len(result.code_suggestions) == 2


def test_merge_violated_rules_concatenates_by_uuid(make_rule):
    r1, r2 = make_rule("r1"), make_rule("r2")
    first = [ViolatedRule(rule=r1, violations=[Violation(reason="a")])]
    second = [
        ViolatedRule(rule=r2, violations=[Violation(reason="b")]),
        ViolatedRule(rule=r1, violations=[Violation(reason="c")]),
    ]

    merged = merge_violated_rules(first, second)

    assert [m.rule.uuid for m in merged] == ["r1", "r2"]
    assert [v.reason for v in merged[0].violations] == ["a", "c"]
    assert len(first[0].violations) == 1
    assert sum(len(m.violations) for m in merged) == 3


def test_strip_file_contents_does_not_mutate(changed_files):
    stripped = strip_file_contents(changed_files)

    assert all(f.file_content is None for f in stripped)
    assert all(f.file_content for f in changed_files)
    assert [f.filename for f in stripped] == [f.filename for f in changed_files]
