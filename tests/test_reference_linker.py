"""
Tests for Reference Linker — id resolution precedence, link building, idempotence.
"""

import asyncio

from rulescope.engine.reference_linker import (
    ReferenceLinker,
    escape_markdown,
    extract_rule_ids,
    replace_rule_id,
    rule_url,
)
from rulescope.models.llm_models import UsageTracker
from rulescope.models.suggestion_models import Suggestion
from rulescope.repositories.rule_catalog import InMemoryRuleCatalog

GLOBAL_ID = "123e4567-e89b-12d3-a456-426614174000"
REPO_ID = "9b2f6c1e-4a7d-4e3b-8f21-6c0d5e7a9b11"


class _FailingCatalog(InMemoryRuleCatalog):
    async def find_rule_by_id(self, uuid):
        if uuid == GLOBAL_ID:
            raise ConnectionError("catalog unavailable")
        return await super().find_rule_by_id(uuid)


def _linker(rules, executor, catalog_cls=InMemoryRuleCatalog, **kwargs):
    catalog = catalog_cls(rules, "org-1")
    return ReferenceLinker(catalog, executor, base_url="https://app.example.com", **kwargs), catalog


def _link(linker, suggestions, context):
    return asyncio.run(linker.linkify(suggestions, context, UsageTracker()))


def test_global_rule_link(make_rule, make_context, executor):
    rule = make_rule(GLOBAL_ID, title="No console.log", repository_id="global")
    linker, _ = _linker([rule], executor)
    suggestion = Suggestion(suggestion_content=f"Kody Rule violation: {GLOBAL_ID}")

    [linked] = _link(linker, [suggestion], make_context([rule]))

    assert f"/global/kody-rules/{GLOBAL_ID}" in linked.suggestion_content
    assert linked.suggestion_content.startswith("Kody Rule violation: [No console\\.log](")


def test_second_pass_is_a_no_op(make_rule, make_context, executor, models):
    rule = make_rule(GLOBAL_ID, title="No console.log", repository_id="global")
    linker, catalog = _linker([rule], executor)
    context = make_context([rule])
    suggestion = Suggestion(
        suggestion_content=f"Kody Rule violation: `{GLOBAL_ID}`",
        broken_rule_ids=[GLOBAL_ID],
    )

    [once] = _link(linker, [suggestion], context)
    [twice] = _link(linker, [once], context)

    assert twice.suggestion_content == once.suggestion_content
    assert once.suggestion_content.count("kody-rules/") == 1
    assert catalog.lookups == 1
    assert models.calls == []


def test_repository_rule_link_and_single_backtick_preference(make_rule, make_context, executor):
    rule = make_rule(REPO_ID, title="Use [DI] #1", repository_id="repo-1")
    linker, _ = _linker([rule], executor)
    suggestion = Suggestion(suggestion_content=f"See `{REPO_ID}` and also {REPO_ID}.")

    [linked] = _link(linker, [suggestion], make_context([rule]))

    expected = f"[Use \\[DI\\] \\#1](https://app.example.com/settings/code-review/repo-1/kody-rules/{REPO_ID})"
    assert linked.suggestion_content == f"See {expected} and also {REPO_ID}."


def test_broken_rule_ids_used_when_content_has_no_id(make_rule, make_context, executor, models):
    rule = make_rule("r2", title="Routes documented", repository_id="repo-1")
    linker, _ = _linker([rule], executor)
    suggestion = Suggestion(suggestion_content="Document the new route.", broken_rule_ids=["r2"])

    [linked] = _link(linker, [suggestion], make_context([rule]))

    assert linked.suggestion_content == (
        "Document the new route.\n\nKody Rule violation: "
        "[Routes documented](https://app.example.com/settings/code-review/repo-1/kody-rules/r2)"
    )
    assert models.calls == []


def test_model_extraction_is_last_resort(make_rule, make_context, executor, models):
    rule = make_rule(REPO_ID, title="Validate input")
    models.script["extractKodyRuleIds"] = {"ids": [REPO_ID]}
    linker, _ = _linker([rule], executor)
    suggestion = Suggestion(suggestion_content="Validate the payload before saving.")

    [linked] = _link(linker, [suggestion], make_context([rule]))

    assert models.run_names() == ["extractKodyRuleIds"]
    assert f"/repo-1/kody-rules/{REPO_ID}" in linked.suggestion_content


def test_model_extraction_failure_leaves_suggestion(make_rule, make_context, executor, models):
    models.failing_providers = {"groq", "bedrock"}
    linker, _ = _linker([], executor)
    suggestion = Suggestion(suggestion_content="Something generic.")

    [linked] = _link(linker, [suggestion], make_context([]))

    assert linked == suggestion


def test_lookup_failures_skip_only_that_id(make_rule, make_context, executor):
    rules = [
        make_rule(GLOBAL_ID, repository_id="global"),
        make_rule(REPO_ID, title="Repo rule"),
    ]
    linker, _ = _linker(rules, executor, catalog_cls=_FailingCatalog)
    missing = "00000000-0000-4000-8000-000000000000"
    suggestion = Suggestion(suggestion_content=f"{GLOBAL_ID} {REPO_ID} {missing}")

    [linked] = _link(linker, [suggestion], make_context(rules))

    assert linked.suggestion_content.startswith(f"{GLOBAL_ID} [Repo rule](")
    assert linked.suggestion_content.endswith(missing)


def test_non_rule_suggestions_are_untouched(make_context, executor, models):
    linker, _ = _linker([], executor)
    suggestion = Suggestion(suggestion_content=f"mentions {GLOBAL_ID}", label="performance")

    [linked] = _link(linker, [suggestion], make_context([]))

    assert linked is suggestion
    assert models.calls == []


def test_lookup_cache_is_opt_in(make_rule, make_context, executor):
    rule = make_rule(GLOBAL_ID, repository_id="global")
    suggestions = [Suggestion(suggestion_content=f"first {GLOBAL_ID}"), Suggestion(suggestion_content=f"second {GLOBAL_ID}")]

    uncached, uncached_catalog = _linker([rule], executor, cache_enabled=False)
    _link(uncached, suggestions, make_context([rule]))
    cached, cached_catalog = _linker([rule], executor, cache_enabled=True)
    _link(cached, suggestions, make_context([rule]))

    assert uncached_catalog.lookups == 2
    assert cached_catalog.lookups == 1


def test_helpers():
    assert extract_rule_ids(f"a {GLOBAL_ID} b {GLOBAL_ID} c {REPO_ID}") == [GLOBAL_ID, REPO_ID]
    assert extract_rule_ids(f"(/settings/code-review/global/kody-rules/{GLOBAL_ID})") == []
    assert escape_markdown("a_b*c") == "a\\_b\\*c"
    assert replace_rule_id("x ```r.1``` y", "r.1", "L") == "x L y"
    assert replace_rule_id("rx1", "r.1", "L") == "rx1"


def test_rule_url_uses_repository_scope(make_rule):
    assert rule_url(make_rule("abc", repository_id="global"), "https://w") == (
        "https://w/settings/code-review/global/kody-rules/abc"
    )
    assert rule_url(make_rule("abc", repository_id="repo-9"), "") == (
        "/settings/code-review/repo-9/kody-rules/abc"
    )


def test_in_memory_catalog_lists_rules_per_organization(make_rule):
    catalog = InMemoryRuleCatalog([make_rule("a")], "org-1")
    catalog.add_rules("org-2", [make_rule("b")])

    assert [r.uuid for r in asyncio.run(catalog.list_rules("org-1"))] == ["a"]
    assert asyncio.run(catalog.list_rules("org-3")) == []
    assert asyncio.run(catalog.find_rule_by_id("b")).uuid == "b"
