"""
Tests for Rule Scope Resolver — selection, inheritance, severity floor and cap.
"""

from datetime import datetime, timedelta, timezone

from rulescope.core.rule_resolver import (
    RuleScopeResolver,
    dedupe_by_text,
    filter_by_min_severity,
    filter_by_scope,
    glob_base_path,
    rules_for_file,
)
from rulescope.models.rule_models import RuleInheritance, RuleScope, RuleStatus, severity_rank


def test_rule_matching_path_and_severity_is_selected(make_rule):
    rule = make_rule("r1", severity="high", path_pattern="src/**", repository_id="repo-1")
    resolver = RuleScopeResolver(max_rules=10)

    selected = resolver.resolve_for_file([rule], "src/a.ts", "repo-1", min_severity="medium")

    assert [r.uuid for r in selected] == ["r1"]


def test_directory_rule_rejected_by_repository_level_query(make_rule):
    rule = make_rule("d-rule", directory_id="d1", repository_id="repo-1")
    resolver = RuleScopeResolver()

    assert resolver.resolve([rule], "repo-1") == []
    assert rules_for_file("src/a.ts", [rule], "repo-1", None) == []


def test_directory_rule_matches_only_its_directory(make_rule):
    rule = make_rule("d-rule", directory_id="d1")
    resolver = RuleScopeResolver()

    assert [r.uuid for r in resolver.resolve([rule], "repo-1", "d1")] == ["d-rule"]
    assert resolver.resolve([rule], "repo-1", "d2") == []


def test_inactive_rules_are_dropped(make_rule):
    rules = [
        make_rule("active"),
        make_rule("inactive", status=RuleStatus.INACTIVE),
        make_rule("deleted", status=RuleStatus.DELETED),
    ]

    selected = RuleScopeResolver().resolve(rules, "repo-1")

    assert [r.uuid for r in selected] == ["active"]


def test_all_three_buckets_contribute(make_rule):
    rules = [
        make_rule("global", repository_id="global"),
        make_rule("repo"),
        make_rule("dir", directory_id="d1"),
        make_rule("other-repo", repository_id="repo-2"),
    ]

    selected = RuleScopeResolver().resolve(rules, "repo-1", "d1")

    assert {r.uuid for r in selected} == {"global", "repo", "dir"}


def test_dedup_by_text_prefers_directory_rule(make_rule):
    old = datetime(2023, 1, 1, tzinfo=timezone.utc)
    rules = [
        make_rule("global", repository_id="global", rule="No console.log", created_at=old),
        make_rule("dir", directory_id="d1", rule="No console.log"),
    ]

    selected = RuleScopeResolver().resolve(rules, "repo-1", "d1")

    assert [r.uuid for r in selected] == ["dir"]


def test_rules_without_text_are_dropped(make_rule):
    rules = [
        make_rule("blank", rule=""),
        make_rule("kept", rule="Validate request bodies"),
    ]

    selected = RuleScopeResolver().resolve(rules, "repo-1")

    assert [r.uuid for r in selected] == ["kept"]
    assert dedupe_by_text(rules) == [rules[1]]


def test_ordered_by_creation_time(make_rule):
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    rules = [
        make_rule("third", created_at=base + timedelta(days=2)),
        make_rule("first", created_at=base),
        make_rule("undated", created_at=None),
        make_rule("second", created_at=base + timedelta(days=1)),
    ]

    selected = RuleScopeResolver().resolve(rules, "repo-1")

    assert [r.uuid for r in selected] == ["undated", "first", "second", "third"]


def test_severity_floor_keeps_unknown_severity():
    from rulescope.models.rule_models import Rule

    rules = [
        Rule(uuid=f"r-{sev}", rule=f"text {sev}", severity=sev)
        for sev in ("low", "medium", "high", "critical", None, "urgent", "HIGH")
    ]

    for floor in ("low", "medium", "high", "critical"):
        kept = filter_by_min_severity(rules, floor)
        for rule in kept:
            rank = severity_rank(rule.severity)
            assert rank is None or rank >= severity_rank(floor)
        assert {"r-None", "r-urgent"} <= {r.uuid for r in kept}

    assert [r.uuid for r in filter_by_min_severity(rules, "high")] == [
        "r-high", "r-critical", "r-None", "r-urgent", "r-HIGH",
    ]


def test_low_floor_keeps_everything(make_rule):
    rules = [make_rule("a", severity="low"), make_rule("b", severity="critical")]
    assert len(filter_by_min_severity(rules, "low")) == 2
    assert len(filter_by_min_severity(rules, None)) == 2


def test_cap_and_unlimited(make_rule):
    rules = [make_rule(f"r{i}") for i in range(15)]

    assert len(RuleScopeResolver(max_rules=10, unlimited=False).resolve(rules, "repo-1")) == 10
    assert len(RuleScopeResolver(max_rules=10, unlimited=True).resolve(rules, "repo-1")) == 15


def test_validate_rules_limit():
    assert RuleScopeResolver(max_rules=10, unlimited=False).validate_rules_limit(10)
    assert not RuleScopeResolver(max_rules=10, unlimited=False).validate_rules_limit(11)
    assert RuleScopeResolver(max_rules=10, unlimited=True).validate_rules_limit(500)


def test_path_patterns(make_rule):
    rules = [
        make_rule("no-pattern"),
        make_rule("src-glob", path_pattern="src/**/*.ts"),
        make_rule("docs", path_pattern="docs/**"),
        make_rule("folder", path_pattern="src/users"),
        make_rule("ext", path_pattern="**/*.py"),
    ]

    matched = rules_for_file("src/users/controller.ts", rules, "repo-1")

    assert {r.uuid for r in matched} == {"no-pattern", "src-glob", "folder"}


def test_glob_base_path():
    assert glob_base_path("src/components/**/*.tsx") == "src/components"
    assert glob_base_path("**/*.py") == ""
    assert glob_base_path("src/app") == "src/app"


def test_inheritance_exclude_and_include(make_rule):
    rules = [
        make_rule("plain", repository_id="global"),
        make_rule("excluded", repository_id="global",
                  inheritance=RuleInheritance(exclude=["repo-1"])),
        make_rule("include-other", repository_id="global",
                  inheritance=RuleInheritance(include=["repo-2"])),
        make_rule("include-me", repository_id="global",
                  inheritance=RuleInheritance(include=["repo-1"])),
        make_rule("both", repository_id="global",
                  inheritance=RuleInheritance(include=["repo-1"], exclude=["repo-1"])),
        make_rule("not-inheritable", repository_id="global",
                  inheritance=RuleInheritance(inheritable=False)),
    ]

    matched = rules_for_file("src/a.ts", rules, "repo-1")

    assert {r.uuid for r in matched} == {"plain", "include-me"}


def test_owned_rule_ignores_its_own_inheritance(make_rule):
    rule = make_rule("repo-owned", inheritance=RuleInheritance(inheritable=False))

    assert [r.uuid for r in rules_for_file("src/a.ts", [rule], "repo-1")] == ["repo-owned"]


def test_repository_rule_inherited_by_directory(make_rule):
    rules = [
        make_rule("repo-rule"),
        make_rule("repo-rule-excluded", inheritance=RuleInheritance(exclude=["d1"])),
    ]

    matched = rules_for_file("src/a.ts", rules, "repo-1", "d1")

    assert [r.uuid for r in matched] == ["repo-rule"]


def test_filter_by_scope(make_rule):
    rules = [
        make_rule("file"),
        make_rule("pr", scope=RuleScope.PULL_REQUEST),
    ]

    assert [r.uuid for r in filter_by_scope(rules, RuleScope.PULL_REQUEST)] == ["pr"]
    assert [r.uuid for r in filter_by_scope(rules, RuleScope.FILE)] == ["file"]


def test_input_rules_are_not_mutated(make_rule):
    rules = [make_rule("a", severity="low"), make_rule("b", severity="high")]
    snapshot = [r.model_dump() for r in rules]

    RuleScopeResolver().resolve_for_file(rules, "src/a.ts", "repo-1", min_severity="high")

    assert [r.model_dump() for r in rules] == snapshot
