"""
Rule Scope Resolver — Selects the rules that apply to a target.

A target is a repository (optionally a directory inside it) and, for
file-level analysis, a file path. Resolution is pure: no model calls,
no I/O, and the input rules are never mutated.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

import pathspec

from rulescope.config import settings
from rulescope.models.rule_models import (
    Rule,
    RuleScope,
    RuleStatus,
    Severity,
    severity_rank,
)

logger = logging.getLogger("rulescope.core.rule_resolver")

GLOB_CHARS = ("*", "?", "{", "}", "[", "]", "!")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class RuleScopeResolver:
    """
    Hierarchical rule matcher.

    Buckets active rules by directory, repository and global ownership,
    deduplicates by rule text, applies a severity floor and caps the result.
    """

    def __init__(self, max_rules: int | None = None, unlimited: bool | None = None) -> None:
        self.max_rules = max_rules if max_rules is not None else settings.max_rules
        self.unlimited = unlimited if unlimited is not None else settings.rules_unlimited

    def resolve(
        self,
        rules: Iterable[Rule],
        repository_id: str,
        directory_id: str | None = None,
        min_severity: Severity | str | None = None,
    ) -> list[Rule]:
        """
        Return the deduplicated, ordered, cap-limited rules for a repository/directory.

        Args:
            rules: Full rule catalog (any status/scope).
            repository_id: Target repository id.
            directory_id: Optional directory id inside the repository.
            min_severity: Optional severity floor.

        Returns:
            Applicable rules ordered by creation time (oldest first).
        """
        directory_rules: list[Rule] = []
        repository_rules: list[Rule] = []
        global_rules: list[Rule] = []

        for rule in rules:
            if rule.status != RuleStatus.ACTIVE:
                continue

            if directory_id and rule.directory_id == directory_id:
                directory_rules.append(rule)
            elif rule.repository_id == repository_id and not rule.directory_id:
                repository_rules.append(rule)
            elif rule.is_global:
                global_rules.append(rule)

        merged = dedupe_by_text(directory_rules + repository_rules + global_rules)
        filtered = filter_by_min_severity(merged, min_severity)
        ordered = sorted(filtered, key=_created_at_key)

        if self.unlimited:
            return ordered
        return ordered[: self.max_rules]

    def resolve_for_file(
        self,
        rules: Iterable[Rule],
        file_path: str,
        repository_id: str,
        directory_id: str | None = None,
        min_severity: Severity | str | None = None,
    ) -> list[Rule]:
        """Apply the per-file path/inheritance filter, then `resolve`."""
        matched = rules_for_file(file_path, list(rules), repository_id, directory_id)
        return self.resolve(matched, repository_id, directory_id, min_severity)

    def validate_rules_limit(self, total_rules: int) -> bool:
        """Whether a catalog of `total_rules` fits the deployment's cap."""
        if self.unlimited:
            return True
        return total_rules <= self.max_rules


def filter_by_scope(rules: Iterable[Rule], scope: RuleScope) -> list[Rule]:
    return [r for r in rules if r.scope == scope]


def dedupe_by_text(rules: Iterable[Rule]) -> list[Rule]:
    """Remove rules whose text was already seen. First occurrence wins."""
    seen: set[str] = set()
    unique: list[Rule] = []
    for rule in rules:
        if not rule.rule or rule.rule in seen:
            continue
        seen.add(rule.rule)
        unique.append(rule)
    return unique


def filter_by_min_severity(
    rules: Iterable[Rule],
    min_severity: Severity | str | None,
) -> list[Rule]:
    """
    Drop rules ranked strictly below the floor.

    Rules with a missing or unrecognized severity are kept (fail-open).
    """
    rules = list(rules)
    floor = severity_rank(min_severity)
    if floor is None or floor <= severity_rank(Severity.LOW):
        return rules

    kept: list[Rule] = []
    for rule in rules:
        rank = severity_rank(rule.severity)
        if rank is None:
            logger.warning(
                f"Rule {rule.uuid} has unrecognized severity {rule.severity!r}, keeping it"
            )
            kept.append(rule)
            continue
        if rank >= floor:
            kept.append(rule)
    return kept


def rules_for_file(
    file_path: str | None,
    rules: list[Rule],
    repository_id: str | None = None,
    directory_id: str | None = None,
    use_include: bool = True,
    use_exclude: bool = True,
) -> list[Rule]:
    """
    Filter rules by path pattern, repository ownership and inheritance.

    A repository-level query (no directory id) never matches a rule that
    carries a directory id.
    """
    normalized = _normalize_path(file_path)
    matched: list[Rule] = []

    for rule in rules:
        if repository_id and not directory_id and rule.directory_id:
            continue

        if not _is_path_match(rule, normalized):
            continue

        if not _is_repository_match(rule, repository_id):
            continue

        if _is_owned_by_target(rule, repository_id, directory_id):
            matched.append(rule)
            continue

        if _is_inheritance_match(rule, repository_id, directory_id, use_include, use_exclude):
            matched.append(rule)

    return matched


def glob_base_path(pattern: str) -> str:
    """Leading path segments of a glob up to the first segment with a wildcard."""
    base: list[str] = []
    for part in pattern.split("/"):
        if any(ch in part for ch in GLOB_CHARS):
            break
        base.append(part)
    return "/".join(base)


def matches_glob(file_path: str, pattern: str) -> bool:
    spec = pathspec.PathSpec.from_lines("gitwildmatch", [pattern])
    return spec.match_file(file_path)


def _normalize_path(file_path: str | None) -> str | None:
    if file_path is None:
        return None
    return file_path.replace("\\", "/").lstrip("/")


def _is_path_match(rule: Rule, file_path: str | None) -> bool:
    if file_path is None:
        return True

    pattern = (rule.path_pattern or "").strip()
    if not pattern:
        return True

    if matches_glob(file_path, pattern):
        return True

    # Pattern naming the file's folder
    file_dir = file_path.rsplit("/", 1)[0] if "/" in file_path else ""
    base = glob_base_path(pattern).rstrip("/")
    return base in (file_path, file_dir) and base != ""


def _is_repository_match(rule: Rule, repository_id: str | None) -> bool:
    if not repository_id:
        return True
    return rule.is_global or rule.repository_id == repository_id


def _is_owned_by_target(rule: Rule, repository_id: str | None, directory_id: str | None) -> bool:
    # A rule is not "inherited" by the level it was defined on
    if directory_id:
        return rule.directory_id == directory_id
    if repository_id:
        return rule.repository_id == repository_id and not rule.directory_id
    return False


def _is_inheritance_match(
    rule: Rule,
    repository_id: str | None,
    directory_id: str | None,
    use_include: bool,
    use_exclude: bool,
) -> bool:
    if not directory_id and not repository_id:
        return True

    inheritance = rule.inheritance
    if not inheritance.inheritable:
        return False

    targets = [t for t in (directory_id, repository_id) if t]
    excluded = use_exclude and any(t in inheritance.exclude for t in targets)
    included = use_include and any(t in inheritance.include for t in targets)

    return not excluded and (not inheritance.include or included)


def _created_at_key(rule: Rule) -> datetime:
    created = rule.created_at
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created
