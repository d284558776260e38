"""
Suggestion post-processing shared by the file and pull-request pipelines.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable

from rulescope.models.response_models import UpdatedSuggestion
from rulescope.models.rule_models import Rule
from rulescope.models.suggestion_models import RULE_LABEL, Suggestion

logger = logging.getLogger("rulescope.engine.suggestions")


def is_uuid(value: str | None) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def normalize_generated(suggestions: Iterable[Suggestion]) -> list[Suggestion]:
    """Assign fresh UUIDs to ids the model invented and default the label."""
    normalized: list[Suggestion] = []
    for s in suggestions:
        update = {}
        if not is_uuid(s.id):
            update["id"] = str(uuid.uuid4())
        if not s.label:
            update["label"] = RULE_LABEL
        data = s.model_dump(exclude={"violated_rule_ids"})
        data.update(update)
        normalized.append(Suggestion.model_validate(data))
    return normalized


def normalize_updated(suggestions: Iterable[UpdatedSuggestion]) -> list[Suggestion]:
    """
    Convert updater output into plain suggestions.

    Ids marked as "violated" are not retained. A suggestion carrying
    "broken" rule ids becomes a rule-based suggestion.
    """
    normalized: list[Suggestion] = []
    for s in suggestions:
        data = s.model_dump(exclude={"violated_rule_ids"})
        if not data.get("id"):
            data["id"] = str(uuid.uuid4())
        if s.broken_rule_ids:
            data["label"] = RULE_LABEL
        normalized.append(Suggestion.model_validate(data))
    return normalized


def resolved_rule_ids(suggestions: Iterable[Suggestion]) -> set[str]:
    """Rule ids already covered by rule-based suggestions."""
    resolved: set[str] = set()
    for s in suggestions:
        resolved.update(s.broken_rule_ids)
    return resolved


def attach_severity(suggestions: Iterable[Suggestion], rules: Iterable[Rule]) -> list[Suggestion]:
    """
    Set each suggestion's severity from its FIRST broken rule id found in `rules`.

    Later ids are not considered even if they rank higher. Suggestions whose
    ids match no rule keep their current severity.
    """
    by_id = {r.uuid: r for r in rules}
    result: list[Suggestion] = []

    for s in suggestions:
        rule = next((by_id[rid] for rid in s.broken_rule_ids if rid in by_id), None)
        if rule is None:
            if s.broken_rule_ids:
                logger.debug(f"No catalog rule for suggestion {s.id} ids {s.broken_rule_ids}")
            result.append(s)
            continue
        severity = rule.severity.lower() if rule.severity else None
        result.append(s.model_copy(update={"severity": severity}))

    return result


def cap_suggestions(suggestions: list[Suggestion], limit: int | None) -> list[Suggestion]:
    if limit is None or limit <= 0 or len(suggestions) <= limit:
        return suggestions
    logger.info(f"Capping {len(suggestions)} suggestions to {limit}")
    return suggestions[:limit]
