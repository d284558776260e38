"""
Prompt Builder — Immutable ModelRequests for every pipeline stage.

Each builder serializes its inputs to JSON and returns a frozen
ModelRequest; nothing is shared between calls.
"""

from __future__ import annotations

import json
from typing import Any

from rulescope.config import settings
from rulescope.models.llm_models import ModelRequest, ParserMode
from rulescope.models.response_models import (
    CodeSuggestionsResponse,
    ExtractedRuleIds,
    GuardianResponse,
)

FILE_TAGS = ("kodyRules",)
PR_TAGS = ("kodyRules", "prLevel")


CLASSIFIER_SYSTEM_PROMPT = """\
You are a code review expert. You receive a diff of one file and a list of
organization rules. Decide which rules are actually violated by the CHANGED
lines of the diff (lines starting with '+').

STRICT RULES:
- Only include rules with a concrete violation in the diff
- Use the exact "uuid" of each rule from the input
- Empty output is valid
- Output STRICT JSON, an array matching this schema:

[
  {"uuid": "rule uuid from input", "reason": "one line explaining the violation"}
]
"""

UPDATER_SYSTEM_PROMPT = """\
You are a code review expert. You receive existing review suggestions for one
file and a list of organization rules. For each suggestion decide:

- unchanged: the suggestion does not touch any rule, return it as-is
- violated: the suggested code itself breaks a rule; correct the suggestion so
  it complies and list the rule uuids in "violatedRuleIds"
- broken: the suggestion addresses the same problem a rule describes; merge the
  rule guidance into the content and list the rule uuids in "brokenRuleIds"

STRICT RULES:
- Keep every suggestion "id" unchanged
- Never invent new suggestions
- Output STRICT JSON matching this schema:

{
  "codeSuggestions": [
    {
      "id": "existing suggestion id",
      "relevantFile": "path",
      "language": "language",
      "suggestionContent": "...",
      "existingCode": "...",
      "improvedCode": "...",
      "oneSentenceSummary": "...",
      "relevantLinesStart": number,
      "relevantLinesEnd": number,
      "label": "existing label",
      "violatedRuleIds": [],
      "brokenRuleIds": []
    }
  ]
}
"""

GENERATE_SYSTEM_PROMPT = """\
You are a code review expert. You receive a diff of one file, the rules that
were found to be violated by it, and suggestions that already cover some rules.

Your task:
- Write one suggestion per distinct violation of the given rules
- Do NOT repeat problems already covered by the existing suggestions
- Reference only line numbers present in the diff
- Reference the violated rule by its uuid in "brokenRuleIds"

Output STRICT JSON matching this schema:

{
  "codeSuggestions": [
    {
      "relevantFile": "path of the file",
      "language": "language of the code",
      "suggestionContent": "explanation of the violation and how to fix it",
      "existingCode": "code from the diff",
      "improvedCode": "fixed code",
      "oneSentenceSummary": "...",
      "relevantLinesStart": number,
      "relevantLinesEnd": number,
      "label": "kody_rules",
      "brokenRuleIds": ["rule uuid"]
    }
  ],
  "overallSummary": "short summary of the rule violations in this file"
}
"""

GUARDIAN_SYSTEM_PROMPT = """\
You validate generated code review suggestions. For each suggestion decide
whether it should be removed because it is wrong, does not match the diff, or
does not actually follow from the referenced rule.

Output STRICT JSON matching this schema:

{"decisions": [{"id": "suggestion id", "shouldRemove": true|false, "reason": "..."}]}
"""

EXTRACT_IDS_SYSTEM_PROMPT = """\
You receive the text of a code review suggestion and a list of known rules.
Return the uuids of the rules the text refers to. Return an empty list if none.

Output STRICT JSON: {"ids": ["rule uuid"]}
"""

PR_ANALYZER_SYSTEM_PROMPT = """\
You are a code review expert specialized in cross-file rule violations in pull
requests. You receive the pull request title and description, the changed
files (without full contents) and the pull-request level rules.

STRICT RULES:
- Only output rules that have actual violations
- Group violations of the same rule under one entry
- For deleted files, only flag rules that explicitly restrict deletion
- Use file "sha" (or "filename" when there is no sha) as file ids
- Empty output is valid: []
- Output STRICT JSON matching this schema:

[
  {
    "ruleId": "rule uuid from input",
    "violations": [
      {
        "primaryFileId": "file id or null",
        "relatedFileIds": ["file id"],
        "reason": "what was expected vs what was found"
      }
    ]
  }
]
"""

PR_GROUPING_SYSTEM_PROMPT = """\
You receive several review suggestions produced for the same pull-request
rule. Consolidate them into one suggestion that addresses every violation with
a single approach. Do not repeat information and do not invent details.

Output STRICT JSON:
{"suggestionContent": "...", "oneSentenceSummary": "..."}
"""


def build_classifier_request(
    rules: list[dict[str, Any]],
    file_path: str,
    patch_with_lines: str,
    language: str = "en-US",
) -> ModelRequest:
    user_prompt = f"""\
=== FILE ===
{file_path}

=== DIFF ===
{patch_with_lines}

=== RULES ===
{json.dumps(rules, indent=2)}

Answer reasons in {language}. Respond with STRICT JSON only.
"""
    return _request(
        CLASSIFIER_SYSTEM_PROMPT,
        user_prompt,
        "classifyKodyRules",
        ParserMode.STRING,
        tags=FILE_TAGS,
        metadata={"file": file_path},
    )


def build_updater_request(
    rules: list[dict[str, Any]],
    suggestions: list[dict[str, Any]],
    file_path: str,
    patch_with_lines: str,
    language: str = "en-US",
) -> ModelRequest:
    user_prompt = f"""\
=== FILE ===
{file_path}

=== DIFF ===
{patch_with_lines}

=== EXISTING SUGGESTIONS ===
{json.dumps(suggestions, indent=2)}

=== RULES ===
{json.dumps(rules, indent=2)}

Write suggestion text in {language}. Respond with STRICT JSON only.
"""
    return _request(
        UPDATER_SYSTEM_PROMPT,
        user_prompt,
        "updateSuggestionsWithKodyRules",
        ParserMode.STRUCTURED,
        schema=CodeSuggestionsResponse,
        tags=FILE_TAGS,
        metadata={"file": file_path},
    )


def build_generate_request(
    rules: list[dict[str, Any]],
    existing: list[dict[str, Any]],
    file_path: str,
    patch_with_lines: str,
    language: str = "en-US",
) -> ModelRequest:
    user_prompt = f"""\
=== FILE ===
{file_path}

=== DIFF ===
{patch_with_lines}

=== VIOLATED RULES ===
{json.dumps(rules, indent=2)}

=== SUGGESTIONS ALREADY COVERING RULES (do not duplicate) ===
{json.dumps(existing, indent=2)}

Write suggestion text in {language}. Respond with STRICT JSON only.
"""
    return _request(
        GENERATE_SYSTEM_PROMPT,
        user_prompt,
        "generateKodyRulesSuggestions",
        ParserMode.STRUCTURED,
        schema=CodeSuggestionsResponse,
        tags=FILE_TAGS,
        metadata={"file": file_path},
    )


def build_guardian_request(
    suggestions: list[dict[str, Any]],
    rules: list[dict[str, Any]],
    patch_with_lines: str,
) -> ModelRequest:
    user_prompt = f"""\
=== DIFF ===
{patch_with_lines}

=== RULES ===
{json.dumps(rules, indent=2)}

=== SUGGESTIONS TO VALIDATE ===
{json.dumps(suggestions, indent=2)}

Respond with STRICT JSON only.
"""
    return _request(
        GUARDIAN_SYSTEM_PROMPT,
        user_prompt,
        "guardianKodyRules",
        ParserMode.STRUCTURED,
        schema=GuardianResponse,
        tags=FILE_TAGS,
    )


def build_extract_ids_request(content: str, rules: list[dict[str, Any]]) -> ModelRequest:
    user_prompt = f"""\
=== SUGGESTION ===
{content}

=== KNOWN RULES ===
{json.dumps(rules, indent=2)}

Respond with STRICT JSON only.
"""
    return _request(
        EXTRACT_IDS_SYSTEM_PROMPT,
        user_prompt,
        "extractKodyRuleIds",
        ParserMode.STRUCTURED,
        schema=ExtractedRuleIds,
        tags=FILE_TAGS,
    )


def build_pr_analyzer_request(
    rules: list[dict[str, Any]],
    files: list[dict[str, Any]],
    pr_title: str,
    pr_description: str,
    language: str = "en-US",
    chunk_index: int = 0,
) -> ModelRequest:
    user_prompt = f"""\
=== PULL REQUEST ===
Title: {pr_title}
Description: {pr_description}

=== FILES ===
{json.dumps(files, indent=2)}

=== RULES ===
{json.dumps(rules, indent=2)}

Write reasons in {language}. Respond with STRICT JSON only.
"""
    return _request(
        PR_ANALYZER_SYSTEM_PROMPT,
        user_prompt,
        "prLevelKodyRulesAnalyzer",
        ParserMode.STRING,
        tags=PR_TAGS,
        metadata={"chunk": chunk_index},
    )


def build_pr_grouping_request(
    rule: dict[str, Any],
    suggestions: list[dict[str, Any]],
    language: str = "en-US",
) -> ModelRequest:
    user_prompt = f"""\
=== RULE ===
{json.dumps(rule, indent=2)}

=== SUGGESTIONS ===
{json.dumps(suggestions, indent=2)}

Write in {language}. Respond with STRICT JSON only.
"""
    return _request(
        PR_GROUPING_SYSTEM_PROMPT,
        user_prompt,
        "prLevelKodyRulesGrouping",
        ParserMode.STRING,
        tags=PR_TAGS,
        metadata={"rule": rule.get("uuid")},
    )


def _request(
    system_prompt: str,
    user_prompt: str,
    run_name: str,
    parser_mode: ParserMode,
    schema=None,
    tags: tuple[str, ...] = (),
    metadata: dict[str, Any] | None = None,
) -> ModelRequest:
    return ModelRequest(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        run_name=run_name,
        parser_mode=parser_mode,
        response_schema=schema,
        temperature=settings.llm_temperature,
        tags=tags,
        metadata=metadata or {},
    )
