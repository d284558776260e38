"""
Reference Loader — Fetches the repository files a rule refers to.

Rules that declare external references must only be analyzed with those
references in hand; a rule whose references could not be loaded is
removed from the candidate set for the run.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from rulescope.errors import ReferenceLoadFailure
from rulescope.models.context_models import AnalysisContext
from rulescope.models.rule_models import LoadedReference, Rule

logger = logging.getLogger("rulescope.engine.reference_loader")


class ReferenceLoader(ABC):
    @abstractmethod
    async def load_references(
        self,
        rules: list[Rule],
        context: AnalysisContext,
    ) -> dict[str, list[LoadedReference]]:
        """
        Load references for rules that declare them.

        Returns a map keyed by rule uuid. A rule missing from the map (or
        mapped to an empty list) is treated as failed.
        """


class StaticReferenceLoader(ReferenceLoader):
    """Serves reference contents from an in-process {file_path: content} map."""

    def __init__(self, contents: dict[str, str] | None = None) -> None:
        self.contents = dict(contents or {})

    async def load_references(
        self,
        rules: list[Rule],
        context: AnalysisContext,
    ) -> dict[str, list[LoadedReference]]:
        loaded: dict[str, list[LoadedReference]] = {}
        for rule in rules:
            try:
                loaded[rule.uuid] = [
                    LoadedReference(
                        file_path=ref.file_path,
                        content=self._read(ref.file_path),
                        description=ref.description,
                    )
                    for ref in rule.external_references
                ]
            except ReferenceLoadFailure as e:
                logger.warning(f"Rule {rule.uuid}: {e}")
        return loaded

    def _read(self, file_path: str) -> str:
        if file_path not in self.contents:
            raise ReferenceLoadFailure(f"Reference not found: {file_path}")
        return self.contents[file_path]


async def apply_reference_loading(
    rules: list[Rule],
    context: AnalysisContext,
    loader: ReferenceLoader | None,
) -> tuple[list[Rule], dict[str, list[LoadedReference]]]:
    """
    Split rules into those usable for this run and their loaded references.

    Rules without declared references pass through untouched.
    """
    needing = [r for r in rules if r.external_references]
    if not needing:
        return list(rules), {}

    loaded: dict[str, list[LoadedReference]] = {}
    if loader is None:
        logger.warning(
            f"{len(needing)} rules declare external references but no loader is configured"
        )
    else:
        try:
            loaded = await loader.load_references(needing, context)
        except Exception as e:
            logger.error(f"Reference loading failed: {e}", exc_info=True)
            loaded = {}

    kept: list[Rule] = []
    for rule in rules:
        if not rule.external_references:
            kept.append(rule)
        elif loaded.get(rule.uuid):
            kept.append(rule)
        else:
            logger.warning(f"Excluding rule {rule.uuid}: external references failed to load")

    return kept, {uuid: refs for uuid, refs in loaded.items() if refs}
