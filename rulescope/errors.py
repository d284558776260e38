"""
Error taxonomy for the rule analysis engine.

ParseFailure is normally carried as a value on a ModelCallResult; the other
errors are raised and handled at the boundaries described in each class.
"""

from __future__ import annotations


class RuleScopeError(Exception):
    """Base class for engine errors."""


class ParseFailure(RuleScopeError):
    """Model output is not valid JSON or does not match the expected schema."""

    def __init__(self, message: str, raw_response: str = "", errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.raw_response = raw_response
        self.errors = errors or []


class ProviderNotFoundError(RuleScopeError):
    """Requested model provider is not registered."""


class ProviderUnavailableError(RuleScopeError):
    """Provider is registered but not usable (missing API key, etc)."""


class ProviderFailure(RuleScopeError):
    """Primary and fallback model calls both failed."""

    def __init__(self, message: str, primary_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.primary_error = primary_error


class RuleLookupFailure(RuleScopeError):
    """A rule id could not be resolved while linking references."""


class ChunkFailure(RuleScopeError):
    """A single pull-request chunk could not be analyzed."""

    def __init__(self, message: str, chunk_index: int) -> None:
        super().__init__(message)
        self.chunk_index = chunk_index


class ReferenceLoadFailure(RuleScopeError):
    """External references declared by a rule could not be loaded."""
