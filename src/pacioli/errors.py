"""Exception taxonomy for the document chain engine.

Every user-facing rule failure derives from :class:`BusinessRuleViolation`
so callers can map the whole family to a single response while still
branching on the concrete class. :class:`ChainIntegrityError` is kept
outside that family because it reports corrupted data rather than a
rejected request.
"""

from __future__ import annotations

from typing import Iterable


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class InvalidWorkflowTransition(BusinessRuleViolation):
    """Raised when a link is requested outside quotation→invoice→receipt."""


class PreconditionNotMet(BusinessRuleViolation):
    """Raised when the source document is not in a state that allows linking."""


class DuplicateLink(BusinessRuleViolation):
    """Raised when the source already links a real child of the requested type."""


class InvalidTaxConfiguration(BusinessRuleViolation):
    """Raised when tax rates would yield non-finite or negative amounts."""


class DocumentNotFound(BusinessRuleViolation):
    """Raised when an operation references an id absent from the pool."""


class DocumentValidationError(BusinessRuleViolation):
    """Raised when a document fails field-level validation."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = list(errors)
        super().__init__("Document is invalid: " + "; ".join(self.errors))


class ChainIntegrityError(RuntimeError):
    """Raised when traversal finds documents that contradict chain invariants."""


__all__ = [
    "BusinessRuleViolation",
    "InvalidWorkflowTransition",
    "PreconditionNotMet",
    "DuplicateLink",
    "InvalidTaxConfiguration",
    "DocumentNotFound",
    "DocumentValidationError",
    "ChainIntegrityError",
]
