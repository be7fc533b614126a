"""Typed failures raised by the piggy bank engine.

Callers (route handlers, the dashboard) map these onto their own
responses: validation problems and business-rule refusals are the
caller's fault, ``NotFoundError`` covers missing and foreign records,
``AtomicityFailure`` means the store rolled a unit back.
"""

from __future__ import annotations


class FinanceError(Exception):
    """Base exception for engine operations."""
    pass


class ValidationError(FinanceError, ValueError):
    """Malformed or out-of-range input."""
    pass


class NotFoundError(FinanceError, LookupError):
    """Referenced record is absent or belongs to another user."""
    pass


class PreconditionError(FinanceError):
    """Operation refused by a business rule."""
    pass


class NoDefaultBankError(PreconditionError):
    """User has no piggy bank flagged as default."""
    pass


class InsufficientBalanceError(PreconditionError):
    """Source bank cannot cover the requested amount."""
    pass


class HierarchyError(PreconditionError):
    """Parent/child assignment would break the two-level hierarchy."""
    pass


class DeletionBlockedError(PreconditionError):
    """Bank still has children or transactions."""
    pass


class AtomicityFailure(FinanceError):
    """A multi-step write could not complete as a unit and was rolled back."""
    pass
