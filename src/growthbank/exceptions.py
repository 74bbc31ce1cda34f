"""Centralized exception hierarchy for GrowthBank.

All GrowthBank exceptions inherit from GrowthBankError, so callers can
catch engine failures with a single clause.
"""


class GrowthBankError(Exception):
    """Base exception for all GrowthBank errors."""


class ValidationError(GrowthBankError):
    """Input outside the accepted range or shape."""


class NotFoundError(GrowthBankError):
    """A referenced record does not exist."""


class CatalogNotFoundError(NotFoundError, ValidationError):
    """Task or difficulty is missing or inactive.

    Raised before any reward is computed, so it is both a lookup miss and
    an invalid calculator input.
    """


class SessionNotFoundError(NotFoundError):
    """The referenced learning session does not exist."""


class RuleNotFoundError(NotFoundError):
    """The referenced decay rule does not exist."""


class InsufficientBalanceError(GrowthBankError):
    """A spend would drive the user's balance below zero."""

    def __init__(self, user_id: str, balance: int, requested: int):
        self.user_id = user_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient balance for {user_id}: "
            f"have {balance}, need {requested}"
        )


class InternalComputeError(GrowthBankError):
    """A reward or decay computation failed unexpectedly."""


class StorageError(GrowthBankError):
    """Errors related to storage backend operations."""


class ConfigurationError(GrowthBankError):
    """Configuration file is missing or invalid."""


__all__ = [
    "GrowthBankError",
    "ValidationError",
    "NotFoundError",
    "CatalogNotFoundError",
    "SessionNotFoundError",
    "RuleNotFoundError",
    "InsufficientBalanceError",
    "InternalComputeError",
    "StorageError",
    "ConfigurationError",
]
