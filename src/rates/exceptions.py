"""Custom exceptions for the rates service.

Domain, validation and collaborator exceptions all live here
to avoid circular imports between the domain and infrastructure layers.
"""


class RatesError(Exception):
    """Base exception for all rates service errors."""


class ValidationError(RatesError, ValueError):
    """Raised when a value object or aggregate is constructed from bad input."""


class InvalidAmount(ValidationError):
    """Raised when a monetary amount is negative or not a finite number."""


class InvalidCurrency(ValidationError):
    """Raised when a currency code is empty or whitespace."""


class InvalidArgument(ValidationError):
    """Raised when an instrument is created with a missing symbol, name, rate or timestamp."""


class DomainRuleViolation(RatesError):
    """Base for business rules enforced by the Instrument aggregate."""


class CurrencyMismatch(DomainRuleViolation):
    """Raised when two Money values of different currencies are combined."""


class StaleObservation(DomainRuleViolation):
    """Raised when an update does not strictly advance an instrument's timestamp."""


class FeedError(RatesError):
    """Raised when the upstream price feed is unreachable or returns a malformed batch."""


class StoreError(RatesError):
    """Raised when the instrument store fails to read or write."""


class NotificationError(RatesError):
    """Raised when a rate change notification cannot be published."""


class TriggerDecodeError(RatesError):
    """Raised when an inbound trigger message cannot be decoded."""
