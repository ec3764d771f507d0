"""Money value object.

CRITICAL: amounts are Decimal. Floats are converted through str() so
0.1 becomes Decimal("0.1"), never its binary approximation.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from rates.exceptions import CurrencyMismatch, InvalidAmount, InvalidCurrency


def _to_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise InvalidAmount(f"Amount {value!r} is not a number") from e
    if not amount.is_finite():
        raise InvalidAmount(f"Amount {value!r} is not a finite number")
    return amount


@dataclass(frozen=True)
class Money:
    """Immutable non-negative amount in a single currency."""

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        amount = _to_decimal(self.amount)
        if amount < 0:
            raise InvalidAmount("Amount cannot be negative.")
        if not isinstance(self.currency, str) or not self.currency.strip():
            raise InvalidCurrency("Currency cannot be empty.")
        object.__setattr__(self, "amount", amount)
        object.__setattr__(self, "currency", self.currency.strip().upper())

    def _ensure_same_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise CurrencyMismatch(
                f"Cannot combine {self.currency} with {other.currency}"
            )

    def add(self, other: "Money") -> "Money":
        self._ensure_same_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def scale(self, factor: Decimal | int | str) -> "Money":
        return Money(self.amount * _to_decimal(factor), self.currency)

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"
