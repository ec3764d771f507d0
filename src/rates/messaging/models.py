"""Message contracts exchanged over Redis Streams.

Payloads are JSON stored under the "data" field of a stream entry.
Decimal amounts are encoded as strings to keep their precision.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from rates.domain.clock import ensure_utc, utc_now
from rates.exceptions import TriggerDecodeError


@dataclass(frozen=True)
class RateChangeMessage:
    """Published when an instrument's rate moved significantly."""

    instrument_symbol: str
    current_rate_amount: Decimal
    currency: str
    timestamp: datetime

    def to_json(self) -> str:
        return json.dumps(
            {
                "instrument_symbol": self.instrument_symbol,
                "current_rate_amount": str(self.current_rate_amount),
                "currency": self.currency,
                "timestamp": self.timestamp.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "RateChangeMessage":
        data = json.loads(raw)
        return cls(
            instrument_symbol=data["instrument_symbol"],
            current_rate_amount=Decimal(data["current_rate_amount"]),
            currency=data["currency"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


def _normalize_key(key: str) -> str:
    return key.replace("_", "").lower()


@dataclass(frozen=True)
class FetchRatesCommand:
    """Inbound "run one ingestion cycle now" trigger."""

    triggered_at: datetime = field(default_factory=utc_now)

    def to_json(self) -> str:
        return json.dumps({"triggered_at": self.triggered_at.isoformat()})

    @classmethod
    def decode(cls, raw: str | bytes | None) -> "FetchRatesCommand":
        """Decode a trigger payload.

        Property names are matched case-insensitively ("triggered_at",
        "triggeredAt", "TriggeredAt"). A missing timestamp means "now".

        Raises:
            TriggerDecodeError: payload missing, not a JSON object, or a bad timestamp.
        """
        if raw is None:
            raise TriggerDecodeError("Trigger message has no data field")
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise TriggerDecodeError(f"Trigger payload is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise TriggerDecodeError("Trigger payload is not a JSON object")

        fields = {_normalize_key(k): v for k, v in data.items()}
        raw_ts = fields.get("triggeredat")
        if raw_ts is None:
            return cls()
        try:
            triggered_at = ensure_utc(datetime.fromisoformat(str(raw_ts).replace("Z", "+00:00")))
        except ValueError as e:
            raise TriggerDecodeError(f"Invalid triggered_at {raw_ts!r}") from e
        return cls(triggered_at=triggered_at)
