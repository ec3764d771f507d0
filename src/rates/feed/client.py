"""Abstract quote feed interface.

The orchestrator depends only on this interface, keeping transport
details (HTTP API, exchange SDK) in the concrete implementations.
"""

from abc import ABC, abstractmethod

from rates.feed.types import Quote


class QuoteFeed(ABC):
    """Abstract base class for upstream price feeds."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the connection (load markets, open sessions)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release transport resources."""
        ...

    @abstractmethod
    async def fetch_latest_quotes(self) -> list[Quote]:
        """Fetch the latest batch of quotes, one per instrument.

        An empty list is a valid "nothing to do" result.

        Raises:
            FeedError: The feed is unreachable or the payload is malformed.
        """
        ...
