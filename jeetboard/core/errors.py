"""Error taxonomy for the fumble/leaderboard core."""

from typing import Optional


class JeetboardError(Exception):
    """Base class for all jeetboard errors."""


class UpstreamUnavailable(JeetboardError):
    """
    An external price or transaction source failed.

    Absorbed at the resolver boundary (price 0); for transaction fetches it
    reaches the aggregator, which isolates it to the affected wallet.
    """

    def __init__(self, source: str, message: str, status: Optional[int] = None):
        self.source = source
        self.status = status
        super().__init__(f"[{source}] {message}")


class LeaderboardUnavailable(JeetboardError):
    """Users or their wallets could not be enumerated at all."""


class InvariantViolation(JeetboardError):
    """A computed result broke a model invariant (programming error)."""
