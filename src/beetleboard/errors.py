from __future__ import annotations


class BeetleboardError(Exception):
    """Base class for every error raised by the sync pipeline."""


class UpstreamError(BeetleboardError):
    """Upstream call failed after exhausting its retry budget.

    ``status`` is the last HTTP status seen, or ``None`` for transport errors
    and timeouts.
    """

    def __init__(self, status: int | None, message: str) -> None:
        super().__init__(f"HTTP {status}: {message}" if status is not None else message)
        self.status = status
        self.message = message


class DiscoveryError(BeetleboardError):
    def __init__(self, found: int, minimum: int) -> None:
        super().__init__(
            f"Discovered only {found} users (expected at least {minimum}); "
            "refusing to use a partial user list"
        )
        self.found = found
        self.minimum = minimum


class EmptySyncError(BeetleboardError):
    def __init__(self) -> None:
        super().__init__("No valid users retrieved - critical sync failure")


class IncompleteSyncError(BeetleboardError):
    def __init__(self, fetched: int, expected: int, threshold: float) -> None:
        self.fetched = fetched
        self.expected = expected
        self.threshold = threshold
        super().__init__(
            f"INCOMPLETE_SYNC: only {fetched}/{expected} users fetched "
            f"({self.completion_rate * 100:.1f}% < {threshold * 100:.0f}%)"
        )

    @property
    def completion_rate(self) -> float:
        if self.expected <= 0:
            return 0.0
        return self.fetched / self.expected


class SyncInProgressError(BeetleboardError):
    def __init__(self) -> None:
        super().__init__("Manual sync already in progress")


class StoreUnavailableError(BeetleboardError):
    pass


class InvalidQueryError(BeetleboardError, ValueError):
    pass
