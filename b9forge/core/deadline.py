"""Per-operation deadlines shared by every blocking step of a transfer."""

from __future__ import annotations

import time

from b9forge.core.errors import RepositoryTimeoutError


class Deadline:
    """A monotonic point in time after which an operation must stop.

    Parameters
    ----------
    seconds:
        Budget from now. ``None`` means the operation may run forever.
    """

    def __init__(self, seconds: float | None) -> None:
        self._seconds = seconds
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    @classmethod
    def never(cls) -> Deadline:
        return cls(None)

    @property
    def seconds(self) -> float | None:
        return self._seconds

    def remaining(self) -> float | None:
        """Seconds left, clamped at zero. ``None`` if unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def check(
        self,
        operation: str,
        *,
        image_name: str | None = None,
        repo_id: str | None = None,
    ) -> None:
        """Raise ``RepositoryTimeoutError`` if the deadline has passed."""
        if self.expired:
            raise RepositoryTimeoutError(
                f"{operation} exceeded its deadline of {self._seconds}s",
                image_name=image_name,
                repo_id=repo_id,
            )

    def __repr__(self) -> str:
        return f"Deadline(seconds={self._seconds!r}, remaining={self.remaining()!r})"
