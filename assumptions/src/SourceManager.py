"""SourceManager: Per-source error slots and health counters.

Every source owns one error slot. A failure stores a structured SourceError
in the slot; a success clears it. Failures never touch any other source's
slot, so a partial cycle reports exactly which sources are degraded.

Permanent errors (missing credential or provider) persist until the engine is
reconfigured, so they are reported for logging only the first time they are
recorded. Transient errors are reported every cycle.

.. code-block:: python

    >>> manager = SourceManager(["prices", "stakingApr"])
    >>> manager.record_failure("prices", ErrorCode.MISSING_CREDENTIAL, "no key")
    True
    >>> manager.record_failure("prices", ErrorCode.MISSING_CREDENTIAL, "no key")
    False
    >>> manager.record_success("prices")
    >>> manager.get_errors()["prices"] is None
    True
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .models import ErrorCode, SourceError


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class SourceStatus:
    """Error slot and health counters of one source.

    :ivar consecutive_failures: Failed cycles since the last success.
    :ivar total_failures: Failed cycles since startup.
    :ivar total_successes: Successful cycles since startup.
    :ivar last_error: Error currently held in the slot, if any.
    :ivar last_success_at: ISO timestamp of the last success.
    """

    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    last_error: SourceError | None = None
    last_success_at: str | None = None


class SourceManager:
    """Holds one error slot per source.

    :ivar sources: Slot names, in registration order.
    """

    def __init__(self, sources: list[str]) -> None:
        """Register the initial slots.

        :param sources: Slot names (fetcher names plus gating slots).
        """
        self.sources = list(sources)
        self._status = {name: SourceStatus() for name in self.sources}

    def _get_or_create(self, source: str) -> SourceStatus:
        if source not in self._status:
            self.sources.append(source)
            self._status[source] = SourceStatus()
        return self._status[source]

    def record_failure(
        self,
        source: str,
        code: ErrorCode,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> bool:
        """Record a failure in the source's error slot.

        :param source: Slot of the failing source.
        :param code: Error code.
        :param message: Human-readable error message.
        :param detail: Optional diagnostic data.
        :returns: True if the failure should be logged, False for a repeat of
            a permanent error already in the slot.
        """
        status = self._get_or_create(source)
        status.consecutive_failures += 1
        status.total_failures += 1

        previous = status.last_error
        if code.is_permanent and previous is not None and previous.code == code:
            return False

        status.last_error = SourceError(
            code=code, message=message, timestamp=utc_now_iso(), detail=detail or {}
        )
        return True

    def record_success(self, source: str) -> None:
        """Record a successful fetch, clearing the error slot.

        :param source: Slot of the source that delivered.
        """
        status = self._get_or_create(source)
        status.consecutive_failures = 0
        status.total_successes += 1
        status.last_error = None
        status.last_success_at = utc_now_iso()

    def set_condition(self, source: str, code: ErrorCode, message: str) -> None:
        """Store a gating condition (not a fetch failure) in a slot.

        Counters are left untouched.

        :param source: Slot name (e.g., "feeProjection").
        :param code: Condition code.
        :param message: Explanation.
        """
        status = self._get_or_create(source)
        previous = status.last_error
        if previous is not None and previous.code == code and previous.message == message:
            return
        status.last_error = SourceError(code=code, message=message, timestamp=utc_now_iso())

    def clear(self, source: str) -> None:
        """Clear a slot without counting a success."""
        self._get_or_create(source).last_error = None

    def get_source_status(self, source: str) -> SourceStatus | None:
        """Look up one slot; None for names never registered."""
        return self._status.get(source)

    def get_all_status(self) -> dict[str, SourceStatus]:
        """Snapshot of every slot, keyed by source name."""
        return dict(self._status)

    def has_succeeded(self, source: str) -> bool:
        """Check whether a source has ever succeeded."""
        status = self._status.get(source)
        return status is not None and status.total_successes > 0

    def get_errors(self) -> dict[str, dict[str, Any] | None]:
        """Render every slot for the facade.

        :returns: Dict mapping source name to its error dict, or None if clear.
        """
        return {
            source: status.last_error.to_dict() if status.last_error else None
            for source, status in self._status.items()
        }
