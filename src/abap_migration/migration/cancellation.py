"""Cooperative cancellation for migration runs."""

import asyncio

from abap_migration.client.exceptions import MigrationCancelledError


class CancellationToken:
    """
    Shared cancellation signal for one project run.

    The orchestrator creates one token per run and passes it down to the
    discovery crawler, orderers and unit worker. Each of them calls
    :meth:`raise_if_cancelled` at its checkpoints.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = "Migration paused"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self.reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise MigrationCancelledError if the token has fired."""
        if self._event.is_set():
            raise MigrationCancelledError(self.reason)
