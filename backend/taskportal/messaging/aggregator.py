"""Unread-count pushes.

After every change that can affect what a user sees as unread, the user's
live connections get the full ``{peerId: count}`` snapshot recomputed from
the ledger. A snapshot (never a delta) lets the client apply pushes in
arrival order on top of whatever the REST endpoint returned earlier.
"""
import logging
from typing import Dict

from .errors import MessagingError
from .ledger import MessageLedger, run_ledger_call
from .registry import ConnectionRegistry
from .schemas import EventType

logger = logging.getLogger(__name__)


def unread_counts_frame(counts: Dict[int, int]) -> dict:
    """Build the ``unread-counts`` frame; JSON object keys are peer ids."""
    return {
        "type": EventType.UNREAD_COUNTS.value,
        "counts": {str(peer_id): count for peer_id, count in counts.items()},
    }


class UnreadAggregator:
    """Computes unread counts and pushes them to a user's connections."""

    def __init__(
        self,
        ledger: MessageLedger,
        registry: ConnectionRegistry,
        timeout: float,
    ) -> None:
        self._ledger = ledger
        self._registry = registry
        self._timeout = timeout

    async def push_unread_counts(self, user_id: int) -> None:
        """Push the current unread snapshot to every live connection of a user.

        Best-effort: failures are logged and never reach the caller, since
        the operation that triggered the push has already succeeded.
        """
        if not self._registry.is_online(user_id):
            return
        try:
            counts = await run_ledger_call(
                self._ledger.unread_counts_for, user_id, timeout=self._timeout
            )
        except MessagingError as e:
            logger.warning("[Unread] Could not compute counts for user %s: %s", user_id, e.message)
            return

        delivered = await self._registry.send_to_user(user_id, unread_counts_frame(counts))
        logger.debug(
            "[Unread] Pushed %d peer counts to %d connections of user %s",
            len(counts), delivered, user_id,
        )
