"""Durable slot for the one authorization attempt in flight.

The browser discards every in-memory object when it navigates to the
provider, so the attempt is written to local storage just before leaving
and read back when the redirect returns. There is exactly one slot: a new
attempt overwrites any earlier one that was never consumed.
"""

import json
import logging

from ..storage import LocalStore, StorageError
from .models import PendingFlowState

logger = logging.getLogger(__name__)

PENDING_FLOW_KEY = "authorize"


class RedirectStateStore:
    """Saves and loads the pending flow under a single fixed key."""

    def __init__(self, store: LocalStore, key: str = PENDING_FLOW_KEY):
        self.store = store
        self.key = key

    def save(self, pending: PendingFlowState) -> None:
        """Persist the attempt, unconditionally replacing any previous one."""
        self.store.set_item(self.key, json.dumps(pending.to_dict(), indent=2))
        logger.debug(f"Saved pending flow for client {pending.client_id}")

    def load(self) -> PendingFlowState | None:
        """Return the stored attempt, or None if absent or unreadable."""
        try:
            raw = self.store.get_item(self.key)
        except StorageError as e:
            logger.warning(f"Could not read pending flow: {e}")
            return None

        if raw is None:
            return None

        try:
            return PendingFlowState.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Stored pending flow is invalid: {e!r}")
            return None

    def clear(self) -> bool:
        """Drop the stored attempt. Returns True if one was present."""
        try:
            return self.store.remove_item(self.key)
        except StorageError as e:
            logger.warning(f"Could not clear pending flow: {e}")
            return False
