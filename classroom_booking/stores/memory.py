"""In-process booking store.

Keeps documents in dicts and pushes a fresh snapshot to every watcher after
each write.  Used for local development (``STORE_BACKEND=memory``) and in
tests.
"""

from __future__ import annotations

import copy
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Optional

from classroom_booking.errors import StoreError

from .base import (
    COLLECTIONS,
    BookingStore,
    ErrorCallback,
    SnapshotCallback,
    Unsubscribe,
)

logger = logging.getLogger(__name__)


class InMemoryBookingStore(BookingStore):
    """BookingStore backed by plain dicts."""

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, dict[str, Any]]] = {
            name: {} for name in COLLECTIONS
        }
        self._watchers: dict[str, list[SnapshotCallback]] = {
            name: [] for name in COLLECTIONS
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _collection(self, collection: str) -> dict[str, dict[str, Any]]:
        try:
            return self._docs[collection]
        except KeyError:
            raise StoreError(f"Unknown collection: {collection}") from None

    def _snapshot(self, collection: str) -> list[dict[str, Any]]:
        # Documents are stamped on insert, so reverse insertion order is
        # newest first
        return [
            {"id": doc_id, **copy.deepcopy(data)}
            for doc_id, data in reversed(self._collection(collection).items())
        ]

    def _notify(self, collection: str) -> None:
        snapshot = self._snapshot(collection)
        for callback in list(self._watchers[collection]):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Snapshot watcher failed for %s", collection)

    # ------------------------------------------------------------------
    # BookingStore interface
    # ------------------------------------------------------------------

    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        self._collection(collection)
        self._watchers[collection].append(on_snapshot)
        on_snapshot(self._snapshot(collection))

        def unsubscribe() -> None:
            try:
                self._watchers[collection].remove(on_snapshot)
            except ValueError:
                pass

        return unsubscribe

    async def create(self, collection: str, data: dict[str, Any]) -> str:
        docs = self._collection(collection)
        doc_id = secrets.token_hex(10)
        stored = copy.deepcopy(data)
        stored.pop("id", None)
        stored["timestamp"] = datetime.now(timezone.utc)
        docs[doc_id] = stored
        logger.info("Created %s/%s", collection, doc_id)
        self._notify(collection)
        return doc_id

    async def update(
        self, collection: str, doc_id: str, fields: dict[str, Any]
    ) -> None:
        docs = self._collection(collection)
        if doc_id not in docs:
            raise StoreError(f"No document to update: {collection}/{doc_id}")
        docs[doc_id].update(copy.deepcopy(fields))
        self._notify(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        # Deleting a missing document is not an error, as in Firestore
        if self._collection(collection).pop(doc_id, None) is not None:
            logger.info("Deleted %s/%s", collection, doc_id)
            self._notify(collection)

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        data = self._collection(collection).get(doc_id)
        if data is None:
            return None
        return {"id": doc_id, **copy.deepcopy(data)}
