"""Cloud Firestore booking store.

Uses the google-cloud-firestore client.  Credentials come from a service
account JSON key when ``GOOGLE_SERVICE_ACCOUNT_JSON`` is set, otherwise from
Application Default Credentials.
"""

from __future__ import annotations

import asyncio
import logging
import os
from functools import partial
from typing import Any, Optional

from google.api_core import exceptions as gexc
from google.cloud import firestore
from google.oauth2.service_account import Credentials

from classroom_booking.errors import StoreError

from .base import BookingStore, ErrorCallback, SnapshotCallback, Unsubscribe

logger = logging.getLogger(__name__)


class FirestoreBookingStore(BookingStore):
    """BookingStore backed by Cloud Firestore."""

    def __init__(
        self,
        project: str | None = None,
        service_account_path: str | None = None,
    ) -> None:
        sa_path = service_account_path or os.environ.get(
            "GOOGLE_SERVICE_ACCOUNT_JSON", ""
        )
        credentials = None
        if sa_path:
            credentials = Credentials.from_service_account_file(sa_path)
            project = project or credentials.project_id
        self._client = firestore.Client(project=project or None, credentials=credentials)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_in_executor(self, func, *args, **kwargs) -> Any:
        """Run a blocking Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(func, *args, **kwargs))
        except gexc.GoogleAPIError as exc:
            raise StoreError(f"Firestore error: {exc}") from exc

    @staticmethod
    def _to_dict(doc) -> dict[str, Any]:
        return {"id": doc.id, **(doc.to_dict() or {})}

    # ------------------------------------------------------------------
    # BookingStore interface
    # ------------------------------------------------------------------

    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        """Watch a collection ordered newest first.

        Firestore invokes the watch callback on its own thread; the snapshot
        is handed to ``on_snapshot`` on the caller's event loop.
        """
        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        def deliver(docs: list[dict[str, Any]]) -> None:
            if loop is not None:
                loop.call_soon_threadsafe(on_snapshot, docs)
            else:
                on_snapshot(docs)

        def callback(doc_snapshots, changes, read_time) -> None:
            try:
                docs = [self._to_dict(doc) for doc in doc_snapshots]
            except Exception as exc:
                logger.exception("Failed to read %s snapshot", collection)
                if on_error is not None:
                    on_error(exc)
                return
            deliver(docs)

        query = self._client.collection(collection).order_by(
            "timestamp", direction=firestore.Query.DESCENDING
        )
        watch = query.on_snapshot(callback)
        logger.info("Watching collection %s", collection)

        def unsubscribe() -> None:
            watch.unsubscribe()

        return unsubscribe

    async def create(self, collection: str, data: dict[str, Any]) -> str:
        body = {k: v for k, v in data.items() if k != "id"}
        body["timestamp"] = firestore.SERVER_TIMESTAMP
        _, ref = await self._run_in_executor(
            self._client.collection(collection).add, body
        )
        logger.info("Created %s/%s", collection, ref.id)
        return ref.id

    async def update(
        self, collection: str, doc_id: str, fields: dict[str, Any]
    ) -> None:
        await self._run_in_executor(
            self._client.collection(collection).document(doc_id).update, fields
        )

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._run_in_executor(
            self._client.collection(collection).document(doc_id).delete
        )
        logger.info("Deleted %s/%s", collection, doc_id)

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        doc = await self._run_in_executor(
            self._client.collection(collection).document(doc_id).get
        )
        if not doc.exists:
            return None
        return self._to_dict(doc)
