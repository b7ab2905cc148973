"""Abstract base class for booking stores.

Defines the interface to the live document database that holds the
``bookings`` and ``recurringBookings`` collections.  Any backend
(Firestore, in-memory, etc.) implements this ABC.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

BOOKINGS = "bookings"
RECURRING_BOOKINGS = "recurringBookings"

COLLECTIONS = (BOOKINGS, RECURRING_BOOKINGS)

SnapshotCallback = Callable[[list[dict[str, Any]]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class BookingStore(ABC):
    """Abstract document store with push-based change notification.

    Documents are plain dicts.  Every dict handed out by the store carries
    its document id under ``"id"``.
    """

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        """Watch a collection.

        Args:
            collection: Collection name.
            on_snapshot: Called with the full list of documents, newest
                first by ``timestamp``, once right away and again after
                every change.
            on_error: Called if the watch fails.

        Returns:
            A callable that stops the watch.  Safe to call more than once.
        """

    @abstractmethod
    async def create(self, collection: str, data: dict[str, Any]) -> str:
        """Add a document and stamp its ``timestamp``.

        Returns:
            The id the store assigned.
        """

    @abstractmethod
    async def update(
        self, collection: str, doc_id: str, fields: dict[str, Any]
    ) -> None:
        """Overwrite the given fields of an existing document."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """Read one document, or None if it does not exist."""
