"""
Ephemeral message expiry.

The store cannot schedule a delete for later, so expiry happens in two
places: when a message is created (mark it, or delete it at once if its time
has already passed) and in a periodic sweep that removes everything whose
delete_at is in the past. The sweep is safe to run any number of times.
"""

import logging
from datetime import datetime

from .documents import Clock, utc_now
from .models import MessageStatus
from .store import DocumentSnapshot, InMemoryDocumentStore

logger = logging.getLogger(__name__)

ROOMS = "chat_rooms"


class EphemeralReaper:
    def __init__(self, store: InMemoryDocumentStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def on_message_created(self, snapshot: DocumentSnapshot) -> str:
        delete_at = snapshot.get("delete_at")
        if not snapshot.get("is_ephemeral") or not isinstance(delete_at, datetime):
            return "ignored"
        if delete_at > self.clock():
            self.store.update(snapshot.path, {"status": MessageStatus.PENDING_DELETION.value})
            return "scheduled"
        self.store.delete(snapshot.path)
        return "deleted"

    def sweep(self) -> int:
        now = self.clock()
        batch = self.store.batch()
        try:
            for room in self.store.query(ROOMS):
                expired = self.store.query(f"{ROOMS}/{room.id}/messages", [
                    ("is_ephemeral", "==", True),
                    ("delete_at", "<", now),
                ])
                for message in expired:
                    logger.info(f"Deleting ephemeral message {message.id} from chat room {room.id}",
                                extra={"path": message.path})
                    batch.delete(message.path)
            batch.commit()
        except Exception:
            logger.exception("Error during ephemeral message cleanup")
            return 0
        logger.info("Ephemeral messages cleanup completed", extra={"deleted": len(batch)})
        return len(batch)
