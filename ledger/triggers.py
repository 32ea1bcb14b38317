"""
On-create triggers: routes newly committed documents to their reactors.

The store has no delayed or background execution; each reactor runs in the
committing thread right after the creating transaction commits. A failing
reactor is logged and reported in the dispatch results, never raised back
into the committing caller.
"""

import logging
from enum import Enum
from typing import Callable, Optional

from .store import DocumentSnapshot, InMemoryDocumentStore

logger = logging.getLogger(__name__)


class TriggerEvent(str, Enum):
    GIFT_SENT = "gift_sent"
    REPORT_SUBMITTED = "report_submitted"
    MESSAGE_CREATED = "message_created"


TRIGGER_COLLECTIONS: dict[TriggerEvent, str] = {
    TriggerEvent.GIFT_SENT: "sent_gifts",
    TriggerEvent.REPORT_SUBMITTED: "reports",
    TriggerEvent.MESSAGE_CREATED: "chat_rooms/*/messages",
}

Handler = Callable[[DocumentSnapshot], object]


class TriggerRegistry:
    def __init__(self):
        self.handlers: dict[TriggerEvent, list[Handler]] = {event: [] for event in TriggerEvent}

    def add_handler(self, event: TriggerEvent, handler: Handler) -> None:
        self.handlers[event].append(handler)

    def remove_handler(self, event: TriggerEvent, handler: Handler) -> None:
        if handler in self.handlers[event]:
            self.handlers[event].remove(handler)

    def list_handlers(self, event: Optional[TriggerEvent] = None) -> list[Handler]:
        if event:
            return list(self.handlers[event])
        return [h for handlers in self.handlers.values() for h in handlers]

    def bind(self, store: InMemoryDocumentStore) -> None:
        for event, pattern in TRIGGER_COLLECTIONS.items():
            store.listen(pattern, lambda snapshot, event=event: self.dispatch(event, snapshot))

    def dispatch(self, event: TriggerEvent, snapshot: DocumentSnapshot) -> list[dict]:
        results = []
        for handler in self.list_handlers(event):
            name = getattr(handler, "__name__", repr(handler))
            try:
                outcome = handler(snapshot)
                results.append({"handler": name, "success": True, "result": outcome})
            except Exception as e:
                logger.exception(f"{event.value} handler {name} failed for {snapshot.path}",
                                 extra={"path": snapshot.path})
                results.append({"handler": name, "success": False, "error": str(e)})
        return results
