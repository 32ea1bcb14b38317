"""
Bidirectional friend graph.

Friendship is stored on both user documents and always written for both sides
in the same transaction. When two users request each other, whichever request
commits second sees the first one pending and accepts it instead of creating
a mirror request.
"""

import logging

from .documents import Clock, load_user, to_document, user_path, utc_now
from .errors import (
    AlreadyExistsError, FailedPreconditionError, InvalidArgumentError, NotFoundError,
    PermissionDeniedError,
)
from .models import CallResult, FriendRequest, FriendRequestAction, FriendRequestStatus, User
from .store import InMemoryDocumentStore, Transaction

logger = logging.getLogger(__name__)

REQUESTS = "friend_requests"


def _with(items: list[str], value: str) -> list[str]:
    return items if value in items else items + [value]


def _without(items: list[str], value: str) -> list[str]:
    return [item for item in items if item != value]


def _settle(txn: Transaction, sender: User, receiver: User, befriend: bool) -> None:
    """Clear the pair's pending entries on both sides, optionally linking them."""
    for user, other in ((sender, receiver), (receiver, sender)):
        fields = {
            "sent_friend_requests": _without(user.sent_friend_requests, other.id),
            "received_friend_requests": _without(user.received_friend_requests, other.id),
        }
        if befriend:
            fields["friends"] = _with(user.friends, other.id)
        txn.update(user_path(user.id), fields)


class FriendGraph:
    def __init__(self, store: InMemoryDocumentStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def _pending(self, txn: Transaction, sender_id: str, receiver_id: str):
        return txn.query(REQUESTS, [
            ("sender_id", "==", sender_id),
            ("receiver_id", "==", receiver_id),
            ("status", "==", FriendRequestStatus.PENDING.value),
        ])

    def send_request(self, sender_id: str, receiver_id: str) -> CallResult:
        if not receiver_id:
            raise InvalidArgumentError("The 'receiver_id' field is required.")
        if sender_id == receiver_id:
            raise InvalidArgumentError("You cannot send a friend request to yourself.")

        def body(txn: Transaction) -> CallResult:
            sender = load_user(txn, sender_id, "Sender")
            receiver = load_user(txn, receiver_id, "Receiver")
            if receiver_id in sender.friends or sender_id in receiver.friends:
                raise FailedPreconditionError("You are already friends with this user.")
            if self._pending(txn, sender_id, receiver_id):
                raise AlreadyExistsError("A pending friend request to this user already exists.")
            reverse = self._pending(txn, receiver_id, sender_id)

            now = self.clock()
            if reverse:
                txn.update(reverse[0].path, {
                    "status": FriendRequestStatus.ACCEPTED.value,
                    "responded_at": now,
                })
                _settle(txn, sender, receiver, befriend=True)
                return CallResult(
                    message=f"{receiver_id} had already requested you. You are now friends.",
                    data={"request_id": reverse[0].id, "status": FriendRequestStatus.ACCEPTED.value},
                )

            request = FriendRequest(
                id=self.store.new_id(),
                sender_id=sender_id,
                receiver_id=receiver_id,
                status=FriendRequestStatus.PENDING,
                created_at=now,
            )
            txn.create(f"{REQUESTS}/{request.id}", to_document(request))
            txn.update(user_path(sender_id), {
                "sent_friend_requests": _with(sender.sent_friend_requests, receiver_id),
            })
            txn.update(user_path(receiver_id), {
                "received_friend_requests": _with(receiver.received_friend_requests, sender_id),
            })
            return CallResult(message="Friend request sent.",
                              data={"request_id": request.id, "status": FriendRequestStatus.PENDING.value})

        result = self.store.run_transaction(body)
        logger.info(f"Friend request {sender_id} -> {receiver_id}: {result.data['status']}",
                    extra={"user_id": sender_id, "request_id": result.data["request_id"]})
        return result

    def respond(self, request_id: str, action, caller_id: str) -> CallResult:
        if not request_id:
            raise InvalidArgumentError("The 'request_id' field is required.")
        try:
            response = FriendRequestAction(action)
        except ValueError:
            raise InvalidArgumentError("Invalid action. Must be 'accept' or 'decline'.")
        path = f"{REQUESTS}/{request_id}"

        def body(txn: Transaction) -> CallResult:
            snapshot = txn.get(path)
            if not snapshot.exists:
                raise NotFoundError(f"Friend request {request_id} not found")
            request = FriendRequest(id=request_id, **snapshot.to_dict())
            if request.receiver_id != caller_id:
                raise PermissionDeniedError("Only the receiver can respond to this friend request.")
            if request.status != FriendRequestStatus.PENDING:
                raise FailedPreconditionError(f"Friend request already {request.status.value}.")
            sender = load_user(txn, request.sender_id, "Sender")
            receiver = load_user(txn, request.receiver_id, "Receiver")

            accepted = response == FriendRequestAction.ACCEPT
            status = FriendRequestStatus.ACCEPTED if accepted else FriendRequestStatus.DECLINED
            txn.update(path, {"status": status.value, "responded_at": self.clock()})
            _settle(txn, sender, receiver, befriend=accepted)
            return CallResult(message=f"Friend request {status.value}.",
                              data={"request_id": request_id, "status": status.value})

        return self.store.run_transaction(body)

    def remove_friend(self, user_id: str, friend_id: str) -> CallResult:
        if not friend_id:
            raise InvalidArgumentError("The 'friend_id' field is required.")
        if user_id == friend_id:
            raise InvalidArgumentError("You cannot remove yourself as a friend.")

        def body(txn: Transaction) -> CallResult:
            user = load_user(txn, user_id)
            friend = load_user(txn, friend_id, "Friend")
            if friend_id not in user.friends and user_id not in friend.friends:
                raise FailedPreconditionError("You are not friends with this user.")
            txn.update(user_path(user_id), {"friends": _without(user.friends, friend_id)})
            txn.update(user_path(friend_id), {"friends": _without(friend.friends, user_id)})
            return CallResult(message="Friend removed.", data={"friend_id": friend_id})

        result = self.store.run_transaction(body)
        logger.info(f"{user_id} removed friend {friend_id}", extra={"user_id": user_id})
        return result
