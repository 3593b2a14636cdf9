"""
Wire events and payload types for the session channel.

Every message on the connection is a JSON object:

    {"event": "<name>", "data": <payload or null>}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Outbound
ADD_PUFFS = "addPuffs"
GET_PUFF_COUNT = "getPuffCount"
ADD_FRIEND = "addFriend"
ACCEPT_REQUEST = "acceptRequest"
DECLINE_REQUEST = "declineRequest"

# Inbound
UPDATE = "update"
SYNCED_PUFF_IDS = "syncedPuffIds"
PUFF_COUNT = "puffCount"
ERROR = "error"

AUTH_ERROR_CODES = frozenset({"auth_failed", "unauthorized", "user_not_found", "token_expired"})

# Fallback for servers that only send free text. Loose on purpose:
# any message mentioning one of these is treated as an auth failure.
AUTH_ERROR_FRAGMENTS = ("authentication", "unauthorized", "user does not exist")


class ChannelStatus(Enum):
    """Connection state of the session channel."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTH_FAILED = "auth_failed"


@dataclass
class ChannelMessage:
    """A named event travelling over the channel."""

    event: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "data": self.data}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ChannelMessage:
        event = raw.get("event") or raw.get("type")
        if not isinstance(event, str) or not event:
            raise ValueError(f"Message has no event name: {raw!r}")
        return cls(event=event, data=raw.get("data"))


@dataclass
class ServerError:
    """An inbound error event after classification."""

    message: str
    code: str | None = None
    is_auth_failure: bool = False


def classify_server_error(payload: Any) -> ServerError:
    """Classify an inbound error payload.

    A structured `code` decides when present. Otherwise the message
    text is matched against AUTH_ERROR_FRAGMENTS, case-insensitively.

    Args:
        payload: `{"message": str, "code": str}`, a bare string, or anything else

    Returns:
        ServerError with is_auth_failure set
    """
    if isinstance(payload, dict):
        message = str(payload.get("message") or payload.get("error") or "")
        code = payload.get("code")
    elif payload is None:
        message, code = "", None
    else:
        message, code = str(payload), None

    if code:
        code = str(code).lower()
        return ServerError(message=message or code, code=code, is_auth_failure=code in AUTH_ERROR_CODES)

    lowered = message.lower()
    is_auth = any(fragment in lowered for fragment in AUTH_ERROR_FRAGMENTS)
    return ServerError(message=message or "Unknown server error", is_auth_failure=is_auth)


@dataclass
class ServerPuffState:
    """The server's view of this account's puffs for one run.

    `ids` is None when the server only reports a count.
    """

    count: int
    ids: frozenset[str] | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> ServerPuffState:
        """Parse a puffCount payload: an int, or {"count": int, "ids": [...]}."""
        if isinstance(payload, bool):
            raise ValueError(f"Invalid puffCount payload: {payload!r}")
        if isinstance(payload, int):
            return cls(count=payload)
        if isinstance(payload, dict):
            ids = payload.get("ids")
            id_set = frozenset(str(i) for i in ids) if isinstance(ids, list) else None
            count = payload.get("count")
            if not isinstance(count, int) or isinstance(count, bool):
                if id_set is None:
                    raise ValueError(f"Invalid puffCount payload: {payload!r}")
                count = len(id_set)
            return cls(count=count, ids=id_set)
        raise ValueError(f"Invalid puffCount payload: {payload!r}")


def parse_synced_ids(payload: Any) -> set[str]:
    """Parse a syncedPuffIds payload: {"ids": [...]} or a bare list."""
    if isinstance(payload, dict):
        payload = payload.get("ids")
    if not isinstance(payload, list):
        raise ValueError(f"Invalid syncedPuffIds payload: {payload!r}")
    return {str(i) for i in payload}


@dataclass
class AccountUser:
    id: str
    name: str
    email: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountUser:
        return cls(id=str(data["id"]), name=data.get("name", ""), email=data.get("email", ""))


@dataclass
class PuffSummary:
    """A friend's aggregate numbers as computed by the server."""

    puffs_today: int
    average_puffs_per_day: str
    change_percentage: str
    puffless_day_streak: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PuffSummary:
        return cls(
            puffs_today=int(data.get("puffsToday", 0)),
            average_puffs_per_day=str(data.get("averagePuffsPerDay", "0")),
            change_percentage=str(data.get("changePercentage", "0")),
            puffless_day_streak=int(data.get("pufflessDayStreak", 0)),
        )


@dataclass
class Friend:
    id: str
    name: str
    email: str
    summary: PuffSummary | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Friend:
        summary = data.get("puffsummary")
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            email=data.get("email", ""),
            summary=PuffSummary.from_dict(summary) if isinstance(summary, dict) else None,
        )


@dataclass
class FriendRequest:
    id: str
    status: str
    sender: AccountUser | None = None
    receiver: AccountUser | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FriendRequest:
        sender = data.get("sender")
        receiver = data.get("receiver")
        return cls(
            id=str(data["id"]),
            status=data.get("status", ""),
            sender=AccountUser.from_dict(sender) if isinstance(sender, dict) else None,
            receiver=AccountUser.from_dict(receiver) if isinstance(receiver, dict) else None,
        )


@dataclass
class AccountSnapshot:
    """Full account state pushed by the server in an update event."""

    user: AccountUser
    friends: list[Friend] = field(default_factory=list)
    sent_friend_requests: list[FriendRequest] = field(default_factory=list)
    received_friend_requests: list[FriendRequest] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> AccountSnapshot:
        """Parse an update payload.

        The snapshot is nested under a "sync" key; a bare snapshot is
        accepted too.

        Raises:
            ValueError: If the payload has no user
        """
        if not isinstance(payload, dict):
            raise ValueError(f"Invalid update payload: {payload!r}")
        sync = payload.get("sync", payload)
        if not isinstance(sync, dict) or not isinstance(sync.get("user"), dict):
            raise ValueError("Update payload has no user")
        return cls(
            user=AccountUser.from_dict(sync["user"]),
            friends=[Friend.from_dict(f) for f in sync.get("friends", [])],
            sent_friend_requests=[FriendRequest.from_dict(r) for r in sync.get("sentFriendRequests", [])],
            received_friend_requests=[
                FriendRequest.from_dict(r) for r in sync.get("receivedFriendRequests", [])
            ],
        )
