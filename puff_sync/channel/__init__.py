"""
Session channel module.

Provides the authenticated, bidirectional event connection to the
sync server and the wire payload types it carries.
"""

from .channel import SessionChannel
from .events import (
    AccountSnapshot,
    ChannelMessage,
    ChannelStatus,
    Friend,
    FriendRequest,
    ServerError,
    ServerPuffState,
    classify_server_error,
    parse_synced_ids,
)
from .transport import Transport, WebSocketTransport

__all__ = [
    "SessionChannel",
    "ChannelStatus",
    "ChannelMessage",
    "AccountSnapshot",
    "Friend",
    "FriendRequest",
    "ServerError",
    "ServerPuffState",
    "classify_server_error",
    "parse_synced_ids",
    "Transport",
    "WebSocketTransport",
]
