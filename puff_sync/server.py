"""
Reference sync server.

An in-memory aiohttp server speaking the puff sync wire protocol.
Meant for local development and integration tests, not production:
accounts, tokens and puffs live in process memory.

Example:
    >>> server = PuffSyncServer()
    >>> web.run_app(server.create_app(), port=3000)
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from aiohttp import WSMsgType, web

from .channel import events

logger = logging.getLogger(__name__)


@dataclass
class Account:
    id: str
    name: str
    email: str
    password_hash: str
    salt: str
    friends: set[str] = field(default_factory=set)
    # puff id -> epoch seconds
    puffs: dict[str, float] = field(default_factory=dict)


@dataclass
class PendingRequest:
    id: str
    sender_id: str
    receiver_id: str
    status: str = "pending"


@dataclass
class ConnectedClient:
    """A connected sync client."""

    client_id: str
    user_id: str
    ws: web.WebSocketResponse
    connected_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


def _hash_password(password: str, salt: str) -> str:
    return hashlib.sha256(f"{salt}:{password}".encode()).hexdigest()


class PuffSyncServer:
    """In-memory implementation of the server side of the protocol.

    Args:
        report_ids: Include known puff ids in puffCount replies. When
            False the reply is a bare count.
    """

    def __init__(self, report_ids: bool = True) -> None:
        self.report_ids = report_ids
        self.accounts: dict[str, Account] = {}
        self.tokens: dict[str, str] = {}
        self.requests: dict[str, PendingRequest] = {}
        self._clients: dict[str, ConnectedClient] = {}

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/register", self.handle_register)
        app.router.add_post("/login", self.handle_login)
        app.router.add_get("/ws", self.handle_websocket)
        return app

    # -- accounts ----------------------------------------------------------

    def create_account(self, name: str, email: str, password: str) -> tuple[Account, str]:
        """Create an account and issue a token."""
        salt = secrets.token_hex(8)
        account = Account(
            id=str(uuid.uuid4()),
            name=name,
            email=email.lower(),
            password_hash=_hash_password(password, salt),
            salt=salt,
        )
        self.accounts[account.id] = account
        return account, self.issue_token(account.id)

    def issue_token(self, user_id: str) -> str:
        token = secrets.token_urlsafe(24)
        self.tokens[token] = user_id
        return token

    def _find_by_email(self, email: str) -> Account | None:
        email = email.lower()
        return next((a for a in self.accounts.values() if a.email == email), None)

    async def handle_register(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        name, email, password = body.get("name"), body.get("email"), body.get("password")
        if not (name and email and password):
            return web.json_response({"message": "name, email and password are required"}, status=400)
        if self._find_by_email(email):
            return web.json_response({"message": "email already registered"}, status=409)

        _, token = self.create_account(name, email, password)
        return web.json_response({"token": token})

    async def handle_login(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        account = self._find_by_email(str(body.get("email", "")))
        password = str(body.get("password", ""))
        if account is None or _hash_password(password, account.salt) != account.password_hash:
            return web.json_response({"message": "invalid email or password"}, status=401)
        return web.json_response({"token": self.issue_token(account.id)})

    async def revoke_user(self, user_id: str, message: str = "Authentication failed: user does not exist") -> None:
        """Drop all tokens of a user and tell connected clients."""
        self.tokens = {t: u for t, u in self.tokens.items() if u != user_id}
        for client in list(self._clients.values()):
            if client.user_id == user_id and not client.ws.closed:
                await self._send(client.ws, events.ERROR, {"message": message, "code": "auth_failed"})

    # -- websocket ---------------------------------------------------------

    async def handle_websocket(self, request: web.Request) -> web.StreamResponse:
        user_id = self.tokens.get(request.query.get("token", ""))
        if user_id is None or user_id not in self.accounts:
            return web.json_response({"message": "unauthorized"}, status=401)

        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)

        client = ConnectedClient(client_id=str(uuid.uuid4()), user_id=user_id, ws=ws)
        self._clients[client.client_id] = client
        logger.info(f"Client registered: {client.client_id} (user={user_id})")

        try:
            await self._send(ws, events.UPDATE, {"sync": self.snapshot(user_id)})
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        message = msg.json()
                    except ValueError:
                        await self._send(ws, events.ERROR, {"message": "invalid JSON"})
                        continue
                    await self._handle_message(client, message)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"WebSocket error: {ws.exception()}")
        finally:
            del self._clients[client.client_id]
            logger.info(f"Client unregistered: {client.client_id}")

        return ws

    async def _handle_message(self, client: ConnectedClient, message: dict[str, Any]) -> None:
        event = message.get("event")
        data = message.get("data") or {}
        account = self.accounts[client.user_id]

        if event == events.GET_PUFF_COUNT:
            if self.report_ids:
                reply: Any = {"count": len(account.puffs), "ids": list(account.puffs)}
            else:
                reply = len(account.puffs)
            await self._send(client.ws, events.PUFF_COUNT, reply)

        elif event == events.ADD_PUFFS:
            accepted = []
            for puff in data.get("puffs", []):
                if not isinstance(puff, dict) or "id" not in puff:
                    continue
                # Re-submitted ids are no-ops but still confirmed
                account.puffs.setdefault(str(puff["id"]), float(puff.get("timestamp", 0)))
                accepted.append(str(puff["id"]))
            await self._send(client.ws, events.SYNCED_PUFF_IDS, {"ids": accepted})
            await self._broadcast_update(client.user_id, *account.friends)

        elif event == events.ADD_FRIEND:
            await self._add_friend(client, str(data.get("friendId", "")))

        elif event in (events.ACCEPT_REQUEST, events.DECLINE_REQUEST):
            await self._answer_request(client, str(data.get("requestId", "")), event == events.ACCEPT_REQUEST)

        else:
            await self._send(client.ws, events.ERROR, {"message": f"unknown event: {event}"})

    async def _add_friend(self, client: ConnectedClient, friend_id: str) -> None:
        if friend_id not in self.accounts or friend_id == client.user_id:
            await self._send(client.ws, events.ERROR, {"message": "no such user"})
            return
        request = PendingRequest(id=str(uuid.uuid4()), sender_id=client.user_id, receiver_id=friend_id)
        self.requests[request.id] = request
        await self._broadcast_update(client.user_id, friend_id)

    async def _answer_request(self, client: ConnectedClient, request_id: str, accept: bool) -> None:
        request = self.requests.get(request_id)
        if request is None or request.receiver_id != client.user_id:
            await self._send(client.ws, events.ERROR, {"message": "no such request"})
            return

        del self.requests[request_id]
        if accept:
            self.accounts[request.sender_id].friends.add(request.receiver_id)
            self.accounts[request.receiver_id].friends.add(request.sender_id)
        await self._broadcast_update(request.sender_id, request.receiver_id)

    # -- state -------------------------------------------------------------

    def _user_dict(self, user_id: str) -> dict[str, Any]:
        account = self.accounts[user_id]
        return {"id": account.id, "name": account.name, "email": account.email}

    def puff_summary(self, user_id: str, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now(UTC)
        stamps = [datetime.fromtimestamp(ts, UTC) for ts in self.accounts[user_id].puffs.values()]
        today = now.date()
        today_count = sum(1 for s in stamps if s.date() == today)
        recent = [s for s in stamps if s >= now - timedelta(days=30)]
        days = len({s.date() for s in recent})
        average = len(recent) / max(1, days)
        yesterday = sum(1 for s in stamps if s.date() == today - timedelta(days=1))
        change = ((today_count - yesterday) / yesterday * 100) if yesterday else 0.0
        streak = (now - max(stamps)).days if stamps else 0
        return {
            "puffsToday": today_count,
            "averagePuffsPerDay": f"{average:.1f}",
            "changePercentage": f"{change:.0f}",
            "pufflessDayStreak": streak,
        }

    def snapshot(self, user_id: str) -> dict[str, Any]:
        """Full account state sent in update events."""
        account = self.accounts[user_id]

        def request_dict(r: PendingRequest) -> dict[str, Any]:
            return {
                "id": r.id,
                "status": r.status,
                "sender": self._user_dict(r.sender_id),
                "receiver": self._user_dict(r.receiver_id),
            }

        return {
            "user": self._user_dict(user_id),
            "friends": [
                {**self._user_dict(fid), "puffsummary": self.puff_summary(fid)}
                for fid in sorted(account.friends)
            ],
            "sentFriendRequests": [request_dict(r) for r in self.requests.values() if r.sender_id == user_id],
            "receivedFriendRequests": [
                request_dict(r) for r in self.requests.values() if r.receiver_id == user_id
            ],
        }

    async def _broadcast_update(self, *user_ids: str) -> None:
        targets = set(user_ids)
        for client in list(self._clients.values()):
            if client.user_id in targets and not client.ws.closed:
                await self._send(client.ws, events.UPDATE, {"sync": self.snapshot(client.user_id)})

    async def _send(self, ws: web.WebSocketResponse, event: str, data: Any) -> None:
        try:
            await ws.send_json({"event": event, "data": data})
        except ConnectionResetError:
            logger.debug(f"Client went away before {event} was sent")


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
