"""
Transports for the session channel.

A transport moves JSON objects over one connection. The channel
owns connection lifecycle and event dispatch; the transport only
opens, sends, receives and closes.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any

import aiohttp

from ..exceptions import AuthenticationError, ChannelConnectionError, ChannelNotConnectedError

logger = logging.getLogger(__name__)

AUTH_REJECT_STATUSES = (401, 403)


class Transport(ABC):
    """One bidirectional message connection."""

    @abstractmethod
    async def open(self, url: str, token: str) -> None:
        """Connect and authenticate.

        Raises:
            AuthenticationError: If the server rejects the token
            ChannelConnectionError: For any other connection failure
        """
        ...

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Send one message.

        Raises:
            ChannelNotConnectedError: If the transport is not open
            ChannelConnectionError: If the send fails
        """
        ...

    @abstractmethod
    async def receive(self) -> dict[str, Any] | None:
        """Wait for the next message. Returns None once the peer closed."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...


class WebSocketTransport(Transport):
    """WebSocket transport built on aiohttp.

    The token is passed as the `token` query parameter of the
    handshake; a 401/403 handshake response is an authentication
    failure.
    """

    def __init__(
        self,
        path: str = "/ws",
        connect_timeout: float = 10.0,
        heartbeat: float | None = 30.0,
    ) -> None:
        self.path = path
        self.connect_timeout = connect_timeout
        self.heartbeat = heartbeat
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._endpoint = ""

    async def open(self, url: str, token: str) -> None:
        self._endpoint = f"{url.rstrip('/')}{self.path}"
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=None, connect=self.connect_timeout)
        )

        try:
            self._ws = await self._session.ws_connect(
                self._endpoint,
                params={"token": token},
                heartbeat=self.heartbeat,
            )
        except aiohttp.WSServerHandshakeError as e:
            await self.close()
            if e.status in AUTH_REJECT_STATUSES:
                raise AuthenticationError(self._endpoint, e.message or f"HTTP {e.status}") from e
            raise ChannelConnectionError(self._endpoint, e) from e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            await self.close()
            raise ChannelConnectionError(self._endpoint, e) from e

        logger.debug(f"WebSocket open: {self._endpoint}")

    async def send(self, message: dict[str, Any]) -> None:
        if self._ws is None or self._ws.closed:
            raise ChannelNotConnectedError("closed")

        try:
            await self._ws.send_json(message)
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as e:
            raise ChannelConnectionError(self._endpoint, e) from e

    async def receive(self) -> dict[str, Any] | None:
        if self._ws is None:
            return None

        while True:
            msg = await self._ws.receive()

            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    data = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning(f"Dropping non-JSON frame: {msg.data[:200]}")
                    continue
                if isinstance(data, dict):
                    return data
                logger.warning(f"Dropping non-object frame: {msg.data[:200]}")

            elif msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                return None

            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise ChannelConnectionError(self._endpoint, self._ws.exception())

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        session, self._session = self._session, None
        if ws is not None and not ws.closed:
            await ws.close()
        if session is not None and not session.closed:
            await session.close()
