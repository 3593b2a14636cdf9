"""
Remote session channel.

Owns one authenticated, long-lived connection to the sync server:
connection lifecycle with reconnect backoff, classification of
server errors, and dispatch of inbound events to subscribers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..credentials import CredentialStore
from ..exceptions import (
    AuthenticationError,
    ChannelClosedError,
    ChannelConnectionError,
    ChannelNotConnectedError,
)
from . import events
from .events import AccountSnapshot, ChannelMessage, ChannelStatus, classify_server_error
from .transport import Transport, WebSocketTransport

if TYPE_CHECKING:
    from ..config import SyncConfig

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]
TransportFactory = Callable[[], Transport]

# Consecutive connection failures before the error becomes user-visible
VISIBLE_FAILURE_THRESHOLD = 3


class SessionChannel:
    """Authenticated event channel to the sync server.

    States: disconnected -> connecting -> connected, back to
    disconnected on a network drop (followed by a reconnect when
    enabled), and auth_failed on any authentication failure.
    Authentication failures log the user out and are never retried.

    Emitting is fire-and-forget: while not connected, emissions are
    dropped and logged, never queued.

    Example:
        >>> channel = SessionChannel("ws://localhost:3000", FileCredentialStore(path))
        >>> channel.on("update", lambda data: print(data))
        >>> await channel.connect()
        >>> await channel.emit("getPuffCount")
        >>> await channel.disconnect()
    """

    def __init__(
        self,
        url: str,
        credentials: CredentialStore,
        transport_factory: TransportFactory | None = None,
        *,
        auto_reconnect: bool = True,
        connect_timeout: float = 10.0,
        initial_backoff_ms: int = 1000,
        max_backoff_ms: int = 60000,
        backoff_multiplier: float = 2.0,
    ) -> None:
        """Initialize the channel.

        Args:
            url: Base URL of the sync server (ws:// or wss://)
            credentials: Store holding the session token
            transport_factory: Builds a fresh transport per connection attempt
            auto_reconnect: Reconnect after transient failures
            connect_timeout: Seconds allowed for a handshake
            initial_backoff_ms: First reconnect delay
            max_backoff_ms: Reconnect delay ceiling
            backoff_multiplier: Growth factor between reconnect attempts
        """
        self.url = url.rstrip("/")
        self.credentials = credentials
        self._transport_factory = transport_factory or (
            lambda: WebSocketTransport(connect_timeout=connect_timeout)
        )
        self.auto_reconnect = auto_reconnect
        self.initial_backoff_ms = initial_backoff_ms
        self.max_backoff_ms = max_backoff_ms
        self.backoff_multiplier = backoff_multiplier

        self._status = ChannelStatus.DISCONNECTED
        self._token: str | None = None
        self._transport: Transport | None = None
        self._running = False
        self._connection_task: asyncio.Task[None] | None = None
        self._first_attempt: asyncio.Event | None = None
        self._consecutive_failures = 0

        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._waiters: dict[str, list[asyncio.Future[Any]]] = defaultdict(list)

        # State exposed to the UI layer
        self.snapshot: AccountSnapshot | None = None
        self.last_error: str | None = None
        self.status_listeners: list[Callable[[ChannelStatus], None]] = []

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        credentials: CredentialStore,
        transport_factory: TransportFactory | None = None,
    ) -> SessionChannel:
        return cls(
            config.server_url,
            credentials,
            transport_factory,
            auto_reconnect=config.auto_reconnect,
            connect_timeout=config.connect_timeout_s,
            initial_backoff_ms=config.initial_backoff_ms,
            max_backoff_ms=config.max_backoff_ms,
            backoff_multiplier=config.backoff_multiplier,
        )

    @property
    def status(self) -> ChannelStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is ChannelStatus.CONNECTED

    @property
    def has_error(self) -> bool:
        return self.last_error is not None

    def clear_error(self) -> None:
        self.last_error = None

    # -- subscriptions -----------------------------------------------------

    def on(self, event: str, handler: Handler) -> None:
        """Subscribe to an inbound event. Handlers may be sync or async."""
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Handler) -> None:
        """Remove a handler registered with on()."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def expect(self, event: str) -> asyncio.Future[Any]:
        """Return a future resolved with the payload of the next `event`.

        Register before emitting the request that triggers the reply.
        The future fails with ChannelClosedError on disconnect and with
        AuthenticationError on authentication failure.

        Raises:
            ChannelNotConnectedError: If the channel is not connected
        """
        if not self.is_connected:
            raise ChannelNotConnectedError(self._status.value)

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._waiters[event].append(future)
        future.add_done_callback(lambda f: self._discard_waiter(event, f))
        return future

    def _discard_waiter(self, event: str, future: asyncio.Future[Any]) -> None:
        waiters = self._waiters.get(event)
        if waiters and future in waiters:
            waiters.remove(future)

    # -- lifecycle ---------------------------------------------------------

    async def connect(self, token: str | None = None) -> ChannelStatus:
        """Open the connection.

        No-op while connecting or connected. A given token is saved to
        the credential store; otherwise the stored token is used. With
        no token at all the channel stays disconnected.

        Returns once the first connection attempt has settled.

        Args:
            token: Fresh credential, e.g. right after login

        Returns:
            Status after the first attempt
        """
        if self._running or self._status in (ChannelStatus.CONNECTING, ChannelStatus.CONNECTED):
            return self._status

        if token:
            await self.credentials.save(token)
            self._token = token
        else:
            self._token = await self._load_token()

        if not self._token:
            logger.info("No credential available; channel stays disconnected")
            return self._status

        self.clear_error()
        self._running = True
        self._consecutive_failures = 0
        self._first_attempt = asyncio.Event()
        self._connection_task = asyncio.create_task(self._connection_loop())
        await self._first_attempt.wait()
        return self._status

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting. Credentials are kept."""
        self._running = False

        task, self._connection_task = self._connection_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._close_transport()
        self._fail_waiters(lambda event: ChannelClosedError(event))
        if self._first_attempt is not None:
            self._first_attempt.set()
        if self._status is not ChannelStatus.AUTH_FAILED:
            self._set_status(ChannelStatus.DISCONNECTED)

    async def logout(self) -> None:
        """Disconnect and forget the credential and account state."""
        await self.disconnect()
        await self._forget_credentials()
        self.snapshot = None
        self._set_status(ChannelStatus.DISCONNECTED)
        logger.info("Logged out")

    async def emit(self, event: str, data: Any = None) -> bool:
        """Send an event if connected.

        Returns:
            True if the message was handed to the transport, False if it
            was dropped
        """
        transport = self._transport
        if not self.is_connected or transport is None:
            logger.debug(f"Dropping {event}: channel {self._status.value}")
            return False

        try:
            await transport.send(ChannelMessage(event, data).to_dict())
        except (ChannelConnectionError, ChannelNotConnectedError) as e:
            logger.warning(f"Failed to emit {event}: {e}")
            return False
        return True

    async def _load_token(self) -> str | None:
        try:
            return await self.credentials.load()
        except Exception as e:
            logger.warning(f"Could not load credential, treating as no session: {e}")
            return None

    async def _forget_credentials(self) -> None:
        self._token = None
        try:
            await self.credentials.delete()
        except Exception as e:
            logger.error(f"Error deleting credential: {e}")

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()

    def _set_status(self, status: ChannelStatus) -> None:
        if status is self._status:
            return
        previous, self._status = self._status, status
        logger.info(f"Channel {previous.value} -> {status.value}")
        for listener in list(self.status_listeners):
            listener(status)

    def _settle_first_attempt(self) -> None:
        if self._first_attempt is not None:
            self._first_attempt.set()

    async def _connection_loop(self) -> None:
        """Connect, receive until the connection ends, back off, repeat."""
        backoff_ms = float(self.initial_backoff_ms)

        try:
            while self._running and self._token:
                transport = self._transport_factory()
                self._transport = transport
                self._set_status(ChannelStatus.CONNECTING)

                try:
                    await transport.open(self.url, self._token)
                except AuthenticationError as e:
                    await self._close_transport()
                    await self._handle_auth_failure(e.reason or e.message)
                    return
                except ChannelConnectionError as e:
                    await self._close_transport()
                    self._record_connection_failure(e)
                    self._set_status(ChannelStatus.DISCONNECTED)
                    self._settle_first_attempt()
                    if not (self.auto_reconnect and self._running):
                        return
                    logger.info(f"Reconnecting in {backoff_ms / 1000:.1f}s...")
                    await asyncio.sleep(backoff_ms / 1000)
                    backoff_ms = min(backoff_ms * self.backoff_multiplier, self.max_backoff_ms)
                    continue

                self._consecutive_failures = 0
                self.clear_error()
                backoff_ms = float(self.initial_backoff_ms)
                self._set_status(ChannelStatus.CONNECTED)
                self._settle_first_attempt()

                try:
                    await self._receive_loop(transport)
                except ChannelConnectionError as e:
                    logger.warning(f"Connection dropped: {e}")
                finally:
                    if self._transport is transport:
                        await self._close_transport()
                    else:
                        await transport.close()

                if self._status is ChannelStatus.AUTH_FAILED:
                    return

                self._set_status(ChannelStatus.DISCONNECTED)
                self._fail_waiters(lambda event: ChannelClosedError(event))
                if not (self.auto_reconnect and self._running):
                    return
                logger.info(f"Reconnecting in {backoff_ms / 1000:.1f}s...")
                await asyncio.sleep(backoff_ms / 1000)
        finally:
            self._running = False
            self._settle_first_attempt()

    def _record_connection_failure(self, error: ChannelConnectionError) -> None:
        self._consecutive_failures += 1
        logger.warning(f"Sync connection error ({self._consecutive_failures}): {error}")
        if self._consecutive_failures >= VISIBLE_FAILURE_THRESHOLD:
            self.last_error = f"Unable to reach sync server at {self.url}"

    async def _receive_loop(self, transport: Transport) -> None:
        while self._running:
            raw = await transport.receive()
            if raw is None:
                logger.info("Server closed the connection")
                return

            try:
                message = ChannelMessage.from_dict(raw)
            except ValueError as e:
                logger.warning(f"Dropping malformed message: {e}")
                continue

            await self._dispatch(message)
            if self._status is ChannelStatus.AUTH_FAILED:
                return

    async def _dispatch(self, message: ChannelMessage) -> None:
        if message.event == events.ERROR:
            error = classify_server_error(message.data)
            if error.is_auth_failure:
                await self._handle_auth_failure(error.message)
            else:
                logger.warning(f"Server error: {error.message}")
                self.last_error = error.message

        elif message.event == events.UPDATE:
            try:
                self.snapshot = AccountSnapshot.from_payload(message.data)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Invalid update payload: {e}")

        for future in list(self._waiters.pop(message.event, [])):
            if not future.done():
                future.set_result(message.data)

        for handler in list(self._handlers.get(message.event, [])):
            try:
                result = handler(message.data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Handler for {message.event} failed")

    async def _handle_auth_failure(self, reason: str | None) -> None:
        """Log out: drop the connection and delete the credential."""
        reason = reason or "Authentication failed"
        logger.warning(f"Authentication failed, logging out: {reason}")

        self._running = False
        self.last_error = reason
        self._set_status(ChannelStatus.AUTH_FAILED)
        self._fail_waiters(lambda event: AuthenticationError(self.url, reason))
        await self._forget_credentials()
        await self._close_transport()
        self._settle_first_attempt()

    def _fail_waiters(self, make_error: Callable[[str], Exception]) -> None:
        pending = self._waiters
        self._waiters = defaultdict(list)
        for event, futures in pending.items():
            for future in futures:
                if not future.done():
                    future.set_exception(make_error(event))
