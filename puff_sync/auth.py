"""
Account registration and login over HTTP.

A successful call returns the session token and stores it; the
channel picks it up on its next connect.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from .credentials import CredentialStore
from .exceptions import AuthenticationError, ChannelConnectionError, PuffSyncError

logger = logging.getLogger(__name__)


class AccountClient:
    """Client for the /register and /login endpoints."""

    def __init__(
        self,
        base_url: str,
        credentials: CredentialStore,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the account client.

        Args:
            base_url: HTTP base URL of the server
            credentials: Store that receives the token
            timeout: Total seconds per request
        """
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.timeout = timeout

    async def register(self, name: str, email: str, password: str) -> str:
        """Create an account and store its token.

        Returns:
            The session token
        """
        return await self._request_token("register", {"name": name, "email": email, "password": password})

    async def login(self, email: str, password: str) -> str:
        """Log in and store the token.

        Returns:
            The session token
        """
        return await self._request_token("login", {"email": email, "password": password})

    async def _request_token(self, endpoint: str, body: dict[str, Any]) -> str:
        url = f"{self.base_url}/{endpoint}"

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.post(url, json=body) as response:
                    if response.status in (401, 403):
                        raise AuthenticationError(url, await _error_text(response))
                    if response.status >= 400:
                        raise PuffSyncError(
                            f"{endpoint} failed: HTTP {response.status}",
                            {"endpoint": url, "status": response.status, "reason": await _error_text(response)},
                        )
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ChannelConnectionError(url, e) from e

        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            raise PuffSyncError("Invalid response format", {"endpoint": url})

        await self.credentials.save(token)
        logger.info(f"{endpoint.capitalize()} succeeded; token saved")
        return token


async def _error_text(response: aiohttp.ClientResponse) -> str:
    try:
        data = await response.json(content_type=None)
    except (ValueError, aiohttp.ContentTypeError):
        return (await response.text())[:200]
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or data)
    return str(data)
