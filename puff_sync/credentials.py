"""
Credential stores for the session token.

The channel owns the token but never touches storage directly;
it goes through one of these stores.
"""

from __future__ import annotations

import json
import logging
import stat
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Abstract credential store.

    Implementations persist a single opaque token. A store that
    cannot read its backing storage reports "no session" rather
    than raising.
    """

    @abstractmethod
    async def save(self, token: str) -> None:
        """Persist the token, replacing any previous one."""
        ...

    @abstractmethod
    async def load(self) -> str | None:
        """Return the saved token, or None if there is no session."""
        ...

    @abstractmethod
    async def delete(self) -> None:
        """Forget the token. Deleting a missing token is not an error."""
        ...


class MemoryCredentialStore(CredentialStore):
    """Process-local store, useful for tests and short-lived tools."""

    def __init__(self, token: str | None = None) -> None:
        self._token = token

    async def save(self, token: str) -> None:
        self._token = token

    async def load(self) -> str | None:
        return self._token

    async def delete(self) -> None:
        self._token = None


class FileCredentialStore(CredentialStore):
    """Token file readable only by the current user.

    File format:

    ```json
    {"token": "...", "saved_at": "2024-09-23T10:00:00+00:00"}
    ```
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    async def save(self, token: str) -> None:
        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
        payload = {"token": token, "saved_at": datetime.now(UTC).isoformat()}
        async with aiofiles.open(self.path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(payload, indent=2))
        self.path.chmod(stat.S_IRUSR | stat.S_IWUSR)

    async def load(self) -> str | None:
        try:
            if not await aiofiles.os.path.exists(self.path):
                return None
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                data = json.loads(await f.read())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Unreadable credential file {self.path}: {e}")
            return None

        token = data.get("token") if isinstance(data, dict) else None
        return token or None

    async def delete(self) -> None:
        try:
            await aiofiles.os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Error deleting credential file {self.path}: {e}")
