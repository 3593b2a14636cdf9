"""
Persistence helpers for the puff ledger file.

The ledger is small (a retention window of puffs), so it is always
rewritten whole: records go to a temp file in the same directory,
which is fsynced and then renamed over the ledger. A crash leaves
either the old file or the new one, never a torn mix.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import LedgerIOError


async def ensure_directory(path: Path) -> None:
    """Create `path` and its parents if missing."""
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise LedgerIOError("create_directory", str(path), e) from e


async def read_jsonl(path: Path) -> list[dict[str, Any]]:
    """Parse one JSON object per non-blank line.

    A missing file is an empty ledger.

    Raises:
        LedgerIOError: On unreadable files or malformed lines
    """
    if not await aiofiles.os.path.exists(path):
        return []

    records: list[dict[str, Any]] = []
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            lineno = 0
            async for line in f:
                lineno += 1
                if line.strip():
                    records.append(json.loads(line))
    except json.JSONDecodeError as e:
        raise LedgerIOError("parse_jsonl", str(path), f"line {lineno}: {e}") from e
    except OSError as e:
        raise LedgerIOError("read_jsonl", str(path), e) from e
    return records


async def write_jsonl_atomic(path: Path, records: list[dict[str, Any]]) -> None:
    """Replace `path` with `records`, one JSON object per line.

    Raises:
        LedgerIOError: If any step fails. The previous file is left intact.
    """
    await ensure_directory(path.parent)

    try:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        os.close(fd)
    except OSError as e:
        raise LedgerIOError("write_jsonl", str(path), e) from e

    try:
        async with aiofiles.open(tmp_name, "w", encoding="utf-8") as f:
            await f.write("".join(json.dumps(r) + "\n" for r in records))
            await f.flush()
            os.fsync(f.fileno())
        await aiofiles.os.replace(tmp_name, path)
    except (OSError, TypeError, ValueError) as e:
        try:
            await aiofiles.os.remove(tmp_name)
        except OSError:
            pass
        raise LedgerIOError("write_jsonl", str(path), e) from e


async def remove_file(path: Path) -> bool:
    """Delete `path`. Returns False if it did not exist."""
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        raise LedgerIOError("remove", str(path), e) from e
    return True
