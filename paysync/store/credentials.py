"""SQLite credential store: accounts and their replayable session headers."""
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

import aiosqlite
from pydantic import BaseModel

from paysync.auth.curl_parser import parse_curl_command
from paysync.config import config
from paysync.errors import AccountNotFound, UnsupportedOperation
from paysync.parse.redact import redact_headers
from paysync.providers.registry import SUPPORTED_PROVIDERS

logger = logging.getLogger(__name__)


class Account(BaseModel):
    """A provider account; ``curl`` is kept for reference, never replayed."""

    id: str
    provider: str
    alias: str
    curl: str
    created_at: str
    updated_at: str


class CredentialProvider(Protocol):
    """Anything that hands out current headers for an account."""

    async def get_headers(self, account_id: str) -> dict[str, str]: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteCredentialStore:
    """Accounts and header sets, read at time of use by every request."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or config.DB_PATH

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    provider TEXT NOT NULL,
                    alias TEXT NOT NULL,
                    curl TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS account_headers (
                    account_id TEXT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    value TEXT NOT NULL,
                    PRIMARY KEY (account_id, name)
                )
                """
            )
            await db.commit()
            logger.info(f"Credential store initialized at {self.db_path}")

    async def create_account(self, provider: str, alias: str, curl: str) -> Account:
        """Parse the capture, then store the account and its headers together."""
        if provider not in SUPPORTED_PROVIDERS:
            raise UnsupportedOperation(provider, "account", "unknown provider")
        parsed = parse_curl_command(curl)
        now = _now()
        account = Account(
            id=str(uuid.uuid4()),
            provider=provider,
            alias=alias,
            curl=curl,
            created_at=now,
            updated_at=now,
        )
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO accounts (id, provider, alias, curl, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (account.id, provider, alias, curl, now, now),
            )
            await db.executemany(
                "INSERT INTO account_headers (account_id, name, value) VALUES (?, ?, ?)",
                [(account.id, name, value) for name, value in parsed.headers.items()],
            )
            await db.commit()
        logger.info(
            f"Created {provider} account {account.id} ({alias}) with headers "
            f"{redact_headers(parsed.headers)}"
        )
        return account

    async def get_account(self, account_id: str) -> Optional[Account]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM accounts WHERE id = ?", (account_id,))
            row = await cursor.fetchone()
            return Account(**dict(row)) if row else None

    async def require_account(self, account_id: str) -> Account:
        account = await self.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    async def list_accounts(self, provider: Optional[str] = None) -> list[Account]:
        query = "SELECT * FROM accounts"
        params: tuple = ()
        if provider:
            query += " WHERE provider = ?"
            params = (provider,)
        query += " ORDER BY created_at"
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            return [Account(**dict(row)) for row in await cursor.fetchall()]

    async def get_headers(self, account_id: str) -> dict[str, str]:
        """Current header set; raises AccountNotFound for unknown accounts."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT 1 FROM accounts WHERE id = ?", (account_id,))
            if await cursor.fetchone() is None:
                raise AccountNotFound(account_id)
            cursor = await db.execute(
                "SELECT name, value FROM account_headers WHERE account_id = ? ORDER BY rowid",
                (account_id,),
            )
            return {name: value for name, value in await cursor.fetchall()}

    async def refresh(self, account_id: str, curl: str) -> Account:
        """
        Replace the stored headers and capture of an account.

        The capture is parsed before anything is touched, so a malformed one
        leaves the previous headers in place.
        """
        parsed = parse_curl_command(curl)
        now = _now()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT 1 FROM accounts WHERE id = ?", (account_id,))
            if await cursor.fetchone() is None:
                raise AccountNotFound(account_id)
            try:
                await db.execute("DELETE FROM account_headers WHERE account_id = ?", (account_id,))
                await db.executemany(
                    "INSERT INTO account_headers (account_id, name, value) VALUES (?, ?, ?)",
                    [(account_id, name, value) for name, value in parsed.headers.items()],
                )
                await db.execute(
                    "UPDATE accounts SET curl = ?, updated_at = ? WHERE id = ?",
                    (curl, now, account_id),
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        logger.info(f"Refreshed credentials for account {account_id}: {redact_headers(parsed.headers)}")
        return await self.require_account(account_id)

    def header_accessor(self, account_id: str):
        """Zero-argument coroutine factory bound to one account."""

        async def get_headers() -> dict[str, str]:
            return await self.get_headers(account_id)

        return get_headers
