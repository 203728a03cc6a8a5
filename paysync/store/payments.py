"""SQLite storage for normalized payments."""
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

import aiosqlite

from paysync.config import config
from paysync.parse.models import UnifiedPayment, UnifiedPaymentItem

logger = logging.getLogger(__name__)

PAYMENT_COLUMNS = [
    "external_id",
    "status_code",
    "status_text",
    "status_color",
    "paid_at",
    "merchant_name",
    "merchant_tel",
    "merchant_url",
    "merchant_image_url",
    "product_name",
    "product_count",
    "total_amount",
    "discount_amount",
    "rest_amount",
]

ITEM_COLUMNS = [
    "line_no",
    "product_id",
    "brand_name",
    "product_name",
    "image_url",
    "info_url",
    "quantity",
    "unit_price",
    "line_amount",
    "rest_amount",
    "memo",
]


class PaymentSink(Protocol):
    """Where the collector hands normalized payments."""

    async def save_normalized_payment(self, account_id: str, payment: UnifiedPayment) -> int: ...

    async def get_last_payment_id(self, account_id: str) -> Optional[str]: ...


class SqlitePaymentStore:
    """Payments keyed by (account, provider, payment id); items replaced on update."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or config.DB_PATH

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS payments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    payment_id TEXT NOT NULL,
                    external_id TEXT,
                    status_code TEXT,
                    status_text TEXT,
                    status_color TEXT,
                    paid_at TEXT NOT NULL,
                    merchant_name TEXT NOT NULL,
                    merchant_tel TEXT,
                    merchant_url TEXT,
                    merchant_image_url TEXT,
                    product_name TEXT,
                    product_count INTEGER,
                    total_amount INTEGER NOT NULL,
                    discount_amount INTEGER,
                    rest_amount INTEGER,
                    updated_at TEXT NOT NULL,
                    UNIQUE (account_id, provider, payment_id)
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS payment_items (
                    payment_pk INTEGER NOT NULL REFERENCES payments(id),
                    line_no INTEGER NOT NULL,
                    product_id TEXT,
                    brand_name TEXT,
                    product_name TEXT NOT NULL,
                    image_url TEXT,
                    info_url TEXT,
                    quantity INTEGER NOT NULL,
                    unit_price INTEGER,
                    line_amount INTEGER,
                    rest_amount INTEGER,
                    memo TEXT,
                    PRIMARY KEY (payment_pk, line_no)
                )
                """
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_payments_account_paid ON payments(account_id, paid_at)"
            )
            await db.commit()
            logger.info(f"Payment store initialized at {self.db_path}")

    async def save_normalized_payment(self, account_id: str, payment: UnifiedPayment) -> int:
        """Upsert a payment and replace its items. Returns the internal id."""
        values = [getattr(payment, column) for column in PAYMENT_COLUMNS]
        now = datetime.now(timezone.utc).isoformat()
        columns = ", ".join(PAYMENT_COLUMNS)
        placeholders = ", ".join("?" for _ in PAYMENT_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in PAYMENT_COLUMNS)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                f"""
                INSERT INTO payments (account_id, provider, payment_id, {columns}, updated_at)
                VALUES (?, ?, ?, {placeholders}, ?)
                ON CONFLICT (account_id, provider, payment_id)
                DO UPDATE SET {updates}, updated_at = excluded.updated_at
                """,
                (account_id, payment.provider, payment.payment_id, *values, now),
            )
            cursor = await db.execute(
                "SELECT id FROM payments WHERE account_id = ? AND provider = ? AND payment_id = ?",
                (account_id, payment.provider, payment.payment_id),
            )
            (payment_pk,) = await cursor.fetchone()
            await db.execute("DELETE FROM payment_items WHERE payment_pk = ?", (payment_pk,))
            await db.executemany(
                f"""
                INSERT INTO payment_items (payment_pk, {", ".join(ITEM_COLUMNS)})
                VALUES (?, {", ".join("?" for _ in ITEM_COLUMNS)})
                """,
                [
                    (payment_pk, *(getattr(item, column) for column in ITEM_COLUMNS))
                    for item in payment.items
                ],
            )
            await db.commit()
        logger.debug(f"Saved {payment.provider} payment {payment.payment_id} as #{payment_pk}")
        return payment_pk

    async def list_payments(self, account_id: str, limit: int = 50, offset: int = 0) -> list[UnifiedPayment]:
        """Stored payments, newest first."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT * FROM payments WHERE account_id = ?
                ORDER BY paid_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (account_id, limit, offset),
            )
            rows = await cursor.fetchall()
            payments = []
            for row in rows:
                item_cursor = await db.execute(
                    f"SELECT {', '.join(ITEM_COLUMNS)} FROM payment_items WHERE payment_pk = ? ORDER BY line_no",
                    (row["id"],),
                )
                items = [UnifiedPaymentItem(**dict(item)) for item in await item_cursor.fetchall()]
                payments.append(
                    UnifiedPayment(
                        id=row["id"],
                        provider=row["provider"],
                        payment_id=row["payment_id"],
                        items=items,
                        **{column: row[column] for column in PAYMENT_COLUMNS},
                    )
                )
            return payments

    async def count_payments(self, account_id: str) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM payments WHERE account_id = ?", (account_id,))
            (count,) = await cursor.fetchone()
            return count

    async def get_last_payment_id(self, account_id: str) -> Optional[str]:
        """Provider payment id of the newest stored payment, if any."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                SELECT payment_id FROM payments WHERE account_id = ?
                ORDER BY paid_at DESC, id DESC LIMIT 1
                """,
                (account_id,),
            )
            row = await cursor.fetchone()
            return row[0] if row else None
