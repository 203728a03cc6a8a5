"""Supabase mirror for normalized payments."""
import asyncio
import logging
from typing import Optional

from supabase import Client, create_client
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from paysync.config import config
from paysync.parse.models import UnifiedPayment, UnifiedPaymentItem
from paysync.store.payments import PaymentSink

logger = logging.getLogger(__name__)

ON_CONFLICT = "account_id,provider,payment_id"


class SupabasePaymentWriter:
    """Writes payments to Supabase (runs the sync client in a thread pool)."""

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE:
                raise ValueError("Supabase configuration missing")
            client = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE)
        self.client = client
        self.payments_table = config.SUPABASE_PAYMENTS_TABLE
        self.items_table = config.SUPABASE_ITEMS_TABLE

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def save_normalized_payment(self, account_id: str, payment: UnifiedPayment) -> int:
        """Upsert the payment row, then replace its item rows."""
        try:
            payment_pk = await self._run(self._save_sync, account_id, payment)
        except Exception as e:
            logger.error(f"Supabase upsert error for {payment.provider} payment {payment.payment_id}: {e}")
            raise
        logger.debug(f"Mirrored {payment.provider} payment {payment.payment_id} as #{payment_pk}")
        return payment_pk

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((Exception,)),
        reraise=True,
    )
    def _save_sync(self, account_id: str, payment: UnifiedPayment) -> int:
        """Synchronous upsert (called from thread pool)."""
        row = payment.model_dump(exclude={"id", "items"})
        row["account_id"] = account_id
        response = (
            self.client.table(self.payments_table)
            .upsert(row, on_conflict=ON_CONFLICT)
            .execute()
        )
        payment_pk = response.data[0]["id"]
        self.client.table(self.items_table).delete().eq("payment_id", payment_pk).execute()
        if payment.items:
            items = [{**item.model_dump(), "payment_id": payment_pk} for item in payment.items]
            self.client.table(self.items_table).insert(items).execute()
        return payment_pk

    async def list_payments(self, account_id: str, limit: int = 50, offset: int = 0) -> list[UnifiedPayment]:
        """Mirrored payments, newest first."""

        def query():
            return (
                self.client.table(self.payments_table)
                .select(f"*, {self.items_table}(*)")
                .eq("account_id", account_id)
                .order("paid_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )

        response = await self._run(query)
        payments = []
        for row in response.data or []:
            raw_items = sorted(row.pop(self.items_table, None) or [], key=lambda i: i["line_no"])
            items = [
                UnifiedPaymentItem(**{k: v for k, v in item.items() if k in UnifiedPaymentItem.model_fields})
                for item in raw_items
            ]
            fields = {k: v for k, v in row.items() if k in UnifiedPayment.model_fields and k != "items"}
            payments.append(UnifiedPayment(items=items, **fields))
        return payments

    async def test_connection(self) -> bool:
        """Test Supabase connection."""
        try:
            await self._run(
                lambda: self.client.table(self.payments_table).select("id", count="exact").limit(1).execute()
            )
            logger.info("Supabase connection successful")
            return True
        except Exception as e:
            logger.error(f"Supabase connection test failed: {e}")
            return False


class MirroredPaymentStore:
    """Local store first, then the Supabase mirror. Either failing fails the save."""

    def __init__(self, primary: PaymentSink, mirror: SupabasePaymentWriter):
        self.primary = primary
        self.mirror = mirror

    async def save_normalized_payment(self, account_id: str, payment: UnifiedPayment) -> int:
        payment_pk = await self.primary.save_normalized_payment(account_id, payment)
        await self.mirror.save_normalized_payment(account_id, payment)
        return payment_pk

    async def get_last_payment_id(self, account_id: str) -> Optional[str]:
        return await self.primary.get_last_payment_id(account_id)
