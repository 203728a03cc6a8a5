"""Tests for the SQLite credential and payment stores."""
import asyncio

import pytest

from conftest import naver_detail_payload, naver_list_item
from paysync.errors import AccountNotFound, MalformedSession, UnsupportedOperation
from paysync.parse.normalizer import normalize
from paysync.store.credentials import SqliteCredentialStore
from paysync.store.payments import SqlitePaymentStore

CURL = "curl 'https://pay.naver.com/pc/history' -H 'accept: */*' -b 'NID_AUT=first'"
NEW_CURL = "curl 'https://pay.naver.com/pc/history' -H 'accept: */*' -b 'NID_AUT=second'"


@pytest.fixture
def credential_store(tmp_path):
    store = SqliteCredentialStore(tmp_path / "test.db")
    asyncio.run(store.initialize())
    return store


@pytest.fixture
def payment_store(tmp_path):
    store = SqlitePaymentStore(tmp_path / "test.db")
    asyncio.run(store.initialize())
    return store


def test_create_account_stores_parsed_headers(credential_store):
    async def scenario():
        account = await credential_store.create_account("naver", "main", CURL)
        return account, await credential_store.get_headers(account.id)

    account, headers = asyncio.run(scenario())
    assert account.provider == "naver"
    assert account.curl == CURL
    assert headers == {"accept": "*/*", "Cookie": "NID_AUT=first"}


def test_create_account_rejects_malformed_capture(credential_store):
    with pytest.raises(MalformedSession):
        asyncio.run(credential_store.create_account("naver", "main", "not a capture"))
    assert asyncio.run(credential_store.list_accounts()) == []


def test_create_account_rejects_unknown_provider(credential_store):
    with pytest.raises(UnsupportedOperation):
        asyncio.run(credential_store.create_account("kakao", "main", CURL))


def test_refresh_replaces_headers(credential_store):
    async def scenario():
        account = await credential_store.create_account("naver", "main", CURL)
        accessor = credential_store.header_accessor(account.id)
        before = await accessor()
        refreshed = await credential_store.refresh(account.id, NEW_CURL)
        after = await accessor()
        return before, after, refreshed

    before, after, refreshed = asyncio.run(scenario())
    assert before["Cookie"] == "NID_AUT=first"
    assert after["Cookie"] == "NID_AUT=second"
    assert refreshed.curl == NEW_CURL


def test_failed_refresh_leaves_headers_unchanged(credential_store):
    async def scenario():
        account = await credential_store.create_account("naver", "main", CURL)
        try:
            await credential_store.refresh(account.id, "curl -H 'no: url'")
        except MalformedSession:
            pass
        return await credential_store.get_headers(account.id), await credential_store.get_account(account.id)

    headers, account = asyncio.run(scenario())
    assert headers["Cookie"] == "NID_AUT=first"
    assert account.curl == CURL


def test_unknown_account(credential_store):
    with pytest.raises(AccountNotFound):
        asyncio.run(credential_store.get_headers("missing"))
    with pytest.raises(AccountNotFound):
        asyncio.run(credential_store.refresh("missing", CURL))
    assert asyncio.run(credential_store.get_account("missing")) is None


def test_list_accounts_by_provider(credential_store):
    async def scenario():
        await credential_store.create_account("naver", "a", CURL)
        await credential_store.create_account("coupang", "b", "curl 'https://mc.coupang.com/' -b 'x=1'")
        return await credential_store.list_accounts(), await credential_store.list_accounts("coupang")

    everything, coupang = asyncio.run(scenario())
    assert len(everything) == 2
    assert [a.alias for a in coupang] == ["b"]


def _payment(pay_id: str, date: int, amount: int = 1000):
    detail = naver_detail_payload(pay_id, amount=amount, date=date)
    return normalize("naver", detail, naver_list_item(pay_id, date=date))


def test_save_is_upsert_and_replaces_items(payment_store):
    async def scenario():
        first_id = await payment_store.save_normalized_payment("acc", _payment("P1", 1700000000000, 1000))
        second_id = await payment_store.save_normalized_payment("acc", _payment("P1", 1700000000000, 2500))
        return first_id, second_id, await payment_store.list_payments("acc")

    first_id, second_id, payments = asyncio.run(scenario())
    assert first_id == second_id
    assert len(payments) == 1
    assert payments[0].id == first_id
    assert payments[0].total_amount == 2500
    assert len(payments[0].items) == 1
    assert payments[0].items[0].line_amount == 2500


def test_list_newest_first_with_paging(payment_store):
    async def scenario():
        for n, date in enumerate([1600000000000, 1700000000000, 1650000000000]):
            await payment_store.save_normalized_payment("acc", _payment(f"P{n}", date))
        await payment_store.save_normalized_payment("other", _payment("X", 1800000000000))
        return (
            await payment_store.list_payments("acc"),
            await payment_store.list_payments("acc", limit=1, offset=1),
            await payment_store.get_last_payment_id("acc"),
            await payment_store.count_payments("acc"),
        )

    payments, page, last_id, count = asyncio.run(scenario())
    assert [p.payment_id for p in payments] == ["P1", "P2", "P0"]
    assert [p.payment_id for p in page] == ["P2"]
    assert last_id == "P1"
    assert count == 3


def test_last_payment_id_empty(payment_store):
    assert asyncio.run(payment_store.get_last_payment_id("acc")) is None
