"""Tests for the purchase orchestrator.

The store, ledger and settlement adapter are in-memory fakes so that
concurrent purchases can be interleaved deterministically: the fake
settlement holds every buyer at a barrier until all of them have looked the
listing up, then releases them to race for inventory.

Run with:
    ./venv/bin/python -m pytest tests/test_purchase.py -v
"""

from __future__ import annotations

import asyncio
import uuid
from unittest.mock import MagicMock

import pytest

from conftest import BUYER, CHAIN_ID, SELLER, make_listing
from invite_markets.errors import (
    ListingNotFound,
    ListingSoldOut,
    ListingUnavailable,
    PaymentFailed,
)
from invite_markets.integrations.x402_facilitator import (
    PAYMENT_RESPONSE_HEADER,
    SettlementRequest,
    SettlementResult,
)
from invite_markets.models import Listing
from invite_markets.services.audit_logger import AuditLogger
from invite_markets.services.listing_store import ClaimedUnit, InventorySnapshot, ListingStore
from invite_markets.services.purchase_orchestrator import (
    AccessCodeSecret,
    InviteLinkSecret,
    PurchaseOrchestrator,
    secret_for,
)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeStore:
    """Dict-backed listing store with the same compare-and-set contract."""

    def __init__(self, chain_id: int = CHAIN_ID) -> None:
        self.chain_id = chain_id
        self.rows: dict[str, dict] = {}
        self.consume_calls = 0

    def add(self, slug: str = "abc12345", **overrides) -> str:
        row = dict(
            slug=slug,
            listing_type="invite_link",
            invite_url="https://example.com/invite/secret",
            access_code=None,
            app_url=None,
            price_micro_usdc=5_000_000,
            seller_address=SELLER,
            chain_id=self.chain_id,
            app_id="ethos",
            app_name=None,
            max_uses=1,
            purchase_count=0,
            status="active",
        )
        row.update(overrides)
        self.rows[slug] = row
        return slug

    async def find_by_slug(self, slug: str):
        row = self.rows.get(slug)
        return Listing(**row) if row else None

    async def consume_inventory(self, slug: str, expected: InventorySnapshot):
        self.consume_calls += 1
        row = self.rows.get(slug)
        if (
            row is None
            or expected.status != "active"
            or row["status"] != "active"
            or row["purchase_count"] != expected.purchase_count
            or row["max_uses"] != expected.max_uses
        ):
            return None
        row["purchase_count"] += 1
        if row["max_uses"] != -1 and row["purchase_count"] >= row["max_uses"]:
            row["status"] = "sold"
        return ClaimedUnit(
            listing_type=row["listing_type"],
            invite_url=row["invite_url"],
            app_url=row["app_url"],
            access_code=row["access_code"],
        )


class FakeLedger:
    def __init__(self, fail: bool = False) -> None:
        self.rows: list[dict] = []
        self.fail = fail

    async def append(self, **fields):
        if self.fail:
            raise RuntimeError("database is down")
        self.rows.append(fields)
        return MagicMock(transaction_id=uuid.uuid4())


class FakeSettlement:
    """Settles every request, optionally waiting for *parties* buyers first."""

    def __init__(self, parties: int = 1, result: SettlementResult | None = None) -> None:
        self.requests: list[SettlementRequest] = []
        self._barrier = asyncio.Barrier(parties) if parties > 1 else None
        self._result = result
        self._counter = 0

    async def settle(self, request: SettlementRequest) -> SettlementResult:
        self.requests.append(request)
        self._counter += 1
        payer = f"0x{self._counter:040x}"
        if self._barrier is not None:
            await self._barrier.wait()
        if self._result is not None:
            return self._result
        return SettlementResult(
            status=200,
            body={"success": True},
            headers={PAYMENT_RESPONSE_HEADER: "receipt"},
            payer=payer,
            tx_hash="0x" + "ab" * 32,
        )


def _orchestrator(store, ledger=None, settlement=None, notifier=None, audit=None):
    return PurchaseOrchestrator(
        store=store,
        ledger=ledger or FakeLedger(),
        settlement=settlement or FakeSettlement(),
        notifier=notifier,
        audit=audit or MagicMock(spec=AuditLogger),
    )


# ---------------------------------------------------------------------------
# Secret payloads
# ---------------------------------------------------------------------------

def test_secret_for_invite_link():
    listing = Listing(listing_type="invite_link", invite_url="https://x.test/i")
    assert secret_for(listing) == InviteLinkSecret(invite_url="https://x.test/i")


def test_secret_for_access_code():
    listing = Listing(listing_type="access_code", app_url="https://app.test", access_code="CODE")
    assert secret_for(listing) == AccessCodeSecret(app_url="https://app.test", access_code="CODE")


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_purchase_releases_secret_and_records_sale():
    store = FakeStore()
    slug = store.add()
    ledger = FakeLedger()
    settlement = FakeSettlement(result=SettlementResult(
        status=200,
        body={},
        headers={PAYMENT_RESPONSE_HEADER: "receipt"},
        payer=BUYER.upper().replace("0X", "0x"),
        tx_hash="0x" + "cd" * 32,
    ))
    notifier = MagicMock()
    audit = MagicMock(spec=AuditLogger)

    result = await _orchestrator(store, ledger, settlement, notifier, audit).request_purchase(
        slug, "proof", "http://test/api/v1/purchase/abc12345"
    )

    assert result.secret == InviteLinkSecret(invite_url="https://example.com/invite/secret")
    assert result.buyer_address == BUYER
    assert result.payment_headers == {PAYMENT_RESPONSE_HEADER: "receipt"}
    assert result.transaction_id is not None

    assert store.rows[slug]["purchase_count"] == 1
    assert store.rows[slug]["status"] == "sold"

    assert len(ledger.rows) == 1
    row = ledger.rows[0]
    assert row["buyer_address"] == BUYER
    assert row["price_micro_usdc"] == 5_000_000
    assert row["app_id"] == "ethos"
    assert row["tx_hash"] == "0x" + "cd" * 32

    request = settlement.requests[0]
    assert request.price_micro_usdc == 5_000_000
    assert request.pay_to == SELLER
    assert request.chain_id == CHAIN_ID

    audit.log_sale.assert_called_once()
    notifier.notify_sale.assert_called_once()
    sale, chain_id = notifier.notify_sale.call_args[0]
    assert sale.price_usdc == "5"
    assert chain_id == CHAIN_ID


@pytest.mark.asyncio
async def test_access_code_purchase():
    store = FakeStore()
    slug = store.add(
        listing_type="access_code",
        invite_url=None,
        app_url="https://app.test",
        access_code="SECRET-CODE",
        app_id=None,
        app_name="Some App",
    )
    ledger = FakeLedger()

    result = await _orchestrator(store, ledger).request_purchase(slug, "proof", "http://test")

    assert result.secret == AccessCodeSecret(app_url="https://app.test", access_code="SECRET-CODE")
    assert ledger.rows[0]["app_id"] == "Some App"


# ---------------------------------------------------------------------------
# Refusals before payment
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unknown_slug_is_not_found():
    settlement = FakeSettlement()
    with pytest.raises(ListingNotFound):
        await _orchestrator(FakeStore(), settlement=settlement).request_purchase(
            "missing1", "proof", "http://test"
        )
    assert settlement.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"status": "cancelled"},
        {"status": "sold", "purchase_count": 1},
        {"max_uses": 2, "purchase_count": 2},
    ],
    ids=["cancelled", "sold", "exhausted"],
)
async def test_unavailable_listing_never_settles(overrides):
    store = FakeStore()
    slug = store.add(**overrides)
    settlement = FakeSettlement()
    ledger = FakeLedger()

    with pytest.raises(ListingUnavailable):
        await _orchestrator(store, ledger, settlement).request_purchase(slug, "proof", "http://test")

    assert settlement.requests == []
    assert ledger.rows == []
    assert store.consume_calls == 0


@pytest.mark.asyncio
async def test_payment_failure_forwarded_and_inventory_untouched():
    store = FakeStore()
    slug = store.add()
    body = {"x402Version": 1, "error": "insufficient_funds", "accepts": []}
    settlement = FakeSettlement(result=SettlementResult(status=402, body=body))
    ledger = FakeLedger()

    with pytest.raises(PaymentFailed) as exc_info:
        await _orchestrator(store, ledger, settlement).request_purchase(slug, "proof", "http://test")

    assert exc_info.value.status_code == 402
    assert exc_info.value.body == body
    assert store.rows[slug]["purchase_count"] == 0
    assert store.rows[slug]["status"] == "active"
    assert ledger.rows == []


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_concurrent_single_use_purchase_has_one_winner():
    store = FakeStore()
    slug = store.add(max_uses=1)
    ledger = FakeLedger()
    audit = MagicMock(spec=AuditLogger)
    orchestrator = _orchestrator(store, ledger, FakeSettlement(parties=2), audit=audit)

    results = await asyncio.gather(
        orchestrator.request_purchase(slug, "proof-a", "http://test"),
        orchestrator.request_purchase(slug, "proof-b", "http://test"),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], ListingSoldOut)

    assert store.rows[slug]["purchase_count"] == 1
    assert store.rows[slug]["status"] == "sold"
    assert len(ledger.rows) == 1
    audit.log_paid_but_sold_out.assert_called_once()
    assert audit.log_paid_but_sold_out.call_args.kwargs["slug"] == slug


@pytest.mark.asyncio
async def test_concurrent_multi_use_purchases_all_claim():
    store = FakeStore()
    slug = store.add(max_uses=3)
    ledger = FakeLedger()
    orchestrator = _orchestrator(store, ledger, FakeSettlement(parties=3))

    results = await asyncio.gather(
        *(orchestrator.request_purchase(slug, f"proof-{i}", "http://test") for i in range(3)),
        return_exceptions=True,
    )

    assert not any(isinstance(r, BaseException) for r in results)
    assert store.rows[slug]["purchase_count"] == 3
    assert store.rows[slug]["status"] == "sold"
    assert len(ledger.rows) == 3
    assert len({row["buyer_address"] for row in ledger.rows}) == 3


@pytest.mark.asyncio
async def test_oversubscribed_listing_sells_exactly_max_uses():
    store = FakeStore()
    slug = store.add(max_uses=2)
    ledger = FakeLedger()
    orchestrator = _orchestrator(store, ledger, FakeSettlement(parties=4))

    results = await asyncio.gather(
        *(orchestrator.request_purchase(slug, f"proof-{i}", "http://test") for i in range(4)),
        return_exceptions=True,
    )

    sold_out = [r for r in results if isinstance(r, ListingSoldOut)]
    assert len(sold_out) == 2
    assert store.rows[slug]["purchase_count"] == 2
    assert len(ledger.rows) == 2


# ---------------------------------------------------------------------------
# Post-payment failures
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ledger_failure_still_releases_secret():
    store = FakeStore()
    slug = store.add()
    audit = MagicMock(spec=AuditLogger)

    result = await _orchestrator(store, FakeLedger(fail=True), audit=audit).request_purchase(
        slug, "proof", "http://test"
    )

    assert result.secret.invite_url == "https://example.com/invite/secret"
    assert result.transaction_id is None
    audit.log_ledger_append_failed.assert_called_once()
    assert "database is down" in audit.log_ledger_append_failed.call_args.kwargs["error"]


@pytest.mark.asyncio
async def test_notifier_failure_does_not_fail_purchase():
    store = FakeStore()
    slug = store.add()
    notifier = MagicMock()
    notifier.notify_sale.side_effect = RuntimeError("no running loop")

    result = await _orchestrator(store, notifier=notifier).request_purchase(
        slug, "proof", "http://test"
    )

    assert result.slug == slug
    assert store.rows[slug]["status"] == "sold"


@pytest.mark.asyncio
async def test_listing_deleted_during_settlement_is_sold_out():
    store = FakeStore()
    slug = store.add()
    audit = MagicMock(spec=AuditLogger)

    class DeletingSettlement(FakeSettlement):
        async def settle(self, request):
            store.rows.pop(slug)
            return await super().settle(request)

    with pytest.raises(ListingSoldOut):
        await _orchestrator(store, settlement=DeletingSettlement(), audit=audit).request_purchase(
            slug, "proof", "http://test"
        )
    audit.log_paid_but_sold_out.assert_called_once()


# ---------------------------------------------------------------------------
# Against the SQL store
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_secret_edited_during_settlement_is_what_buyer_gets(session_factory):
    async with session_factory() as setup_db, session_factory() as buyer_db, \
            session_factory() as seller_db:
        listing = await make_listing(
            ListingStore(setup_db, CHAIN_ID), invite_url="https://old.test/inv"
        )
        seller_store = ListingStore(seller_db, CHAIN_ID)

        class EditingSettlement(FakeSettlement):
            async def settle(self, request):
                await seller_store.update_fields(
                    listing.slug, SELLER, {"invite_url": "https://new.test/inv"}
                )
                return await super().settle(request)

        orchestrator = _orchestrator(
            ListingStore(buyer_db, CHAIN_ID), settlement=EditingSettlement()
        )
        result = await orchestrator.request_purchase(listing.slug, "proof", "http://test")

        stored = await seller_store.find_by_slug(listing.slug)

    assert result.secret == InviteLinkSecret(invite_url="https://new.test/inv")
    assert stored.invite_url == "https://new.test/inv"
    assert stored.status == "sold"


@pytest.mark.asyncio
@pytest.mark.parametrize("max_uses,buyers,winners", [(1, 2, 1), (2, 3, 2)])
async def test_sql_store_race_sells_exactly_max_uses(session_factory, max_uses, buyers, winners):
    async with session_factory() as setup_db:
        listing = await make_listing(ListingStore(setup_db, CHAIN_ID), max_uses=max_uses)

    ledger = FakeLedger()
    settlement = FakeSettlement(parties=buyers)
    sessions = [session_factory() for _ in range(buyers)]
    try:
        orchestrators = [
            _orchestrator(ListingStore(db, CHAIN_ID), ledger, settlement) for db in sessions
        ]
        results = await asyncio.gather(
            *(
                o.request_purchase(listing.slug, f"proof-{i}", "http://test")
                for i, o in enumerate(orchestrators)
            ),
            return_exceptions=True,
        )
    finally:
        for db in sessions:
            await db.close()

    successes = [r for r in results if not isinstance(r, BaseException)]
    sold_out = [r for r in results if isinstance(r, ListingSoldOut)]
    assert len(successes) == winners
    assert len(sold_out) == buyers - winners
    assert len(ledger.rows) == winners

    async with session_factory() as check_db:
        stored = await ListingStore(check_db, CHAIN_ID).find_by_slug(listing.slug)
    assert stored.purchase_count == max_uses
    assert stored.status == "sold"
