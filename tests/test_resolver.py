from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from dispense.db.models import Order, PAYMENT_FAILED, PAYMENT_UNPAID
from dispense.errors import StoreUnavailableError
from dispense.services.resolver import DispenseResolver
from dispense.services.store import SqlOrderStore, SqlProductCatalog
from dispense.types.dispense_types import UNKNOWN_PRODUCT_NAME, ProductInfo

from fakes import T0, DictCatalog, InMemoryOrderStore, add_order, pending

NAPKIN = ProductInfo(id="p-napkin", name="napkin-xl", description="Extra large napkin")


def sql_resolver(db):
    return DispenseResolver(SqlOrderStore(db), SqlProductCatalog(db))


def test_concurrent_claims_dispense_once():
    store = InMemoryOrderStore([pending("tx1")])
    resolver = DispenseResolver(store, DictCatalog({"p-napkin": NAPKIN}))

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda _: resolver.claim_next_pending_order("m1"), range(32)))

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert winners[0].order.id == "tx1"
    assert len(store.dispensed_at["tx1"]) == 1


def test_lost_race_returns_none_without_retry():
    store = InMemoryOrderStore([pending("tx1"), pending("tx2", minutes=5)])
    original = store.mark_dispensed
    attempts = []

    def racing_mark(order_id, at):
        attempts.append(order_id)
        original(order_id, at)  # another poller wins first
        return original(order_id, at)

    store.mark_dispensed = racing_mark
    resolver = DispenseResolver(store, DictCatalog())

    assert resolver.claim_next_pending_order("m1") is None
    assert attempts == ["tx1"]
    assert store.dispensed["tx2"] is False


def test_claims_are_oldest_first(db, napkin):
    add_order(db, "newer", created_at=T0 + timedelta(minutes=10))
    add_order(db, "older", created_at=T0)
    resolver = sql_resolver(db)

    assert resolver.claim_next_pending_order("m1").order.id == "older"
    assert resolver.claim_next_pending_order("m1").order.id == "newer"
    assert resolver.claim_next_pending_order("m1") is None


def test_unpaid_and_failed_orders_are_never_claimed(db, napkin):
    add_order(db, "unpaid", created_at=T0 - timedelta(days=1), payment_status=PAYMENT_UNPAID)
    add_order(db, "failed", created_at=T0 - timedelta(hours=1), payment_status=PAYMENT_FAILED)
    add_order(db, "paid", created_at=T0)

    resolver = sql_resolver(db)
    assert resolver.claim_next_pending_order("m1").order.id == "paid"
    assert resolver.claim_next_pending_order("m1") is None
    assert db.get(Order, "unpaid").dispensed is False
    assert db.get(Order, "failed").dispensed is False


def test_dispensed_order_is_not_offered_again(db, napkin):
    add_order(db, "done", dispensed=True, dispensed_at=T0)

    assert sql_resolver(db).claim_next_pending_order("m1") is None


def test_claim_sets_dispensed_at_once(db, napkin):
    add_order(db, "tx1")
    store = SqlOrderStore(db)
    first = T0 + timedelta(minutes=1)

    assert store.mark_dispensed("tx1", first) is True
    assert store.mark_dispensed("tx1", first + timedelta(minutes=1)) is False

    db.expire_all()
    order = db.get(Order, "tx1")
    assert order.dispensed is True
    assert order.dispensed_at == first


def test_orders_of_other_machines_are_ignored(db, napkin):
    add_order(db, "elsewhere", machine_id="m2")

    assert sql_resolver(db).claim_next_pending_order("m1") is None


def test_claim_resolves_product_metadata(db, napkin):
    add_order(db, "tx1", items=[{"product_id": "p-napkin", "quantity": 2, "price": 50.0}])

    claimed = sql_resolver(db).claim_next_pending_order("m1")

    item = claimed.items[0]
    assert item.product == NAPKIN
    assert item.quantity == 2
    assert item.price == 50.0


def test_unresolved_products_fall_back_to_placeholders(db, napkin):
    add_order(db, "tx1", items=[
        {"product_id": "missing", "quantity": 1, "price": 10},
        {"product_id": "also-missing", "name": "Tissue pack", "quantity": 3, "price": 5},
        {"quantity": "lots"},
    ])

    claimed = sql_resolver(db).claim_next_pending_order("m1")

    names = [item.product.name for item in claimed.items]
    assert names == [UNKNOWN_PRODUCT_NAME, "Tissue pack", UNKNOWN_PRODUCT_NAME]
    assert db.get(Order, "tx1").dispensed is True


def test_catalog_failure_does_not_undo_claim():
    class BrokenCatalog:
        def describe(self, machine_id, product_id):
            raise OperationalError("SELECT", {}, Exception("connection reset"))

    store = InMemoryOrderStore([pending("tx1")])
    claimed = DispenseResolver(store, BrokenCatalog()).claim_next_pending_order("m1")

    assert claimed.items[0].product.name == UNKNOWN_PRODUCT_NAME
    assert store.dispensed["tx1"] is True


def test_store_failure_during_claim_propagates(db, napkin, monkeypatch):
    add_order(db, "tx1")

    def broken_execute(*args, **kwargs):
        raise OperationalError("UPDATE", {}, Exception("database is gone"))

    store = SqlOrderStore(db)
    found = store.oldest_pending("m1")
    monkeypatch.setattr(db, "execute", broken_execute)

    with pytest.raises(StoreUnavailableError):
        store.mark_dispensed(found.id, T0)


def test_claim_reports_the_time_it_was_written(db, napkin):
    add_order(db, "tx1")
    at = T0 + timedelta(minutes=3)
    resolver = DispenseResolver(SqlOrderStore(db), SqlProductCatalog(db), clock=lambda: at)

    claimed = resolver.claim_next_pending_order("m1")

    assert claimed.dispensed_at == at
    db.expire_all()
    assert db.get(Order, "tx1").dispensed_at == at
