import re
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from bookpay.errors import ConflictError, DuplicateError, NotFoundError, ValidationError
from bookpay.models.purchase import ItemType, Purchase, PurchaseStatus
from bookpay.models.purchase_event import PurchaseEvent
from bookpay.services import purchase_store
from bookpay.services.purchase_store import PurchaseStore, generate_transaction_reference


@pytest.fixture
def store(session, settings):
    return PurchaseStore(session, settings)


def make(store, catalog, item_id=None, user_id=None):
    return store.create(
        user_id=user_id or catalog.buyer_id,
        item_type=ItemType.book,
        item_id=item_id or catalog.book_id,
        amount=Decimal("150.00"),
    )


def test_reference_format():
    reference = generate_transaction_reference("BKS")
    assert re.fullmatch(r"BKS-\d{8}-[0-9A-F]{8}", reference)


def test_create_assigns_identity(store, catalog, session):
    purchase = make(store, catalog)

    assert purchase.status == PurchaseStatus.pending_initiation
    assert purchase.amount == Decimal("150.00")
    assert purchase.currency == "ETB"
    assert purchase.transaction_reference.startswith("BKS-")
    assert purchase.initiation_token
    assert len(session.exec(select(PurchaseEvent).where(PurchaseEvent.purchase_id == purchase.id)).all()) == 1


def test_create_rejects_non_positive_amount(store, catalog):
    with pytest.raises(ValidationError):
        store.create(user_id=catalog.buyer_id, item_type=ItemType.book, item_id=catalog.book_id, amount=Decimal("0"))


def test_second_active_purchase_is_duplicate(store, catalog):
    first = make(store, catalog)
    with pytest.raises(DuplicateError):
        make(store, catalog)
    assert store.get_by_id(first.id).status == PurchaseStatus.pending_initiation


def test_terminal_purchase_does_not_block_a_new_one(store, catalog):
    first = make(store, catalog)
    store.update_status(first.id, PurchaseStatus.pending_initiation, PurchaseStatus.rejected)
    second = make(store, catalog)
    assert second.id != first.id


def test_partial_unique_index_blocks_racing_inserts(session, catalog):
    for n in range(2):
        session.add(Purchase(
            user_id=catalog.buyer_id,
            item_type=ItemType.book,
            item_id=catalog.book_id,
            amount=Decimal("150"),
            transaction_reference=f"BKS-RACE-{n}",
            initiation_token=f"token-{n}",
        ))
    with pytest.raises(IntegrityError):
        session.commit()


def test_reference_collision_is_retried(store, catalog, monkeypatch):
    first = make(store, catalog)

    references = iter([first.transaction_reference, "BKS-20260101-0000BEEF"])
    monkeypatch.setattr(purchase_store, "generate_transaction_reference", lambda prefix: next(references))

    second = make(store, catalog, user_id=catalog.other_id)
    assert second.transaction_reference == "BKS-20260101-0000BEEF"


def test_references_are_unique(store, catalog, session):
    for user_id in (catalog.buyer_id, catalog.other_id, catalog.admin_id):
        for item_id in [catalog.book_id] + catalog.bundle_book_ids:
            make(store, catalog, item_id=item_id, user_id=user_id)

    references = [p.transaction_reference for p in session.exec(select(Purchase)).all()]
    assert len(references) == 12
    assert len(set(references)) == len(references)


def test_lookups(store, catalog):
    purchase = make(store, catalog)

    assert store.get_by_token(purchase.initiation_token).id == purchase.id
    assert store.get_by_reference(purchase.transaction_reference).id == purchase.id
    with pytest.raises(NotFoundError):
        store.get_by_token("nope")
    with pytest.raises(NotFoundError):
        store.get_by_id("missing")


def test_conditional_update_applies_once(store, catalog):
    purchase = make(store, catalog)

    updated = store.update_status(
        purchase.id,
        PurchaseStatus.pending_initiation,
        PurchaseStatus.awaiting_payment,
        label="moved",
        telegram_chat_id=42,
    )
    assert updated.status == PurchaseStatus.awaiting_payment
    assert updated.telegram_chat_id == 42

    with pytest.raises(ConflictError) as exc:
        store.update_status(purchase.id, PurchaseStatus.pending_initiation, PurchaseStatus.rejected)
    assert exc.value.current_status == PurchaseStatus.awaiting_payment
    assert store.get_by_id(purchase.id).status == PurchaseStatus.awaiting_payment


def test_update_unknown_purchase(store):
    with pytest.raises(NotFoundError):
        store.update_status("missing", PurchaseStatus.pending_initiation, PurchaseStatus.rejected)


def test_immutable_fields_cannot_change(store, catalog):
    purchase = make(store, catalog)
    with pytest.raises(ValueError):
        store.update_status(purchase.id, PurchaseStatus.pending_initiation, None, amount=Decimal("1"))
    with pytest.raises(ValueError):
        store.update_fields(purchase.id, PurchaseStatus.pending_initiation, transaction_reference="X")


def test_update_fields_keeps_status(store, catalog):
    purchase = make(store, catalog)
    updated = store.update_fields(purchase.id, PurchaseStatus.pending_initiation, telegram_user_id=7)
    assert updated.status == PurchaseStatus.pending_initiation
    assert updated.telegram_user_id == 7


def test_list_pending_is_fifo(store, catalog):
    ids = []
    for item_id in catalog.bundle_book_ids:
        purchase = make(store, catalog, item_id=item_id)
        store.update_status(purchase.id, PurchaseStatus.pending_initiation, PurchaseStatus.pending_verification)
        ids.append(purchase.id)
    make(store, catalog)  # still pending_initiation, not in the queue

    page = store.list_pending(page=1, limit=2)
    assert page["total_items"] == 3
    assert page["total_pages"] == 2
    assert [p.id for p in page["results"]] == ids[:2]

    page = store.list_pending(page=2, limit=2)
    assert [p.id for p in page["results"]] == ids[2:]


@pytest.fixture
def second_store(engine, settings):
    with Session(engine) as other_session:
        yield PurchaseStore(other_session, settings)


def test_racing_creates_get_distinct_references(store, second_store, catalog, monkeypatch):
    # both requests draw the same reference first; the second one to commit retries
    references = iter(["BKS-20260101-SAMEREF1", "BKS-20260101-SAMEREF1", "BKS-20260101-0000BEEF"])
    monkeypatch.setattr(purchase_store, "generate_transaction_reference", lambda prefix: next(references))

    first = make(store, catalog)
    second = make(second_store, catalog, user_id=catalog.other_id)

    assert first.transaction_reference == "BKS-20260101-SAMEREF1"
    assert second.transaction_reference == "BKS-20260101-0000BEEF"


def test_racing_creates_for_same_item_yield_one_purchase(store, second_store, catalog, session, monkeypatch):
    real_find_active = second_store.find_active
    checks = []

    def stale_find_active(*args):
        # the first check ran before the other request committed
        checks.append(args)
        return None if len(checks) == 1 else real_find_active(*args)

    monkeypatch.setattr(second_store, "find_active", stale_find_active)

    first = make(store, catalog)
    with pytest.raises(DuplicateError):
        make(second_store, catalog)

    rows = session.exec(select(Purchase).where(Purchase.user_id == catalog.buyer_id)).all()
    assert [p.id for p in rows] == [first.id]


def test_stale_session_loses_conditional_update(store, second_store, catalog):
    purchase = make(store, catalog)
    # both sessions have read the purchase while it was still pending_initiation
    assert second_store.get_by_id(purchase.id).status == PurchaseStatus.pending_initiation

    store.update_status(purchase.id, PurchaseStatus.pending_initiation, PurchaseStatus.awaiting_payment)

    with pytest.raises(ConflictError) as exc:
        second_store.update_status(purchase.id, PurchaseStatus.pending_initiation, PurchaseStatus.rejected)
    assert exc.value.current_status == PurchaseStatus.awaiting_payment
