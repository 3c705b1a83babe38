import pytest
from sqlmodel import select

from bookpay.errors import FulfillmentError, NotFoundError
from bookpay.jobs.retry_fulfillment import retry_open_issues
from bookpay.models.book import Book
from bookpay.models.bundle import BundleBook
from bookpay.models.fulfillment_issue import FulfillmentIssue
from bookpay.models.library import LibraryEntry, LibraryStatus
from bookpay.models.purchase import ItemType
from bookpay.notifications import Notifier
from bookpay.services.fulfillment import FulfillmentDispatcher


@pytest.fixture
def dispatcher(session, settings):
    return FulfillmentDispatcher(session, Notifier(session, settings))


def entries(session, user_id):
    return {
        e.book_id: e
        for e in session.exec(select(LibraryEntry).where(LibraryEntry.user_id == user_id)).all()
    }


def break_bundle(session, catalog, book_id=4242):
    session.add(BundleBook(bundle_id=catalog.bundle_id, book_id=book_id))
    session.commit()


def test_grant_book(dispatcher, session, catalog):
    granted = dispatcher.grant_access(catalog.buyer_id, ItemType.book, catalog.book_id)
    assert granted == [catalog.book_id]
    assert entries(session, catalog.buyer_id)[catalog.book_id].status == LibraryStatus.owned


def test_grant_is_idempotent(dispatcher, session, catalog):
    dispatcher.grant_access(catalog.buyer_id, ItemType.book, catalog.book_id)
    dispatcher.grant_access(catalog.buyer_id, ItemType.book, catalog.book_id)
    assert len(entries(session, catalog.buyer_id)) == 1


def test_existing_entries_are_tolerated_and_upgraded(dispatcher, session, catalog):
    first, second, third = catalog.bundle_book_ids
    session.add(LibraryEntry(user_id=catalog.buyer_id, book_id=first, status=LibraryStatus.pending))
    session.add(LibraryEntry(user_id=catalog.buyer_id, book_id=second, status=LibraryStatus.completed, progress=100))
    session.commit()

    dispatcher.grant_access(catalog.buyer_id, ItemType.bundle, catalog.bundle_id, purchase_id=None)

    library = entries(session, catalog.buyer_id)
    assert library[first].status == LibraryStatus.owned
    assert library[second].status == LibraryStatus.completed
    assert library[second].progress == 100
    assert library[third].status == LibraryStatus.owned


def test_bundle_grant_is_all_or_nothing(dispatcher, session, catalog):
    break_bundle(session, catalog)

    with pytest.raises(FulfillmentError) as exc:
        dispatcher.grant_access(catalog.buyer_id, ItemType.bundle, catalog.bundle_id)

    assert exc.value.failed_book_ids == [4242]
    assert entries(session, catalog.buyer_id) == {}


def test_failure_on_empty_bundle(dispatcher, session, catalog):
    with pytest.raises(FulfillmentError):
        dispatcher.grant_access(catalog.buyer_id, ItemType.bundle, catalog.free_bundle_id)


def test_repeated_failure_updates_the_same_issue(dispatcher, session, catalog, workflow, buyer, admin):
    break_bundle(session, catalog)
    purchase = workflow.initiate_purchase(buyer, "bundle", catalog.bundle_id)
    workflow.submit_transaction_id(purchase.id, buyer, "TX1")
    with pytest.raises(FulfillmentError):
        workflow.admin_verify(purchase.id, admin, approve=True)

    [issue] = dispatcher.list_issues()
    with pytest.raises(FulfillmentError):
        dispatcher.retry_issue(issue.id)

    [issue] = session.exec(select(FulfillmentIssue)).all()
    assert issue.attempts == 2
    assert issue.status == "open"


def test_retry_resolves_issue_once_catalog_is_fixed(dispatcher, session, catalog, workflow, buyer, admin):
    break_bundle(session, catalog)
    purchase = workflow.initiate_purchase(buyer, "bundle", catalog.bundle_id)
    workflow.submit_transaction_id(purchase.id, buyer, "TX1")
    with pytest.raises(FulfillmentError):
        workflow.admin_verify(purchase.id, admin, approve=True)

    session.add(Book(id=4242, title="Volume Four", author="A", price=80))
    session.commit()

    [issue] = dispatcher.list_issues()
    resolved = dispatcher.retry_issue(issue.id)

    assert resolved.status == "resolved"
    assert resolved.resolved_at is not None
    assert set(entries(session, catalog.buyer_id)) == set(catalog.bundle_book_ids) | {4242}
    assert dispatcher.list_issues() == []
    # resolved issues are left alone
    assert dispatcher.retry_issue(issue.id).status == "resolved"


def test_retry_unknown_issue(dispatcher):
    with pytest.raises(NotFoundError):
        dispatcher.retry_issue(12345)


def test_reconciliation_job(session, settings, catalog, dispatcher):
    break_bundle(session, catalog)
    with pytest.raises(FulfillmentError):
        dispatcher.grant_access(catalog.buyer_id, ItemType.bundle, catalog.bundle_id)
    with pytest.raises(FulfillmentError):
        dispatcher.grant_access(catalog.other_id, ItemType.book, 777)

    session.add(Book(id=4242, title="Volume Four", author="A", price=80))
    session.commit()

    outcome = retry_open_issues(session, settings)

    assert len(outcome["resolved"]) == 1
    assert len(outcome["failed"]) == 1
    assert len(entries(session, catalog.buyer_id)) == 4
