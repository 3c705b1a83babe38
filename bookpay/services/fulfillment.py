"""Grant library access for paid items.

A grant is all-or-nothing: every book of a bundle is written in one
transaction, and any failure leaves a ``FulfillmentIssue`` row for
reconciliation instead of a half-delivered bundle.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from bookpay.errors import FulfillmentError, NotFoundError
from bookpay.models.book import Book
from bookpay.models.bundle import Bundle
from bookpay.models.fulfillment_issue import FulfillmentIssue
from bookpay.models.library import LibraryEntry, LibraryStatus
from bookpay.models.purchase import ItemType, Purchase
from bookpay.notifications import Notifier, PurchaseEventType
from bookpay.services.item_resolver import bundle_book_ids

logger = logging.getLogger(__name__)

GRANT_ATTEMPTS = 2


class FulfillmentDispatcher:
    def __init__(self, session: Session, notifier: Notifier):
        self.session = session
        self.notifier = notifier

    def _book_ids(self, item_type: ItemType, item_id: int) -> List[int]:
        if item_type == ItemType.book:
            return [item_id]
        return bundle_book_ids(self.session, item_id)

    def item_title(self, item_type: ItemType, item_id: int) -> str:
        model = Book if item_type == ItemType.book else Bundle
        item = self.session.get(model, item_id)
        return item.title if item else f"{item_type.value} #{item_id}"

    def _grant_book(self, user_id: int, book_id: int, purchase_id: Optional[str]):
        entry = self.session.exec(
            select(LibraryEntry)
            .where(LibraryEntry.user_id == user_id)
            .where(LibraryEntry.book_id == book_id)
        ).first()

        if entry is None:
            self.session.add(LibraryEntry(
                user_id=user_id,
                book_id=book_id,
                status=LibraryStatus.owned,
                progress=0,
                purchase_id=purchase_id,
            ))
        elif entry.status == LibraryStatus.pending:
            entry.status = LibraryStatus.owned
            entry.purchase_id = purchase_id or entry.purchase_id
            entry.updated_at = datetime.utcnow()
            self.session.add(entry)
        # owned / completed entries already give access

    def grant_access(
        self,
        user_id: int,
        item_type: ItemType,
        item_id: int,
        *,
        purchase_id: Optional[str] = None,
        payment_request_id: Optional[int] = None,
        reference: Optional[str] = None,
        issue_id: Optional[int] = None,
    ) -> List[int]:
        """Give ``user_id`` every book of the item. Returns the granted book ids."""
        item_type = ItemType(item_type)
        book_ids = self._book_ids(item_type, item_id)
        failure_ctx = dict(
            user_id=user_id,
            item_type=item_type,
            item_id=item_id,
            purchase_id=purchase_id,
            payment_request_id=payment_request_id,
            reference=reference,
            issue_id=issue_id,
        )

        if not book_ids:
            self._fail(failed_book_ids=[], error=f"{item_type.value} {item_id} has no books", **failure_ctx)

        missing = [book_id for book_id in book_ids if self.session.get(Book, book_id) is None]
        if missing:
            self._fail(failed_book_ids=missing, error="Books no longer exist in the catalog", **failure_ctx)

        for attempt in range(1, GRANT_ATTEMPTS + 1):
            try:
                for book_id in book_ids:
                    self._grant_book(user_id, book_id, purchase_id)
                self.session.commit()
                break
            except IntegrityError:
                # another request inserted one of the rows first; re-read and upgrade
                self.session.rollback()
                if attempt == GRANT_ATTEMPTS:
                    self._fail(failed_book_ids=book_ids, error="Library rows kept conflicting", **failure_ctx)
            except SQLAlchemyError as e:
                self.session.rollback()
                self._fail(failed_book_ids=book_ids, error=str(e), **failure_ctx)

        logger.info(
            f"Granted {item_type.value} {item_id} ({len(book_ids)} book(s)) to user {user_id}"
            + (f" for purchase {purchase_id}" if purchase_id else "")
        )

        self.notifier.dispatch(
            PurchaseEventType.ACCESS_GRANTED,
            related_id=reference or purchase_id,
            user_id=user_id,
            reference=reference,
            item_title=self.item_title(item_type, item_id),
        )
        return book_ids

    def _open_issue(self, purchase_id, payment_request_id) -> Optional[FulfillmentIssue]:
        query = select(FulfillmentIssue).where(FulfillmentIssue.status == "open")
        if purchase_id is not None:
            query = query.where(FulfillmentIssue.purchase_id == purchase_id)
        elif payment_request_id is not None:
            query = query.where(FulfillmentIssue.payment_request_id == payment_request_id)
        else:
            return None
        return self.session.exec(query).first()

    def _fail(
        self,
        *,
        failed_book_ids: List[int],
        error: str,
        user_id: int,
        item_type: ItemType,
        item_id: int,
        purchase_id: Optional[str],
        payment_request_id: Optional[int],
        reference: Optional[str],
        issue_id: Optional[int],
    ):
        if issue_id is not None:
            issue = self.session.get(FulfillmentIssue, issue_id)
        else:
            issue = self._open_issue(purchase_id, payment_request_id)
        if issue is None:
            issue = FulfillmentIssue(
                purchase_id=purchase_id,
                payment_request_id=payment_request_id,
                user_id=user_id,
                item_type=item_type,
                item_id=item_id,
                failed_book_ids=failed_book_ids,
                error=error,
            )
        else:
            issue.failed_book_ids = list(failed_book_ids)
            issue.error = error
            issue.attempts += 1

        self.session.add(issue)
        self.session.commit()
        self.session.refresh(issue)

        logger.error(
            f"Fulfillment failed for user {user_id} {item_type.value} {item_id} "
            f"(purchase {purchase_id}, request {payment_request_id}): books {failed_book_ids}: {error}. "
            f"Reconciliation issue {issue.id}, attempt {issue.attempts}"
        )

        self.notifier.dispatch(
            PurchaseEventType.FULFILLMENT_FAILED,
            related_id=reference or purchase_id or payment_request_id,
            user_id=user_id,
            reference=reference or purchase_id or f"request {payment_request_id}",
            failed_book_ids=failed_book_ids,
            error=error,
            issue_id=issue.id,
            admin_title="Library access not granted",
            admin_content=f"Books {failed_book_ids} could not be granted: {error}",
        )

        raise FulfillmentError(
            "Payment recorded but library access could not be granted",
            failed_book_ids=failed_book_ids,
            issue_id=issue.id,
        )

    # ---------- reconciliation ----------

    def list_issues(self, status: Optional[str] = "open") -> List[FulfillmentIssue]:
        query = select(FulfillmentIssue)
        if status:
            query = query.where(FulfillmentIssue.status == status)
        return list(self.session.exec(query.order_by(FulfillmentIssue.created_at.asc())).all())

    def retry_issue(self, issue_id: int) -> FulfillmentIssue:
        """Re-run an open issue; resolves it on success, re-raises FulfillmentError otherwise."""
        issue = self.session.get(FulfillmentIssue, issue_id)
        if issue is None:
            raise NotFoundError("Fulfillment issue not found")
        if issue.status == "resolved":
            return issue

        reference = None
        if issue.purchase_id:
            purchase = self.session.get(Purchase, issue.purchase_id)
            reference = purchase.transaction_reference if purchase else None

        self.grant_access(
            issue.user_id,
            issue.item_type,
            issue.item_id,
            purchase_id=issue.purchase_id,
            payment_request_id=issue.payment_request_id,
            reference=reference,
            issue_id=issue.id,
        )

        issue = self.session.get(FulfillmentIssue, issue_id)
        issue.status = "resolved"
        issue.resolved_at = datetime.utcnow()
        self.session.add(issue)
        self.session.commit()
        self.session.refresh(issue)
        logger.info(f"Fulfillment issue {issue_id} resolved")
        return issue
