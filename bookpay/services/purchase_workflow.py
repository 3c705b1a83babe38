"""Purchase state machine.

    pending_initiation -> awaiting_payment -> pending_verification -> completed
                                                                   -> rejected
    pending_initiation | awaiting_payment -> rejected (cancel)

Every transition is a conditional update through ``PurchaseStore``. A
``ConflictError`` on submit/verify/finalize is turned into a no-op result
when the purchase already sits in the state the caller asked for, so
retried bot callbacks and double clicks are safe.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import update
from sqlmodel import Session, select

from bookpay.config import Settings
from bookpay.dependencies.auth import BOT, Principal, PrincipalKind
from bookpay.errors import (
    ConflictError,
    DuplicateError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from bookpay.models.manual_payment import ManualPaymentSubmission, SubmissionStatus
from bookpay.models.purchase import Purchase, PurchaseStatus
from bookpay.notifications import Notifier, PurchaseEventType
from bookpay.services.fulfillment import FulfillmentDispatcher
from bookpay.services.item_resolver import resolve_item
from bookpay.services.purchase_store import PurchaseStore
from bookpay.services.receipt_storage import receipt_prefix
from bookpay.utils.pagination import paginate

logger = logging.getLogger(__name__)

PAYABLE_STATUSES = (PurchaseStatus.pending_initiation, PurchaseStatus.awaiting_payment)
FINALIZABLE_STATUSES = (PurchaseStatus.awaiting_payment, PurchaseStatus.pending_verification)
FINAL_STATUSES = {"completed": PurchaseStatus.completed, "rejected": PurchaseStatus.rejected}


@dataclass
class TransitionResult:
    purchase: Purchase
    changed: bool = True


def parse_amount(amount) -> Optional[Decimal]:
    if amount is None or amount == "":
        return None
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number")
    if value <= 0:
        raise ValidationError("Amount must be greater than zero")
    return value


class PurchaseWorkflow:
    def __init__(self, session: Session, settings: Settings, notifier: Optional[Notifier] = None):
        self.session = session
        self.settings = settings
        self.notifier = notifier or Notifier(session, settings)
        self.store = PurchaseStore(session, settings)
        self.fulfillment = FulfillmentDispatcher(session, self.notifier)

    # ---------- helpers ----------

    def item_title(self, purchase: Purchase) -> str:
        try:
            return resolve_item(self.session, purchase.item_type, purchase.item_id).title
        except (NotFoundError, ValidationError):
            logger.warning(f"Item {purchase.item_type.value} {purchase.item_id} missing for purchase {purchase.id}")
            return f"{purchase.item_type.value} #{purchase.item_id}"

    def _notify(self, event: PurchaseEventType, purchase: Purchase, **extra):
        extra.setdefault("item_title", self.item_title(purchase))
        self.notifier.dispatch(
            event,
            related_id=purchase.transaction_reference,
            user_id=purchase.user_id,
            reference=purchase.transaction_reference,
            amount=str(purchase.amount),
            currency=purchase.currency,
            **extra,
        )

    def get_for_principal(self, purchase_id: str, principal: Principal) -> Purchase:
        """Owner or admin; everyone else gets ForbiddenError."""
        purchase = self.store.get_by_id(purchase_id)
        if principal.is_admin:
            return purchase
        if principal.kind != PrincipalKind.user or purchase.user_id != principal.user_id:
            raise ForbiddenError("You do not have access to this purchase")
        return purchase

    def _require_owner(self, purchase_id: str, principal: Principal) -> Purchase:
        purchase = self.store.get_by_id(purchase_id)
        if principal.kind != PrincipalKind.user or purchase.user_id != principal.user_id:
            raise ForbiddenError("You do not have access to this purchase")
        return purchase

    # ---------- user operations ----------

    def initiate_purchase(self, principal: Principal, item_type, item_id: int) -> Purchase:
        item = resolve_item(self.session, item_type, item_id)

        if item.is_free:
            raise ValidationError("This item is free; add it to your library instead")

        if self.store.find_completed(principal.user_id, item.item_type, item.id):
            raise DuplicateError("You have already purchased this item")

        purchase = self.store.create(
            user_id=principal.user_id,
            item_type=item.item_type,
            item_id=item.id,
            amount=item.price,
            created_by=principal.actor,
        )

        self._notify(
            PurchaseEventType.PURCHASE_INITIATED,
            purchase,
            item_title=item.title,
            admin_title="Purchase initiated",
            admin_content=f"{item.title} for {purchase.amount} {purchase.currency} ({purchase.transaction_reference})",
        )
        return purchase

    def submit_transaction_id(
        self,
        purchase_id: str,
        principal: Principal,
        transaction_id: str,
        amount=None,
    ) -> TransitionResult:
        transaction_id = (transaction_id or "").strip()
        if not transaction_id:
            raise ValidationError("Transaction id is required")
        claimed = parse_amount(amount)

        self._require_owner(purchase_id, principal)

        try:
            purchase = self.store.update_status(
                purchase_id,
                PAYABLE_STATUSES,
                PurchaseStatus.pending_verification,
                label="Transaction id submitted",
                actor=principal.actor,
                meta={"transaction_id": transaction_id},
                transaction_id=transaction_id,
                claimed_amount=claimed,
            )
        except ConflictError as e:
            if e.current_status in (PurchaseStatus.pending_verification, PurchaseStatus.completed):
                logger.info(f"Duplicate transaction id submission for purchase {purchase_id} ignored")
                return TransitionResult(e.current, changed=False)
            raise

        logger.info(f"Purchase {purchase_id} awaiting verification (tx {transaction_id})")
        self._notify(
            PurchaseEventType.PROOF_SUBMITTED,
            purchase,
            transaction_id=transaction_id,
            admin_title="Payment awaiting verification",
            admin_content=f"Transaction id {transaction_id} for {purchase.transaction_reference}",
        )
        return TransitionResult(purchase)

    def submit_manual_proof(
        self,
        purchase_id: str,
        principal: Principal,
        receipt_paths: List[str],
        amount=None,
    ) -> ManualPaymentSubmission:
        paths = [p.strip() for p in (receipt_paths or []) if p and p.strip()]
        if not paths:
            raise ValidationError("At least one receipt is required")
        prefix = receipt_prefix(purchase_id)
        if any(not p.startswith(prefix) or ".." in p for p in paths):
            raise ValidationError("Receipts must be uploaded for this purchase")
        claimed = parse_amount(amount)

        purchase = self._require_owner(purchase_id, principal)
        if purchase.is_terminal:
            raise ConflictError(f"Purchase is already {purchase.status.value}", current=purchase)

        # move the purchase first: a failed conditional update rolls back the session
        try:
            purchase = self.store.update_status(
                purchase_id,
                PAYABLE_STATUSES,
                PurchaseStatus.pending_verification,
                label="Payment proof submitted",
                actor=principal.actor,
                meta={"receipts": len(paths)},
            )
            moved = True
        except ConflictError as e:
            if e.current_status != PurchaseStatus.pending_verification:
                raise
            purchase, moved = e.current, False

        submission = ManualPaymentSubmission(
            purchase_id=purchase.id,
            user_id=purchase.user_id,
            receipt_paths=paths,
            claimed_amount=str(claimed) if claimed is not None else None,
        )
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)

        logger.info(
            f"Manual proof {submission.id} stored for purchase {purchase_id} ({len(paths)} receipt(s))"
        )
        self._notify(
            PurchaseEventType.PROOF_SUBMITTED,
            purchase,
            admin_title="Payment proof submitted" if moved else "Additional payment proof",
            admin_content=f"{len(paths)} receipt(s) for {purchase.transaction_reference}",
        )
        return submission

    def cancel_purchase(self, purchase_id: str, principal: Principal, reason: Optional[str] = None) -> TransitionResult:
        self.get_for_principal(purchase_id, principal)
        reason = (reason or "").strip() or "Cancelled by user"

        purchase = self.store.update_status(
            purchase_id,
            PAYABLE_STATUSES,
            PurchaseStatus.rejected,
            label="Purchase cancelled",
            actor=principal.actor,
            meta={"reason": reason},
            cancellation_reason=reason,
        )

        logger.info(f"Purchase {purchase_id} cancelled by {principal.actor}: {reason}")
        self._notify(
            PurchaseEventType.PURCHASE_CANCELLED,
            purchase,
            reason=reason,
            admin_title="Purchase cancelled",
            admin_content=f"{purchase.transaction_reference}: {reason}",
        )
        return TransitionResult(purchase)

    # ---------- verification ----------

    def admin_verify(
        self,
        purchase_id: str,
        principal: Principal,
        approve: bool,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        if not principal.is_admin:
            raise ForbiddenError("Admin access required")

        target = PurchaseStatus.completed if approve else PurchaseStatus.rejected
        try:
            purchase = self.store.update_status(
                purchase_id,
                PurchaseStatus.pending_verification,
                target,
                label="Payment approved" if approve else "Payment rejected",
                actor=principal.actor,
                meta={"notes": notes} if notes else None,
                reviewer_notes=notes,
                reviewed_by=principal.user_id,
                reviewed_at=datetime.utcnow(),
            )
        except ConflictError as e:
            if e.current_status == target:
                logger.info(f"Purchase {purchase_id} already {target.value}; verify is a no-op")
                return TransitionResult(e.current, changed=False)
            raise

        self._settle_submissions(purchase, approve, notes, principal.user_id)
        self._after_final(purchase, approve, notes)
        return TransitionResult(purchase)

    def finalize_purchase(
        self,
        purchase_id: str,
        status: str,
        principal: Principal = BOT,
        provider_ref: Optional[str] = None,
    ) -> TransitionResult:
        """Bot and payment gateway entry point; same idempotency as ``admin_verify``."""
        target = FINAL_STATUSES.get(getattr(status, "value", status))
        if target is None:
            raise ValidationError('Status must be "completed" or "rejected"')

        fields = {"reviewed_at": datetime.utcnow()}
        if provider_ref:
            fields["payment_provider_id"] = provider_ref

        try:
            purchase = self.store.update_status(
                purchase_id,
                FINALIZABLE_STATUSES,
                target,
                label=f"Finalized as {target.value} by {principal.actor}",
                actor=principal.actor,
                meta={"provider_ref": provider_ref} if provider_ref else None,
                **fields,
            )
        except ConflictError as e:
            if e.current_status == target:
                logger.info(f"Purchase {purchase_id} already {target.value}; finalize is a no-op")
                return TransitionResult(e.current, changed=False)
            raise

        approve = target == PurchaseStatus.completed
        self._settle_submissions(purchase, approve, None, None)
        self._after_final(purchase, approve, None)
        return TransitionResult(purchase)

    def _settle_submissions(self, purchase: Purchase, approve: bool, notes, reviewer_id, submission_id=None):
        """Close still-pending receipts with the purchase decision."""
        now = datetime.utcnow()
        query = (
            update(ManualPaymentSubmission)
            .where(ManualPaymentSubmission.purchase_id == purchase.id)
            .where(ManualPaymentSubmission.status == SubmissionStatus.pending)
        )
        if submission_id is not None:
            query = query.where(ManualPaymentSubmission.id == submission_id)

        self.session.execute(
            query.values(
                status=SubmissionStatus.approved if approve else SubmissionStatus.rejected,
                admin_notes=notes,
                reviewed_by=reviewer_id,
                reviewed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.session.commit()

    def _after_final(self, purchase: Purchase, approve: bool, notes: Optional[str]):
        if not approve:
            logger.info(f"Purchase {purchase.id} rejected")
            self._notify(
                PurchaseEventType.PURCHASE_REJECTED,
                purchase,
                notes=notes,
                admin_title="Payment rejected",
                admin_content=f"{purchase.transaction_reference}: {notes or 'no notes'}",
            )
            return

        logger.info(f"Purchase {purchase.id} completed; granting access")
        self._notify(
            PurchaseEventType.PURCHASE_COMPLETED,
            purchase,
            admin_title="Purchase completed",
            admin_content=f"{purchase.transaction_reference} verified",
        )
        # status stays completed even when this raises; the issue row drives the retry
        self.fulfillment.grant_access(
            purchase.user_id,
            purchase.item_type,
            purchase.item_id,
            purchase_id=purchase.id,
            reference=purchase.transaction_reference,
        )

    # ---------- bot operations ----------

    def find_by_token(self, token: str) -> Purchase:
        token = (token or "").strip()
        if not token:
            raise ValidationError("Token is required")
        return self.store.get_by_token(token)

    def attach_telegram_chat(
        self,
        purchase_id: str,
        telegram_chat_id: int,
        telegram_user_id: Optional[int] = None,
        principal: Principal = BOT,
    ) -> TransitionResult:
        fields = {"telegram_chat_id": telegram_chat_id}
        if telegram_user_id is not None:
            fields["telegram_user_id"] = telegram_user_id

        try:
            purchase = self.store.update_status(
                purchase_id,
                PurchaseStatus.pending_initiation,
                PurchaseStatus.awaiting_payment,
                label="Telegram chat linked",
                actor=principal.actor,
                meta={"telegram_chat_id": telegram_chat_id},
                **fields,
            )
        except ConflictError as e:
            if e.current_status != PurchaseStatus.awaiting_payment:
                raise
            # relinking keeps the status and only refreshes the chat data
            purchase = self.store.update_fields(
                purchase_id,
                PurchaseStatus.awaiting_payment,
                **fields,
            )
            return TransitionResult(purchase, changed=False)

        logger.info(f"Purchase {purchase_id} linked to telegram chat {telegram_chat_id}")
        return TransitionResult(purchase)

    def mark_proof_received(self, purchase_id: str, principal: Principal = BOT) -> TransitionResult:
        try:
            purchase = self.store.update_status(
                purchase_id,
                PurchaseStatus.awaiting_payment,
                PurchaseStatus.pending_verification,
                label="Payment proof received via Telegram",
                actor=principal.actor,
            )
        except ConflictError as e:
            if e.current_status == PurchaseStatus.pending_verification:
                return TransitionResult(e.current, changed=False)
            raise

        self._notify(
            PurchaseEventType.PROOF_SUBMITTED,
            purchase,
            admin_title="Payment proof received via Telegram",
            admin_content=f"Review {purchase.transaction_reference} in the bot chat",
        )
        return TransitionResult(purchase)

    # ---------- submissions ----------

    def list_submissions(self, status: Optional[SubmissionStatus] = None, page: int = 1, limit: int = 20) -> dict:
        query = select(ManualPaymentSubmission)
        if status:
            query = query.where(ManualPaymentSubmission.status == status)
        query = query.order_by(ManualPaymentSubmission.created_at.asc())
        return paginate(session=self.session, query=query, page=page, limit=limit)

    def submissions_for(self, purchase_id: str) -> List[ManualPaymentSubmission]:
        return list(self.session.exec(
            select(ManualPaymentSubmission)
            .where(ManualPaymentSubmission.purchase_id == purchase_id)
            .order_by(ManualPaymentSubmission.created_at.asc())
        ).all())

    def review_submission(
        self,
        submission_id: int,
        principal: Principal,
        approve: bool,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        """Decide one receipt by deciding its purchase.

        The purchase moves first; verifying settles every pending receipt of
        the purchase, this one included, so a receipt never ends up with a
        decision its purchase did not get.
        """
        if not principal.is_admin:
            raise ForbiddenError("Admin access required")

        submission = self.session.get(ManualPaymentSubmission, submission_id, populate_existing=True)
        if not submission:
            raise NotFoundError("Submission not found")
        if submission.status != SubmissionStatus.pending:
            raise ConflictError(f"Submission is already {submission.status.value}", current=submission)

        result = self.admin_verify(submission.purchase_id, principal, approve, notes)
        if not result.changed:
            # purchase was already decided the same way; close this receipt to match
            self._settle_submissions(result.purchase, approve, notes, principal.user_id, submission_id=submission_id)
        return result
