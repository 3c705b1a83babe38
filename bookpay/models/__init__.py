from bookpay.models.user import User
from bookpay.models.book import Book
from bookpay.models.bundle import Bundle, BundleBook
from bookpay.models.purchase import Purchase
from bookpay.models.manual_payment import ManualPaymentSubmission
from bookpay.models.library import LibraryEntry
from bookpay.models.payment_request import PaymentRequest
from bookpay.models.purchase_event import PurchaseEvent
from bookpay.models.fulfillment_issue import FulfillmentIssue
from bookpay.models.notifications import Notification

# add ALL models here
