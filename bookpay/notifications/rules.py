from bookpay.notifications.events import PurchaseEventType
from bookpay.notifications.channels import Channel


NOTIFICATION_RULES = {

    PurchaseEventType.PURCHASE_INITIATED: {
        Channel.INAPP_ADMIN: True,
    },

    PurchaseEventType.PROOF_SUBMITTED: {
        Channel.INAPP_ADMIN: True,
        Channel.EMAIL_ADMIN: True,
    },

    PurchaseEventType.PURCHASE_COMPLETED: {
        Channel.INAPP_ADMIN: True,
    },

    PurchaseEventType.PURCHASE_REJECTED: {
        Channel.EMAIL_USER: True,
        Channel.INAPP_ADMIN: True,
    },

    PurchaseEventType.PURCHASE_CANCELLED: {
        Channel.INAPP_ADMIN: True,
        Channel.EMAIL_ADMIN: True,
    },

    PurchaseEventType.ACCESS_GRANTED: {
        Channel.EMAIL_USER: True,
    },

    PurchaseEventType.FULFILLMENT_FAILED: {
        Channel.INAPP_ADMIN: True,
        Channel.EMAIL_ADMIN: True,
    },

    PurchaseEventType.PAYMENT_REQUEST_CREATED: {
        Channel.INAPP_ADMIN: True,
        Channel.EMAIL_ADMIN: True,
    },

    PurchaseEventType.PAYMENT_REQUEST_UPDATED: {
        Channel.EMAIL_USER: True,
    },

}


# event -> (template, subject); subjects are formatted with the event context
EMAIL_TEMPLATES = {
    (PurchaseEventType.PROOF_SUBMITTED, Channel.EMAIL_ADMIN): (
        "admin_emails/proof_submitted.html",
        "Payment proof submitted: {reference}",
    ),
    (PurchaseEventType.PURCHASE_REJECTED, Channel.EMAIL_USER): (
        "user_emails/purchase_rejected.html",
        "Your payment for {item_title} could not be verified",
    ),
    (PurchaseEventType.PURCHASE_CANCELLED, Channel.EMAIL_ADMIN): (
        "admin_emails/purchase_cancelled.html",
        "Purchase cancelled: {reference}",
    ),
    (PurchaseEventType.ACCESS_GRANTED, Channel.EMAIL_USER): (
        "user_emails/access_granted.html",
        "{item_title} is now in your library",
    ),
    (PurchaseEventType.FULFILLMENT_FAILED, Channel.EMAIL_ADMIN): (
        "admin_emails/fulfillment_failed.html",
        "Action needed: library access not granted ({reference})",
    ),
    (PurchaseEventType.PAYMENT_REQUEST_CREATED, Channel.EMAIL_ADMIN): (
        "admin_emails/payment_request_created.html",
        "New purchase request for {item_title}",
    ),
    (PurchaseEventType.PAYMENT_REQUEST_UPDATED, Channel.EMAIL_USER): (
        "user_emails/payment_request_updated.html",
        "Your purchase request is now {status}",
    ),
}
