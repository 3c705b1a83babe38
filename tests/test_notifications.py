from decimal import Decimal

import requests
from sqlmodel import select

from bookpay.models.notifications import Notification, RecipientRole
from bookpay.notifications import Notifier, PurchaseEventType, dispatch_purchase_event
from bookpay.notifications import dispatcher as dispatcher_module
from bookpay.services import email_service
from bookpay.services.email_service import send_email
from bookpay.utils.template import format_money, render_template


class FakeResponse:
    def __init__(self, status_code=201, text="{}"):
        self.status_code = status_code
        self.text = text


def test_send_email_without_api_key_is_skipped(settings, monkeypatch):
    calls = []
    monkeypatch.setattr(email_service.requests, "post", lambda *a, **kw: calls.append(kw))

    assert send_email("reader@example.com", "Hi", "<p>x</p>", settings) is False
    assert calls == []


def test_send_email_posts_to_brevo_with_timeout(settings, monkeypatch):
    settings.brevo_api_key = "brevo-key"
    calls = []

    def fake_post(url, json, headers, timeout):
        calls.append((url, json, headers, timeout))
        return FakeResponse()

    monkeypatch.setattr(email_service.requests, "post", fake_post)

    assert send_email(["a@example.com", "not-an-email"], "Subject", "<p>x</p>", settings) is True
    url, payload, headers, timeout = calls[0]
    assert url == email_service.BREVO_API_URL
    assert payload["to"] == [{"email": "a@example.com"}]
    assert headers["api-key"] == "brevo-key"
    assert timeout == settings.email_timeout_seconds


def test_send_email_failures_return_false(settings, monkeypatch):
    settings.brevo_api_key = "brevo-key"

    monkeypatch.setattr(email_service.requests, "post", lambda *a, **kw: FakeResponse(500, "boom"))
    assert send_email("a@example.com", "S", "<p/>", settings) is False

    def timeout(*a, **kw):
        raise requests.Timeout("slow")

    monkeypatch.setattr(email_service.requests, "post", timeout)
    assert send_email("a@example.com", "S", "<p/>", settings) is False


def test_templates_render():
    html = render_template(
        "admin_emails/fulfillment_failed.html",
        store_name="Bookstore",
        reference="BKS-1",
        failed_book_ids=[4, 5],
        error="missing",
        issue_id=9,
    )
    assert "BKS-1" in html
    assert "4, 5" in html


def test_money_filter_formats_amounts():
    assert format_money("1500", "ETB") == "1,500.00 ETB"
    assert format_money(Decimal("99.5")) == "99.50"
    assert format_money("n/a", "ETB") == "n/a"


def test_user_email_is_sent_for_rejection(session, settings, catalog, monkeypatch):
    sent = []
    monkeypatch.setattr(
        dispatcher_module,
        "send_user_email",
        lambda **kw: sent.append(kw),
    )

    dispatch_purchase_event(
        event=PurchaseEventType.PURCHASE_REJECTED,
        session=session,
        settings=settings,
        related_id="BKS-1",
        user_id=catalog.buyer_id,
        extra={"item_title": "Fikir Eske Mekabir", "notes": "blurry"},
    )

    assert sent[0]["to"] == "abebe@example.com"
    assert sent[0]["first_name"] == "Abebe"
    assert sent[0]["subject"] == "Your payment for Fikir Eske Mekabir could not be verified"
    assert sent[0]["reference"] == "BKS-1"


def test_email_failure_never_raises(session, settings, catalog, monkeypatch):
    def explode(**kw):
        raise RuntimeError("smtp down")

    monkeypatch.setattr(dispatcher_module, "send_admin_email", explode)

    Notifier(session, settings).dispatch(
        PurchaseEventType.PROOF_SUBMITTED,
        related_id="BKS-2",
        user_id=catalog.buyer_id,
        item_title="Book",
    )

    [note] = session.exec(select(Notification)).all()
    assert note.recipient_role == RecipientRole.admin
    assert note.related_id == "BKS-2"


def test_admin_email_skipped_without_recipients(session, settings, catalog, monkeypatch):
    settings.admin_emails = []
    sent = []
    monkeypatch.setattr(dispatcher_module, "send_admin_email", lambda **kw: sent.append(kw))

    Notifier(session, settings).dispatch(PurchaseEventType.PURCHASE_CANCELLED, related_id="BKS-3", reason="x")
    assert sent == []
