import pytest

from bookpay.main import app
from bookpay.models.bundle import BundleBook
from bookpay.services.receipt_storage import ReceiptStorage, get_receipt_storage


@pytest.fixture
def pending_purchase(client, catalog, auth_headers):
    def make(item_type="book", item_id=None, user_id=None):
        headers = auth_headers(user_id or catalog.buyer_id)
        purchase = client.post(
            "/purchases",
            json={"item_type": item_type, "item_id": item_id or catalog.book_id},
            headers=headers,
        ).json()
        client.post(f"/purchases/{purchase['id']}/transaction", json={"transaction_id": "ABC123"}, headers=headers)
        return purchase
    return make


def test_pending_queue_is_paginated_oldest_first(client, catalog, auth_headers, pending_purchase):
    ids = [pending_purchase(item_id=book_id)["id"] for book_id in catalog.bundle_book_ids]

    response = client.get("/admin/purchases/pending?page=1&limit=2", headers=auth_headers(catalog.admin_id))
    assert response.status_code == 200
    body = response.json()
    assert body["total_items"] == 3
    assert body["total_pages"] == 2
    assert body["current_page"] == 1
    assert body["limit"] == 2
    assert [p["id"] for p in body["results"]] == ids[:2]


def test_verify_scenario(client, catalog, auth_headers, pending_purchase):
    admin = auth_headers(catalog.admin_id)
    purchase = pending_purchase()

    approved = client.post(f"/admin/purchases/{purchase['id']}/verify", json={"approve": True}, headers=admin)
    assert approved.status_code == 200
    assert approved.json()["changed"] is True
    assert approved.json()["purchase"]["status"] == "completed"

    again = client.post(f"/admin/purchases/{purchase['id']}/verify", json={"approve": True}, headers=admin)
    assert again.status_code == 200
    assert again.json()["changed"] is False

    loser = client.post(f"/admin/purchases/{purchase['id']}/verify", json={"approve": False}, headers=admin)
    assert loser.status_code == 409

    library = client.get("/library", headers=auth_headers(catalog.buyer_id)).json()
    assert [(e["book_id"], e["status"]) for e in library] == [(catalog.book_id, "owned")]


def test_verify_requires_admin(client, catalog, auth_headers, pending_purchase):
    purchase = pending_purchase()
    response = client.post(
        f"/admin/purchases/{purchase['id']}/verify",
        json={"approve": True},
        headers=auth_headers(catalog.buyer_id),
    )
    assert response.status_code == 403


def test_bundle_partial_failure_is_502(client, session, catalog, auth_headers, pending_purchase):
    session.add(BundleBook(bundle_id=catalog.bundle_id, book_id=4242))
    session.commit()
    admin = auth_headers(catalog.admin_id)
    purchase = pending_purchase(item_type="bundle", item_id=catalog.bundle_id)

    response = client.post(f"/admin/purchases/{purchase['id']}/verify", json={"approve": True}, headers=admin)
    assert response.status_code == 502
    body = response.json()
    assert body["code"] == "fulfillment_incomplete"
    assert body["failed_book_ids"] == [4242]

    detail = client.get(f"/admin/purchases/{purchase['id']}", headers=admin).json()
    assert detail["purchase"]["status"] == "completed"

    issues = client.get("/admin/fulfillment-issues", headers=admin).json()
    assert [i["id"] for i in issues] == [body["issue_id"]]

    retry = client.post(f"/admin/fulfillment-issues/{body['issue_id']}/retry", headers=admin)
    assert retry.status_code == 502


def test_purchase_detail_has_submissions_and_timeline(client, catalog, auth_headers, settings):
    settings.r2_account_id = "acct"
    settings.r2_access_key_id = "key"
    settings.r2_secret_access_key = "secret"
    settings.r2_bucket_name = "receipts"

    class FakeS3:
        def generate_presigned_url(self, operation, Params, ExpiresIn):
            return f"https://r2.test/{Params['Key']}"

    storage = ReceiptStorage(settings)
    storage._client = FakeS3()
    app.dependency_overrides[get_receipt_storage] = lambda: storage

    buyer = auth_headers(catalog.buyer_id)
    purchase = client.post("/purchases", json={"item_type": "book", "item_id": catalog.book_id}, headers=buyer).json()
    path = f"receipts/{purchase['id']}/slip.jpg"
    client.post(f"/purchases/{purchase['id']}/proof", json={"receipt_paths": [path]}, headers=buyer)

    detail = client.get(f"/admin/purchases/{purchase['id']}", headers=auth_headers(catalog.admin_id))
    assert detail.status_code == 200
    body = detail.json()
    assert body["submissions"][0]["receipt_urls"] == [f"https://r2.test/{path}"]
    assert [e["label"] for e in body["timeline"]] == ["Purchase created", "Payment proof submitted"]


def test_purchase_detail_without_storage_still_works(client, catalog, auth_headers):
    buyer = auth_headers(catalog.buyer_id)
    purchase = client.post("/purchases", json={"item_type": "book", "item_id": catalog.book_id}, headers=buyer).json()
    client.post(
        f"/purchases/{purchase['id']}/proof",
        json={"receipt_paths": [f"receipts/{purchase['id']}/slip.jpg"]},
        headers=buyer,
    )

    body = client.get(f"/admin/purchases/{purchase['id']}", headers=auth_headers(catalog.admin_id)).json()
    assert body["submissions"][0]["receipt_urls"] == []


def test_submission_review(client, catalog, auth_headers):
    buyer = auth_headers(catalog.buyer_id)
    admin = auth_headers(catalog.admin_id)
    purchase = client.post("/purchases", json={"item_type": "book", "item_id": catalog.book_id}, headers=buyer).json()
    submission = client.post(
        f"/purchases/{purchase['id']}/proof",
        json={"receipt_paths": [f"receipts/{purchase['id']}/slip.jpg"]},
        headers=buyer,
    ).json()

    queue = client.get("/admin/submissions?status=pending", headers=admin).json()
    assert [s["id"] for s in queue["results"]] == [submission["id"]]

    reviewed = client.post(
        f"/admin/submissions/{submission['id']}/review",
        json={"approve": False, "notes": "wrong account"},
        headers=admin,
    )
    assert reviewed.status_code == 200
    assert reviewed.json()["purchase"]["status"] == "rejected"
    assert client.get("/admin/submissions?status=pending", headers=admin).json()["total_items"] == 0


def test_admin_cancel_and_notifications(client, catalog, auth_headers):
    admin = auth_headers(catalog.admin_id)
    purchase = client.post(
        "/purchases", json={"item_type": "book", "item_id": catalog.book_id}, headers=auth_headers(catalog.buyer_id)
    ).json()

    cancelled = client.post(f"/admin/purchases/{purchase['id']}/cancel", json={"reason": "fraud check"}, headers=admin)
    assert cancelled.status_code == 200
    assert cancelled.json()["purchase"]["cancellation_reason"] == "fraud check"

    notes = client.get("/admin/notifications", headers=admin).json()
    sources = {n["trigger_source"] for n in notes}
    assert {"purchase_initiated", "purchase_cancelled"} <= sources

    unread = client.get("/admin/notifications?unread_only=true", headers=admin).json()
    client.patch(f"/admin/notifications/{unread[0]['id']}/read", headers=admin)
    assert len(client.get("/admin/notifications?unread_only=true", headers=admin).json()) == len(unread) - 1
