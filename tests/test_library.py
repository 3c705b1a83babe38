def test_free_book_direct_grant(client, catalog, auth_headers):
    headers = auth_headers(catalog.buyer_id)

    added = client.post(f"/library/free/{catalog.free_book_id}", headers=headers)
    assert added.status_code == 201
    assert added.json()["entry"]["status"] == "owned"

    duplicate = client.post(f"/library/free/{catalog.free_book_id}", headers=headers)
    assert duplicate.status_code == 409

    library = client.get("/library", headers=headers).json()
    assert [e["title"] for e in library] == ["Free Sampler"]


def test_paid_or_missing_book_cannot_be_added(client, catalog, auth_headers):
    headers = auth_headers(catalog.buyer_id)
    assert client.post(f"/library/free/{catalog.book_id}", headers=headers).status_code == 400
    assert client.post("/library/free/9999", headers=headers).status_code == 404


def test_progress_updates(client, catalog, auth_headers):
    headers = auth_headers(catalog.buyer_id)
    client.post(f"/library/free/{catalog.free_book_id}", headers=headers)

    halfway = client.patch(f"/library/{catalog.free_book_id}/progress", json={"progress": 42.5}, headers=headers)
    assert halfway.json() == {"book_id": catalog.free_book_id, "status": "owned", "progress": 42.5}

    done = client.patch(f"/library/{catalog.free_book_id}/progress", json={"progress": 100}, headers=headers)
    assert done.json()["status"] == "completed"

    assert client.patch(f"/library/{catalog.free_book_id}/progress", json={"progress": 101}, headers=headers).status_code == 400
    assert client.patch(f"/library/{catalog.book_id}/progress", json={"progress": 10}, headers=headers).status_code == 404


def test_library_is_per_user(client, catalog, auth_headers):
    client.post(f"/library/free/{catalog.free_book_id}", headers=auth_headers(catalog.buyer_id))
    assert client.get("/library", headers=auth_headers(catalog.other_id)).json() == []
