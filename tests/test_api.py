import time


def wait_for_clients(app, count):
    deadline = time.time() + 2
    while app.state.broadcaster.connection_count < count and time.time() < deadline:
        time.sleep(0.01)
    assert app.state.broadcaster.connection_count == count


def register(client, username="ana", firstname="Ana"):
    return client.post(
        "/api/register",
        json={"username": username, "password": "secret", "firstname": firstname, "phone": "555-0100"},
    )


def upload(client, title="Sunset"):
    response = client.post(
        "/api/content",
        data={"title": title, "type": "image", "description": "Warm colours", "projectTitle": "Summer"},
        files={"media": ("sunset.png", b"pixels", "image/png")},
    )
    assert response.status_code == 200
    return response.json()["item"]


def submit_payment(client, username="ana"):
    response = client.post(
        "/api/submit-payment",
        data={"username": username},
        files={"paymentProof": ("receipt.jpg", b"receipt", "image/jpeg")},
    )
    assert response.status_code == 200
    return response.json()["payment"]


def test_root_and_health(client):
    assert client.get("/").json() == {"message": "Gallery Share API running"}
    health = client.get("/test").json()
    assert health["storage"] == "ok"
    assert health["collections"]["users"] == 1  # bootstrap admin


def test_register_login_and_me(client):
    response = register(client)
    assert response.json() == {"success": True, "username": "ana", "firstname": "Ana"}

    login = client.post("/api/login", json={"username": "ana", "password": "secret"})
    assert login.status_code == 200
    body = login.json()
    assert body["success"] is True
    assert body["isAdmin"] is False
    assert body["firstname"] == "Ana"

    me = client.get("/api/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.json() == {"username": "ana", "firstname": "Ana", "phone": "555-0100", "isAdmin": False}


def test_me_requires_token(client):
    assert client.get("/api/me").status_code == 401
    assert client.get("/api/me", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_bootstrap_admin_login(client):
    body = client.post("/api/login", json={"username": "admin", "password": "admin123"}).json()
    assert body["isAdmin"] is True
    assert body["firstname"] == "Admin"


def test_bad_login(client):
    response = client.post("/api/login", json={"username": "ana", "password": "nope"})
    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid credentials"}


def test_register_validation_and_conflict(client):
    missing = client.post("/api/register", json={"username": "ana", "password": "secret"})
    assert missing.status_code == 400
    assert register(client).status_code == 200
    duplicate = register(client, firstname="Other")
    assert duplicate.status_code == 400
    assert duplicate.json() == {"detail": "Username already taken"}


def test_malformed_body_is_bad_request(client):
    response = client.post("/api/login", content=b"not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400


def test_content_lifecycle(client):
    assert client.get("/api/content").json() == {"items": []}
    item = upload(client)
    assert item["projectTitle"] == "Summer"
    assert item["likes"] == 0 and item["likedBy"] == [] and item["comments"] == []
    assert item["filename"].endswith(".png")

    assert client.get(f"/api/content/{item['id']}").json() == item
    assert client.get("/api/content").json()["items"] == [item]
    served = client.get(f"/uploads/{item['filename']}")
    assert served.status_code == 200
    assert served.content == b"pixels"

    assert client.delete(f"/api/content/{item['id']}").json() == {"success": True}
    assert client.get(f"/api/content/{item['id']}").status_code == 404
    assert client.get(f"/uploads/{item['filename']}").status_code == 404


def test_upload_without_media(client):
    response = client.post("/api/content", data={"title": "Nothing"})
    assert response.status_code == 400


def test_unknown_content_is_404(client):
    assert client.get("/api/content/nope").status_code == 404
    assert client.delete("/api/content/nope").status_code == 404
    assert client.get("/api/get-comments/nope").status_code == 404
    assert client.post("/api/content/nope/comments", json={"username": "a", "text": "b"}).status_code == 404
    assert client.post("/api/content/nope/likes", json={"username": "a"}).status_code == 404


def test_comments_and_likes(client):
    register(client)
    item = upload(client)

    response = client.post(f"/api/content/{item['id']}/comments", json={"username": "ana", "text": "Lovely"})
    comment = response.json()["comment"]
    assert comment["authorFirstName"] == "Ana"
    assert client.get(f"/api/get-comments/{item['id']}").json() == [comment]

    liked = client.post(f"/api/content/{item['id']}/likes", json={"username": "ana"}).json()
    assert liked == {"success": True, "likes": 1, "liked": True}
    unliked = client.post(f"/api/content/{item['id']}/likes", json={"username": "ana"}).json()
    assert unliked == {"success": True, "likes": 0, "liked": False}

    final = client.get(f"/api/content/{item['id']}").json()
    assert final["likes"] == 0
    assert len(final["comments"]) == 1


def test_payment_review(client, settings):
    register(client)
    first = submit_payment(client)
    assert first["status"] == "pending"
    assert client.get(f"/payment-proofs/{first['proofFilename']}").content == b"receipt"

    status = client.get("/api/check-payment", params={"username": "ana"}).json()
    assert status["verified"] is False
    assert status["payment"]["id"] == first["id"]
    assert client.get("/api/check-payment", params={"username": "ben"}).json() == {"verified": False}

    [listed] = client.get("/api/admin/payments").json()["payments"]
    assert listed["userFirstName"] == "Ana"
    assert listed["userPhone"] == "555-0100"

    assert client.post(f"/api/admin/payments/{first['id']}/reject").json() == {"success": True}
    assert client.post(f"/api/admin/payments/{first['id']}/reject").status_code == 409
    assert not (settings.payments_dir / first["proofFilename"]).exists()
    [rejected] = client.get("/api/admin/payments").json()["payments"]
    assert rejected["status"] == "rejected"

    second = submit_payment(client)
    assert client.post(f"/api/admin/payments/{second['id']}/approve").json() == {"success": True}
    assert not (settings.payments_dir / second["proofFilename"]).exists()
    ids = [p["id"] for p in client.get("/api/admin/payments").json()["payments"]]
    assert ids == [first["id"]]
    assert client.post(f"/api/admin/payments/{second['id']}/approve").status_code == 404


def test_analytics(client):
    register(client)
    quiet = upload(client, "quiet")
    popular = upload(client, "popular")
    client.post(f"/api/content/{popular['id']}/likes", json={"username": "ana"})
    client.post(f"/api/content/{quiet['id']}/comments", json={"username": "ana", "text": "hm"})
    submit_payment(client)

    body = client.get("/api/analytics").json()
    assert [i["id"] for i in body["mostLiked"]] == [popular["id"], quiet["id"]]
    assert body["stats"] == {"totalArtworks": 2, "totalLikes": 1, "totalComments": 1, "pendingPayments": 1}


def test_websocket_receives_events(app, client):
    item = upload(client)
    with client.websocket_connect("/ws") as ws:
        wait_for_clients(app, 1)
        client.post(f"/api/content/{item['id']}/likes", json={"username": "ana"})
        assert ws.receive_json() == {
            "event": "like-updated",
            "data": {"itemId": item["id"], "likes": 1, "likedBy": ["ana"]},
        }

        client.delete(f"/api/content/{item['id']}")
        assert ws.receive_json() == {"event": "content-updated", "data": []}
    wait_for_clients(app, 0)


def test_websocket_ignores_client_frames(app, client):
    with client.websocket_connect("/ws") as ws:
        wait_for_clients(app, 1)
        ws.send_bytes(b"\x00ping")
        ws.send_text("hello")
        item = upload(client)
        message = ws.receive_json()
        assert message["event"] == "content-updated"
        assert [i["id"] for i in message["data"]] == [item["id"]]
    wait_for_clients(app, 0)


def test_malformed_stored_record_is_server_error(client, settings):
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    (settings.data_dir / "content.json").write_text('{"items": [{"id": "1"}]}')
    response = client.get("/api/content")
    assert response.status_code == 500
    assert response.json() == {"detail": "Malformed content data"}
