from conftest import ORGANIZER_EMAIL, login, new_client, register

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _upload_photo(client, data=PNG, content_type="image/png"):
    return client.post("/api/presenters/photo", files={"photo": ("me.png", data, content_type)})


def test_photo_upload_stores_file(client):
    resp = _upload_photo(client)
    assert resp.status_code == 201
    body = resp.json()
    assert body["presenterPicUrl"].startswith("presenters/")
    assert body["presenterPicUrl"].endswith(".png")
    assert body["bytes"] == len(PNG)


def test_photo_upload_validation(client, monkeypatch):
    assert _upload_photo(client, content_type="image/gif").status_code == 400

    spoofed = _upload_photo(client, data=b"GIF89a" + b"\x00" * 32)
    assert spoofed.status_code == 400
    assert spoofed.json()["error"] == "Photo appears to be invalid or unsafe"

    assert _upload_photo(client, data=b"").status_code == 400

    monkeypatch.setattr("confreg.config.PRESENTER_MAX_BYTES", 10)
    too_big = _upload_photo(client)
    assert too_big.status_code == 413
    assert too_big.json()["maxBytes"] == 10


def test_photo_upload_is_rate_limited(client):
    for _ in range(12):
        assert _upload_photo(client).status_code == 201
    limited = _upload_photo(client)
    assert limited.status_code == 429
    assert "Retry-After" in limited.headers


def test_owner_views_photo_inline_and_organizer_downloads(client, organizer_pin):
    stored = _upload_photo(client).json()["presenterPicUrl"]
    created = register(client, "speaker@example.com", presenterPicUrl=stored)
    login(client, "speaker@example.com", created["loginPin"])

    own = client.get(f"/api/presenters/{created['id']}/photo")
    assert own.status_code == 200
    assert own.content == PNG
    assert own.headers["Cache-Control"] == "private, max-age=600"
    assert "attachment" not in own.headers.get("Content-Disposition", "")

    organizer = new_client()
    login(organizer, ORGANIZER_EMAIL, organizer_pin)
    download = organizer.get(f"/api/presenters/{created['id']}/photo")
    assert download.status_code == 200
    assert download.headers["Content-Disposition"].startswith("attachment")

    assert new_client().get(f"/api/presenters/{created['id']}/photo").status_code == 403


def test_photo_lookup_rejects_unsafe_or_missing_paths(client):
    traversal = register(client, "traversal@example.com", presenterPicUrl="../../etc/passwd")
    login(client, "traversal@example.com", traversal["loginPin"])
    resp = client.get(f"/api/presenters/{traversal['id']}/photo")
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid photo path"

    other = new_client()
    nophoto = register(other, "nophoto@example.com")
    login(other, "nophoto@example.com", nophoto["loginPin"])
    missing = other.get(f"/api/presenters/{nophoto['id']}/photo")
    assert missing.status_code == 404
    assert missing.json()["error"] == "No presenter photo"


def test_photo_lookup_rejects_absolute_stored_path(client):
    created = register(client, "absolute@example.com", presenterPicUrl="/etc/passwd")
    login(client, "absolute@example.com", created["loginPin"])
    resp = client.get(f"/api/presenters/{created['id']}/photo")
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid photo path"


def test_photo_upload_from_session_requires_csrf(client):
    created = register(client, "uploader@example.com")
    csrf = login(client, "uploader@example.com", created["loginPin"])

    missing = _upload_photo(client)
    assert missing.status_code == 403
    assert missing.json()["error"] == "Forbidden (csrf)"

    resp = client.post(
        "/api/presenters/photo",
        files={"photo": ("me.png", PNG, "image/png")},
        headers={"X-CSRF-Token": csrf},
    )
    assert resp.status_code == 201
