"""Signed upload URLs and object serving."""
from pathlib import Path
from urllib.parse import urlparse

import pytest

from mercadoboom.main import app
from mercadoboom.services.storage_service import ObjectStorageService


@pytest.fixture
def storage():
    return ObjectStorageService(root=Path(app.config["OBJECT_STORAGE_DIR"]), secret_key=app.config["SECRET_KEY"])


def _upload_path(client):
    upload_url = client.post("/api/objects/upload").get_json()["upload_url"]
    return urlparse(upload_url).path


def test_upload_url_requires_login(client):
    assert client.post("/api/objects/upload").status_code == 401


def test_upload_then_download(client, login, customer):
    login(customer)
    path = _upload_path(client)
    assert path.startswith("/api/objects/upload/")

    stored = client.put(path, data=b"%PDF-1.4 recibo", content_type="application/pdf")
    assert stored.status_code == 201
    object_path = stored.get_json()["object_path"]
    assert object_path.startswith("/objects/uploads/")

    download = client.get(object_path)
    assert download.status_code == 200
    assert download.data == b"%PDF-1.4 recibo"
    assert download.mimetype == "application/pdf"

    # Upload URLs are single use
    assert client.put(path, data=b"otro").status_code == 409


def test_tampered_or_expired_upload_urls(client, storage):
    assert client.put("/api/objects/upload/not-a-token", data=b"x").status_code == 403

    expired = ObjectStorageService(
        root=storage.root, secret_key=app.config["SECRET_KEY"], ttl_seconds=-1
    )
    token = urlparse(expired.create_upload_url()).path.rsplit("/", 1)[-1]
    assert expired.resolve_upload_token(token) is None


def test_normalize_upload_url(client, login, customer, storage):
    login(customer)
    upload_url = client.post("/api/objects/upload").get_json()["upload_url"]
    object_id = storage.resolve_upload_token(urlparse(upload_url).path.rsplit("/", 1)[-1])

    response = client.post("/api/objects/normalize", json={"url": upload_url})
    assert response.get_json()["object_path"] == f"/objects/uploads/{object_id}"

    external = client.post("/api/objects/normalize", json={"url": "https://cdn.example.com/a.png"})
    assert external.get_json()["object_path"] == "https://cdn.example.com/a.png"


def test_receipt_upload_url_is_stored_as_object_path(client, login, customer, product):
    login(customer)
    order_id = client.post(
        "/api/payments/create-direct-transfer", json={"productId": product.id}
    ).get_json()["order"]["id"]
    upload_url = client.post("/api/objects/upload").get_json()["upload_url"]
    client.put(urlparse(upload_url).path, data=b"img", content_type="image/png")

    response = client.post("/api/upload-receipt", json={"orderId": order_id, "receiptUrl": upload_url})
    assert response.get_json()["order"]["transfer_receipt_url"].startswith("/objects/uploads/")


def test_public_objects_and_missing_files(client, storage):
    public_dir = storage.root / "public" / "banners"
    public_dir.mkdir(parents=True, exist_ok=True)
    (public_dir / "hero.txt").write_bytes(b"banner")

    response = client.get("/public-objects/banners/hero.txt")
    assert response.status_code == 200
    assert response.data == b"banner"

    assert client.get("/public-objects/banners/nope.txt").status_code == 404
    assert client.get("/objects/uploads/missing").status_code == 404
    assert storage.get_object_file("../outside.txt") is None
