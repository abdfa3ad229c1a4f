import os
import sys
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "")

from fastapi.testclient import TestClient

from main import app
from routers.review_import import get_importer, get_storage
from services.review_importer import ImportRejected


class FakeImporter:
    def __init__(self):
        self.calls = []

    async def import_csv(self, content, filename, shop_id, access_token=None, resolver=None):
        self.calls.append({"filename": filename, "shop_id": shop_id, "token": access_token})
        if filename.endswith(".txt"):
            raise ImportRejected("Only CSV files are allowed")
        return {
            "success": True,
            "count": 1,
            "skipped": 0,
            "unresolved": 0,
            "message": "Successfully imported 1 reviews.",
            "uploadId": "up-1",
            "debug": {"detectedHeaders": {"rating": "rating"}, "firstRecord": {"rating": 5}},
        }


def _upload(upload_id="up-1", shop_id="demo.myshopify.com"):
    now = datetime(2024, 5, 1, 12, 0, 0)
    return SimpleNamespace(
        id=upload_id, shop_id=shop_id, filename="reviews.csv", status="completed",
        total_rows=2, processed_rows=2, skipped_rows=0, error_message=None,
        created_at=now, updated_at=now,
    )


class FakeStorage:
    async def get_recent_uploads(self, shop_id, limit=10):
        return [_upload()]

    async def get_csv_upload(self, upload_id):
        return _upload() if upload_id == "up-1" else None

    async def get_reviews_for_export(self, shop_id):
        return [SimpleNamespace(
            rating=5, body="Nice", customer_name="Ann", customer_email=None,
            media=[], replies=[], created_at=datetime(2024, 1, 1), title=None,
            product_id="gid://shopify/Product/1",
        )]


@pytest.fixture
def client():
    importer = FakeImporter()
    app.dependency_overrides[get_importer] = lambda: importer
    app.dependency_overrides[get_storage] = lambda: FakeStorage()
    test_client = TestClient(app)
    test_client.importer = importer
    yield test_client
    app.dependency_overrides.clear()


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert response.headers["X-Request-Id"]


def test_import_returns_result_payload(client):
    response = client.post(
        "/api/reviews/import",
        files={"file": ("reviews.csv", b"rating\n5\n", "text/csv")},
        data={"shopId": "Demo.myshopify.com"},
        headers={"X-Shopify-Access-Token": "shpat_x"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["uploadId"] == "up-1"
    assert body["debug"]["firstRecord"] == {"rating": 5}
    assert client.importer.calls == [
        {"filename": "reviews.csv", "shop_id": "demo.myshopify.com", "token": "shpat_x"}
    ]


def test_import_requires_shop_id(client):
    response = client.post("/api/reviews/import", files={"file": ("reviews.csv", b"rating\n5\n", "text/csv")})

    assert response.status_code == 400
    assert response.json() == {"error": "shopId is required"}
    assert client.importer.calls == []


def test_import_rejection_maps_to_http_error(client):
    response = client.post(
        "/api/reviews/import",
        files={"file": ("reviews.txt", b"hello", "text/plain")},
        data={"shopId": "demo.myshopify.com"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Only CSV files are allowed"}


def test_preview_audits_without_writing(client):
    response = client.post(
        "/api/reviews/import/preview",
        files={"file": ("reviews.csv", b"stars,review\n4,Good stuff\nx,Bad data\n", "text/csv")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert body["rating"] == 4.5
    assert body["platforms"] == ["Standard CSV"]
    assert body["hasBody"] is True
    assert client.importer.calls == []


def test_preview_rejects_empty_file(client):
    response = client.post("/api/reviews/import/preview", files={"file": ("reviews.csv", b"", "text/csv")})

    assert response.status_code == 400
    assert response.json() == {"error": "Empty file"}


def test_template_download(client):
    response = client.get("/api/reviews/import/template")

    assert response.status_code == 200
    assert "review_import_template.csv" in response.headers["content-disposition"]
    assert response.text.splitlines()[0] == "product_url,rating,review_text,customer_name,email,picture_urls,reply,date"


def test_import_history_and_status(client):
    listing = client.get("/api/reviews/imports", params={"shopId": "demo.myshopify.com"})
    assert listing.status_code == 200
    assert listing.json()[0]["uploadId"] == "up-1"
    assert listing.json()[0]["processedRows"] == 2

    status = client.get("/api/reviews/imports/up-1", params={"shopId": "demo.myshopify.com"})
    assert status.status_code == 200
    assert status.json()["status"] == "completed"

    assert client.get("/api/reviews/imports/up-1", params={"shopId": "other.myshopify.com"}).status_code == 404
    assert client.get("/api/reviews/imports/missing", params={"shopId": "demo.myshopify.com"}).status_code == 404
    assert client.get("/api/reviews/imports").status_code == 400


def test_import_status_requires_shop_id(client):
    response = client.get("/api/reviews/imports/up-1")

    assert response.status_code == 400
    assert response.json() == {"error": "shopId is required"}


def test_export_reviews_csv(client):
    response = client.get("/api/export/reviews", params={"shopId": "demo.myshopify.com"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "reviews_demo.myshopify.com.csv" in response.headers["content-disposition"]
    lines = response.text.splitlines()
    assert lines[0].endswith(",title,product_id")
    assert lines[1].endswith("gid://shopify/Product/1")
