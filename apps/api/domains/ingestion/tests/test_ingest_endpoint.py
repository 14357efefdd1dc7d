"""Tests for the ingestion domain router: CSV upload and upload history."""

import io
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from apps.api.core.auth import get_current_user_id, get_user_client
from apps.api.core.database import create_db_engine, create_session_factory, init_db
from apps.api.core.errors import IngestionFailedError, register_error_handlers
from apps.api.domains.ingestion.router import router
from apps.api.domains.ingestion.service import IngestionService, get_ingestion_service
from packages.ingestion_engine.classifier import CategoryClassifier, load_category_rules

NOW = datetime(2024, 1, 20, tzinfo=timezone.utc)

CSV_SAMPLE = """Transaction Date,Posted Date,Card No.,Description,Category,Debit,Credit
2024-01-15,2024-01-16,1234,STARBUCKS #123,,4.50,
2024-01-16,2024-01-17,1234,MUFG PAYROLL,,,3000.00
2024-01-17,2024-01-17,1234,SUSHI PLACE,,40.00,
"""


@pytest.fixture
def service():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield IngestionService(
        create_session_factory(engine),
        classifier=CategoryClassifier(load_category_rules()),
        max_upload_bytes=1024,
        clock=lambda: NOW,
    )
    engine.dispose()


@pytest.fixture
def app(service):
    app = FastAPI()
    register_error_handlers(app)
    app.include_router(router, prefix="/api/v1")
    app.dependency_overrides[get_current_user_id] = lambda: "test-user-id"
    app.dependency_overrides[get_ingestion_service] = lambda: service
    return app


@pytest.fixture
def client(app):
    c = TestClient(app)
    yield c
    app.dependency_overrides.clear()


def upload(client, content=CSV_SAMPLE, filename="transactions.csv"):
    data = content.encode("utf-8") if isinstance(content, str) else content
    return client.post(
        "/api/v1/ingest/csv",
        files={"file": (filename, io.BytesIO(data), "text/csv")},
    )


def test_ingest_csv_returns_report(client):
    response = upload(client)
    assert response.status_code == 200

    data = response.json()
    assert data["filename"] == "transactions.csv"
    assert data["status"] == "completed"
    assert data["processedTransactions"] == 3
    assert data["summary"]["totalTransactions"] == 3
    assert data["summary"]["totalDebits"] == 44.5
    assert data["summary"]["totalCredits"] == 3000.0
    assert data["summary"]["dateRange"] == {"start": "2024-01-15", "end": "2024-01-17"}
    assert data["categoryBreakdown"]["Drinks/Dessert"] == {"total": 4.5, "count": 1}
    assert set(data["categories"]) == {"Income", "Dining", "Drinks/Dessert"}
    assert data["budgetAnalysis"] is None
    assert data["dataQuality"] == {"skippedRows": 0, "dateFallbacks": 0, "failedInserts": []}

    info = data["duplicateInfo"]
    assert info["duplicatesFound"] == 0
    assert info["newTransactionsAdded"] == 3
    assert info["totalTransactionsInFile"] == 3
    assert info["fileOverlapAnalysis"]["isLikelyReupload"] is False


def test_reupload_reports_duplicates(client):
    first = upload(client).json()
    data = upload(client).json()

    info = data["duplicateInfo"]
    assert data["processedTransactions"] == 0
    assert info["duplicatesFound"] == 3
    assert info["duplicatesSkipped"] == 3
    assert info["newTransactionsAdded"] == 0
    overlap = info["fileOverlapAnalysis"]
    assert overlap["overlapPercentage"] == 100.0
    assert overlap["isLikelyReupload"] is True
    assert overlap["exactFilenameMatch"] is True
    assert overlap["mostSimilarUpload"]["id"] == first["uploadId"]
    detail = info["duplicateDetails"][0]
    assert detail["matchedUploadId"] == first["uploadId"]
    assert detail["withinFile"] is False
    assert data["insights"][0].startswith("This file looks like a re-upload")


def test_ingest_csv_rejects_non_csv(client):
    response = upload(client, b"this is not csv content at all", filename="photo.jpg")
    assert response.status_code == 400
    assert response.json()["title"] == "Bad Request"


def test_ingest_csv_rejects_unreadable_statement(client):
    response = upload(client, "hello,world\n1,2\n")
    assert response.status_code == 400
    assert "missing required columns" in response.json()["detail"]


def test_ingest_csv_rejects_large_files(client):
    response = upload(client, "x" * 2048)
    assert response.status_code == 413
    assert response.json()["title"] == "Payload Too Large"


def test_storage_failure_returns_503_with_upload_id(app):
    failing = MagicMock()
    failing.max_upload_bytes = 1024
    failing.ingest.side_effect = IngestionFailedError("Storage was unavailable", upload_id="u-1")
    app.dependency_overrides[get_ingestion_service] = lambda: failing

    response = TestClient(app).post(
        "/api/v1/ingest/csv",
        files={"file": ("t.csv", io.BytesIO(CSV_SAMPLE.encode()), "text/csv")},
    )

    assert response.status_code == 503
    assert response.json()["upload_id"] == "u-1"
    failing.ingest.assert_called_once()
    assert failing.ingest.call_args.args[:2] == ("test-user-id", "t.csv")


def test_requires_bearer_token(app):
    app.dependency_overrides.pop(get_current_user_id)
    response = upload(TestClient(app))
    assert response.status_code == 401
    body = response.json()
    assert body["title"] == "Unauthorized"
    assert "Bearer" in body["detail"]


def test_invalid_token_is_rejected(app):
    app.dependency_overrides.pop(get_current_user_id)
    supabase = MagicMock()
    supabase.auth.get_user.return_value = MagicMock(user=None)
    app.dependency_overrides[get_user_client] = lambda: supabase

    response = TestClient(app).get("/api/v1/ingest/uploads")
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid bearer token"


def test_user_id_comes_from_supabase(app, service):
    app.dependency_overrides.pop(get_current_user_id)
    supabase = MagicMock()
    supabase.auth.get_user.return_value = MagicMock(user=MagicMock(id="abc-123"))
    app.dependency_overrides[get_user_client] = lambda: supabase

    upload(TestClient(app))

    batches, total = service.list_uploads("abc-123")
    assert total == 1


def test_upload_history_endpoints(client):
    upload_id = upload(client).json()["uploadId"]

    listing = client.get("/api/v1/ingest/uploads", params={"limit": 5}).json()
    assert listing["pagination"] == {"total": 1, "limit": 5, "offset": 0, "hasMore": False}
    assert listing["uploads"][0]["id"] == upload_id
    assert listing["uploads"][0]["processedTransactions"] == 3

    rows = client.get(f"/api/v1/ingest/uploads/{upload_id}/transactions").json()
    assert rows["count"] == 3
    assert {t["category"] for t in rows["transactions"]} == {"Drinks/Dessert", "Income", "Dining"}

    analysis = client.get(f"/api/v1/ingest/uploads/{upload_id}/analysis").json()
    assert analysis["summary"]["totalSpent"] == 44.5
    assert analysis["summary"]["totalIncome"] == 3000.0
    assert analysis["topCategories"][0] == {"category": "Dining", "amount": 40.0}
    assert analysis["budgetComparison"] is None

    deleted = client.delete(f"/api/v1/ingest/uploads/{upload_id}").json()
    assert deleted == {"uploadId": upload_id, "deletedTransactions": 3}
    assert client.get(f"/api/v1/ingest/uploads/{upload_id}/analysis").status_code == 404
