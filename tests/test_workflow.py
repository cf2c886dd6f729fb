import io
import sys
import zipfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from wa_analyzer.application import reset_work_item_service
from wa_analyzer.config import get_settings

HEADERS = {"X-User-Email": "architect@example.com"}


@pytest.fixture(autouse=True)
def reset_state(monkeypatch):
    monkeypatch.setenv("WA_STORAGE_BACKEND", "memory")
    monkeypatch.setenv("WA_STORAGE_ENABLED", "true")
    get_settings.cache_clear()
    reset_work_item_service()
    yield
    get_settings.cache_clear()
    reset_work_item_service()


@pytest.fixture()
def client():
    from wa_analyzer.app import create_app

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


def _zip(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def test_end_to_end_workflow(client):
    # 1. upload two related templates
    response = client.post(
        "/api/work-items/multiple",
        headers=HEADERS,
        files=[
            ("files", ("network.tf", b'resource "aws_vpc" "main" {}', "text/plain")),
            ("files", ("compute.tf", b'resource "aws_instance" "web" {}', "text/plain")),
        ],
    )
    assert response.status_code == 200
    upload = response.json()
    file_id = upload["fileId"]
    assert upload["tokenCount"] > 0
    assert upload["exceedsTokenLimit"] is False

    # 2. it shows up in the listing
    response = client.get("/api/work-items", headers=HEADERS)
    assert response.status_code == 200
    items = response.json()["items"]
    assert [item["fileId"] for item in items] == [file_id]
    assert items[0]["fileName"] == "network.tf_and_1_more_files"
    assert items[0]["uploadMode"] == "MULTIPLE_FILES"
    assert items[0]["analysisStatus"] == "NOT_STARTED"

    # 3. viewing returns packed text, downloading returns the archive
    response = client.get(f"/api/work-items/{file_id}/content", headers=HEADERS)
    assert response.status_code == 200
    content = response.json()
    assert content["contentType"] == "text/plain"
    assert "File: network.tf" in content["data"]
    assert "File: compute.tf" in content["data"]

    response = client.get(f"/api/work-items/{file_id}/content", params={"download": "true"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/zip")
    assert "attachment" in response.headers["content-disposition"]
    assert zipfile.ZipFile(io.BytesIO(response.content)).namelist() == ["network.tf", "compute.tf"]

    # 4. drive the analysis lifecycle
    response = client.patch(
        f"/api/work-items/{file_id}",
        headers=HEADERS,
        json={"analysisStatus": "IN_PROGRESS", "analysisProgress": 30},
    )
    assert response.status_code == 200
    assert response.json()["analysisStatus"] == "IN_PROGRESS"
    assert response.json()["analysisProgress"] == 30
    assert response.json()["iacGenerationStatus"] == "NOT_STARTED"

    response = client.patch(
        f"/api/work-items/{file_id}",
        headers=HEADERS,
        json={"analysisStatus": "COMPLETED", "analysisProgress": 100},
    )
    assert response.status_code == 200

    # 5. link a supporting document
    response = client.post(
        f"/api/work-items/{file_id}/supporting-document",
        headers=HEADERS,
        files={"file": ("requirements.txt", b"Must be multi-AZ", "text/plain")},
        data={"description": "Availability requirements"},
    )
    assert response.status_code == 200
    document_id = response.json()["supportingDocumentId"]

    response = client.get(f"/api/work-items/{file_id}", headers=HEADERS)
    record = response.json()
    assert record["supportingDocumentAdded"] is True
    assert record["supportingDocumentId"] == document_id
    assert record["supportingDocumentDescription"] == "Availability requirements"

    response = client.get(f"/api/work-items/{file_id}/supporting-document/{document_id}", headers=HEADERS)
    assert response.status_code == 200
    assert response.content == b"Must be multi-AZ"
    assert "requirements.txt" in response.headers["content-disposition"]

    response = client.get(f"/api/work-items/{file_id}/supporting-document/other", headers=HEADERS)
    assert response.status_code == 409

    # 6. delete and confirm it is gone
    response = client.delete(f"/api/work-items/{file_id}", headers=HEADERS)
    assert response.status_code == 200
    assert response.json() == {"fileId": file_id, "deleted": True}

    assert client.get(f"/api/work-items/{file_id}", headers=HEADERS).status_code == 404
    assert client.delete(f"/api/work-items/{file_id}", headers=HEADERS).status_code == 200
    assert client.get("/api/work-items", headers=HEADERS).json() == {"items": []}


def test_single_file_and_zip_uploads(client):
    response = client.post(
        "/api/work-items",
        headers=HEADERS,
        files={"file": ("stack.yaml", b"Resources: {}", "application/x-yaml")},
    )
    assert response.status_code == 200
    single = response.json()
    assert single["uploadMode"] == "SINGLE_FILE"
    assert single["fileType"] == "application/x-yaml"

    response = client.post(
        "/api/work-items/zip",
        headers=HEADERS,
        files={"file": ("project.zip", _zip({"main.tf": b"resource a"}), "application/zip")},
    )
    assert response.status_code == 200
    archive_id = response.json()["fileId"]

    response = client.get(f"/api/work-items/{archive_id}", headers=HEADERS)
    assert response.json()["uploadMode"] == "ZIP_FILE"
    assert response.json()["tokenCount"] > 0

    items = client.get("/api/work-items", headers=HEADERS).json()["items"]
    assert {item["fileId"] for item in items} == {single["fileId"], archive_id}


def test_invalid_transition_is_conflict(client):
    response = client.post(
        "/api/work-items",
        headers=HEADERS,
        files={"file": ("main.tf", b"resource a", "text/plain")},
    )
    file_id = response.json()["fileId"]

    response = client.patch(f"/api/work-items/{file_id}", headers=HEADERS, json={"analysisStatus": "COMPLETED"})
    assert response.status_code == 409

    response = client.post(f"/api/work-items/{file_id}/reset/analysis", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["analysisStatus"] == "NOT_STARTED"


def test_update_rejects_unknown_fields(client):
    response = client.post(
        "/api/work-items",
        headers=HEADERS,
        files={"file": ("main.tf", b"resource a", "text/plain")},
    )
    file_id = response.json()["fileId"]

    response = client.patch(f"/api/work-items/{file_id}", headers=HEADERS, json={"userId": "someone-else"})
    assert response.status_code == 422


def test_corrupt_zip_is_rejected(client):
    response = client.post(
        "/api/work-items/zip",
        headers=HEADERS,
        files={"file": ("broken.zip", b"not a zip archive", "application/zip")},
    )
    assert response.status_code == 400
    assert client.get("/api/work-items", headers=HEADERS).json() == {"items": []}


def test_user_header_is_required(client):
    assert client.get("/api/work-items").status_code == 401


def test_items_are_scoped_to_the_caller(client):
    client.post(
        "/api/work-items",
        headers=HEADERS,
        files={"file": ("main.tf", b"resource a", "text/plain")},
    )

    other = client.get("/api/work-items", headers={"X-User-Email": "someone@example.com"})
    assert other.json() == {"items": []}


def test_disabled_storage_is_unavailable(client, monkeypatch):
    monkeypatch.setenv("WA_STORAGE_ENABLED", "false")
    get_settings.cache_clear()
    reset_work_item_service()

    assert client.get("/api/work-items", headers=HEADERS).status_code == 503


def test_corrupt_stored_record_is_server_error(client, monkeypatch):
    from wa_analyzer.application import WorkItemService
    from wa_analyzer.application import work_items as service_module
    from wa_analyzer.core.hashing import create_user_id_hash
    from wa_analyzer.core.packer import ContentPacker
    from wa_analyzer.infrastructure import InMemoryObjectStore, InMemoryWorkItemRepository

    repository = InMemoryWorkItemRepository()
    service = WorkItemService(repository, InMemoryObjectStore(), ContentPacker(token_limit=1000))
    monkeypatch.setattr(service_module, "_service", service)
    user_id = create_user_id_hash(HEADERS["X-User-Email"])
    repository.put(
        {
            "userId": user_id,
            "fileId": "broken",
            "fileName": "main.tf",
            "fileType": "text/plain",
            "uploadDate": "2025-01-01T00:00:00+00:00",
            "lastModified": "2025-01-01T00:00:00+00:00",
            "s3Prefix": f"{user_id}/elsewhere",
        }
    )

    response = client.get("/api/work-items/broken", headers=HEADERS)
    assert response.status_code == 500
    assert response.json() == {"detail": "Stored work item record is invalid"}
