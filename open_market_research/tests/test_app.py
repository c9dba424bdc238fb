"""
Test suite for the submission rules, persistence layer and HTTP API.

The database is configured to use an in‑memory SQLite instance for
isolation: ``DATABASE_URL`` is set and the database module reloaded
before each test.  The LLM is never called; the API's structurer
dependency is overridden with a stub.
"""

from __future__ import annotations

import importlib
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

import pytest
from fastapi.testclient import TestClient

from open_market_research.backend import permissions
from open_market_research.backend.constants import SUBMISSION_STEPS
from open_market_research.backend.submission import SubmissionDraft, build_study_record, missing_fields


def _submission(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "raw_data": "We interviewed 10 founders about invoicing.",
        "title": "Invoicing pain points",
        "summary": "Founders lose hours reconciling invoices.",
        "industry": "Technology",
        "countries": ["Germany"],
        "cities": ["Berlin"],
        "target_audience": ["startup_founder"],
        "methodology": {
            "type": "interview",
            "sample_size": 10,
            "collection_start": "2024-03-01",
            "collection_end": "2024-03-31",
        },
        "top_findings": ["Reconciliation is manual"],
        "insights": ["Automate matching"],
        "license": "CC-BY-4.0",
        "tags": ["pricing-research", "customer-interviews"],
    }
    data.update(overrides)
    return data


@pytest.fixture()
def db() -> Any:
    os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
    from open_market_research.backend import database
    importlib.reload(database)
    database.init_db()
    return database


class StubStructurer:
    def __init__(self, result: Dict[str, Any], available: bool = True) -> None:
        self.result = result
        self.available = available
        self.calls: list = []

    def is_available(self) -> bool:
        return self.available

    def structure_research(self, content: str, title: Any = None, metadata: Any = None) -> Dict[str, Any]:
        self.calls.append((content, title, metadata))
        return self.result

    def get_improvement_suggestions(self, data: Dict[str, Any]) -> list:
        return ["Add more detail about recruiting"]


@pytest.fixture()
def api(db: Any) -> Iterator[Any]:
    from open_market_research.backend import api as api_module
    yield api_module
    api_module.app.dependency_overrides.clear()


@pytest.fixture()
def client(api: Any) -> TestClient:
    return TestClient(api.app)


# Submission wizard


def test_wizard_requires_each_step() -> None:
    draft = SubmissionDraft()
    assert draft.step["id"] == "raw-research"
    assert draft.next_step() is False
    draft.update({"raw_data": "notes"})
    assert draft.next_step() is True
    assert draft.step["id"] == "basic-info"
    draft.update({"title": "T", "summary": "S"})
    assert draft.can_proceed() is False
    draft.update({"industry": "Retail"})
    assert draft.next_step() is True
    assert draft.prev_step() is True
    assert draft.current_step == 1
    assert draft.progress == pytest.approx(2 / len(SUBMISSION_STEPS) * 100)


def test_methodology_step_needs_type_and_sample_size() -> None:
    assert missing_fields({"methodology": {"type": "survey", "sample_size": 0}}, "methodology") == [
        "methodology.sample_size"
    ]
    assert missing_fields({}, "methodology") == ["methodology.type", "methodology.sample_size"]
    assert missing_fields({"methodology": {"type": "survey", "sample_size": 5}}, "methodology") == []


def test_complete_draft_walks_to_last_step() -> None:
    draft = SubmissionDraft(_submission())
    while draft.next_step():
        pass
    assert draft.is_last_step
    assert draft.progress == 100
    assert draft.is_complete()


def test_apply_structuring_keeps_user_values() -> None:
    draft = SubmissionDraft({"raw_data": "notes", "title": "Mine"})
    applied = draft.apply_structuring({
        "success": True,
        "data": {"title": "AI title", "summary": "AI summary", "tags": ["a"]},
        "confidence": 38,
    })
    assert applied is True
    assert draft.data["title"] == "Mine"
    assert draft.data["summary"] == "AI summary"
    assert draft.confidence == 38
    assert draft.apply_structuring({"success": False, "error": "down"}) is False


def test_build_study_record() -> None:
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    record = build_study_record(_submission(), "user-1", now)
    assert record["market"] == {"countries": ["Germany"], "cities": ["Berlin"]}
    assert record["verification_status"] == "pending"
    assert record["created_by"] == "user-1"
    assert record["published_date"] == record["created_at"] == now.isoformat()
    assert "countries" not in record


# Permissions


def test_permission_rules() -> None:
    study = {"created_by": "owner"}
    assert permissions.check_permission("studies", "view", None, study)
    assert not permissions.check_permission("studies", "create", None)
    assert permissions.check_permission("studies", "create", "someone")
    assert permissions.check_permission("studies", "update", "owner", study)
    assert not permissions.check_permission("studies", "delete", "someone", study)
    assert not permissions.check_permission("profiles", "view", None)
    assert permissions.check_permission("profiles", "update", "u1", {"user_id": "u1"})
    assert not permissions.check_permission("attrs", "create", "u1")
    with pytest.raises(permissions.PermissionDenied) as excinfo:
        permissions.require_permission("studies", "update", None, study)
    assert excinfo.value.authenticated is False


# Persistence


def test_study_crud_and_listing(db: Any) -> None:
    first = db.create_study(
        build_study_record(_submission(), "u1", datetime(2024, 1, 1, tzinfo=timezone.utc)), "u1"
    )
    second = db.create_study(
        build_study_record(
            _submission(title="Retail loyalty", summary="Shoppers and points", industry="Retail",
                        countries=["France"], tags=["trends"]),
            "u2",
            datetime(2024, 2, 1, tzinfo=timezone.utc),
        ),
        "u2",
    )
    listed = db.list_studies()
    assert [s["id"] for s in listed] == [second["id"], first["id"]]
    assert [s["id"] for s in db.list_studies(search="PRICING")] == [first["id"]]
    assert [s["id"] for s in db.list_studies(industry="Retail")] == [second["id"]]
    assert [s["id"] for s in db.list_studies(country="Germany")] == [first["id"]]
    assert len(db.list_studies(limit=1)) == 1
    assert len(db.list_studies(limit=-1)) == 2
    assert len(db.list_studies(limit=0)) == 2
    assert db.get_filter_options() == {
        "industries": ["Retail", "Technology"],
        "countries": ["France", "Germany"],
    }
    fetched = db.fetch_study(first["id"])
    assert fetched["methodology"]["sample_size"] == 10
    assert fetched["market"]["cities"] == ["Berlin"]
    assert db.fetch_study("missing") is None


def test_only_owner_can_update_or_delete(db: Any) -> None:
    study = db.create_study(build_study_record(_submission(), "u1"), "u1")
    with pytest.raises(permissions.PermissionDenied):
        db.update_study(study["id"], {"title": "Hijacked"}, "u2")
    updated = db.update_study(
        study["id"],
        {"title": "Renamed", "countries": ["Spain"], "verification_status": "verified", "created_by": "u2"},
        "u1",
    )
    assert updated["title"] == "Renamed"
    assert updated["market"] == {"countries": ["Spain"], "cities": ["Berlin"]}
    assert updated["verification_status"] == "pending"
    assert updated["created_by"] == "u1"
    with pytest.raises(permissions.PermissionDenied):
        db.delete_study(study["id"], "u2")
    assert db.delete_study(study["id"], "u1") is True
    assert db.delete_study(study["id"], "u1") is False


def test_profile_submission_count(db: Any) -> None:
    db.create_study(build_study_record(_submission(), "u1"), "u1")
    db.create_study(build_study_record(_submission(), "u1"), "u1")
    profile = db.get_profile("u1", "u1")
    assert profile["submission_count"] == 2
    saved = db.upsert_profile("u1", {"name": "Ada", "bio": ""}, "u1")
    assert saved["name"] == "Ada"
    assert saved["bio"] is None
    with pytest.raises(permissions.PermissionDenied):
        db.upsert_profile("u1", {"name": "Mallory"}, "u2")
    assert db.get_profile("nobody", "u1") is None


# HTTP API


def test_structure_endpoint_validates_content(client: TestClient, api: Any) -> None:
    stub = StubStructurer({"success": True, "data": {}, "confidence": 0, "warnings": []})
    api.app.dependency_overrides[api.get_structurer] = lambda: stub
    response = client.post("/api/structure-research", json={"title": "No content"})
    assert response.status_code == 400
    assert "error" in response.json()
    response = client.post("/api/structure-research", json={"content": 12})
    assert response.status_code == 400
    assert stub.calls == []


def test_structure_endpoint_success_and_failure(client: TestClient, api: Any) -> None:
    stub = StubStructurer({
        "success": True,
        "data": {"title": "Structured"},
        "confidence": 13,
        "warnings": ["tags: expected a list, got str"],
    })
    api.app.dependency_overrides[api.get_structurer] = lambda: stub
    response = client.post(
        "/api/structure-research",
        json={"content": "We interviewed 10 founders...", "title": "T", "metadata": {"source": "notes"}},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"] == {"title": "Structured"}
    assert body["confidence"] == 13
    assert stub.calls == [("We interviewed 10 founders...", "T", {"source": "notes"})]

    stub.result = {"success": False, "error": "LLM service is not available. Please try again later."}
    response = client.post("/api/structure-research", json={"content": "notes"})
    assert response.status_code == 500
    assert response.json() == {"error": "LLM service is not available. Please try again later."}


def test_structure_availability_endpoint(client: TestClient, api: Any) -> None:
    api.app.dependency_overrides[api.get_structurer] = lambda: StubStructurer({}, available=False)
    assert client.get("/api/structure-research").json() == {
        "available": False,
        "message": "LLM service is not available",
    }
    api.app.dependency_overrides[api.get_structurer] = lambda: StubStructurer({}, available=True)
    assert client.get("/api/structure-research").json()["available"] is True


def test_suggestions_endpoint(client: TestClient, api: Any) -> None:
    api.app.dependency_overrides[api.get_structurer] = lambda: StubStructurer({})
    response = client.post("/api/structure-research/suggestions", json={"data": {"title": "T"}})
    assert response.json() == {"suggestions": ["Add more detail about recruiting"]}


def test_submit_and_browse_studies(client: TestClient) -> None:
    assert client.post("/api/studies", json=_submission()).status_code == 401

    response = client.post("/api/studies", json=_submission(title=None), headers={"X-User-Id": "u1"})
    assert response.status_code == 400
    assert "title" in response.json()["missing"]

    response = client.post("/api/studies", json=_submission(), headers={"X-User-Id": "u1"})
    assert response.status_code == 201
    study = response.json()
    assert study["created_by"] == "u1"
    assert study["verification_status"] == "pending"
    assert study["market"]["countries"] == ["Germany"]
    assert study["methodology"]["collection_start"] == "2024-03-01"

    listing = client.get("/api/studies", params={"search": "invoic"}).json()
    assert [s["id"] for s in listing["studies"]] == [study["id"]]
    assert listing["total"] == 1
    assert listing["filters"]["industries"] == ["Technology"]
    assert client.get("/api/studies", params={"country": "Japan"}).json()["studies"] == []

    assert client.get(f"/api/studies/{study['id']}").json()["title"] == "Invoicing pain points"
    assert client.get("/api/studies/unknown").status_code == 404


def test_update_and_delete_require_owner(client: TestClient) -> None:
    study = client.post("/api/studies", json=_submission(), headers={"X-User-Id": "u1"}).json()
    url = f"/api/studies/{study['id']}"
    assert client.patch(url, json={"title": "Nope"}).status_code == 401
    assert client.patch(url, json={"title": "Nope"}, headers={"X-User-Id": "u2"}).status_code == 403
    response = client.patch(url, json={"title": "Updated"}, headers={"X-User-Id": "u1"})
    assert response.status_code == 200
    assert response.json()["title"] == "Updated"
    assert response.json()["summary"] == "Founders lose hours reconciling invoices."
    assert client.delete(url, headers={"X-User-Id": "u2"}).status_code == 403
    assert client.delete(url, headers={"X-User-Id": "u1"}).json() == {"deleted": True}
    assert client.delete(url, headers={"X-User-Id": "u1"}).status_code == 404


def test_patch_rejects_null_required_fields(client: TestClient) -> None:
    """Clearing a required column is a client error, not a database failure."""
    study = client.post("/api/studies", json=_submission(), headers={"X-User-Id": "u1"}).json()
    url = f"/api/studies/{study['id']}"
    response = client.patch(url, json={"title": None}, headers={"X-User-Id": "u1"})
    assert response.status_code == 400
    assert response.json() == {"error": "Required fields cannot be null", "fields": ["title"]}
    response = client.patch(url, json={"license": None, "summary": None}, headers={"X-User-Id": "u1"})
    assert response.status_code == 400
    assert response.json()["fields"] == ["license", "summary"]
    # Optional columns can still be cleared
    response = client.patch(url, json={"industry": None}, headers={"X-User-Id": "u1"})
    assert response.status_code == 200
    assert response.json()["industry"] is None
    assert client.get(url).json()["title"] == study["title"]


def test_study_endpoints_report_storage_errors(client: TestClient, api: Any, monkeypatch: Any) -> None:
    def broken(*args: Any, **kwargs: Any) -> Any:
        raise RuntimeError("database is locked")

    for name in ("fetch_study", "update_study", "delete_study", "list_user_studies"):
        monkeypatch.setattr(api.db, name, broken)
    headers = {"X-User-Id": "u1"}
    response = client.get("/api/studies/abc")
    assert response.status_code == 500
    assert "error" in response.json()
    assert client.patch("/api/studies/abc", json={"title": "New"}, headers=headers).status_code == 500
    assert client.delete("/api/studies/abc", headers=headers).status_code == 500
    assert client.get("/api/my-submissions", headers=headers).status_code == 500


def test_list_limit_must_be_positive(client: TestClient) -> None:
    client.post("/api/studies", json=_submission(), headers={"X-User-Id": "u1"})
    client.post("/api/studies", json=_submission(title="Second"), headers={"X-User-Id": "u1"})
    assert client.get("/api/studies", params={"limit": -1}).status_code == 422
    assert client.get("/api/studies", params={"limit": 0}).status_code == 422
    assert len(client.get("/api/studies", params={"limit": 1}).json()["studies"]) == 1
    assert len(client.get("/api/studies").json()["studies"]) == 2


def test_my_submissions_and_profile(client: TestClient) -> None:
    assert client.get("/api/my-submissions").status_code == 401
    client.post("/api/studies", json=_submission(), headers={"X-User-Id": "u1"})
    client.post("/api/studies", json=_submission(), headers={"X-User-Id": "u2"})
    mine = client.get("/api/my-submissions", headers={"X-User-Id": "u1"}).json()["studies"]
    assert len(mine) == 1
    assert mine[0]["created_by"] == "u1"

    assert client.get("/api/profile").status_code == 401
    response = client.put("/api/profile", json={"name": "Ada", "company": "Acme"}, headers={"X-User-Id": "u1"})
    assert response.status_code == 200
    profile = client.get("/api/profile", headers={"X-User-Id": "u1"}).json()["profile"]
    assert profile["name"] == "Ada"
    assert profile["company"] == "Acme"
    assert profile["submission_count"] == 1
    assert client.get("/api/profile", headers={"X-User-Id": "u3"}).json() == {"profile": None}


def test_options_and_health(client: TestClient) -> None:
    assert client.get("/health").json()["status"] == "healthy"
    options = client.get("/api/options").json()
    assert "CC-BY-4.0" in options["licenses"]
    assert [step["id"] for step in options["steps"]][0] == "raw-research"
