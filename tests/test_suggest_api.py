"""
tests/test_suggest_api.py

HTTP surface over the engine:
  - POST /remedies/suggest (success, typed errors, narrative, persistence)
  - decision / outcome round trip feeding the repetition warning
  - tenant header validation, outcome statistics
  - reference invalidation
"""
from __future__ import annotations

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from clincore.api.main import create_app
from clincore.config import Settings
from clincore.remedy_engine.case_records import SqlCaseRecordStore
from clincore.remedy_engine.pipeline import RemedySuggestionEngine
from clincore.remedy_engine.reference import ReferenceDataCache

from conftest import InMemoryCaseRecordStore


TENANT = str(uuid.uuid4())

CASE = {
    "mental": [{"symptomText": "Anxiety at night"}, {"symptomText": "Fear of death"}],
    "generals": [{"symptomText": "Chilly"}, {"symptomText": "Thirst"}],
    "particulars": [{"symptomText": "Burning pain in the abdomen", "location": "stomach"}],
    "modalities": [{"symptomText": "Worse from cold", "type": "worse"}],
    "pathologyTags": ["gastroenteritis"],
}


def _settings(**overrides) -> Settings:
    return Settings(ENV="test", LOG_LEVEL="WARNING", **overrides)


def _app(engine, store=None, **settings):
    return create_app(_settings(**settings), engine=engine, case_store=store or InMemoryCaseRecordStore())


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.asyncio
async def test_suggest_returns_ranked_camelcase_payload(engine):
    async with _client(_app(engine)) as client:
        resp = await client.post("/remedies/suggest", json={"case": CASE})

    assert resp.status_code == 200
    body = resp.json()
    top = body["topRemedies"]
    assert top[0]["remedy"] == {"id": "ars", "name": "Arsenicum Album", "category": "Polychrest"}
    assert set(top[0]) >= {
        "matchScore", "confidence", "suggestedPotency", "repetition",
        "clinicalReasoning", "warnings", "matchedRubrics", "matchedSymptoms",
    }
    assert [t["matchScore"] for t in top] == sorted((t["matchScore"] for t in top), reverse=True)
    assert body["summary"]["totalRemedies"] == len(top)
    assert body["requestId"] == resp.headers["x-request-id"]
    # no tenant header: nothing persisted
    assert body["caseRecordId"] is None
    assert body["narrative"] is None


@pytest.mark.asyncio
async def test_top_n_and_narrative(engine):
    async with _client(_app(engine)) as client:
        resp = await client.post(
            "/remedies/suggest",
            json={"case": CASE, "topN": 2, "includeNarrative": True},
        )

    body = resp.json()
    assert len(body["topRemedies"]) == 2
    assert body["narrative"].startswith("Case summary")


@pytest.mark.asyncio
async def test_empty_case_maps_to_422(engine):
    async with _client(_app(engine)) as client:
        resp = await client.post("/remedies/suggest", json={"case": {}})

    assert resp.status_code == 422
    body = resp.json()
    assert body["error"]["code"] == "EMPTY_CASE"
    assert body["request_id"] == resp.headers["x-request-id"]


@pytest.mark.asyncio
async def test_invalid_weight_maps_to_422(engine):
    case = {"mental": [{"symptomText": "Irritability", "weight": -2}]}
    async with _client(_app(engine)) as client:
        resp = await client.post("/remedies/suggest", json={"case": case})

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "INVALID_WEIGHT"


@pytest.mark.asyncio
async def test_modality_without_type_maps_to_422(engine):
    case = {"modalities": [{"symptomText": "Worse from cold"}]}
    async with _client(_app(engine)) as client:
        resp = await client.post("/remedies/suggest", json={"case": case})

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "INVALID_SYMPTOM"


@pytest.mark.asyncio
async def test_no_matches_maps_to_404_with_guidance(engine):
    case = {"particulars": [{"symptomText": "Numb toes"}]}
    async with _client(_app(engine)) as client:
        resp = await client.post("/remedies/suggest", json={"case": case})

    assert resp.status_code == 404
    assert resp.json()["error"] == {
        "code": "NO_MATCHES",
        "message": "No suggestions found, consider adding more particulars",
    }


@pytest.mark.asyncio
async def test_reference_unavailable_maps_to_503(params):
    class _Down:
        def list_rubrics(self, source=None):
            raise TimeoutError("repertory timeout")

        def list_remedies(self):
            return []

    engine = RemedySuggestionEngine(ReferenceDataCache(_Down()), params)
    async with _client(_app(engine)) as client:
        resp = await client.post("/remedies/suggest", json={"case": CASE})

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "REFERENCE_DATA_UNAVAILABLE"


@pytest.mark.asyncio
async def test_request_validation_error_shape(engine):
    async with _client(_app(engine)) as client:
        resp = await client.post("/remedies/suggest", json={"case": CASE, "topN": 0})

    assert resp.status_code == 422
    body = resp.json()
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert "details" in body


@pytest.mark.asyncio
async def test_case_record_lifecycle_feeds_repetition_warning(engine):
    store = InMemoryCaseRecordStore()
    headers = {"X-Tenant-ID": TENANT}
    request = {"case": CASE, "patientId": "patient-7"}

    async with _client(_app(engine, store)) as client:
        first = await client.post("/remedies/suggest", json=request, headers=headers)
        assert first.status_code == 200
        case_id = first.json()["caseRecordId"]
        assert case_id in store.records
        assert all(not t["warnings"] for t in first.json()["topRemedies"] if t["remedy"]["id"] == "ars")

        # outcome before any decision is rejected
        early = await client.post(
            f"/remedies/cases/{case_id}/outcome", json={"outcomeStatus": "worsened"}, headers=headers
        )
        assert early.status_code == 409

        decision = await client.post(
            f"/remedies/cases/{case_id}/decision",
            json={"chosenRemedy": "ars", "potency": "30C"},
            headers=headers,
        )
        assert decision.status_code == 200
        assert decision.json() == {"caseRecordId": case_id, "status": "decided"}

        outcome = await client.post(
            f"/remedies/cases/{case_id}/outcome", json={"outcomeStatus": "worsened"}, headers=headers
        )
        assert outcome.status_code == 200

        second = await client.post("/remedies/suggest", json=request, headers=headers)

    ars = next(t for t in second.json()["topRemedies"] if t["remedy"]["id"] == "ars")
    assert [w["type"] for w in ars["warnings"]] == ["repetition"]
    assert store.records[case_id]["chosen_remedy"] == "ars"


@pytest.mark.asyncio
async def test_favourable_outcome_does_not_warn(engine):
    store = InMemoryCaseRecordStore()
    headers = {"X-Tenant-ID": TENANT}
    request = {"case": CASE, "patientId": "patient-8"}

    async with _client(_app(engine, store)) as client:
        case_id = (await client.post("/remedies/suggest", json=request, headers=headers)).json()["caseRecordId"]
        await client.post(f"/remedies/cases/{case_id}/decision", json={"chosenRemedy": "ars"}, headers=headers)
        await client.post(f"/remedies/cases/{case_id}/outcome", json={"outcomeStatus": "improved"}, headers=headers)
        second = await client.post("/remedies/suggest", json=request, headers=headers)

    assert second.json()["summary"]["warnings"] == 0


@pytest.mark.asyncio
async def test_persistence_can_be_switched_off(engine):
    store = InMemoryCaseRecordStore()
    async with _client(_app(engine, store, PERSIST_CASE_RECORDS=False)) as client:
        resp = await client.post("/remedies/suggest", json={"case": CASE}, headers={"X-Tenant-ID": TENANT})

    assert resp.json()["caseRecordId"] is None
    assert store.records == {}


@pytest.mark.asyncio
async def test_decision_requires_tenant_and_known_case(engine):
    async with _client(_app(engine)) as client:
        missing_tenant = await client.post("/remedies/cases/abc/decision", json={"chosenRemedy": "ars"})
        unknown_case = await client.post(
            "/remedies/cases/abc/decision", json={"chosenRemedy": "ars"}, headers={"X-Tenant-ID": TENANT}
        )
        bad_status = await client.post(
            "/remedies/cases/abc/outcome", json={"outcomeStatus": "cured"}, headers={"X-Tenant-ID": TENANT}
        )

    assert missing_tenant.status_code == 400
    assert missing_tenant.json()["error"]["code"] == "BAD_REQUEST"
    assert unknown_case.status_code == 404
    assert bad_status.status_code == 422


@pytest.mark.asyncio
async def test_reference_invalidate_bumps_version(engine):
    async with _client(_app(engine)) as client:
        await client.post("/remedies/suggest", json={"case": CASE})
        resp = await client.post("/remedies/reference/invalidate")
        version = await client.get("/version")

    assert resp.status_code == 200
    assert resp.json()["version"] == 2
    assert resp.json()["remedies"] == 5
    assert version.json()["engine_version"] == "remedy_engine_v1"


@pytest.mark.asyncio
async def test_malformed_tenant_header_is_a_client_error(engine):
    # rejected before any database access
    app = _app(engine, SqlCaseRecordStore())
    headers = {"X-Tenant-ID": "not-a-uuid"}
    async with _client(app) as client:
        suggest = await client.post(
            "/remedies/suggest", json={"case": CASE, "patientId": "patient-1"}, headers=headers
        )
        decision = await client.post(
            "/remedies/cases/abc/decision", json={"chosenRemedy": "ars"}, headers=headers
        )
        outcome = await client.post(
            "/remedies/cases/abc/outcome", json={"outcomeStatus": "worsened"}, headers=headers
        )

    for resp in (suggest, decision, outcome):
        assert resp.status_code == 400
        assert resp.json()["error"] == {"code": "BAD_REQUEST", "message": "Invalid X-Tenant-ID header"}


IRRITABLE = {"mental": [{"symptomText": "Irritability"}]}


@pytest.mark.asyncio
async def test_decision_recorded_by_name_still_warns_on_repetition(engine):
    store = InMemoryCaseRecordStore()
    headers = {"X-Tenant-ID": TENANT}
    request = {"case": IRRITABLE, "patientId": "patient-9"}

    async with _client(_app(engine, store)) as client:
        case_id = (await client.post("/remedies/suggest", json=request, headers=headers)).json()["caseRecordId"]
        await client.post(f"/remedies/cases/{case_id}/decision", json={"chosenRemedy": "Chamomilla"}, headers=headers)
        await client.post(f"/remedies/cases/{case_id}/outcome", json={"outcomeStatus": "worsened"}, headers=headers)
        second = await client.post("/remedies/suggest", json=request, headers=headers)

    warnings = {t["remedy"]["name"]: t["warnings"] for t in second.json()["topRemedies"]}
    assert warnings["Nux Vomica"] == []
    [w] = warnings["Chamomilla"]
    assert w["type"] == "repetition"
    assert w["severity"] == "high"


@pytest.mark.asyncio
async def test_outcome_stats_count_choices_by_id_and_name(engine):
    store = InMemoryCaseRecordStore()
    headers = {"X-Tenant-ID": TENANT}

    async with _client(_app(engine, store)) as client:
        for chosen, outcome in (("cham", "improved"), ("Chamomilla", "worsened"), ("nux-v", "improved")):
            resp = await client.post("/remedies/suggest", json={"case": IRRITABLE}, headers=headers)
            case_id = resp.json()["caseRecordId"]
            await client.post(f"/remedies/cases/{case_id}/decision", json={"chosenRemedy": chosen}, headers=headers)
            await client.post(f"/remedies/cases/{case_id}/outcome", json={"outcomeStatus": outcome}, headers=headers)

        stats = await client.get("/remedies/cham/outcome-stats", headers=headers)
        other_tenant = await client.get("/remedies/cham/outcome-stats", headers={"X-Tenant-ID": str(uuid.uuid4())})
        no_tenant = await client.get("/remedies/cham/outcome-stats")

    assert stats.status_code == 200
    assert stats.json() == {
        "remedy": "cham",
        "totalCases": 2,
        "improved": 1,
        "noChange": 0,
        "worsened": 1,
        "notFollowed": 0,
        "successRate": 50.0,
    }
    assert other_tenant.json()["totalCases"] == 0
    assert other_tenant.json()["successRate"] == 0.0
    assert no_tenant.status_code == 400
