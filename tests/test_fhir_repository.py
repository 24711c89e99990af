"""
test_fhir_repository.py
-----------------------
HealthCloud Clinical Backend: Test Suite for fhir_repository.py
---------------------------------------------------------------
The FHIR gateway is replaced by an ``AsyncMock``; no network is used.

Tests cover:
    - validate_search_params: None, non-mapping, non-string values
    - validate_bundle: mandatory keys, resourceType / type, entry keys
    - search -> RelayConnection (edges, cursors, page_info, total)
    - get_active_episode: 0 / 1 / 2 matches
    - encounters / episode_encounters search parameters
    - create / update / delete pass-through
    - patient_everything: compartment resources and malformed entries

Run:
    pytest tests/test_fhir_repository.py -v --tb=short

Project: HealthCloud Clinical Backend
"""

import asyncio
import os
import sys
from unittest.mock import AsyncMock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from errors import InconsistentStateError, InvalidInputError, NotFoundError, RemoteFailureError
from fhir_repository import FHIRRepository, validate_bundle, validate_search_params
from schemas import Condition, Encounter, EpisodeOfCare


# ── Helpers ────────────────────────────────────────────────────────────────────

def _bundle(resources, links=None, total=None):
    return {
        "resourceType": "Bundle",
        "type": "searchset",
        "total": len(resources) if total is None else total,
        "link": links if links is not None else [{"relation": "search", "url": "https://example/_search"}],
        "entry": [
            {
                "fullUrl": f"https://example/{res['resourceType']}/{res['id']}",
                "resource": res,
                "search": {"mode": "match"},
            }
            for res in resources
        ],
    }


def _episode_json(episode_id="ep-1"):
    return {
        "resourceType": "EpisodeOfCare",
        "id": episode_id,
        "status": "active",
        "type": [{"text": "FULL_ACCESS"}],
        "patient": {"reference": "Patient/p-1"},
    }


def _gateway(**returns):
    gateway = AsyncMock()
    for name, value in returns.items():
        getattr(gateway, name).return_value = value
    return gateway


# ── validate_search_params ─────────────────────────────────────────────────────

def test_validate_search_params_none():
    with pytest.raises(InvalidInputError, match="can't search with nil params"):
        validate_search_params(None)


def test_validate_search_params_not_a_mapping():
    with pytest.raises(InvalidInputError):
        validate_search_params([("patient", "Patient/p-1")])


def test_validate_search_params_non_string_value():
    with pytest.raises(InvalidInputError):
        validate_search_params({"patient": "Patient/p-1", "_count": 1})


def test_validate_search_params_returns_copy():
    params = {"patient": "Patient/p-1"}
    checked = validate_search_params(params)
    assert checked == params
    assert checked is not params


# ── validate_bundle ────────────────────────────────────────────────────────────

@pytest.mark.parametrize("missing", ["resourceType", "type", "total", "link"])
def test_validate_bundle_missing_mandatory_key(missing):
    bundle = _bundle([])
    del bundle[missing]
    with pytest.raises(RemoteFailureError, match=missing):
        validate_bundle(bundle, "Encounter")


def test_validate_bundle_wrong_resource_type():
    bundle = _bundle([])
    bundle["resourceType"] = "OperationOutcome"
    with pytest.raises(RemoteFailureError, match="Bundle"):
        validate_bundle(bundle, "Encounter")


def test_validate_bundle_wrong_type():
    bundle = _bundle([])
    bundle["type"] = "transaction"
    with pytest.raises(RemoteFailureError, match="searchset"):
        validate_bundle(bundle, "Encounter")


@pytest.mark.parametrize("missing", ["fullUrl", "resource", "search"])
def test_validate_bundle_entry_missing_key(missing):
    bundle = _bundle([_episode_json()])
    del bundle["entry"][0][missing]
    with pytest.raises(RemoteFailureError, match=missing):
        validate_bundle(bundle, "EpisodeOfCare")


def test_validate_bundle_without_entries_is_empty():
    bundle = _bundle([])
    del bundle["entry"]
    assert validate_bundle(bundle, "Encounter") == []


# ── search ─────────────────────────────────────────────────────────────────────

def test_search_builds_relay_connection():
    resources = [
        {"resourceType": "Condition", "id": "c-1", "code": {"text": "Asthma"}},
        {"resourceType": "Condition", "id": "c-2", "code": {"text": "Hypertension"}},
    ]
    links = [
        {"relation": "search", "url": "https://example/_search"},
        {"relation": "next", "url": "https://example/_search?_page_token=abc"},
    ]
    gateway = _gateway(search=_bundle(resources, links=links, total=5))

    conn = asyncio.run(FHIRRepository(gateway).search(Condition, {"patient": "Patient/p-1"}))

    gateway.search.assert_awaited_once_with("Condition", {"patient": "Patient/p-1"})
    assert [edge.cursor for edge in conn.edges] == ["c-1", "c-2"]
    assert conn.nodes[1].code.text == "Hypertension"
    assert conn.total == 5
    assert conn.page_info.has_next_page is True
    assert conn.page_info.has_previous_page is False
    assert conn.page_info.start_cursor == "c-1"
    assert conn.page_info.end_cursor == "c-2"


def test_search_rejects_none_without_calling_gateway():
    gateway = _gateway()
    with pytest.raises(InvalidInputError):
        asyncio.run(FHIRRepository(gateway).search(Condition, None))
    gateway.search.assert_not_called()


def test_search_keeps_unmodelled_fields():
    resource = {"resourceType": "Condition", "id": "c-1", "onsetDateTime": "2020-01-01"}
    gateway = _gateway(search=_bundle([resource]))

    conn = asyncio.run(FHIRRepository(gateway).search(Condition, {"_id": "c-1"}))
    assert conn.nodes[0].to_fhir()["onsetDateTime"] == "2020-01-01"


# ── get_active_episode ─────────────────────────────────────────────────────────

def test_get_active_episode_found():
    gateway = _gateway(search=_bundle([_episode_json()]))

    episode = asyncio.run(FHIRRepository(gateway).get_active_episode("ep-1"))

    assert episode.id == "ep-1"
    gateway.search.assert_awaited_once_with(
        "EpisodeOfCare", {"status:exact": "active", "_id": "ep-1"}
    )


def test_get_active_episode_none_found():
    gateway = _gateway(search=_bundle([]))
    with pytest.raises(NotFoundError, match="ep-1"):
        asyncio.run(FHIRRepository(gateway).get_active_episode("ep-1"))


def test_get_active_episode_multiple_found():
    gateway = _gateway(search=_bundle([_episode_json("ep-1"), _episode_json("ep-1b")]))
    with pytest.raises(InconsistentStateError):
        asyncio.run(FHIRRepository(gateway).get_active_episode("ep-1"))


def test_get_active_episode_malformed_bundle():
    bundle = _bundle([_episode_json()])
    del bundle["link"]
    gateway = _gateway(search=bundle)
    with pytest.raises(RemoteFailureError, match="unable to search for episode of care"):
        asyncio.run(FHIRRepository(gateway).get_active_episode("ep-1"))


# ── Encounter helpers ──────────────────────────────────────────────────────────

def test_encounters_search_params():
    encounter = {"resourceType": "Encounter", "id": "e-1", "status": "finished"}
    gateway = _gateway(search=_bundle([encounter]))

    found = asyncio.run(FHIRRepository(gateway).encounters("Patient/p-1", "finished"))

    assert [enc.id for enc in found] == ["e-1"]
    gateway.search.assert_awaited_once_with(
        "Encounter", {"status:exact": "finished", "patient": "Patient/p-1"}
    )


def test_episode_encounters_search_params():
    gateway = _gateway(search=_bundle([]))
    asyncio.run(FHIRRepository(gateway).episode_encounters("ep-1", "in-progress"))
    gateway.search.assert_awaited_once_with(
        "Encounter", {"episode-of-care": "EpisodeOfCare/ep-1", "status": "in-progress"}
    )


def test_encounter_class_alias_parsed():
    encounter = {
        "resourceType": "Encounter",
        "id": "e-1",
        "class": {"code": "AMB"},
    }
    gateway = _gateway(get_resource=encounter)
    payload = asyncio.run(FHIRRepository(gateway).get(Encounter, "e-1"))
    assert payload.resource.class_.code == "AMB"
    assert payload.resource.to_fhir()["class"] == {"code": "AMB"}


# ── CRUD ───────────────────────────────────────────────────────────────────────

def test_create_sends_wire_payload():
    gateway = _gateway(create_resource={**_episode_json(), "id": "new-ep"})
    episode = EpisodeOfCare.model_validate(_episode_json())
    episode.id = None

    payload = asyncio.run(FHIRRepository(gateway).create(EpisodeOfCare, episode))

    assert payload.resource.id == "new-ep"
    resource_type, body = gateway.create_resource.await_args.args
    assert resource_type == "EpisodeOfCare"
    assert "id" not in body
    assert body["type"] == [{"text": "FULL_ACCESS"}]


def test_update_requires_id():
    gateway = _gateway()
    with pytest.raises(InvalidInputError):
        asyncio.run(FHIRRepository(gateway).update(Condition, Condition()))
    gateway.update_resource.assert_not_called()


def test_delete_returns_true():
    gateway = _gateway(delete_resource={})
    assert asyncio.run(FHIRRepository(gateway).delete(Condition, "c-1")) is True
    gateway.delete_resource.assert_awaited_once_with("Condition", "c-1")


def test_delete_propagates_not_found():
    gateway = _gateway()
    gateway.delete_resource.side_effect = NotFoundError("gone", status_code=404)
    with pytest.raises(NotFoundError):
        asyncio.run(FHIRRepository(gateway).delete(Condition, "c-1"))


def test_unparseable_response_is_remote_failure():
    gateway = _gateway(get_resource={"resourceType": "Encounter", "id": "e-1", "status": "bogus-status"})
    with pytest.raises(RemoteFailureError):
        asyncio.run(FHIRRepository(gateway).get(Encounter, "e-1"))


def test_delete_resource_by_type_name():
    gateway = _gateway(delete_resource={})
    assert asyncio.run(FHIRRepository(gateway).delete_resource("Observation", "o-1")) is True
    gateway.delete_resource.assert_awaited_once_with("Observation", "o-1")


# ── patient_everything ─────────────────────────────────────────────────────────

def test_patient_everything_returns_compartment_resources():
    gateway = _gateway(patient_everything=_bundle([
        {"resourceType": "Patient", "id": "p-1"},
        _episode_json(),
        {"resourceType": "Observation", "id": "o-1", "status": "final"},
    ]))

    resources = asyncio.run(FHIRRepository(gateway).patient_everything("p-1"))

    assert [(res["resourceType"], res["id"]) for res in resources] == [
        ("Patient", "p-1"), ("EpisodeOfCare", "ep-1"), ("Observation", "o-1"),
    ]
    gateway.patient_everything.assert_awaited_once_with("p-1")


def test_patient_everything_without_entries_is_empty():
    gateway = _gateway(patient_everything={"resourceType": "Bundle", "type": "searchset", "total": 0})
    assert asyncio.run(FHIRRepository(gateway).patient_everything("p-1")) == []


@pytest.mark.parametrize("entry", [
    "not-an-object",
    {"fullUrl": "https://example/Patient/p-1"},
    {"resource": {"resourceType": "Patient"}},
])
def test_patient_everything_malformed_entry_is_remote_failure(entry):
    gateway = _gateway(patient_everything={"resourceType": "Bundle", "type": "searchset", "entry": [entry]})
    with pytest.raises(RemoteFailureError):
        asyncio.run(FHIRRepository(gateway).patient_everything("p-1"))
