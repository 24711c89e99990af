"""
fakes.py
--------
HealthCloud Clinical Backend: In-memory test doubles
----------------------------------------------------
    make_settings()        Settings with test defaults and overrides.
    FakeClinicalStore      ClinicalStore kept in dicts; records every call.
    FakeHealthcareAdmin    HealthcareAdmin with scripted failures.
    FakeAuthProvider       AuthProvider keyed by phone number.

Project: HealthCloud Clinical Backend
"""

import itertools
import os
import sys
from collections import defaultdict
from typing import Any, Dict, List, Optional

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from errors import AlreadyExistsError, ClinicalError, NotFoundError
from fhir_repository import validate_search_params
from schemas import Encounter, EpisodeOfCare, RelayConnection, RelayEdge, RelayPayload


def make_settings(**overrides) -> Settings:
    values = dict(
        project_id="test-project",
        dataset_id="test-dataset",
        fhir_store_id="test-store",
        pubsub_topic="test-topic",
        access_token="test-token",
    )
    values.update(overrides)
    return Settings(**values)


# ── ClinicalStore ──────────────────────────────────────────────────────────────

def _refs(value) -> List[str]:
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    return [item.reference for item in items if item is not None and item.reference]


def _matches(resource, key: str, expected: str) -> bool:
    if key == "_id":
        return resource.id == expected
    if key in ("status", "status:exact"):
        return getattr(resource, "status", None) == expected
    if key == "patient":
        return expected in _refs(getattr(resource, "patient", None)) + _refs(getattr(resource, "subject", None))
    if key == "organization":
        return expected in _refs(getattr(resource, "managingOrganization", None))
    if key == "episode-of-care":
        return expected in _refs(getattr(resource, "episodeOfCare", None))
    if key == "identifier":
        return any(ident.value == expected for ident in getattr(resource, "identifier", None) or [])
    return True


class FakeClinicalStore:
    """
    In-memory ClinicalStore.

    ``calls`` lists ``(method, resourceType)`` for every call; ``updates``
    holds ``(resourceType, wire payload)`` for every update and ``deleted``
    ``(resourceType, id)`` for every deletion, in order. Put an error in
    ``failures[method]`` to make that method raise it.
    """

    def __init__(self) -> None:
        self.resources: Dict[str, Dict[str, Any]] = defaultdict(dict)
        self.calls: List[tuple] = []
        self.updates: List[tuple] = []
        self.deleted: List[tuple] = []
        self.failures: Dict[str, ClinicalError] = {}
        self._ids = itertools.count(1)

    def add(self, resource):
        self.resources[resource.resource_type][resource.id] = resource
        return resource

    def _copy(self, model, resource):
        return model.model_validate(resource.to_fhir())

    def _record(self, method: str, resource_type: str) -> None:
        self.calls.append((method, resource_type))
        if method in self.failures:
            raise self.failures[method]

    async def create(self, model, resource):
        self._record("create", model.resource_type)
        stored = self._copy(model, resource)
        stored.id = stored.id or f"{model.resource_type.lower()}-{next(self._ids)}"
        self.resources[model.resource_type][stored.id] = stored
        return RelayPayload[model](resource=self._copy(model, stored))

    async def get(self, model, resource_id):
        self._record("get", model.resource_type)
        stored = self.resources[model.resource_type].get(resource_id)
        if stored is None:
            raise NotFoundError(f"{model.resource_type}/{resource_id} not found", status_code=404)
        return RelayPayload[model](resource=self._copy(model, stored))

    async def update(self, model, resource):
        self._record("update", model.resource_type)
        payload = resource.to_fhir()
        self.updates.append((model.resource_type, payload))
        self.resources[model.resource_type][resource.id] = model.model_validate(payload)
        return RelayPayload[model](resource=model.model_validate(payload))

    async def delete(self, model, resource_id):
        return await self.delete_resource(model.resource_type, resource_id)

    async def delete_resource(self, resource_type, resource_id):
        self._record("delete", resource_type)
        if self.resources[resource_type].pop(resource_id, None) is None:
            raise NotFoundError(f"{resource_type}/{resource_id} not found", status_code=404)
        self.deleted.append((resource_type, resource_id))
        return True

    async def search(self, model, params):
        checked = validate_search_params(params)
        self._record("search", model.resource_type)
        filters = {k: v for k, v in checked.items() if not k.startswith("_") or k == "_id"}
        found = [
            self._copy(model, resource)
            for resource in self.resources[model.resource_type].values()
            if all(_matches(resource, key, value) for key, value in filters.items())
        ]
        if "_count" in checked:
            found = found[: int(checked["_count"])]
        return RelayConnection[model](
            edges=[RelayEdge[model](cursor=node.id, node=node) for node in found],
            total=len(found),
        )

    async def encounters(self, patient_reference, status=None):
        params = {"patient": patient_reference}
        if status:
            params["status:exact"] = status
        return (await self.search(Encounter, params)).nodes

    async def get_active_episode(self, episode_id):
        conn = await self.search(EpisodeOfCare, {"status:exact": "active", "_id": episode_id})
        if not conn.edges:
            raise NotFoundError(f"no ACTIVE episode with ID: {episode_id}")
        return conn.edges[0].node

    async def episode_encounters(self, episode_id, status=None):
        params = {"episode-of-care": f"EpisodeOfCare/{episode_id}"}
        if status:
            params["status"] = status
        return (await self.search(Encounter, params)).nodes

    async def patient_everything(self, patient_id):
        self._record("everything", "Patient")
        reference = f"Patient/{patient_id}"
        compartment = []
        for resource_type, resources in self.resources.items():
            for resource in resources.values():
                if resource_type == "Patient":
                    if resource.id == patient_id:
                        compartment.append(resource.to_fhir())
                elif _matches(resource, "patient", reference):
                    compartment.append(resource.to_fhir())
        return compartment

    def count(self, method: str, resource_type: Optional[str] = None) -> int:
        return sum(
            1 for m, rt in self.calls if m == method and (resource_type is None or rt == resource_type)
        )


# ── HealthcareAdmin ────────────────────────────────────────────────────────────

class FakeHealthcareAdmin:
    """
    Dataset / store existence flags plus optional scripted errors per call
    (``get_dataset``, ``create_dataset``, ``get_fhir_store``, ``create_fhir_store``).
    """

    def __init__(self, dataset_exists: bool = False, store_exists: bool = False) -> None:
        self.dataset_exists = dataset_exists
        self.store_exists = store_exists
        self.errors: Dict[str, ClinicalError] = {}
        self.calls: List[str] = []
        self.created_stores: List[Any] = []

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.errors:
            raise self.errors[name]

    async def get_dataset(self):
        self._call("get_dataset")
        if not self.dataset_exists:
            raise NotFoundError("dataset not found", status_code=404)
        return {"name": "dataset"}

    async def create_dataset(self):
        self._call("create_dataset")
        if self.dataset_exists:
            raise AlreadyExistsError("dataset exists", status_code=409)
        self.dataset_exists = True
        return {"name": "operation"}

    async def get_fhir_store(self):
        self._call("get_fhir_store")
        if not self.store_exists:
            raise NotFoundError("store not found", status_code=404)
        return {"name": "store"}

    async def create_fhir_store(self, store=None):
        self._call("create_fhir_store")
        if self.store_exists:
            raise AlreadyExistsError("store exists", status_code=409)
        self.store_exists = True
        self.created_stores.append(store)
        return {"name": "store"}


# ── AuthProvider ───────────────────────────────────────────────────────────────

class FakeAuthProvider:
    def __init__(self) -> None:
        self.users: Dict[str, Dict[str, Any]] = {}
        self.deleted: List[str] = []
        self._ids = itertools.count(1)

    async def get_user_by_phone(self, phone):
        user = self.users.get(phone)
        if user is None:
            raise NotFoundError(f"no user with phone number {phone}")
        return user

    async def create_user(self, phone, display_name=None):
        if phone in self.users:
            raise AlreadyExistsError("PHONE_NUMBER_EXISTS")
        user = {"localId": f"uid-{next(self._ids)}", "phoneNumber": phone}
        if display_name:
            user["displayName"] = display_name
        self.users[phone] = user
        return user

    async def delete_user(self, uid):
        for phone, user in list(self.users.items()):
            if user["localId"] == uid:
                del self.users[phone]
                self.deleted.append(uid)
                return
        raise NotFoundError(f"USER_NOT_FOUND {uid}")
