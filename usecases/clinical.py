"""
clinical.py
-----------
HealthCloud Clinical Backend: Clinical-Resource Use Cases
---------------------------------------------------------
One ``ResourceUseCase`` per FHIR resource kind. Each operation validates its
input and forwards to the injected ``ClinicalStore``; validation failures
raise ``InvalidInputError`` without touching the store.

Usage::

    usecases = build_clinical_usecases(FHIRRepository(client))
    conn = await usecases["Condition"].search({"patient": "Patient/p-1"})

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Generic, Mapping, Optional, Type

from pydantic import ValidationError

from errors import ClinicalError, InvalidInputError
from fhir_repository import validate_search_params
from repository import ClinicalStore
from schemas import (
    AllergyIntolerance,
    Composition,
    Condition,
    Encounter,
    EpisodeOfCare,
    MedicationRequest,
    MedicationStatement,
    Observation,
    Organization,
    Patient,
    RelayConnection,
    RelayPayload,
    ResourceT,
    ServiceRequest,
)

logger = logging.getLogger(__name__)

CLINICAL_RESOURCE_MODELS = (
    Patient,
    Organization,
    EpisodeOfCare,
    Encounter,
    Condition,
    AllergyIntolerance,
    MedicationRequest,
    MedicationStatement,
    Observation,
    ServiceRequest,
    Composition,
)


class ResourceUseCase(Generic[ResourceT]):
    """
    create / update / delete / search / get for a single resource kind.

    Args:
        store: ClinicalStore implementation.
        model: The pydantic resource model, e.g. ``Condition``.
    """

    def __init__(self, store: ClinicalStore, model: Type[ResourceT]) -> None:
        self.store = store
        self.model = model

    @property
    def resource_type(self) -> str:
        return self.model.resource_type

    def _coerce(self, data: Any) -> ResourceT:
        if data is None:
            raise InvalidInputError(f"{self.resource_type} input is required")
        if isinstance(data, self.model):
            return data
        if isinstance(data, Mapping):
            try:
                return self.model.model_validate(dict(data))
            except ValidationError as exc:
                raise InvalidInputError(f"invalid {self.resource_type} input: {exc}") from exc
        raise InvalidInputError(
            f"{self.resource_type} input must be a {self.resource_type} or a mapping, "
            f"got {type(data).__name__}"
        )

    def _require_id(self, resource_id: Optional[str], action: str) -> str:
        if not isinstance(resource_id, str) or not resource_id.strip():
            raise InvalidInputError(f"can't {action} {self.resource_type} without an id")
        return resource_id

    async def create(self, data: Any) -> RelayPayload[ResourceT]:
        resource = self._coerce(data)
        try:
            return await self.store.create(self.model, resource)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to create {self.resource_type}")

    async def update(self, data: Any) -> RelayPayload[ResourceT]:
        """Full-replace update. The input must carry the resource id."""
        resource = self._coerce(data)
        self._require_id(resource.id, "update")
        try:
            return await self.store.update(self.model, resource)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to update {self.resource_type}")

    async def delete(self, resource_id: str) -> bool:
        """Returns ``True`` on confirmed deletion; remote failures raise."""
        self._require_id(resource_id, "delete")
        try:
            return await self.store.delete(self.model, resource_id)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to delete {self.resource_type}/{resource_id}")

    async def search(self, params: Optional[Mapping[str, Any]]) -> RelayConnection[ResourceT]:
        checked = validate_search_params(params)
        try:
            return await self.store.search(self.model, checked)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to search {self.resource_type}")

    async def get(self, resource_id: str) -> RelayPayload[ResourceT]:
        self._require_id(resource_id, "get")
        try:
            return await self.store.get(self.model, resource_id)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to get {self.resource_type}/{resource_id}")


def build_clinical_usecases(store: ClinicalStore) -> Dict[str, ResourceUseCase]:
    """Return a ``ResourceUseCase`` per supported resource kind, keyed by resourceType."""
    return {model.resource_type: ResourceUseCase(store, model) for model in CLINICAL_RESOURCE_MODELS}
