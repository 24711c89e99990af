"""
repository.py
-------------
HealthCloud Clinical Backend: Capability Interfaces
---------------------------------------------------
Structural interfaces (``typing.Protocol``) for the three external
collaborators. Use-case classes receive an implementation through their
constructor; production wiring lives in main.py and tests inject in-memory
fakes (tests/fakes.py).

    HealthcareAdmin  dataset / FHIR-store admin calls        (provisioner.py)
    FHIRGateway      raw FHIR REST calls keyed by type + id  (fhir_repository.py)
    ClinicalStore    typed clinical persistence              (usecases/)
    DocumentStore    collection-scoped document database     (document_store.py)
    AuthProvider     user lookup / creation / deletion       (auth_provider.py)

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol, Type

from schemas import (
    Encounter,
    EpisodeOfCare,
    FhirStore,
    ResourceT,
    RelayConnection,
    RelayPayload,
)


class HealthcareAdmin(Protocol):
    async def get_dataset(self) -> Dict[str, Any]: ...

    async def create_dataset(self) -> Dict[str, Any]: ...

    async def get_fhir_store(self) -> Dict[str, Any]: ...

    async def create_fhir_store(self, store: Optional[FhirStore] = None) -> Dict[str, Any]: ...


class FHIRGateway(Protocol):
    async def create_resource(self, resource_type: str, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    async def get_resource(self, resource_type: str, resource_id: str) -> Dict[str, Any]: ...

    async def update_resource(
        self, resource_type: str, resource_id: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def delete_resource(self, resource_type: str, resource_id: str) -> Dict[str, Any]: ...

    async def search(self, resource_type: str, params: Mapping[str, str]) -> Dict[str, Any]: ...

    async def patient_everything(self, patient_id: str) -> Dict[str, Any]: ...


class ClinicalStore(Protocol):
    """Typed CRUD + search over FHIR resources, plus episode helpers."""

    async def create(self, model: Type[ResourceT], resource: ResourceT) -> RelayPayload[ResourceT]: ...

    async def get(self, model: Type[ResourceT], resource_id: str) -> RelayPayload[ResourceT]: ...

    async def update(self, model: Type[ResourceT], resource: ResourceT) -> RelayPayload[ResourceT]: ...

    async def delete(self, model: Type[ResourceT], resource_id: str) -> bool: ...

    async def delete_resource(self, resource_type: str, resource_id: str) -> bool: ...

    async def search(
        self, model: Type[ResourceT], params: Optional[Mapping[str, Any]]
    ) -> RelayConnection[ResourceT]: ...

    async def encounters(
        self, patient_reference: str, status: Optional[str] = None
    ) -> List[Encounter]: ...

    async def get_active_episode(self, episode_id: str) -> EpisodeOfCare: ...

    async def episode_encounters(
        self, episode_id: str, status: Optional[str] = None
    ) -> List[Encounter]: ...

    async def patient_everything(self, patient_id: str) -> List[Dict[str, Any]]: ...


class DocumentStore(Protocol):
    def create(self, collection: str, data: Dict[str, Any]) -> str: ...

    def get(self, collection: str, document_id: str) -> Dict[str, Any]: ...

    def get_all(
        self,
        collection: str,
        field: Optional[str] = None,
        operator: Optional[str] = None,
        value: Any = ...,
    ) -> List[Dict[str, Any]]: ...

    def update(self, collection: str, document_id: str, data: Dict[str, Any]) -> None: ...

    def delete(self, collection: str, document_id: str) -> None: ...


class AuthProvider(Protocol):
    async def get_user_by_phone(self, phone: str) -> Dict[str, Any]: ...

    async def create_user(self, phone: str, display_name: Optional[str] = None) -> Dict[str, Any]: ...

    async def delete_user(self, uid: str) -> None: ...
