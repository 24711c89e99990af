"""
fhir_repository.py
------------------
HealthCloud Clinical Backend: FHIR Clinical Repository
------------------------------------------------------
Typed persistence over the raw FHIR gateway (``CloudHealthcareClient``).
Implements the ``ClinicalStore`` capability consumed by the use-case layer.

Every search response is a FHIR ``Bundle`` and is validated before use:

  - the keys ``resourceType``, ``type``, ``total`` and ``link`` are present
  - ``resourceType`` is ``"Bundle"`` and ``type`` is ``"searchset"``
  - each entry carries ``fullUrl``, ``resource`` and ``search``

A Bundle that fails validation raises ``RemoteFailureError``; the store
returned something this backend cannot interpret.

Search results are returned as ``RelayConnection`` objects: one edge per
entry, ``cursor`` = resource id, ``page_info`` derived from the Bundle's
``next`` / ``previous`` links.

Public API:
    validate_search_params()  Check a search mapping and coerce it to str->str.
    validate_bundle()         Check a search Bundle and return its entries.
    FHIRRepository            ClinicalStore implementation.

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Type

from pydantic import ValidationError

from errors import ClinicalError, InconsistentStateError, InvalidInputError, NotFoundError, RemoteFailureError
from repository import FHIRGateway
from schemas import (
    Encounter,
    EpisodeOfCare,
    EpisodeOfCareStatus,
    PageInfo,
    RelayConnection,
    RelayEdge,
    RelayPayload,
    ResourceT,
)

logger = logging.getLogger(__name__)

_BUNDLE_MANDATORY_KEYS = ("resourceType", "type", "total", "link")
_ENTRY_MANDATORY_KEYS = ("fullUrl", "resource", "search")


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def validate_search_params(params: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """
    Validate search parameters before they reach the remote store.

    Args:
        params: Mapping of FHIR search parameter name to value.

    Returns:
        A plain ``dict`` copy of *params*.

    Raises:
        InvalidInputError: if *params* is ``None``, is not a mapping, or
                           holds a non-string value.
    """
    if params is None:
        raise InvalidInputError("can't search with nil params")
    if not isinstance(params, Mapping):
        raise InvalidInputError(f"search params must be a mapping, got {type(params).__name__}")

    checked: Dict[str, str] = {}
    for key, value in params.items():
        if not isinstance(value, str):
            raise InvalidInputError(
                f"the search/filter params should all be sent as strings; "
                f"{key!r} is {type(value).__name__}"
            )
        checked[str(key)] = value
    return checked


def validate_bundle(bundle: Any, resource_type: str) -> List[Dict[str, Any]]:
    """
    Validate a search Bundle and return its entries (possibly empty).

    Raises:
        RemoteFailureError: if the Bundle is malformed.
    """
    if not isinstance(bundle, dict):
        raise RemoteFailureError(f"search {resource_type}: response is not a JSON object")

    for key in _BUNDLE_MANDATORY_KEYS:
        if key not in bundle:
            raise RemoteFailureError(f"search {resource_type}: response does not have key '{key}'")

    if bundle["resourceType"] != "Bundle":
        raise RemoteFailureError(
            f"search {resource_type}: the resourceType value is not 'Bundle' as expected"
        )
    if bundle["type"] != "searchset":
        raise RemoteFailureError(
            f"search {resource_type}: the type value is not 'searchset' as expected"
        )

    entries = bundle.get("entry") or []
    if not isinstance(entries, list):
        raise RemoteFailureError(f"search {resource_type}: entries is not a list")
    for entry in entries:
        if not isinstance(entry, dict):
            raise RemoteFailureError(f"search {resource_type}: entry is not an object")
        for key in _ENTRY_MANDATORY_KEYS:
            if key not in entry:
                raise RemoteFailureError(f"search {resource_type}: entry does not have key '{key}'")
    return entries


def _page_info(bundle: Dict[str, Any], ids: List[Optional[str]]) -> PageInfo:
    relations = {
        link.get("relation")
        for link in bundle.get("link") or []
        if isinstance(link, dict)
    }
    return PageInfo(
        has_next_page="next" in relations,
        has_previous_page=bool(relations & {"previous", "prev"}),
        start_cursor=ids[0] if ids else None,
        end_cursor=ids[-1] if ids else None,
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class FHIRRepository:
    """
    ``ClinicalStore`` implementation backed by a ``FHIRGateway``.

    Args:
        gateway: Raw FHIR REST client (normally ``CloudHealthcareClient``).
    """

    def __init__(self, gateway: FHIRGateway) -> None:
        self.gateway = gateway

    @staticmethod
    def _parse(model: Type[ResourceT], data: Any, operation: str) -> ResourceT:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise RemoteFailureError(
                f"{operation}: unable to parse {model.resource_type} response: {exc}"
            ) from exc

    # ── CRUD ─────────────────────────────────────────────────────────────────

    async def create(self, model: Type[ResourceT], resource: ResourceT) -> RelayPayload[ResourceT]:
        data = await self.gateway.create_resource(model.resource_type, resource.to_fhir())
        created = self._parse(model, data, f"create {model.resource_type}")
        logger.info("Created %s/%s.", model.resource_type, created.id)
        return RelayPayload[model](resource=created)

    async def get(self, model: Type[ResourceT], resource_id: str) -> RelayPayload[ResourceT]:
        data = await self.gateway.get_resource(model.resource_type, resource_id)
        return RelayPayload[model](
            resource=self._parse(model, data, f"read {model.resource_type}/{resource_id}")
        )

    async def update(self, model: Type[ResourceT], resource: ResourceT) -> RelayPayload[ResourceT]:
        """Full-replace update; *resource* must carry its id."""
        if not resource.id:
            raise InvalidInputError(f"can't update {model.resource_type} without an id")
        data = await self.gateway.update_resource(model.resource_type, resource.id, resource.to_fhir())
        return RelayPayload[model](
            resource=self._parse(model, data, f"update {model.resource_type}/{resource.id}")
        )

    async def delete(self, model: Type[ResourceT], resource_id: str) -> bool:
        """Delete a resource. Returns ``True``; any failure raises."""
        return await self.delete_resource(model.resource_type, resource_id)

    async def delete_resource(self, resource_type: str, resource_id: str) -> bool:
        await self.gateway.delete_resource(resource_type, resource_id)
        logger.info("Deleted %s/%s.", resource_type, resource_id)
        return True

    # ── Search ───────────────────────────────────────────────────────────────

    async def search(
        self, model: Type[ResourceT], params: Optional[Mapping[str, Any]]
    ) -> RelayConnection[ResourceT]:
        checked = validate_search_params(params)
        bundle = await self.gateway.search(model.resource_type, checked)
        entries = validate_bundle(bundle, model.resource_type)

        edges = []
        for entry in entries:
            node = self._parse(model, entry["resource"], f"search {model.resource_type}")
            edges.append(RelayEdge[model](cursor=node.id, node=node))

        total = bundle.get("total")
        return RelayConnection[model](
            edges=edges,
            page_info=_page_info(bundle, [edge.cursor for edge in edges]),
            total=total if isinstance(total, int) else None,
        )

    # ── Episode helpers ──────────────────────────────────────────────────────

    async def encounters(
        self, patient_reference: str, status: Optional[str] = None
    ) -> List[Encounter]:
        """Return the encounters of a patient (``"Patient/<id>"``), optionally by status."""
        params: Dict[str, str] = {}
        if status:
            params["status:exact"] = status
        params["patient"] = patient_reference
        try:
            conn = await self.search(Encounter, params)
        except ClinicalError as exc:
            raise exc.wrap("unable to search for encounter")
        return conn.nodes

    async def get_active_episode(self, episode_id: str) -> EpisodeOfCare:
        """
        Return the ACTIVE episode with logical id *episode_id*.

        Raises:
            NotFoundError:          if no active episode has that id.
            InconsistentStateError: if more than one matches.
        """
        params = {
            "status:exact": EpisodeOfCareStatus.ACTIVE.value,
            "_id": episode_id,
        }
        try:
            conn = await self.search(EpisodeOfCare, params)
        except ClinicalError as exc:
            raise exc.wrap("unable to search for episode of care")

        if not conn.edges:
            raise NotFoundError(f"no ACTIVE episode with ID: {episode_id}")
        if len(conn.edges) != 1:
            raise InconsistentStateError(
                f"expected exactly one ACTIVE episode for episode ID {episode_id}, got {len(conn.edges)}"
            )
        return conn.edges[0].node

    async def episode_encounters(
        self, episode_id: str, status: Optional[str] = None
    ) -> List[Encounter]:
        """Return the encounters that reference ``EpisodeOfCare/<episode_id>``."""
        params: Dict[str, str] = {"episode-of-care": f"EpisodeOfCare/{episode_id}"}
        if status:
            params["status"] = status
        try:
            conn = await self.search(Encounter, params)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to search encounters of episode {episode_id}")
        return conn.nodes

    async def patient_everything(self, patient_id: str) -> List[Dict[str, Any]]:
        """
        Return the raw resources in a patient's compartment
        (``Patient/<id>/$everything``), the Patient itself included.

        Raises:
            RemoteFailureError: if an entry is not an object carrying a
                                resource with ``resourceType`` and ``id``.
        """
        operation = f"everything Patient/{patient_id}"
        bundle = await self.gateway.patient_everything(patient_id)
        if not isinstance(bundle, dict):
            raise RemoteFailureError(f"{operation}: response is not a JSON object")
        entries = bundle.get("entry") or []
        if not isinstance(entries, list):
            raise RemoteFailureError(f"{operation}: entries is not a list")

        resources = []
        for entry in entries:
            resource = entry.get("resource") if isinstance(entry, dict) else None
            if not isinstance(resource, dict):
                raise RemoteFailureError(f"{operation}: entry does not hold a resource object")
            if not isinstance(resource.get("resourceType"), str) or not isinstance(resource.get("id"), str):
                raise RemoteFailureError(f"{operation}: resource without resourceType or id")
            resources.append(resource)
        return resources
