"""
schemas.py
----------
HealthCloud Clinical Backend: Pydantic Data Contracts
-----------------------------------------------------
Pydantic v2 models shared by the FHIR repository, the use-case layer and the
provisioner.

Serialisation policy
--------------------
FHIR resources travel as JSON with FHIR's own camelCase field names. The
models here keep those names as attributes and allow unknown fields
(``extra="allow"``) so that a resource read from the store, mutated, and
written back with a full-replace update never silently loses data this
module does not model.

Use ``to_fhir()`` to obtain the wire representation: it drops ``None``
values and applies aliases (``class_`` -> ``class``).

Public API
----------
    CodeableConcept, Coding, Reference, Identifier, Period, Meta, HumanName
                                FHIR datatypes.
    FHIRResource                Base class for every FHIR resource.
    Patient, Organization, EpisodeOfCare, Encounter, Condition,
    AllergyIntolerance, MedicationRequest, MedicationStatement, Observation,
    ServiceRequest, Composition
                                Resource models keyed by ``resource_type``.
    RelayConnection, RelayEdge, RelayPayload, PageInfo
                                Paginated / single-item result envelopes.
    EpisodeOfCarePayload        Episode plus the patient's visit count.
    Dataset, FhirStore, ProvisioningReport
                                Cloud Healthcare admin resources.
    AccessLevel, EpisodeOfCareStatus, EncounterStatus
                                Enumerations.

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class AccessLevel(str, Enum):
    """Access level encoded in ``EpisodeOfCare.type[0].text``."""

    FULL = "FULL_ACCESS"
    RESTRICTED = "PROFILE_AND_RECENT_VISITS_ACCESS"


class EpisodeOfCareStatus(str, Enum):
    PLANNED = "planned"
    WAITLIST = "waitlist"
    ACTIVE = "active"
    ONHOLD = "onhold"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    ENTERED_IN_ERROR = "entered-in-error"

    @property
    def is_final(self) -> bool:
        return self in (
            EpisodeOfCareStatus.FINISHED,
            EpisodeOfCareStatus.CANCELLED,
            EpisodeOfCareStatus.ENTERED_IN_ERROR,
        )


class EncounterStatus(str, Enum):
    PLANNED = "planned"
    ARRIVED = "arrived"
    TRIAGED = "triaged"
    IN_PROGRESS = "in-progress"
    ONLEAVE = "onleave"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    ENTERED_IN_ERROR = "entered-in-error"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# FHIR datatypes
# ---------------------------------------------------------------------------

class FHIRElement(BaseModel):
    """Base for FHIR datatypes: passthrough of unknown fields, enums as values."""

    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_fhir(self) -> Dict[str, Any]:
        """Return the JSON-ready wire representation."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Coding(FHIRElement):
    system: Optional[str] = None
    version: Optional[str] = None
    code: Optional[str] = None
    display: Optional[str] = None
    userSelected: Optional[bool] = None


class CodeableConcept(FHIRElement):
    coding: Optional[List[Coding]] = None
    text: Optional[str] = None


class Identifier(FHIRElement):
    use: Optional[str] = None
    type: Optional[CodeableConcept] = None
    system: Optional[str] = None
    value: Optional[str] = None


class Reference(FHIRElement):
    id: Optional[str] = None
    reference: Optional[str] = None
    type: Optional[str] = None
    identifier: Optional[Identifier] = None
    display: Optional[str] = None


class Period(FHIRElement):
    start: Optional[str] = None
    end: Optional[str] = None


class Meta(FHIRElement):
    versionId: Optional[str] = None
    lastUpdated: Optional[str] = None
    tag: Optional[List[Coding]] = None


class HumanName(FHIRElement):
    use: Optional[str] = None
    text: Optional[str] = None
    family: Optional[str] = None
    given: Optional[List[str]] = None


class ContactPoint(FHIRElement):
    system: Optional[str] = None
    value: Optional[str] = None
    use: Optional[str] = None


# ---------------------------------------------------------------------------
# FHIR resources
# ---------------------------------------------------------------------------

class FHIRResource(FHIRElement):
    """
    Base class for FHIR resources.

    Subclasses set ``resource_type``; ``resourceType`` on the instance is
    filled from it when the caller does not provide one.
    """

    resource_type: ClassVar[str] = ""

    resourceType: Optional[str] = None
    id: Optional[str] = None
    meta: Optional[Meta] = None

    def model_post_init(self, __context: Any) -> None:
        if self.resource_type and not self.resourceType:
            self.resourceType = self.resource_type


class Patient(FHIRResource):
    resource_type: ClassVar[str] = "Patient"

    active: Optional[bool] = None
    identifier: Optional[List[Identifier]] = None
    name: Optional[List[HumanName]] = None
    telecom: Optional[List[ContactPoint]] = None
    gender: Optional[str] = None
    birthDate: Optional[str] = None


class Organization(FHIRResource):
    resource_type: ClassVar[str] = "Organization"

    active: Optional[bool] = None
    identifier: Optional[List[Identifier]] = None
    name: Optional[str] = None


class EpisodeOfCare(FHIRResource):
    resource_type: ClassVar[str] = "EpisodeOfCare"

    status: Optional[EpisodeOfCareStatus] = None
    type: Optional[List[Optional[CodeableConcept]]] = None
    patient: Optional[Reference] = None
    managingOrganization: Optional[Reference] = None
    period: Optional[Period] = None


class Encounter(FHIRResource):
    resource_type: ClassVar[str] = "Encounter"

    status: Optional[EncounterStatus] = None
    class_: Optional[Coding] = Field(default=None, alias="class")
    subject: Optional[Reference] = None
    episodeOfCare: Optional[List[Reference]] = None
    serviceProvider: Optional[Reference] = None
    period: Optional[Period] = None


class Condition(FHIRResource):
    resource_type: ClassVar[str] = "Condition"

    clinicalStatus: Optional[CodeableConcept] = None
    verificationStatus: Optional[CodeableConcept] = None
    code: Optional[CodeableConcept] = None
    subject: Optional[Reference] = None
    encounter: Optional[Reference] = None
    recordedDate: Optional[str] = None


class AllergyIntolerance(FHIRResource):
    resource_type: ClassVar[str] = "AllergyIntolerance"

    clinicalStatus: Optional[CodeableConcept] = None
    verificationStatus: Optional[CodeableConcept] = None
    code: Optional[CodeableConcept] = None
    patient: Optional[Reference] = None
    encounter: Optional[Reference] = None
    criticality: Optional[str] = None


class MedicationRequest(FHIRResource):
    resource_type: ClassVar[str] = "MedicationRequest"

    status: Optional[str] = None
    intent: Optional[str] = None
    medicationCodeableConcept: Optional[CodeableConcept] = None
    subject: Optional[Reference] = None
    encounter: Optional[Reference] = None
    authoredOn: Optional[str] = None


class MedicationStatement(FHIRResource):
    resource_type: ClassVar[str] = "MedicationStatement"

    status: Optional[str] = None
    medicationCodeableConcept: Optional[CodeableConcept] = None
    subject: Optional[Reference] = None
    effectiveDateTime: Optional[str] = None


class Observation(FHIRResource):
    resource_type: ClassVar[str] = "Observation"

    status: Optional[str] = None
    code: Optional[CodeableConcept] = None
    subject: Optional[Reference] = None
    encounter: Optional[Reference] = None
    effectiveDateTime: Optional[str] = None


class ServiceRequest(FHIRResource):
    resource_type: ClassVar[str] = "ServiceRequest"

    status: Optional[str] = None
    intent: Optional[str] = None
    code: Optional[CodeableConcept] = None
    subject: Optional[Reference] = None
    encounter: Optional[Reference] = None


class Composition(FHIRResource):
    resource_type: ClassVar[str] = "Composition"

    status: Optional[str] = None
    type: Optional[CodeableConcept] = None
    subject: Optional[Reference] = None
    encounter: Optional[Reference] = None
    date: Optional[str] = None
    title: Optional[str] = None


# ---------------------------------------------------------------------------
# Relay envelopes
# ---------------------------------------------------------------------------

ResourceT = TypeVar("ResourceT", bound=FHIRResource)


class PageInfo(BaseModel):
    has_next_page: bool = False
    has_previous_page: bool = False
    start_cursor: Optional[str] = None
    end_cursor: Optional[str] = None


class RelayEdge(BaseModel, Generic[ResourceT]):
    cursor: Optional[str] = None
    node: ResourceT


class RelayConnection(BaseModel, Generic[ResourceT]):
    """Paginated search result: one edge per matched resource."""

    edges: List[RelayEdge[ResourceT]] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo)
    total: Optional[int] = None

    @property
    def nodes(self) -> List[ResourceT]:
        return [edge.node for edge in self.edges]


class RelayPayload(BaseModel, Generic[ResourceT]):
    """Single-item result wrapper."""

    resource: ResourceT


class EpisodeOfCarePayload(BaseModel):
    """An episode of care together with the patient's total visit count."""

    episode_of_care: EpisodeOfCare
    total_visits: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Cloud Healthcare admin resources
# ---------------------------------------------------------------------------

class Dataset(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    timeZone: Optional[str] = None


class FhirStore(BaseModel):
    """FHIR store resource; defaults are the flags used when creating one."""

    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    version: str = "R4"
    disableReferentialIntegrity: bool = False
    disableResourceVersioning: bool = False
    enableUpdateCreate: bool = True


class ProvisioningReport(BaseModel):
    """Outcome of startup provisioning; ``None`` marks a step that failed."""

    dataset: Optional[str] = None
    fhir_store: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.dataset is not None and self.fhir_store is not None
