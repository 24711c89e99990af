"""
episode_of_care.py
------------------
HealthCloud Clinical Backend: Episode-of-Care Lifecycle
-------------------------------------------------------
An EpisodeOfCare represents a provider's access grant to a patient's record.
Its access level is carried in ``type[0].text``:

    FULL_ACCESS                        full record
    PROFILE_AND_RECENT_VISITS_ACCESS   restricted (any non-full value)

Lifecycle::

    start_episode_by_otp / create_episode_of_care   -> active (restricted or full)
    start_episode_by_break_glass                    -> active, audited emergency access
    upgrade_episode                                 -> active (full)
    start_encounter / end_encounter                 -> visits within the episode
    end_episode                                     -> finished

Every returned episode comes with the patient's total visit count (the
number of Encounters whose subject is the episode's patient).

Period ends written here are "now + 24h": the Cloud Healthcare API rejects
an end time that falls less than a day after the start.

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from document_store import suffix_collection
from errors import ClinicalError, InconsistentStateError, InvalidInputError
from repository import ClinicalStore, DocumentStore
from schemas import (
    AccessLevel,
    CodeableConcept,
    Coding,
    Encounter,
    EncounterStatus,
    EpisodeOfCare,
    EpisodeOfCarePayload,
    EpisodeOfCareStatus,
    Identifier,
    Period,
    Reference,
)
from usecases.msisdn import normalize_msisdn
from usecases.organization import OrganizationUseCases

logger = logging.getLogger(__name__)

# ~100 years; the open-ended period of a newly started episode.
EPISODE_LIFETIME = timedelta(hours=878400)
END_OFFSET = timedelta(hours=24)

BREAK_GLASS_COLLECTION = "break_glass"

AMBULATORY_CLASS = Coding(
    system="http://terminology.hl7.org/CodeSystem/v3-ActCode",
    version="2018-08-12",
    code="AMB",
    display="ambulatory",
    userSelected=False,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fhir_datetime(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


def compose_episode_of_care(
    phone: str,
    full_access: bool,
    organization_id: str,
    provider_code: str,
    patient_id: str,
    *,
    now: Optional[datetime] = None,
) -> EpisodeOfCare:
    """Build (but do not persist) a new active episode for *patient_id* at *organization_id*."""
    start = now or _utcnow()
    level = AccessLevel.FULL if full_access else AccessLevel.RESTRICTED
    return EpisodeOfCare(
        status=EpisodeOfCareStatus.ACTIVE,
        period=Period(
            start=_fhir_datetime(start),
            end=_fhir_datetime(start + EPISODE_LIFETIME),
        ),
        managingOrganization=Reference(
            reference=f"Organization/{organization_id}",
            display=provider_code,
            type="Organization",
            identifier=Identifier(use="official", value=provider_code),
        ),
        patient=Reference(
            reference=f"Patient/{patient_id}",
            display=phone,
            type="Patient",
        ),
        type=[CodeableConcept(text=level.value)],
    )


def _require(value: Optional[str], name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{name} is required")
    return value


def _patient_reference(episode: EpisodeOfCare) -> str:
    if episode.patient is None or not episode.patient.reference:
        raise InconsistentStateError(f"episode {episode.id} has no patient reference")
    return episode.patient.reference


class EpisodeOfCareUseCases:
    """
    Episode-of-care lifecycle operations.

    Args:
        store:         ClinicalStore implementation.
        organizations: Resolves provider codes when an episode is started.
        documents:     DocumentStore for the break-glass audit trail.
        clock:         Returns the current time; tests pass a fixed clock.
        environment:   Suffix applied to collection names.
    """

    def __init__(
        self,
        store: ClinicalStore,
        organizations: Optional[OrganizationUseCases] = None,
        documents: Optional[DocumentStore] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        environment: str = "",
    ) -> None:
        self.store = store
        self.organizations = organizations or OrganizationUseCases(store)
        self.documents = documents
        self.clock = clock
        self.environment = environment

    @property
    def break_glass_collection(self) -> str:
        return suffix_collection(BREAK_GLASS_COLLECTION, self.environment)

    def _require_documents(self) -> DocumentStore:
        if self.documents is None:
            raise RuntimeError("no document store configured for break-glass records")
        return self.documents

    async def _visit_count(self, patient_reference: str) -> int:
        encounters = await self.store.encounters(patient_reference)
        return len(encounters)

    # ── Upgrade ──────────────────────────────────────────────────────────────

    async def upgrade_episode(self, episode_id: str) -> EpisodeOfCarePayload:
        """
        Raise an active episode's access level to full.

        An episode already at full access is returned unchanged and no update
        is sent.

        Raises:
            InvalidInputError:      *episode_id* is empty.
            NotFoundError:          no ACTIVE episode has this id.
            InconsistentStateError: the episode's type list does not hold
                                    exactly one entry.
            RemoteFailureError:     the store failed.
        """
        _require(episode_id, "episode ID")
        try:
            episode = await self.store.get_active_episode(episode_id)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to get active episode with ID {episode_id}")

        types = episode.type
        if types is None:
            raise InconsistentStateError("the episode type is nil")
        if len(types) != 1:
            raise InconsistentStateError(
                f"expected the episode type to have just one entry, got {len(types)}"
            )
        if types[0] is None:
            raise InconsistentStateError("found a nil episode type")

        try:
            total_visits = await self._visit_count(_patient_reference(episode))
        except ClinicalError as exc:
            raise exc.wrap(f"unable to get encounters for episode {episode_id}")

        if types[0].text == AccessLevel.FULL.value:
            logger.debug("Episode %s already has full access.", episode_id)
            return EpisodeOfCarePayload(episode_of_care=episode, total_visits=total_visits)

        episode.type = [CodeableConcept(text=AccessLevel.FULL.value)]
        try:
            payload = await self.store.update(EpisodeOfCare, episode)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to update episode {episode_id}")
        logger.info("Upgraded episode %s to full access.", episode_id)
        return EpisodeOfCarePayload(episode_of_care=payload.resource, total_visits=total_visits)

    # ── Start ────────────────────────────────────────────────────────────────

    async def create_episode_of_care(self, episode: EpisodeOfCare) -> EpisodeOfCarePayload:
        """
        Create *episode*, unless the patient already has an active episode at
        the same managing organization; that episode is returned instead.
        """
        if episode is None:
            raise InvalidInputError("episode of care input is required")
        patient_ref = _require(episode.patient.reference if episode.patient else None, "patient reference")
        org_ref = _require(
            episode.managingOrganization.reference if episode.managingOrganization else None,
            "managing organization reference",
        )

        params = {
            "patient": patient_ref,
            "status": EpisodeOfCareStatus.ACTIVE.value,
            "organization": org_ref,
            "_sort": "date",
            "_count": "1",
        }
        try:
            existing = await self.store.search(EpisodeOfCare, params)
        except ClinicalError as exc:
            raise exc.wrap("unable to get patients episodes of care")

        if existing.edges:
            ongoing = existing.edges[0].node
            logger.info("Patient %s already has active episode %s.", patient_ref, ongoing.id)
            return EpisodeOfCarePayload(
                episode_of_care=ongoing,
                total_visits=await self._visit_count(patient_ref),
            )

        try:
            created = await self.store.create(EpisodeOfCare, episode)
        except ClinicalError as exc:
            raise exc.wrap("unable to create episode of care resource")
        return EpisodeOfCarePayload(
            episode_of_care=created.resource,
            total_visits=await self._visit_count(patient_ref),
        )

    async def start_episode_by_otp(
        self,
        patient_id: str,
        provider_code: str,
        msisdn: str,
        full_access: bool = False,
    ) -> EpisodeOfCarePayload:
        """
        Open an episode after the patient confirmed access with an OTP.

        OTP verification itself is done upstream; this resolves the provider's
        organization and creates (or reuses) the active episode.
        """
        _require(patient_id, "patient ID")
        phone = normalize_msisdn(msisdn)
        code = str(provider_code).strip() if provider_code is not None else ""
        _require(code, "provider code")

        organization_id = await self.organizations.get_or_create_organization(code)
        episode = compose_episode_of_care(
            phone, full_access, organization_id, code, patient_id, now=self.clock()
        )
        return await self.create_episode_of_care(episode)

    async def start_episode_by_break_glass(
        self,
        patient_id: str,
        provider_code: str,
        practitioner_uid: str,
        provider_phone: str,
        patient_phone: str,
        full_access: bool = False,
    ) -> EpisodeOfCarePayload:
        """
        Open an emergency episode without the patient's consent.

        The request is recorded in the ``break_glass`` collection before the
        episode is created. OTP verification of the provider's phone and the
        alerts to the patient and next of kin are done upstream.

        Raises:
            InvalidInputError: an id or code is empty, or a phone number is invalid.
            RuntimeError:      no document store is configured.
            ClinicalError:     the audit write or an episode call failed.
        """
        _require(patient_id, "patient ID")
        _require(practitioner_uid, "practitioner UID")
        code = str(provider_code).strip() if provider_code is not None else ""
        _require(code, "provider code")
        provider_msisdn = normalize_msisdn(provider_phone)
        try:
            patient_msisdn = normalize_msisdn(patient_phone)
        except InvalidInputError as exc:
            raise exc.wrap("invalid patient phone number")
        documents = self._require_documents()

        record = {
            "patientID": patient_id,
            "providerCode": code,
            "practitionerUID": practitioner_uid,
            "msisdn": provider_msisdn,
            "patientPhone": patient_msisdn,
            "fullAccess": bool(full_access),
            "requestedAt": _fhir_datetime(self.clock()),
        }
        try:
            documents.create(self.break_glass_collection, record)
        except ClinicalError as exc:
            raise exc.wrap("unable to log break glass operation")
        logger.warning(
            "Break glass: practitioner %s opening Patient/%s for provider %s.",
            practitioner_uid, patient_id, code,
        )

        organization_id = await self.organizations.get_or_create_organization(code)
        episode = compose_episode_of_care(
            patient_msisdn, full_access, organization_id, code, patient_id, now=self.clock()
        )
        return await self.create_episode_of_care(episode)

    # ── Encounters ───────────────────────────────────────────────────────────

    async def start_encounter(self, episode_id: str) -> str:
        """Start an in-progress ambulatory encounter in an active episode; returns its id."""
        _require(episode_id, "episode ID")
        try:
            episode = (await self.store.get(EpisodeOfCare, episode_id)).resource
        except ClinicalError as exc:
            raise exc.wrap(f"unable to get episode with ID {episode_id}")

        if episode.status != EpisodeOfCareStatus.ACTIVE.value:
            raise InconsistentStateError("an encounter can only be started for an active episode")

        patient = episode.patient or Reference()
        organization = episode.managingOrganization or Reference()
        encounter = Encounter(
            status=EncounterStatus.IN_PROGRESS,
            class_=AMBULATORY_CLASS.model_copy(),
            subject=Reference(
                reference=patient.reference,
                display=patient.display,
                type=patient.type,
            ),
            episodeOfCare=[Reference(reference=f"EpisodeOfCare/{episode.id}")],
            serviceProvider=Reference(
                display=organization.display,
                type=organization.type,
            ),
            period=Period(start=_fhir_datetime(self.clock())),
        )
        try:
            created = await self.store.create(Encounter, encounter)
        except ClinicalError as exc:
            raise exc.wrap("unable to start encounter")
        logger.info("Started Encounter/%s in episode %s.", created.resource.id, episode_id)
        return created.resource.id

    async def end_encounter(self, encounter_id: str) -> bool:
        _require(encounter_id, "encounter ID")
        try:
            encounter = (await self.store.get(Encounter, encounter_id)).resource
        except ClinicalError as exc:
            raise exc.wrap(f"unable to get encounter with ID {encounter_id}")

        encounter.status = EncounterStatus.FINISHED.value
        period = encounter.period or Period()
        period.end = _fhir_datetime(self.clock() + END_OFFSET)
        encounter.period = period
        try:
            await self.store.update(Encounter, encounter)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to update Encounter/{encounter_id}")
        return True

    async def end_episode(self, episode_id: str) -> bool:
        """
        Finish an episode. Its in-progress encounters are ended first; one
        that fails to end is logged and skipped. An episode already in a final
        status raises ``InconsistentStateError`` and is left untouched.
        """
        _require(episode_id, "episode ID")
        try:
            episode = (await self.store.get(EpisodeOfCare, episode_id)).resource
        except ClinicalError as exc:
            raise exc.wrap(f"unable to get episode with ID {episode_id}")

        if episode.status and EpisodeOfCareStatus(episode.status).is_final:
            raise InconsistentStateError(f"episode {episode_id} is already {episode.status}")

        try:
            open_encounters = await self.store.episode_encounters(
                episode_id, EncounterStatus.IN_PROGRESS.value
            )
        except ClinicalError as exc:
            raise exc.wrap("unable to search episode encounter")

        for encounter in open_encounters:
            try:
                await self.end_encounter(encounter.id)
            except ClinicalError as exc:
                logger.warning("Unable to end encounter %s: %s", encounter.id, exc)

        episode.status = EpisodeOfCareStatus.FINISHED.value
        period = episode.period or Period()
        period.end = _fhir_datetime(self.clock() + END_OFFSET)
        episode.period = period
        try:
            await self.store.update(EpisodeOfCare, episode)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to update EpisodeOfCare/{episode_id}")
        logger.info("Ended episode %s.", episode_id)
        return True

    # ── Queries ──────────────────────────────────────────────────────────────

    async def open_episodes(self, patient_reference: str) -> List[EpisodeOfCare]:
        """Active episodes of a patient (``"Patient/<id>"``)."""
        _require(patient_reference, "patient reference")
        params = {
            "status:exact": EpisodeOfCareStatus.ACTIVE.value,
            "patient": patient_reference,
        }
        try:
            conn = await self.store.search(EpisodeOfCare, params)
        except ClinicalError as exc:
            raise exc.wrap("unable to search for episode of care")
        return conn.nodes

    async def has_open_episode(self, patient_id: str) -> bool:
        _require(patient_id, "patient ID")
        episodes = await self.open_episodes(f"Patient/{patient_id}")
        return len(episodes) > 0

    async def encounters(
        self, patient_reference: str, status: Optional[str] = None
    ) -> List[Encounter]:
        _require(patient_reference, "patient reference")
        try:
            return await self.store.encounters(patient_reference, status)
        except ClinicalError as exc:
            raise exc.wrap("unable to get encounters")
