"""
patient.py
----------
HealthCloud Clinical Backend: Patient Record Use Cases
------------------------------------------------------
Removal of a patient's whole FHIR compartment. Resources are deleted in
dependency order so that nothing is deleted while another resource still
refers to it:

    1. everything else (observations, conditions, requests, ...)
    2. Encounters
    3. EpisodesOfCare
    4. the Patient

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

import logging
from typing import Dict, List, Tuple

from errors import ClinicalError, InvalidInputError
from repository import ClinicalStore

logger = logging.getLogger(__name__)

_DELETION_ORDER = ("Encounter", "EpisodeOfCare", "Patient")


def _deletion_batches(resources: List[Dict]) -> List[List[Tuple[str, str]]]:
    batches: Dict[str, List[Tuple[str, str]]] = {name: [] for name in ("*",) + _DELETION_ORDER}
    for resource in resources:
        key = (resource["resourceType"], resource["id"])
        batches[key[0] if key[0] in _DELETION_ORDER else "*"].append(key)
    return [batches["*"]] + [batches[name] for name in _DELETION_ORDER]


class PatientUseCases:
    def __init__(self, store: ClinicalStore) -> None:
        self.store = store

    async def delete_patient(self, patient_id: str) -> bool:
        """
        Delete the patient and every resource in their compartment.

        Returns:
            ``True`` once everything is deleted, ``False`` when the compartment
            is empty.

        Raises:
            InvalidInputError: *patient_id* is empty.
            ClinicalError:     the compartment lookup or a deletion failed;
                               deletion stops at the first failure.
        """
        if not isinstance(patient_id, str) or not patient_id.strip():
            raise InvalidInputError("a patient ID is required")
        try:
            resources = await self.store.patient_everything(patient_id)
        except ClinicalError as exc:
            raise exc.wrap("unable to get patient's compartment")
        if not resources:
            return False

        for batch in _deletion_batches(resources):
            for resource_type, resource_id in batch:
                try:
                    await self.store.delete_resource(resource_type, resource_id)
                except ClinicalError as exc:
                    raise exc.wrap(f"unable to delete {resource_type}/{resource_id}")
        logger.info("Deleted %d resources in the compartment of Patient/%s.", len(resources), patient_id)
        return True
