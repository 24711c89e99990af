"""
provisioner.py
--------------
HealthCloud Clinical Backend: Dataset / FHIR Store Provisioner
--------------------------------------------------------------
Makes sure the configured Cloud Healthcare dataset, and the FHIR store nested
under it, exist before the service starts taking requests.

Both steps follow the same get-or-create pattern:

    GET   -> found                  : done
          -> NotFoundError          : CREATE
                -> created          : done
                -> AlreadyExistsError (another instance won the race) : done
                -> any other error  : log, give up on this step
          -> any other error        : log, give up on this step

Failures are logged and swallowed: the process continues in a possibly
unprovisioned state and later FHIR calls surface the problem. Passing
``strict=True`` (``CLOUD_HEALTH_PROVISION_STRICT=true``) re-raises instead.

Usage::

    provisioner = StoreProvisioner(client, settings)
    report = await provisioner.provision()
    if not report.ok:
        ...

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

import logging
from typing import Optional

from config import Settings
from errors import AlreadyExistsError, ClinicalError, NotFoundError
from repository import HealthcareAdmin
from schemas import FhirStore, ProvisioningReport

logger = logging.getLogger(__name__)


class StoreProvisioner:
    """
    Idempotent get-or-create for the dataset and FHIR store.

    Args:
        admin:    Anything implementing ``HealthcareAdmin`` (normally the
                  ``CloudHealthcareClient``).
        settings: Supplies the dataset / store identity used in results and
                  log lines.
        strict:   Re-raise provisioning failures instead of logging them.
    """

    def __init__(self, admin: HealthcareAdmin, settings: Settings, *, strict: bool = False) -> None:
        self.admin = admin
        self.settings = settings
        self.strict = strict

    def _give_up(self, what: str, exc: ClinicalError) -> None:
        if self.strict:
            raise exc
        logger.error(
            "Unable to get or create %s with projectID %s, location %s, datasetID %s, "
            "fhirStoreID %s; got error %s",
            what,
            self.settings.project_id,
            self.settings.location,
            self.settings.dataset_id,
            self.settings.fhir_store_id,
            exc,
        )

    async def ensure_dataset(self) -> Optional[str]:
        """
        Make sure the dataset exists.

        Returns:
            The dataset resource name, or ``None`` when it could neither be
            found nor created (non-strict mode only).
        """
        name = self.settings.dataset_name
        try:
            await self.admin.get_dataset()
            logger.debug("Dataset %s already exists.", name)
            return name
        except NotFoundError:
            logger.info("Dataset %s not found, creating it.", name)
        except ClinicalError as exc:
            self._give_up("dataset", exc)
            return None

        try:
            await self.admin.create_dataset()
            logger.info("Dataset %s created.", name)
        except AlreadyExistsError:
            logger.info("Dataset %s was created concurrently, treating as success.", name)
        except ClinicalError as exc:
            self._give_up("dataset", exc)
            return None
        return name

    async def ensure_store(self) -> Optional[str]:
        """
        Make sure the FHIR store exists under the dataset.

        Returns:
            The FHIR store resource name, or ``None`` on failure (non-strict).
        """
        name = self.settings.fhir_store_name
        try:
            await self.admin.get_fhir_store()
            logger.debug("FHIR store %s already exists.", name)
            return name
        except NotFoundError:
            logger.info("FHIR store %s not found, creating it.", name)
        except ClinicalError as exc:
            self._give_up("FHIR store", exc)
            return None

        try:
            await self.admin.create_fhir_store(FhirStore())
            logger.info("FHIR store %s created.", name)
        except AlreadyExistsError:
            logger.info("FHIR store %s was created concurrently, treating as success.", name)
        except ClinicalError as exc:
            self._give_up("FHIR store", exc)
            return None
        return name

    async def provision(self) -> ProvisioningReport:
        """Run ``ensure_dataset`` then ``ensure_store`` and report the outcome."""
        dataset = await self.ensure_dataset()
        store = await self.ensure_store()
        report = ProvisioningReport(dataset=dataset, fhir_store=store)
        if report.ok:
            logger.info("Provisioning complete (dataset=%s, store=%s).", dataset, store)
        else:
            logger.warning("Provisioning incomplete; continuing without a verified FHIR store.")
        return report
