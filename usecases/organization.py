"""
organization.py
---------------
HealthCloud Clinical Backend: Organization Use Cases
----------------------------------------------------
Organizations are keyed by their provider (MFL) code, stored as an official
identifier; the code doubles as the organization name.

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from errors import ClinicalError, InvalidInputError
from repository import ClinicalStore
from schemas import Identifier, Organization

logger = logging.getLogger(__name__)


def _provider_code(code: Union[int, str]) -> str:
    value = str(code).strip() if code is not None else ""
    if not value:
        raise InvalidInputError("a provider code is required")
    return value


class OrganizationUseCases:
    def __init__(self, store: ClinicalStore) -> None:
        self.store = store

    async def get_organization(self, provider_code: Union[int, str]) -> Optional[str]:
        """Return the id of the organization with *provider_code*, or ``None``."""
        code = _provider_code(provider_code)
        try:
            conn = await self.store.search(Organization, {"identifier": code})
        except ClinicalError as exc:
            raise exc.wrap(f"unable to search organization {code}")
        if not conn.edges:
            return None
        return conn.edges[0].node.id

    async def create_organization(self, provider_code: Union[int, str]) -> str:
        code = _provider_code(provider_code)
        organization = Organization(
            identifier=[Identifier(use="official", value=code)],
            name=code,
        )
        try:
            payload = await self.store.create(Organization, organization)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to create organization {code}")
        logger.info("Created Organization/%s for provider code %s.", payload.resource.id, code)
        return payload.resource.id

    async def get_or_create_organization(self, provider_code: Union[int, str]) -> str:
        existing = await self.get_organization(provider_code)
        if existing:
            return existing
        return await self.create_organization(provider_code)

    async def find_organization_by_id(self, organization_id: str) -> Organization:
        if not organization_id:
            raise InvalidInputError("an organization id is required")
        try:
            payload = await self.store.get(Organization, organization_id)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to get Organization/{organization_id}")
        return payload.resource
