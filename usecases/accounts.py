"""
accounts.py
-----------
HealthCloud Clinical Backend: Account Use Cases
-----------------------------------------------
Email opt-ins (document store) and auth-provider user management.

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from document_store import suffix_collection
from errors import AlreadyExistsError, ClinicalError, InvalidInputError, NotFoundError
from repository import AuthProvider, DocumentStore
from usecases.msisdn import normalize_msisdn

logger = logging.getLogger(__name__)

EMAIL_OPT_IN_COLLECTION = "email_opt_ins"

_EMAIL_RE = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)+$")


def validate_email(email: str) -> str:
    """Return *email* stripped, or raise ``InvalidInputError`` on a bad format."""
    value = email.strip() if isinstance(email, str) else ""
    if not _EMAIL_RE.match(value):
        raise InvalidInputError("invalid email format")
    return value


class AccountUseCases:
    """
    Args:
        documents:   DocumentStore for opt-in records.
        auth:        AuthProvider; user operations raise ``RuntimeError``
                     when it is not configured.
        environment: Suffix applied to collection names.
    """

    def __init__(
        self,
        documents: DocumentStore,
        auth: Optional[AuthProvider] = None,
        *,
        environment: str = "",
    ) -> None:
        self.documents = documents
        self.auth = auth
        self.environment = environment

    @property
    def email_opt_in_collection(self) -> str:
        return suffix_collection(EMAIL_OPT_IN_COLLECTION, self.environment)

    def record_email_opt_in(self, email: str, opt_in: bool) -> Optional[str]:
        """
        Validate *email* and, when *opt_in* is set, store the opt-in.

        Returns:
            The new document id, or ``None`` when nothing was stored.
        """
        value = validate_email(email)
        if not opt_in:
            return None
        try:
            return self.documents.create(
                self.email_opt_in_collection, {"email": value, "optedIn": True}
            )
        except ClinicalError as exc:
            raise exc.wrap("unable to save email opt in")

    def email_opt_ins(self) -> List[Dict[str, Any]]:
        return self.documents.get_all(self.email_opt_in_collection, "optedIn", "==", True)

    def _require_auth(self) -> AuthProvider:
        if self.auth is None:
            raise RuntimeError("no auth provider configured (set IDENTITY_TOOLKIT_API_KEY)")
        return self.auth

    async def get_or_create_user(self, phone: str, display_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Return the auth user for *phone*, creating it when absent. A create
        that loses a race to a concurrent one returns the user that won.
        """
        auth = self._require_auth()
        normalized = normalize_msisdn(phone)
        try:
            return await auth.get_user_by_phone(normalized)
        except NotFoundError:
            logger.info("No auth user for %s, creating one.", normalized)
        try:
            return await auth.create_user(normalized, display_name)
        except AlreadyExistsError:
            logger.info("Auth user for %s was created concurrently.", normalized)
        try:
            return await auth.get_user_by_phone(normalized)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to get user with phone {normalized}")

    async def remove_user(self, phone: str) -> bool:
        auth = self._require_auth()
        normalized = normalize_msisdn(phone)
        try:
            user = await auth.get_user_by_phone(normalized)
        except ClinicalError as exc:
            raise exc.wrap(f"unable to get user with phone {normalized}")
        try:
            await auth.delete_user(user["localId"])
        except ClinicalError as exc:
            raise exc.wrap(f"unable to delete user {user['localId']}")
        return True
