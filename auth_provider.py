"""
auth_provider.py
----------------
HealthCloud Clinical Backend: Identity Toolkit Auth Client
----------------------------------------------------------
Async client for the Identity Toolkit (Firebase Authentication) admin REST
API. Implements the ``AuthProvider`` capability:

    POST /v1/projects/{p}/accounts:lookup   get_user_by_phone
    POST /v1/projects/{p}/accounts          create_user
    POST /v1/projects/{p}/accounts:delete   delete_user

Requests carry the API key (``IDENTITY_TOOLKIT_API_KEY``) as the ``key``
query parameter and, when a token source is supplied, a bearer token
(normally ``CloudHealthcareClient.access_token``).

Error mapping:
    USER_NOT_FOUND / empty lookup      -> NotFoundError
    PHONE_NUMBER_EXISTS / DUPLICATE_*  -> AlreadyExistsError
    anything else                      -> RemoteFailureError

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from config import Settings
from errors import AlreadyExistsError, NotFoundError, RemoteFailureError
from healthcare_client import error_detail

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

_NOT_FOUND_CODES = ("USER_NOT_FOUND", "NOT_FOUND")
_EXISTS_CODES = ("PHONE_NUMBER_EXISTS", "DUPLICATE_LOCAL_ID", "DUPLICATE_PHONE_NUMBER", "ALREADY_EXISTS")


class IdentityToolkitAuthClient:
    """
    Args:
        settings:      Supplies the project id, API key and timeout.
        token_source:  Async callable returning a bearer token, or ``None``.
        base_url:      Override for tests / emulators.
        transport:     Optional ``httpx`` transport; tests pass ``MockTransport``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        token_source: Optional[Callable[[], Awaitable[str]]] = None,
        base_url: str = IDENTITY_TOOLKIT_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.api_key = settings.identity_toolkit_api_key
        self.token_source = token_source
        self.base_url = f"{base_url.rstrip('/')}/projects/{settings.project_id}"
        self._http = httpx.AsyncClient(timeout=settings.timeout, transport=transport)

    async def close(self) -> None:
        await self._http.aclose()

    async def _post(self, path: str, body: Dict[str, Any], operation: str) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.token_source is not None:
            headers["Authorization"] = f"Bearer {await self.token_source()}"
        params = {"key": self.api_key} if self.api_key else None

        try:
            resp = await self._http.post(
                f"{self.base_url}/{path}", json=body, headers=headers, params=params
            )
        except httpx.HTTPError as exc:
            raise RemoteFailureError(f"{operation}: {exc}", status_code=0) from exc

        if resp.status_code != 200:
            message, status = error_detail(resp)
            code = message.split(" ", 1)[0].split(":", 1)[0]
            if code in _NOT_FOUND_CODES or status == "NOT_FOUND" or resp.status_code == 404:
                raise NotFoundError(f"{operation}: {message}", status_code=resp.status_code)
            if code in _EXISTS_CODES or status == "ALREADY_EXISTS" or resp.status_code == 409:
                raise AlreadyExistsError(f"{operation}: {message}", status_code=resp.status_code)
            logger.warning("IdentityToolkitAuthClient: %s failed with HTTP %d.", operation, resp.status_code)
            raise RemoteFailureError(f"{operation}: {message}", status_code=resp.status_code)

        return resp.json() if resp.content else {}

    async def get_user_by_phone(self, phone: str) -> Dict[str, Any]:
        """
        Return the user record for *phone* (E.164).

        Raises:
            NotFoundError: no user has this phone number.
        """
        data = await self._post("accounts:lookup", {"phoneNumber": [phone]}, "lookup user")
        users = data.get("users") or []
        if not users:
            raise NotFoundError(f"lookup user: no user with phone number {phone}")
        return users[0]

    async def create_user(self, phone: str, display_name: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"phoneNumber": phone}
        if display_name:
            body["displayName"] = display_name
        data = await self._post("accounts", body, "create user")
        logger.info("Created auth user %s.", data.get("localId"))
        return {"localId": data.get("localId"), **body}

    async def delete_user(self, uid: str) -> None:
        await self._post("accounts:delete", {"localId": uid}, "delete user")
        logger.info("Deleted auth user %s.", uid)
