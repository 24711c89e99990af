"""
healthcare_client.py
--------------------
HealthCloud Clinical Backend: Cloud Healthcare API Client
---------------------------------------------------------
Async client for the Google Cloud Healthcare API v1. Covers the two surfaces
the backend needs:

  Admin (JSON, ``application/json``):
    GET  /projects/{p}/locations/{l}/datasets/{d}                  get_dataset
    POST /projects/{p}/locations/{l}/datasets?datasetId={d}         create_dataset
    GET  .../datasets/{d}/fhirStores/{s}                           get_fhir_store
    POST .../datasets/{d}/fhirStores?fhirStoreId={s}                create_fhir_store

  FHIR REST (``application/fhir+json``) under
  .../datasets/{d}/fhirStores/{s}/fhir:
    POST   /{type}                   create_resource
    GET    /{type}/{id}              get_resource
    PUT    /{type}/{id}              update_resource   (full replace)
    PATCH  /{type}/{id}              patch_resource    (JSON Patch)
    DELETE /{type}/{id}              delete_resource
    POST   /{type}/_search?{params}  search
    GET    /Patient/{id}/$everything patient_everything

Authentication:
  1. If ``access_token`` is configured (``CLOUD_HEALTH_ACCESS_TOKEN``) it is
     sent as-is and never refreshed.
  2. Otherwise a token is fetched from the GCE metadata server for the
     default service account; it is cached and refreshed 30 s before expiry.

Error mapping (see errors.py):
  404 / NOT_FOUND       -> NotFoundError
  409 / ALREADY_EXISTS  -> AlreadyExistsError
  other non-2xx         -> RemoteFailureError (OperationOutcome text folded in)
  transport failure     -> RemoteFailureError (status_code=0)

Usage (async context manager, preferred):
    async with CloudHealthcareClient(settings) as client:
        episode = await client.get_resource("EpisodeOfCare", "ep-1")

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional

import httpx

from config import Settings
from errors import AlreadyExistsError, NotFoundError, RemoteFailureError
from schemas import FhirStore

logger = logging.getLogger(__name__)

_METADATA_TOKEN_URL = (
    "http://metadata.google.internal/computeMetadata/v1/"
    "instance/service-accounts/default/token"
)

# Seconds before token expiry at which a proactive refresh is triggered.
_TOKEN_REFRESH_BUFFER_S = 30

_FHIR_CONTENT_TYPE = "application/fhir+json;charset=utf-8"
_JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"

# Largest response-body excerpt carried in an error message.
_MAX_ERROR_BODY = 500


def error_detail(resp: httpx.Response) -> tuple[str, str]:
    """
    Pull a readable message and a canonical status out of an error response.

    Handles both Google API errors (``{"error": {"message", "status"}}``) and
    FHIR ``OperationOutcome`` bodies (``issue[0].details.text`` and
    ``issue[0].diagnostics``). Falls back to the raw body text.
    """
    text = resp.text[:_MAX_ERROR_BODY]
    try:
        data = resp.json()
    except ValueError:
        return text, ""

    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, dict):
        return text, ""

    error = data.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or text), str(error.get("status") or "")

    if data.get("resourceType") == "OperationOutcome":
        issues = data.get("issue") or [{}]
        issue = issues[0] if isinstance(issues[0], dict) else {}
        details = (issue.get("details") or {}).get("text", "")
        diagnostics = issue.get("diagnostics", "")
        message = ": ".join(part for part in (details, diagnostics) if part)
        return message or text, ""

    return text, ""


class CloudHealthcareClient:
    """
    Async Cloud Healthcare API client.

    Args:
        settings:   Service configuration (project, location, dataset, store,
                    base URL, timeout, optional static token).
        transport:  Optional ``httpx`` transport; tests pass
                    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")
        self.timeout = settings.timeout
        self._transport = transport

        # Token state
        self._static_token: Optional[str] = settings.access_token
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0

        # Underlying HTTP transport (initialised in connect / __aenter__)
        self._http: Optional[httpx.AsyncClient] = None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the underlying HTTP connection pool."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
            logger.debug("CloudHealthcareClient: HTTP transport initialised.")

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.debug("CloudHealthcareClient: HTTP transport closed.")

    async def __aenter__(self) -> "CloudHealthcareClient":
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    # ── URL helpers ──────────────────────────────────────────────────────────

    @property
    def _dataset_url(self) -> str:
        return f"{self.base_url}/{self.settings.dataset_name}"

    @property
    def _fhir_store_url(self) -> str:
        return f"{self.base_url}/{self.settings.fhir_store_name}"

    def fhir_rest_url(self) -> str:
        """Base URL for FHIR REST calls against the configured store."""
        return f"{self._fhir_store_url}/fhir"

    # ── Token helpers ────────────────────────────────────────────────────────

    async def _fetch_token(self) -> None:
        """
        Obtain an access token for the default service account from the GCE
        metadata server and cache it.

        Raises:
            RemoteFailureError: if the metadata server is unreachable or
                                returns a non-200 response.
        """
        try:
            resp = await self._http.get(  # type: ignore[union-attr]
                _METADATA_TOKEN_URL,
                headers={"Metadata-Flavor": "Google"},
            )
        except httpx.HTTPError as exc:
            raise RemoteFailureError(
                f"token request failed: {exc}", status_code=0
            ) from exc

        if resp.status_code != 200:
            raise RemoteFailureError(
                "metadata server token request failed",
                status_code=resp.status_code,
                body=resp.text[:_MAX_ERROR_BODY],
            )

        token_data = resp.json()
        self._access_token = token_data["access_token"]
        expires_in = int(token_data.get("expires_in", 3600))
        self._token_expires_at = time.monotonic() + expires_in
        logger.info("CloudHealthcareClient: access token obtained (expires_in=%ds).", expires_in)

    async def access_token(self) -> str:
        """Bearer token for Google APIs; shared with the auth provider client."""
        return await self._ensure_token()

    async def _ensure_token(self) -> str:
        """Return a valid bearer token, fetching or refreshing when necessary."""
        if self._static_token:
            return self._static_token
        if (
            self._access_token
            and time.monotonic() < self._token_expires_at - _TOKEN_REFRESH_BUFFER_S
        ):
            return self._access_token

        logger.debug(
            "CloudHealthcareClient: %s, fetching new token.",
            "token expired or absent" if not self._access_token else "proactive refresh",
        )
        await self._fetch_token()
        return self._access_token  # type: ignore[return-value]

    # ── Internal request helper ──────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        content_type: str = "application/json",
        accept: str = "application/json",
    ) -> Dict[str, Any]:
        """
        Execute an authenticated request and return the parsed JSON body.

        Args:
            method:       HTTP method.
            url:          Absolute request URL.
            operation:    Short context (``"read EpisodeOfCare/ep-1"``) used
                          in error messages.
            params:       URL query parameters.
            json:         Request body, serialised as JSON.
            content_type: ``Content-Type`` header for requests with a body.
            accept:       ``Accept`` header.

        Returns:
            Parsed JSON body, or ``{}`` when the response has no body.

        Raises:
            RuntimeError:        if ``connect()`` / ``__aenter__`` was not called.
            NotFoundError:       404 / NOT_FOUND.
            AlreadyExistsError:  409 / ALREADY_EXISTS.
            RemoteFailureError:  any other failure.
        """
        if self._http is None:
            raise RuntimeError(
                "CloudHealthcareClient is not connected. "
                "Use 'async with CloudHealthcareClient(settings) as client:' "
                "or call connect() first."
            )

        token = await self._ensure_token()
        headers = {"Authorization": f"Bearer {token}", "Accept": accept}
        if json is not None:
            headers["Content-Type"] = content_type

        logger.debug("CloudHealthcareClient: %s %s params=%s", method, url, params or "<none>")
        try:
            resp = await self._http.request(method, url, headers=headers, params=params, json=json)
        except httpx.HTTPError as exc:
            raise RemoteFailureError(f"{operation}: {exc}", status_code=0) from exc

        if resp.status_code not in range(200, 300):
            message, status = error_detail(resp)
            body = resp.text[:_MAX_ERROR_BODY]
            if resp.status_code == 404 or status == "NOT_FOUND":
                raise NotFoundError(f"{operation}: {message}", status_code=resp.status_code, body=body)
            if resp.status_code == 409 or status == "ALREADY_EXISTS":
                raise AlreadyExistsError(f"{operation}: {message}", status_code=resp.status_code, body=body)
            logger.warning(
                "CloudHealthcareClient: %s failed with HTTP %d.", operation, resp.status_code
            )
            raise RemoteFailureError(f"{operation}: {message}", status_code=resp.status_code, body=body)

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise RemoteFailureError(
                f"{operation}: response is not valid JSON",
                status_code=resp.status_code,
                body=resp.text[:_MAX_ERROR_BODY],
            ) from exc

    async def _fhir(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        content_type: str = _FHIR_CONTENT_TYPE,
    ) -> Dict[str, Any]:
        return await self._request(
            method,
            f"{self.fhir_rest_url()}{path}",
            operation,
            params=params,
            json=json,
            content_type=content_type,
            accept="application/fhir+json",
        )

    # ── Dataset / FHIR store admin ───────────────────────────────────────────

    async def get_dataset(self) -> Dict[str, Any]:
        """Fetch the configured dataset. Raises ``NotFoundError`` if absent."""
        return await self._request("GET", self._dataset_url, "get dataset")

    async def create_dataset(self) -> Dict[str, Any]:
        """
        Create the configured dataset.

        Returns:
            The long-running ``Operation`` resource returned by the API.
        """
        return await self._request(
            "POST",
            f"{self.base_url}/{self.settings.dataset_parent}/datasets",
            "create dataset",
            params={"datasetId": self.settings.dataset_id},
            json={},
        )

    async def get_fhir_store(self) -> Dict[str, Any]:
        """Fetch the configured FHIR store. Raises ``NotFoundError`` if absent."""
        return await self._request("GET", self._fhir_store_url, "get FHIR store")

    async def create_fhir_store(self, store: Optional[FhirStore] = None) -> Dict[str, Any]:
        """Create the configured FHIR store with *store*'s flags (R4 defaults)."""
        store = store or FhirStore()
        return await self._request(
            "POST",
            f"{self._dataset_url}/fhirStores",
            "create FHIR store",
            params={"fhirStoreId": self.settings.fhir_store_id},
            json=store.model_dump(exclude_none=True),
        )

    # ── FHIR REST ────────────────────────────────────────────────────────────

    async def create_resource(self, resource_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create a resource. ``resourceType`` is forced to *resource_type*."""
        body = dict(payload)
        body["resourceType"] = resource_type
        body.setdefault("language", "EN")
        return await self._fhir("POST", f"/{resource_type}", f"create {resource_type}", json=body)

    async def get_resource(self, resource_type: str, resource_id: str) -> Dict[str, Any]:
        return await self._fhir(
            "GET", f"/{resource_type}/{resource_id}", f"read {resource_type}/{resource_id}"
        )

    async def update_resource(
        self, resource_type: str, resource_id: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Replace the entire contents of a resource."""
        body = dict(payload)
        body["resourceType"] = resource_type
        body["id"] = resource_id
        return await self._fhir(
            "PUT",
            f"/{resource_type}/{resource_id}",
            f"update {resource_type}/{resource_id}",
            json=body,
        )

    async def patch_resource(
        self, resource_type: str, resource_id: str, operations: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """
        Apply a JSON Patch document, e.g.::

            [{"op": "replace", "path": "/active", "value": False}]

        See https://www.hl7.org/fhir/http.html#patch
        """
        return await self._fhir(
            "PATCH",
            f"/{resource_type}/{resource_id}",
            f"patch {resource_type}/{resource_id}",
            json=operations,
            content_type=_JSON_PATCH_CONTENT_TYPE,
        )

    async def delete_resource(self, resource_type: str, resource_id: str) -> Dict[str, Any]:
        return await self._fhir(
            "DELETE", f"/{resource_type}/{resource_id}", f"delete {resource_type}/{resource_id}"
        )

    async def search(self, resource_type: str, params: Mapping[str, str]) -> Dict[str, Any]:
        """POST ``/{type}/_search`` with *params* and return the raw Bundle."""
        return await self._fhir(
            "POST", f"/{resource_type}/_search", f"search {resource_type}", params=params
        )

    async def patient_everything(self, patient_id: str) -> Dict[str, Any]:
        """Return the Bundle of every resource in a patient's compartment."""
        return await self._fhir(
            "GET", f"/Patient/{patient_id}/$everything", f"everything Patient/{patient_id}"
        )
