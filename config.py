"""
config.py
---------
HealthCloud Clinical Backend: Environment Configuration
-------------------------------------------------------
Reads the service configuration once at startup. Values come from the process
environment, optionally seeded from a ``.env`` file by ``python-dotenv``.

Required (absence is fatal, reported all at once):
    GOOGLE_CLOUD_PROJECT        Google Cloud project that owns the dataset.
    CLOUD_HEALTH_DATASET_ID     Cloud Healthcare dataset identifier.
    CLOUD_HEALTH_FHIRSTORE_ID   FHIR store identifier inside the dataset.
    CLOUD_HEALTH_PUBSUB_TOPIC   Pub/Sub topic for FHIR store notifications.

Optional:
    CLOUD_HEALTH_DATASET_LOCATION   default ``europe-west4``
    CLOUD_HEALTH_BASE_URL           default ``https://healthcare.googleapis.com/v1``
    CLOUD_HEALTH_ACCESS_TOKEN       static bearer token (skips the metadata server)
    CLOUD_HEALTH_TIMEOUT_S          HTTP timeout in seconds, default 10
    CLOUD_HEALTH_PROVISION_STRICT   ``true`` makes startup provisioning fatal
    DOCUMENT_DB_PATH                SQLite file for the document store
    ENVIRONMENT                     suffix applied to document collection names
    IDENTITY_TOOLKIT_API_KEY        enables the auth provider client

Usage::

    from config import Settings
    settings = Settings.from_env()

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from errors import ConfigError

logger = logging.getLogger(__name__)

DATASET_LOCATION = "europe-west4"
BASE_HEALTHCARE_URL = "https://healthcare.googleapis.com/v1"
DEFAULT_TIMEOUT_S = 10.0

DEFAULT_DOCUMENT_DB_PATH: Path = Path(__file__).parent / "documents.sqlite"

_REQUIRED_VARS = (
    "GOOGLE_CLOUD_PROJECT",
    "CLOUD_HEALTH_DATASET_ID",
    "CLOUD_HEALTH_FHIRSTORE_ID",
    "CLOUD_HEALTH_PUBSUB_TOPIC",
)

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Immutable service configuration."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    dataset_id: str
    fhir_store_id: str
    pubsub_topic: str
    location: str = DATASET_LOCATION
    base_url: str = BASE_HEALTHCARE_URL
    access_token: Optional[str] = None
    timeout: float = Field(default=DEFAULT_TIMEOUT_S, gt=0)
    provision_strict: bool = False
    document_db_path: Path = DEFAULT_DOCUMENT_DB_PATH
    environment: str = ""
    identity_toolkit_api_key: Optional[str] = None

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        dotenv: bool = True,
    ) -> "Settings":
        """
        Build settings from *environ* (defaults to ``os.environ``).

        Args:
            environ: Mapping to read from. Tests pass a plain dict.
            dotenv:  Load ``.env`` into ``os.environ`` first. Ignored when
                     *environ* is given.

        Raises:
            ConfigError: if any required variable is absent or blank.
        """
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        missing = [name for name in _REQUIRED_VARS if not environ.get(name, "").strip()]
        if missing:
            raise ConfigError(
                "Missing required environment variable(s): " + ", ".join(missing)
            )

        timeout_raw = environ.get("CLOUD_HEALTH_TIMEOUT_S", "").strip()
        try:
            timeout = float(timeout_raw) if timeout_raw else DEFAULT_TIMEOUT_S
        except ValueError as exc:
            raise ConfigError(
                f"CLOUD_HEALTH_TIMEOUT_S must be a number, got {timeout_raw!r}"
            ) from exc

        db_path_raw = environ.get("DOCUMENT_DB_PATH", "").strip()

        settings = cls(
            project_id=environ["GOOGLE_CLOUD_PROJECT"].strip(),
            dataset_id=environ["CLOUD_HEALTH_DATASET_ID"].strip(),
            fhir_store_id=environ["CLOUD_HEALTH_FHIRSTORE_ID"].strip(),
            pubsub_topic=environ["CLOUD_HEALTH_PUBSUB_TOPIC"].strip(),
            location=environ.get("CLOUD_HEALTH_DATASET_LOCATION", "").strip() or DATASET_LOCATION,
            base_url=(environ.get("CLOUD_HEALTH_BASE_URL", "").strip() or BASE_HEALTHCARE_URL).rstrip("/"),
            access_token=environ.get("CLOUD_HEALTH_ACCESS_TOKEN", "").strip() or None,
            timeout=timeout,
            provision_strict=environ.get("CLOUD_HEALTH_PROVISION_STRICT", "").strip().lower() in _TRUTHY,
            document_db_path=Path(db_path_raw) if db_path_raw else DEFAULT_DOCUMENT_DB_PATH,
            environment=environ.get("ENVIRONMENT", "").strip(),
            identity_toolkit_api_key=environ.get("IDENTITY_TOOLKIT_API_KEY", "").strip() or None,
        )
        logger.debug(
            "Settings loaded (project=%s, location=%s, dataset=%s, store=%s).",
            settings.project_id, settings.location, settings.dataset_id, settings.fhir_store_id,
        )
        return settings

    # Resource names

    @property
    def dataset_parent(self) -> str:
        return f"projects/{self.project_id}/locations/{self.location}"

    @property
    def dataset_name(self) -> str:
        return f"{self.dataset_parent}/datasets/{self.dataset_id}"

    @property
    def fhir_store_name(self) -> str:
        return f"{self.dataset_name}/fhirStores/{self.fhir_store_id}"
