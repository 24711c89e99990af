"""
main.py
-------
HealthCloud Clinical Backend: FastAPI service entry point
---------------------------------------------------------
Wires the clinical backend together and exposes a health check. On startup
the lifespan handler:

  1. reads configuration (missing required variables are fatal),
  2. opens the Cloud Healthcare client,
  3. provisions the dataset and FHIR store (non-fatal unless
     CLOUD_HEALTH_PROVISION_STRICT is set),
  4. builds the use-case objects and hangs them on ``app.state``:
       app.state.clinical       {resourceType: ResourceUseCase}
       app.state.organizations  OrganizationUseCases
       app.state.episodes       EpisodeOfCareUseCases
       app.state.patients       PatientUseCases
       app.state.accounts       AccountUseCases

Endpoints:
    GET  /health   Service health check, including the provisioning outcome

Run:
    uvicorn main:app --port 8000

Project: HealthCloud Clinical Backend
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request

from auth_provider import IdentityToolkitAuthClient
from config import Settings
from document_store import SQLiteDocumentStore
from fhir_repository import FHIRRepository
from healthcare_client import CloudHealthcareClient
from provisioner import StoreProvisioner
from usecases.accounts import AccountUseCases
from usecases.clinical import build_clinical_usecases
from usecases.episode_of_care import EpisodeOfCareUseCases
from usecases.organization import OrganizationUseCases
from usecases.patient import PatientUseCases

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# ── Config ─────────────────────────────────────────────────────────────────────

VERSION = "1.0.0"
SERVICE_NAME = "HealthCloud Clinical Backend"


def create_app(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings:  Configuration; read from the environment at startup when
                   omitted.
        transport: Optional ``httpx`` transport shared by the remote clients.
                   Tests pass ``httpx.MockTransport``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or Settings.from_env()
        client = CloudHealthcareClient(cfg, transport=transport)
        await client.connect()

        provisioner = StoreProvisioner(client, cfg, strict=cfg.provision_strict)
        app.state.provisioning = await provisioner.provision()

        repository = FHIRRepository(client)
        organizations = OrganizationUseCases(repository)
        auth = None
        if cfg.identity_toolkit_api_key:
            auth = IdentityToolkitAuthClient(cfg, token_source=client.access_token, transport=transport)
        else:
            logger.info("IDENTITY_TOOLKIT_API_KEY not set; user management disabled.")

        app.state.settings = cfg
        app.state.healthcare_client = client
        app.state.clinical = build_clinical_usecases(repository)
        app.state.organizations = organizations
        documents = SQLiteDocumentStore(cfg.document_db_path)
        app.state.episodes = EpisodeOfCareUseCases(
            repository, organizations, documents, environment=cfg.environment
        )
        app.state.patients = PatientUseCases(repository)
        app.state.accounts = AccountUseCases(documents, auth, environment=cfg.environment)
        logger.info("%s %s started (store=%s).", SERVICE_NAME, VERSION, cfg.fhir_store_name)
        try:
            yield
        finally:
            if auth is not None:
                await auth.close()
            await client.close()

    app = FastAPI(
        title=SERVICE_NAME,
        version=VERSION,
        description="Clinical data backend over a Cloud Healthcare FHIR store.",
        lifespan=lifespan,
    )

    @app.get("/health")
    def health_check(request: Request) -> dict:
        """
        Return service health status.

        Returns:
            dict: service, version, status, timestamp, provisioning.
        """
        report = getattr(request.app.state, "provisioning", None)
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "provisioning": report.model_dump() if report is not None else None,
        }

    return app


app = create_app()
