"""
provision_store.py
------------------
HealthCloud Clinical Backend
Creates the configured Cloud Healthcare dataset and FHIR store.
Safe to re-run: existing resources are left untouched.

Exit code is 0 when both exist afterwards, 1 otherwise.

Usage:
    python scripts/provision_store.py
"""

import asyncio
import logging
import os
import sys

_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

from dotenv import load_dotenv
load_dotenv(os.path.join(_REPO_ROOT, ".env"), override=False)

from config import Settings
from errors import ConfigError
from healthcare_client import CloudHealthcareClient
from provisioner import StoreProvisioner


async def provision(settings: Settings) -> bool:
    async with CloudHealthcareClient(settings) as client:
        report = await StoreProvisioner(client, settings).provision()
    print(f"dataset:    {report.dataset or 'FAILED'}")
    print(f"fhir store: {report.fhir_store or 'FAILED'}")
    return report.ok


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")
    try:
        settings = Settings.from_env(dotenv=False)
    except ConfigError as exc:
        print(f"ERROR: {exc}")
        sys.exit(1)
    sys.exit(0 if asyncio.run(provision(settings)) else 1)
