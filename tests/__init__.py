"""
tests/
------
HealthCloud Clinical Backend: Test Package
------------------------------------------
Contains the pytest suites for the clinical backend.

Test Modules:
    - fakes.py: in-memory ClinicalStore / HealthcareAdmin / AuthProvider doubles
    - test_healthcare_client.py: Cloud Healthcare client over httpx.MockTransport
    - test_provisioner.py: dataset / FHIR store get-or-create
    - test_fhir_repository.py: Bundle validation, relay connections, episode lookups
    - test_clinical_usecases.py: per-resource use cases and organizations
    - test_episode_of_care.py: episode-of-care lifecycle
    - test_document_store.py: SQLite document store
    - test_auth_provider.py: Identity Toolkit client
    - test_accounts.py: email opt-ins, users, MSISDN normalisation
    - test_config.py: environment configuration
    - test_main.py: FastAPI app and /health

Project: HealthCloud Clinical Backend
"""
