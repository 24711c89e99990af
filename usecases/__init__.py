"""
usecases/
---------
HealthCloud Clinical Backend: Use-Case Layer
--------------------------------------------
Validation plus orchestration between the presentation layer and the
injected repositories (see repository.py for the capability interfaces).

Modules:
    - clinical.py:        generic create/update/delete/search/get per resource kind
    - organization.py:    get-or-create an Organization by provider code
    - episode_of_care.py: episode-of-care lifecycle (start, upgrade, end)
    - accounts.py:        email opt-ins and auth-provider user management
    - patient.py:         removal of a patient's whole FHIR compartment

Project: HealthCloud Clinical Backend
"""
