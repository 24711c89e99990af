"""
test_config.py
--------------
HealthCloud Clinical Backend: Test Suite for config.py
------------------------------------------------------
Run:
    pytest tests/test_config.py -v --tb=short

Project: HealthCloud Clinical Backend
"""

import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import BASE_HEALTHCARE_URL, DATASET_LOCATION, DEFAULT_TIMEOUT_S, Settings
from errors import ConfigError

REQUIRED = {
    "GOOGLE_CLOUD_PROJECT": "proj",
    "CLOUD_HEALTH_DATASET_ID": "ds",
    "CLOUD_HEALTH_FHIRSTORE_ID": "store",
    "CLOUD_HEALTH_PUBSUB_TOPIC": "topic",
}


def test_defaults_applied():
    settings = Settings.from_env(dict(REQUIRED))

    assert settings.location == DATASET_LOCATION == "europe-west4"
    assert settings.base_url == BASE_HEALTHCARE_URL
    assert settings.timeout == DEFAULT_TIMEOUT_S == 10.0
    assert settings.provision_strict is False
    assert settings.access_token is None
    assert settings.identity_toolkit_api_key is None


def test_resource_names():
    settings = Settings.from_env(dict(REQUIRED))
    assert settings.dataset_name == "projects/proj/locations/europe-west4/datasets/ds"
    assert settings.fhir_store_name == settings.dataset_name + "/fhirStores/store"


def test_missing_required_variables_all_reported():
    env = dict(REQUIRED)
    del env["GOOGLE_CLOUD_PROJECT"]
    env["CLOUD_HEALTH_PUBSUB_TOPIC"] = "   "

    with pytest.raises(ConfigError) as exc_info:
        Settings.from_env(env)
    message = str(exc_info.value)
    assert "GOOGLE_CLOUD_PROJECT" in message
    assert "CLOUD_HEALTH_PUBSUB_TOPIC" in message
    assert "CLOUD_HEALTH_DATASET_ID" not in message


def test_optional_overrides():
    env = dict(REQUIRED)
    env.update({
        "CLOUD_HEALTH_DATASET_LOCATION": "us-central1",
        "CLOUD_HEALTH_BASE_URL": "http://localhost:8080/v1/",
        "CLOUD_HEALTH_ACCESS_TOKEN": "tok",
        "CLOUD_HEALTH_TIMEOUT_S": "2.5",
        "CLOUD_HEALTH_PROVISION_STRICT": "TRUE",
        "DOCUMENT_DB_PATH": "/tmp/docs.sqlite",
        "ENVIRONMENT": "staging",
    })
    settings = Settings.from_env(env)

    assert settings.location == "us-central1"
    assert settings.base_url == "http://localhost:8080/v1"
    assert settings.access_token == "tok"
    assert settings.timeout == 2.5
    assert settings.provision_strict is True
    assert settings.document_db_path == Path("/tmp/docs.sqlite")
    assert settings.environment == "staging"


def test_bad_timeout_is_config_error():
    env = dict(REQUIRED, CLOUD_HEALTH_TIMEOUT_S="soon")
    with pytest.raises(ConfigError):
        Settings.from_env(env)
