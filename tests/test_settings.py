"""Settings and logging configuration tests."""

import json
import logging
import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from services.api_gateway.logging_config import JsonFormatter, configure_logging
from services.api_gateway.settings import Settings


def test_defaults() -> None:
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None)

    assert settings.store_backend == "memory"
    assert settings.blob_backend == "local"
    assert settings.analysis_delay_sec == 15.0
    assert settings.duration_probe == "simulated"
    assert settings.resume_on_startup is True
    assert settings.cron_token is None


def test_environment_overrides() -> None:
    env = {
        "STORE_BACKEND": "sql",
        "DATABASE_URL": "sqlite:///:memory:",
        "ANALYSIS_DELAY_SEC": "0.5",
        "CRON_TOKEN": "cron-secret",
        "S3_BUCKET": "videos",
    }
    with patch.dict(os.environ, env, clear=True):
        settings = Settings(_env_file=None)

    assert settings.store_backend == "sql"
    assert settings.analysis_delay_sec == 0.5
    assert settings.cron_token == "cron-secret"
    assert settings.s3_bucket == "videos"


def test_invalid_backend_is_rejected() -> None:
    with patch.dict(os.environ, {"BLOB_BACKEND": "ftp"}, clear=True):
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


def test_json_log_format() -> None:
    record = logging.LogRecord(
        name="libs.core.application.batch_service",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Batch %s committed",
        args=("batch-1",),
        exc_info=None,
    )

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "libs.core.application.batch_service"
    assert payload["message"] == "Batch batch-1 committed"


def test_configure_logging_replaces_root_handlers() -> None:
    root = logging.getLogger()
    previous_handlers = root.handlers[:]
    previous_level = root.level
    try:
        configure_logging(level="debug", log_format="json")

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
    finally:
        root.handlers[:] = previous_handlers
        root.setLevel(previous_level)
