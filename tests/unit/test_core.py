"""Unit tests for config, logging, responses and token helpers."""

import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from app.core.config import Settings, TallyConfig
from app.core.logging_config import JSONFormatter, TallyEventLogger
from app.core.responses import error_response, error_response_dict, success_response
from app.core.security import create_access_token, decode_access_token


class TestConfig:
    """Test configuration objects."""

    def test_tally_config_defaults(self):
        config = TallyConfig()
        assert config.default_location_radius == 500
        assert config.high_turnout_threshold == 95.0
        assert config.required_photo_types == ("full_form", "signature")
        assert config.invalid_math_penalty == 20

    def test_tally_config_is_frozen(self):
        with pytest.raises(ValidationError):
            TallyConfig().default_location_radius = 100

    def test_settings_build_tally_config(self):
        settings = Settings(
            DATABASE_URL="postgresql://localhost/test",
            SECRET_KEY="secret",
            DEFAULT_LOCATION_RADIUS_M=250,
            LANDSLIDE_THRESHOLD=85.0,
        )
        config = settings.tally_config()
        assert config.default_location_radius == 250
        assert config.landslide_threshold == 85.0

    def test_cors_origins_list(self):
        settings = Settings(
            DATABASE_URL="postgresql://localhost/test",
            SECRET_KEY="secret",
            CORS_ORIGINS="https://a.example, https://b.example",
        )
        assert settings.cors_origins_list == ["https://a.example", "https://b.example"]


class TestLogging:
    """Test structured logging."""

    def test_json_formatter_includes_extra_fields(self):
        record = logging.LogRecord(
            "tally", logging.INFO, __file__, 1, "Submission created", None, None
        )
        record.extra_fields = {"event_type": "submission_created", "submission_id": 11}

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "Submission created"
        assert payload["event_type"] == "submission_created"
        assert payload["submission_id"] == 11

    def test_invalid_result_logged_as_warning(self):
        events = TallyEventLogger()
        with patch.object(events.logger, "warning") as warning:
            events.log_result_recorded(1, "mp", False, ["Sum mismatch"])

        extra = warning.call_args.kwargs["extra"]["extra_fields"]
        assert extra["event_type"] == "result_recorded"
        assert extra["validation_errors"] == ["Sum mismatch"]


class TestResponses:
    """Test response envelope helpers."""

    def test_success_response(self):
        assert success_response(data={"a": 1}, message="ok") == {
            "success": True,
            "data": {"a": 1},
            "message": "ok",
        }

    def test_error_response_raises_with_envelope(self):
        with pytest.raises(HTTPException) as exc_info:
            error_response(message="Health check failed", status_code=503)
        assert exc_info.value.status_code == 503
        assert exc_info.value.detail == {
            "success": False,
            "message": "Health check failed",
            "data": None,
            "errors": None,
        }

    def test_error_response_dict_encodes_database_types(self):
        response = error_response_dict(
            {"at": datetime(2027, 8, 9, 18, 0), "share": Decimal("52.63")}, 500
        )
        body = json.loads(response.body)
        assert body == {"at": "2027-08-09T18:00:00", "share": 52.63}


class TestTokens:
    """Test JWT helpers."""

    def test_round_trip(self):
        token = create_access_token({"sub": "9", "role": "candidate"})
        payload = decode_access_token(token)
        assert payload["sub"] == "9"
        assert payload["role"] == "candidate"

    def test_expired_token_rejected(self):
        token = create_access_token({"sub": "9"}, expires_delta=timedelta(seconds=-1))
        assert decode_access_token(token) is None

    def test_garbage_token_rejected(self):
        assert decode_access_token("not-a-token") is None
