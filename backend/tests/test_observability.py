import json
import logging
from uuid import UUID

from fastapi.testclient import TestClient

from archreview.api.services import serialize_config
from archreview.main import app
from archreview.model_config import ModelConfigManager
from archreview.observability import JsonFormatter, mask_secret, redact_text, sanitize_for_logging


def test_request_id_header_is_generated_when_missing() -> None:
    with TestClient(app) as client:
        response = client.get("/health")
    assert response.status_code == 200
    request_id = response.headers.get("X-Request-ID")
    assert request_id is not None
    UUID(request_id)


def test_request_id_header_is_preserved_when_provided() -> None:
    with TestClient(app) as client:
        response = client.get("/ready", headers={"X-Request-ID": "demo-request-123"})
    assert response.status_code == 200
    assert response.headers.get("X-Request-ID") == "demo-request-123"


def test_invalid_request_id_is_replaced() -> None:
    with TestClient(app) as client:
        response = client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
    UUID(response.headers["X-Request-ID"])


def test_request_started_log_redacts_sensitive_query_values(caplog) -> None:
    with TestClient(app) as client:
        with caplog.at_level(logging.INFO, logger="archreview.api"):
            response = client.get("/health?token=supersecret&email=user@example.org&q=public")
    assert response.status_code == 200

    request_started_logs = [
        record for record in caplog.records if getattr(record, "event", None) == "request_started"
    ]
    assert request_started_logs
    query = request_started_logs[-1].query
    assert query["token"] == "[REDACTED]"
    assert query["email"] == "[REDACTED]"
    assert query["q"] == "public"


def test_sanitize_for_logging_redacts_common_sensitive_patterns() -> None:
    payload = {
        "notes": (
            "Contact user@example.org, token Bearer abc123, "
            "provider key sk-live0123456789abcdef, api_key=abcdef123456"
        ),
        "apiKey": "plain-value",
        "api_config": {"endpoint": "https://llm.example/v1", "access_token": "xyz"},
    }

    sanitized = sanitize_for_logging(payload, max_string_length=2000)
    notes = sanitized["notes"]
    assert "user@example.org" not in notes
    assert "[REDACTED_EMAIL]" in notes
    assert "Bearer [REDACTED]" in notes
    assert "sk-live0123456789abcdef" not in notes
    assert "[REDACTED_KEY]" in notes
    assert "api_key=[REDACTED]" in notes
    assert sanitized["apiKey"] == "[REDACTED]"
    assert sanitized["api_config"]["endpoint"] == "https://llm.example/v1"
    assert sanitized["api_config"]["access_token"] == "[REDACTED]"


def test_sanitize_for_logging_matches_dashed_header_names() -> None:
    sanitized = sanitize_for_logging(
        {"Set-Cookie": "session=abc", "X-Api-Key": "k", "Authorization": "Basic Zm9v", "items": ["Bearer t0k"]}
    )
    assert sanitized["Set-Cookie"] == "[REDACTED]"
    assert sanitized["X-Api-Key"] == "[REDACTED]"
    assert sanitized["Authorization"] == "[REDACTED]"
    assert sanitized["items"] == ["Bearer [REDACTED]"]


def test_redact_text_truncates_long_values() -> None:
    assert redact_text("x" * 300, max_length=10) == "xxxxxxxxxx...[truncated]"


def test_mask_secret() -> None:
    assert mask_secret(None) is None
    assert mask_secret("") == ""
    assert mask_secret("short") == "****"
    assert mask_secret("sk-abcdefgh1234") == "****1234"


def test_serialized_configs_never_expose_api_keys() -> None:
    manager = ModelConfigManager()
    created = manager.add_custom_model("x", "Model X", api_config={"endpoint": "https://e", "apiKey": "secret-0000-9876"})
    payload = serialize_config(created)
    assert payload["apiConfig"]["apiKey"] == "****9876"
    assert "secret-0000-9876" not in json.dumps(payload)


def test_json_formatter_emits_extra_fields() -> None:
    record = logging.LogRecord("archreview.health", logging.WARNING, __file__, 1, "model_health_check_failed", None, None)
    record.event = "model_health_check_failed"
    record.error = "Bearer abc.def"
    line = json.loads(JsonFormatter().format(record))
    assert line["logger"] == "archreview.health"
    assert line["event"] == "model_health_check_failed"
    assert line["error"] == "Bearer [REDACTED]"
    assert line["request_id"] == "-"
