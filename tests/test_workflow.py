import logging

from fastapi.testclient import TestClient

from choir_solfa import main as main_module
from choir_solfa.main import app
from choir_solfa.services.completion_client import CompletionServiceError, StaticCompletionClient
from choir_solfa.services.notation_generator import NotationGenerator


client = TestClient(app)


def _external_payload():
    return {
        "soprano": ["do", "re", "mi", "fa"],
        "alto": ["mi", "fa", "sol", "mi"],
        "tenor": ["do", "re", "mi", "sol"],
        "bass": ["do", "re", "mi", "do"],
        "key": "C",
    }


def test_generate_solfa_fallback_scenario(monkeypatch):
    monkeypatch.setattr(main_module, "generator", NotationGenerator())

    res = client.post(
        "/api/generate-solfa",
        json={"lyrics": "Joyful praise we sing", "voiceParts": ["soprano", "alto", "tenor", "bass"]},
    )

    assert res.status_code == 200
    payload = res.json()
    assert payload["source"] == "fallback"
    assert payload["word_count"] == 4
    assert payload["notations"] == {
        "soprano": ["do", "re", "mi", "fa"],
        "alto": ["mi", "fa", "sol", "la"],
        "tenor": ["sol", "la", "ti", "do"],
        "bass": ["ti", "do", "re", "mi"],
    }


def test_generate_solfa_uses_external_result_when_valid(monkeypatch):
    stub = StaticCompletionClient(payload=_external_payload())
    monkeypatch.setattr(main_module, "generator", NotationGenerator(stub))

    res = client.post(
        "/api/generate-solfa",
        json={
            "lyrics": "Joyful praise we sing",
            "voice_parts": ["alto"],
            "options": {"key": "g", "tempo": 96, "style": "gospel", "difficulty": "beginner"},
        },
    )

    assert res.status_code == 200
    payload = res.json()
    assert payload["source"] == "external"
    assert payload["notations"] == {"alto": ["mi", "fa", "sol", "mi"]}
    assert "Key: G" in stub.calls[0]["user_prompt"]
    assert payload["warnings"]


def test_generate_solfa_service_failure_is_not_surfaced(monkeypatch):
    stub = StaticCompletionClient(error=CompletionServiceError("Completion request timed out."))
    monkeypatch.setattr(main_module, "generator", NotationGenerator(stub))

    res = client.post("/api/generate-solfa", json={"lyrics": "a  b   c", "voiceParts": ["bass"]})

    assert res.status_code == 200
    assert res.headers["X-Notation-Source"] == "fallback"
    assert res.json()["notations"] == {"bass": ["ti", "do", "re"]}
    assert res.json()["source"] == "fallback"


def test_generate_solfa_empty_inputs_are_legal():
    res = client.post("/api/generate-solfa", json={"lyrics": "", "voiceParts": ["soprano", "bass"]})
    assert res.status_code == 200
    assert res.json()["notations"] == {"soprano": [], "bass": []}

    res = client.post("/api/generate-solfa", json={"lyrics": "Hosanna", "voiceParts": []})
    assert res.status_code == 200
    assert res.json()["notations"] == {}


def test_generate_solfa_rejects_unknown_voice_part():
    res = client.post("/api/generate-solfa", json={"lyrics": "Hosanna", "voiceParts": ["baritone"]})
    assert res.status_code == 422


def test_generate_solfa_treats_options_as_hints(monkeypatch):
    stub = StaticCompletionClient(error=CompletionServiceError("offline"))
    monkeypatch.setattr(main_module, "generator", NotationGenerator(stub))

    res = client.post(
        "/api/generate-solfa",
        json={"lyrics": "Hosanna", "voiceParts": ["soprano"], "options": {"key": "A minor", "tempo": 400}},
    )

    assert res.status_code == 200
    assert res.json()["notations"] == {"soprano": ["do"]}
    options = stub.calls[0]["options"]
    assert options.key == "Am"
    assert options.tempo == 120


def test_generate_solfa_rejects_unknown_difficulty():
    res = client.post(
        "/api/generate-solfa",
        json={"lyrics": "Hosanna", "voiceParts": ["soprano"], "options": {"difficulty": "expert"}},
    )
    assert res.status_code == 422


def test_generate_solfa_invalid_argument_maps_to_user_error(monkeypatch, caplog):
    class _Rejecting(NotationGenerator):
        async def generate_with_report(self, lyrics, requested_parts, options=None):
            return await super().generate_with_report(123, requested_parts, options)

    monkeypatch.setattr(main_module, "generator", _Rejecting())

    with caplog.at_level(logging.WARNING):
        res = client.post("/api/generate-solfa", json={"lyrics": "Hosanna", "voiceParts": ["soprano"]})

    assert res.status_code == 422
    assert "Solfa generation failed" in res.json()["detail"]["message"]
    assert res.json()["detail"]["request_id"]
    assert any(getattr(record, "event", "") == "request_failed" for record in caplog.records)


def test_validate_notation_endpoint_accepts_valid_notation():
    res = client.post(
        "/api/validate-notation",
        json={"notations": {"soprano": ["Do", "mi"], "bass": ["do", "re"]}, "lyrics": "Holy night"},
    )

    assert res.status_code == 200
    assert res.json() == {"valid": True, "errors": [], "warnings": []}


def test_validate_notation_endpoint_reports_errors_and_request_id():
    res = client.post(
        "/api/validate-notation",
        json={"notations": {"soprano": ["do", "xi"]}, "lyrics": "Holy night silent"},
    )

    assert res.status_code == 200
    payload = res.json()
    assert payload["valid"] is False
    assert "failed validation" in payload["message"]
    assert payload["request_id"]
    assert len(payload["errors"]) == 2


def test_validate_notation_endpoint_warns_on_range():
    res = client.post("/api/validate-notation", json={"notations": {"bass": ["ti"]}})
    assert res.json()["valid"] is True
    assert res.json()["warnings"] == ["Voice part bass leaves its range do-mi."]


def test_convert_notes_endpoint():
    res = client.post("/api/convert-notes", json={"notes": ["C", "d", "G", "Bb"]})
    assert res.status_code == 200
    assert res.json() == {"solfa": ["do", "re", "sol", "Bb"]}


def test_voice_parts_endpoint_lists_tables():
    res = client.get("/api/voice-parts")
    assert res.status_code == 200
    parts = res.json()
    assert [part["name"] for part in parts] == ["soprano", "alto", "tenor", "bass"]
    assert parts[0]["color"] == "#FF6B6B"
    assert parts[3]["lowest"] == "do"
    assert parts[3]["highest"] == "mi"
    assert [part["phase_offset"] for part in parts] == [0, 2, 4, 6]


def test_request_id_header_echoed():
    res = client.get("/api/voice-parts", headers={"X-Request-ID": "req-abc"})
    assert res.headers.get("X-Request-ID") == "req-abc"


def test_generation_logs_lifecycle_events(monkeypatch, caplog):
    monkeypatch.setattr(main_module, "generator", NotationGenerator())

    with caplog.at_level(logging.INFO):
        res = client.post("/api/generate-solfa", json={"lyrics": "Come thou fount", "voiceParts": ["tenor"]})

    assert res.status_code == 200
    events = [getattr(record, "event", "") for record in caplog.records]
    assert "solfa_generation_started" in events
    assert "external_generation_skipped" in events
    assert "solfa_generation_completed" in events


def test_unhandled_error_returns_request_id(monkeypatch):
    class _Exploding(NotationGenerator):
        async def generate_with_report(self, lyrics, requested_parts, options=None):
            raise RuntimeError("tables corrupted")

    monkeypatch.setattr(main_module, "generator", _Exploding())
    failing_client = TestClient(app, raise_server_exceptions=False)

    res = failing_client.post(
        "/api/generate-solfa",
        json={"lyrics": "Hosanna", "voiceParts": ["soprano"]},
        headers={"X-Request-ID": "req-500"},
    )

    assert res.status_code == 500
    assert res.json()["request_id"] == "req-500"
    assert "generating notation" in res.json()["detail"]


def test_request_completed_log_carries_notation_source(monkeypatch, caplog):
    monkeypatch.setattr(main_module, "generator", NotationGenerator())

    with caplog.at_level(logging.INFO):
        client.post("/api/generate-solfa", json={"lyrics": "Come thou fount", "voiceParts": ["alto"]})

    completed = [record for record in caplog.records if getattr(record, "event", "") == "request_completed"]
    assert completed
    assert completed[-1].notation_source == "fallback"
    assert completed[-1].status_code == 200
