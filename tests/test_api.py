import sqlite3
from unittest.mock import patch

import pytest

from gateway.api import create_app
from gateway.bootstrap import build_services
from shared.config import ServiceConfig
from shared.models import MediaRequest

from conftest import FakeResponse, FakeSession

AUDIO = b"ID3" + b"\x02" * 2048


def cobalt_ok(method, url, kwargs):
    if method == "POST":
        return FakeResponse(json_data={"status": "tunnel", "url": "https://cobalt/a.mp3"})
    return FakeResponse(content=AUDIO)


def cobalt_down(method, url, kwargs):
    return FakeResponse(status_code=503)


def _client(tmp_path, object_store, handler, **overrides):
    config = ServiceConfig(database_path=str(tmp_path / "api.db"), **overrides)
    services = build_services(config, object_store=object_store, session=FakeSession(handler))
    app = create_app(services)
    app.config['TESTING'] = True
    return app.test_client(), services


def test_health(tmp_path, object_store):
    client, _ = _client(tmp_path, object_store, cobalt_ok)
    assert client.get('/api/health').get_json() == {"status": "ok"}


def test_stream_redirects_first_for_playable_link(tmp_path, object_store):
    client, services = _client(tmp_path, object_store, cobalt_ok)

    response = client.get('/api/stream/abc123?title=Song&artist=Band')
    services.gateway.wait_for_background(timeout=5)

    assert response.status_code == 302
    assert response.headers['Location'] == "https://cobalt/a.mp3"
    assert services.artifacts.lookup("abc123").title == "Song"
    services.shutdown()


def test_stream_serves_audio_with_headers(tmp_path, object_store):
    client, services = _client(tmp_path, object_store, cobalt_ok, redirect_first=False)

    response = client.get('/api/stream/abc123',
                          query_string={'title': 'My Song', 'artist': 'Band', 'duration': 'abc'})

    assert response.status_code == 200
    assert response.data == AUDIO
    assert response.headers['Content-Type'] == "audio/mpeg"
    assert response.headers['Content-Length'] == str(len(AUDIO))
    assert response.headers['Cache-Control'] == "public, max-age=3600"
    assert response.headers['Content-Disposition'] == 'inline; filename="My%20Song.mp3"'
    record = services.artifacts.lookup("abc123")
    assert record.duration is None
    assert record.source == "cobalt"


def test_stream_all_failed_is_json_error(tmp_path, object_store):
    client, _ = _client(tmp_path, object_store, cobalt_down)

    response = client.get('/api/stream/xyz')

    assert response.status_code == 502
    body = response.get_json()
    assert body["success"] is False
    assert body["error"]["code"] == "all_providers_failed"
    strategies = [a["strategy"] for a in body["error"]["attempts"]]
    assert strategies == ["rapidapi", "cloudconvert-production", "cloudconvert-sandbox", "cobalt"]


def test_invalid_media_id_is_400(tmp_path, object_store):
    client, _ = _client(tmp_path, object_store, cobalt_ok)
    response = client.get('/api/stream/bad$id')
    assert response.status_code == 400
    assert response.get_json()["error"]["code"] == "invalid_media_id"


def test_artifact_lookup(tmp_path, object_store):
    client, services = _client(tmp_path, object_store, cobalt_ok)
    assert client.get('/api/artifacts/abc123').get_json()["exists"] is False

    services.artifacts.persist("abc123", MediaRequest("abc123", title="T", artist="A"),
                               "https://cdn/a.mp3", "rapidapi")
    body = client.get('/api/artifacts/abc123').get_json()
    assert body["exists"] is True
    assert body["artifact"]["storage_key"] == "audio/youtube_abc123_A_T.mp3"


def test_status_reports_pool_and_strategies(tmp_path, object_store):
    client, _ = _client(tmp_path, object_store, cobalt_ok, rapidapi_keys=["k1", "k2"])

    body = client.get('/api/status').get_json()

    assert body["success"] is True
    assert body["summary"]["total_apis"] == 6
    assert body["summary"]["has_unlimited"] is True
    assert all("credential" not in api for api in body["pool"]["apis"])
    assert set(body["strategies"]) == {
        "rapidapi", "cloudconvert-production", "cloudconvert-sandbox", "cobalt",
    }
    assert body["strategies"]["cloudconvert-production"]["gate"]["daily_limit"] == 10


@pytest.mark.parametrize("value,expected", [("1", True), ("false", False), (None, True)])
def test_config_redirect_first_flag(value, expected):
    env = {} if value is None else {"REDIRECT_FIRST": value}
    assert ServiceConfig.from_env(env).redirect_first is expected


def test_config_collects_and_redacts_keys():
    config = ServiceConfig.from_env({
        "RAPIDAPI_KEY": "aaaa1111", "RAPIDAPI_KEY_2": "bbbb2222", "RAPIDAPI_KEYS": "aaaa1111, cccc3333",
        "CLOUDCONVERT_API_KEY": "secretvalue",
    })
    assert config.rapidapi_keys == ["aaaa1111", "bbbb2222", "cccc3333"]
    redacted = config.to_dict()
    assert redacted["rapidapi_keys"] == ["aaaa***", "bbbb***", "cccc***"]
    assert redacted["cloudconvert_api_key"] == "secr***"


def test_artifact_lookup_error_is_structured(tmp_path, object_store):
    client, services = _client(tmp_path, object_store, cobalt_ok)
    with patch.object(services.database, "get_artifact", side_effect=sqlite3.OperationalError("locked")):
        stream = client.get('/api/stream/abc123')
        artifact = client.get('/api/artifacts/abc123')

    for response in (stream, artifact):
        assert response.status_code == 500
        assert response.get_json()["error"]["code"] == "internal_error"
