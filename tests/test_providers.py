import pytest

from conversion.providers import CloudConvertProvider, CobaltProvider, RapidApiProvider
from conversion.providers.rapidapi_provider import Mp3V2025Shape, Mp315Shape, Mp36Shape
from conversion.quota_pool import QuotaPool
from shared.errors import FailureReason, ProviderError
from shared.models import MediaRequest

from conftest import FakeResponse, FakeSession, failing_handler


@pytest.fixture
def media():
    return MediaRequest(media_id="abc123", title="Song", artist="Band")


# --- Response shapes ---

def test_mp36_shape_normalizes_fields():
    result = Mp36Shape().normalize(
        {"status": "ok", "link": "https://cdn/a.mp3", "title": "T", "filesize": 1234, "duration": 61.5},
        "host-a",
    )
    assert result.result_link == "https://cdn/a.mp3"
    assert result.title == "T"
    assert result.size_bytes == 1234
    assert result.duration_seconds == 61.5
    assert result.provider == "host-a"


def test_mp36_shape_rejects_processing_status():
    with pytest.raises(ProviderError):
        Mp36Shape().normalize({"status": "processing", "link": "https://cdn/a.mp3"}, "host-a")


def test_mp3_2025_shape_prefers_link_download_and_parses_length_seconds():
    result = Mp3V2025Shape().normalize(
        {"linkStream": "https://s", "linkDownload": "https://d", "video_title": "V",
         "size": "2048", "lengthSeconds": "215"},
        "host-b",
    )
    assert result.result_link == "https://d"
    assert result.title == "V"
    assert result.size_bytes == 2048
    assert result.duration_seconds == 215.0


def test_mp315_shape_field_fallbacks_and_default_title():
    result = Mp315Shape().normalize({"mp3_url": "https://m", "file_size": 10}, "host-c")
    assert result.result_link == "https://m"
    assert result.title == "YouTube Audio"
    assert result.size_bytes == 10


def test_shape_without_link_is_provider_error():
    with pytest.raises(ProviderError):
        Mp315Shape().normalize({"title": "no link"}, "host-c")


# --- RapidAPI pool provider ---

def test_rapidapi_sends_headers_and_counts_success(database, endpoint_specs, media):
    pool = QuotaPool(database, ["key-one"], endpoint_specs)
    session = FakeSession(lambda m, u, kw: FakeResponse(json_data={"status": "ok", "link": "https://cdn/x.mp3"}))
    provider = RapidApiProvider(pool, session=session)

    outcome = provider.invoke(media)

    assert outcome.ok
    assert outcome.result.result_link == "https://cdn/x.mp3"
    call = session.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://host-a.example/dl?id=abc123"
    assert call["headers"] == {"x-rapidapi-key": "key-one", "x-rapidapi-host": "host-a.example"}
    assert pool.entries[0].requests_used == 1


def test_rapidapi_post_endpoint_sends_json_body(database, endpoint_specs, media):
    pool = QuotaPool(database, ["k"], endpoint_specs[1:2])
    session = FakeSession(lambda m, u, kw: FakeResponse(json_data={"linkDownload": "https://d"}))
    outcome = RapidApiProvider(pool, session=session).invoke(media)

    assert outcome.ok
    assert session.calls[0]["method"] == "POST"
    assert session.calls[0]["url"] == "https://host-b.example/audio"
    assert session.calls[0]["json"] == {"id": "abc123"}


def test_rapidapi_http_error_is_failure_without_quota_use(database, endpoint_specs, media):
    pool = QuotaPool(database, ["k"], endpoint_specs)
    session = FakeSession(lambda m, u, kw: FakeResponse(status_code=500))
    outcome = RapidApiProvider(pool, session=session).invoke(media)

    assert not outcome.ok
    assert outcome.reason == FailureReason.PROVIDER_ERROR
    entry = pool.entries[0]
    assert entry.requests_used == 0
    assert database.load_pool_usage()[(entry.key_hash, entry.host)]["failure_count"] == 1


def test_rapidapi_network_error_records_attempt_once(database, endpoint_specs, media):
    pool = QuotaPool(database, ["k"], endpoint_specs)
    outcome = RapidApiProvider(pool, session=FakeSession(failing_handler)).invoke(media)

    assert not outcome.ok
    entry = pool.entries[0]
    row = database.load_pool_usage()[(entry.key_hash, entry.host)]
    assert row["failure_count"] == 1
    assert row["requests_used"] == 0


def test_rapidapi_retries_on_next_entry_when_configured(database, endpoint_specs, media):
    pool = QuotaPool(database, ["k"], endpoint_specs)

    def handler(method, url, kwargs):
        if "host-a" in url:
            return FakeResponse(status_code=503)
        return FakeResponse(json_data={"linkDownload": "https://b"})

    outcome = RapidApiProvider(pool, session=FakeSession(handler), max_attempts=2).invoke(media)
    assert outcome.ok
    assert outcome.result.provider == "host-b.example"


def test_rapidapi_without_keys_reports_quota_exhausted(database, endpoint_specs, media):
    pool = QuotaPool(database, [], endpoint_specs)
    provider = RapidApiProvider(pool, session=FakeSession(failing_handler))
    assert not provider.is_available
    outcome = provider.invoke(media)
    assert outcome.reason == FailureReason.QUOTA_EXHAUSTED


# --- CloudConvert ---

class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def _cloudconvert(session, clock, **kwargs):
    return CloudConvertProvider("cc-key-1234567890", session=session, clock=clock,
                                sleep=clock.sleep, poll_interval=2, job_timeout=10, **kwargs)


def test_cloudconvert_submits_polls_and_reads_export_url(media):
    statuses = iter(["waiting", "processing", "finished"])

    def handler(method, url, kwargs):
        if method == "POST":
            return FakeResponse(json_data={"data": {"id": "job-1"}})
        status = next(statuses)
        tasks = [{"operation": "export/url",
                  "result": {"files": [{"url": "https://cc/out.mp3", "filename": "out.mp3"}]}}]
        return FakeResponse(json_data={"data": {"status": status, "tasks": tasks if status == "finished" else []}})

    session = FakeSession(handler)
    clock = FakeClock()
    outcome = _cloudconvert(session, clock).invoke(media)

    assert outcome.ok
    assert outcome.result.result_link == "https://cc/out.mp3"
    assert outcome.result.filename == "out.mp3"
    payload = session.calls[0]["json"]
    assert payload["tasks"]["import-audio"]["url"] == "https://www.youtube.com/watch?v=abc123"
    assert payload["tasks"]["convert-audio"]["audio_bitrate"] == 128
    assert session.calls[0]["headers"]["Authorization"] == "Bearer cc-key-1234567890"
    assert clock.now == 4


def test_cloudconvert_stuck_job_times_out(media):
    def handler(method, url, kwargs):
        if method == "POST":
            return FakeResponse(json_data={"data": {"id": "job-2"}})
        return FakeResponse(json_data={"data": {"status": "processing"}})

    clock = FakeClock()
    session = FakeSession(handler)
    outcome = _cloudconvert(session, clock).invoke(media)

    assert not outcome.ok
    assert outcome.reason == FailureReason.JOB_TIMEOUT
    assert clock.now <= 10
    assert len(session.calls) < 10


def test_cloudconvert_job_error_is_provider_error(media):
    def handler(method, url, kwargs):
        if method == "POST":
            return FakeResponse(json_data={"data": {"id": "job-3"}})
        return FakeResponse(json_data={"data": {"status": "error", "message": "bad input"}})

    outcome = _cloudconvert(FakeSession(handler), FakeClock()).invoke(media)
    assert outcome.reason == FailureReason.PROVIDER_ERROR
    assert "bad input" in outcome.message


def test_cloudconvert_without_key_is_not_configured(media):
    provider = CloudConvertProvider(None, session=FakeSession(failing_handler))
    assert not provider.is_available
    assert provider.invoke(media).reason == FailureReason.NOT_CONFIGURED


def test_cloudconvert_sandbox_uses_its_own_base(media):
    session = FakeSession(lambda m, u, kw: FakeResponse(status_code=401))
    provider = _cloudconvert(session, FakeClock(), name="cloudconvert-sandbox",
                             api_base="https://api.sandbox.cloudconvert.com")
    outcome = provider.invoke(media)
    assert not outcome.ok
    assert session.calls[0]["url"] == "https://api.sandbox.cloudconvert.com/v2/jobs"


# --- Cobalt ---

@pytest.mark.parametrize("status", ["success", "stream", "redirect", "tunnel"])
def test_cobalt_success_statuses_are_ready_to_play(media, status):
    session = FakeSession(lambda m, u, kw: FakeResponse(json_data={"status": status, "url": "https://co/a"}))
    outcome = CobaltProvider(session=session).invoke(media)
    assert outcome.ok
    assert outcome.result.ready_to_play
    assert session.calls[0]["json"]["isAudioOnly"] is True


def test_cobalt_error_status_is_failure(media):
    session = FakeSession(lambda m, u, kw: FakeResponse(json_data={"status": "error", "text": "nope"}))
    outcome = CobaltProvider(session=session).invoke(media)
    assert not outcome.ok
    assert outcome.message == "nope"


def test_cobalt_non_json_body_is_failure(media):
    session = FakeSession(lambda m, u, kw: FakeResponse(json_data=None))
    outcome = CobaltProvider(session=session).invoke(media)
    assert outcome.reason == FailureReason.PROVIDER_ERROR


def test_failures_carry_provider_name(media):
    outcome = CobaltProvider(session=FakeSession(failing_handler)).invoke(media)
    assert outcome.provider == "cobalt"
    assert outcome.reason == FailureReason.PROVIDER_ERROR
