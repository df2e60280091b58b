"""
Tests for the governed HTTP client and rate governor.

Covers:
- Status code to Outcome mapping
- Network failures surfacing as TRANSIENT_ERROR
- Per-service credential headers
- Minimum-interval pacing with a fake clock
- Adapter envelope unwrapping and health
"""
import pytest
import requests

from catalog_sync.ingestion import (
    ACADEMY,
    LABS,
    AcademyAdapter,
    HttpClient,
    LabsAdapter,
    Outcome,
    RateGovernor,
    RetryConfig,
)
from catalog_sync.ingestion.http_client import labs_headers


class FakeResponse:
    def __init__(self, status_code, body=None, text=None, headers=None):
        self.status_code = status_code
        self._body = body
        self._text = text
        self.headers = headers or {}

    def json(self):
        if self._text is not None:
            raise ValueError("No JSON object could be decoded")
        return self._body


class FakeSession:
    """Returns queued responses (or raises queued exceptions) per URL; a list is served in order."""

    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    def get(self, url, headers=None, timeout=None):
        self.requests.append({"url": url, "headers": headers, "timeout": timeout})
        response = self.responses[url]
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


BASE_URLS = {ACADEMY: "https://academy.test", LABS: "https://labs.test"}


def make_client(responses, governor=None):
    session = FakeSession(responses)
    client = HttpClient(
        governor or RateGovernor(0.0),
        base_urls=BASE_URLS,
        retry_config=RetryConfig(timeout_seconds=5),
        origins={LABS: "https://app.test"},
        session=session,
    )
    return client, session


def test_ok_response_returns_payload():
    client, session = make_client({
        "https://academy.test/api/v2/modules/5": FakeResponse(200, {"data": {"id": 5}}),
    })

    result = client.fetch_entity(ACADEMY, "api/v2/modules/5", "session=abc")

    assert result.ok
    assert result.outcome is Outcome.OK
    assert result.payload == {"data": {"id": 5}}
    assert session.requests[0]["timeout"] == 5


@pytest.mark.parametrize("status, outcome", [
    (404, Outcome.NOT_FOUND),
    (401, Outcome.FORBIDDEN),
    (403, Outcome.FORBIDDEN),
    (429, Outcome.TRANSIENT_ERROR),
    (500, Outcome.TRANSIENT_ERROR),
    (503, Outcome.TRANSIENT_ERROR),
])
def test_status_codes_map_to_outcomes(status, outcome):
    client, _ = make_client({"https://academy.test/x": FakeResponse(status, {})})

    result = client.fetch_entity(ACADEMY, "x", "c")

    assert not result.ok
    assert result.outcome is outcome
    assert result.status_code == status
    assert result.payload is None


def test_non_json_body_is_malformed():
    client, _ = make_client({"https://academy.test/x": FakeResponse(200, text="<html>")})

    result = client.fetch_entity(ACADEMY, "x", "c")

    assert result.outcome is Outcome.MALFORMED_PAYLOAD


def test_non_object_body_is_malformed():
    client, _ = make_client({"https://academy.test/x": FakeResponse(200, [1, 2, 3])})

    result = client.fetch_entity(ACADEMY, "x", "c")

    assert result.outcome is Outcome.MALFORMED_PAYLOAD


def test_network_error_is_transient():
    client, _ = make_client({
        "https://labs.test/api/v4/machine/tags/1": requests.ConnectionError("connection reset"),
    })

    result = client.fetch_entity(LABS, "api/v4/machine/tags/1", "token")

    assert result.outcome is Outcome.TRANSIENT_ERROR
    assert "ConnectionError" in result.detail


def make_retrying_client(responses, monkeypatch, max_retries=1):
    client, session = make_client(responses)
    client.retry_config = RetryConfig(max_retries=max_retries, timeout_seconds=5)
    backoffs = []
    monkeypatch.setattr(client, "_sleep_with_backoff", lambda attempt, retry_after: backoffs.append(attempt))
    return client, session, backoffs


def test_retry_recovers_after_transient_status(monkeypatch):
    client, session, backoffs = make_retrying_client({
        "https://academy.test/x": [FakeResponse(503, {}), FakeResponse(200, {"data": {"id": 1}})],
    }, monkeypatch)

    result = client.fetch_entity(ACADEMY, "x", "c")

    assert result.ok
    assert len(session.requests) == 2
    assert backoffs == [0]


def test_last_attempt_returns_final_status(monkeypatch):
    client, session, backoffs = make_retrying_client({
        "https://academy.test/x": [FakeResponse(503, {}), FakeResponse(503, {})],
    }, monkeypatch)

    result = client.fetch_entity(ACADEMY, "x", "c")

    assert result.outcome is Outcome.TRANSIENT_ERROR
    assert result.status_code == 503
    assert len(session.requests) == 2
    assert backoffs == [0]


def test_last_attempt_returns_network_error(monkeypatch):
    client, session, _ = make_retrying_client({
        "https://academy.test/x": [requests.Timeout("slow"), requests.Timeout("slower")],
    }, monkeypatch)

    result = client.fetch_entity(ACADEMY, "x", "c")

    assert result.outcome is Outcome.TRANSIENT_ERROR
    assert "Timeout" in result.detail
    assert len(session.requests) == 2


def test_unknown_service_raises():
    client, _ = make_client({})

    with pytest.raises(ValueError):
        client.fetch_entity("forum", "x", None)


def test_credentials_attached_per_service():
    client, session = make_client({
        "https://academy.test/a": FakeResponse(200, {}),
        "https://labs.test/b": FakeResponse(200, {}),
    })

    client.fetch_entity(ACADEMY, "a", "htb_academy_session=abc")
    client.fetch_entity(LABS, "b", "token123")

    academy_headers = session.requests[0]["headers"]
    labs_request_headers = session.requests[1]["headers"]
    assert academy_headers["Cookie"] == "htb_academy_session=abc"
    assert "Authorization" not in academy_headers
    assert labs_request_headers["Authorization"] == "Bearer token123"
    assert labs_request_headers["Origin"] == "https://app.test"


def test_bearer_prefix_not_duplicated():
    assert labs_headers("Bearer abc", "https://app.test")["Authorization"] == "Bearer abc"


def test_governor_enforces_min_interval():
    clock = FakeClock()
    governor = RateGovernor(2.0, clock=clock, sleep=clock.sleep)

    starts = []
    for _ in range(3):
        governor.throttle(ACADEMY)
        starts.append(clock.now)
        clock.now += 0.5  # request duration

    assert clock.sleeps == [1.5, 1.5]
    assert all(b - a >= 2.0 for a, b in zip(starts, starts[1:]))


def test_governor_does_not_sleep_when_interval_elapsed():
    clock = FakeClock()
    governor = RateGovernor(2.0, clock=clock, sleep=clock.sleep)

    governor.throttle(ACADEMY)
    clock.now += 5.0
    governor.throttle(ACADEMY)

    assert clock.sleeps == []


def test_governor_paces_services_independently():
    clock = FakeClock()
    governor = RateGovernor(2.0, intervals={LABS: 1.0}, clock=clock, sleep=clock.sleep)

    governor.throttle(ACADEMY)
    governor.throttle(LABS)
    governor.throttle(LABS)

    assert clock.sleeps == [1.0]
    assert governor.interval_for(ACADEMY) == 2.0
    assert governor.interval_for(LABS) == 1.0


def test_client_throttles_every_request():
    clock = FakeClock()
    governor = RateGovernor(2.0, clock=clock, sleep=clock.sleep)
    client, _ = make_client({
        "https://academy.test/api/v2/modules/1": FakeResponse(404),
        "https://academy.test/api/v2/modules/2": FakeResponse(404),
    }, governor=governor)

    client.fetch_entity(ACADEMY, "api/v2/modules/1", "c")
    client.fetch_entity(ACADEMY, "api/v2/modules/2", "c")

    assert clock.sleeps == [2.0]


def test_academy_adapter_unwraps_data_envelope():
    client, _ = make_client({
        "https://academy.test/api/v2/external/public/labs/relations/exams/3":
            FakeResponse(200, {"data": {"modules": [{"id": 5}]}}),
    })
    adapter = AcademyAdapter(client, "c")

    result = adapter.fetch_exam_modules(3)

    assert result.ok
    assert result.payload == [{"id": 5}]
    assert adapter.health_dict() == {"healthy": True, "records": 1, "error": None}


def test_adapter_missing_envelope_is_malformed():
    client, _ = make_client({
        "https://labs.test/api/v4/machine/profile/Shocker": FakeResponse(200, {"message": "ok"}),
    })
    adapter = LabsAdapter(client, "token")

    result = adapter.fetch_machine("Shocker")

    assert result.outcome is Outcome.MALFORMED_PAYLOAD
    health = adapter.get_health()
    assert not health.is_healthy
    assert "info" in health.error_message


def test_adapter_not_found_keeps_source_healthy():
    client, _ = make_client({"https://academy.test/api/v2/modules/7": FakeResponse(404)})
    adapter = AcademyAdapter(client, "c")

    result = adapter.fetch_module(7)

    assert result.outcome is Outcome.NOT_FOUND
    assert adapter.get_health().is_healthy
    assert adapter.get_health().records_fetched == 0
