import dataclasses

import pytest
from fastapi.testclient import TestClient

from mail_relay.api import HEALTH_MESSAGE, SEND_PATH, create_app
from mail_relay.dispatch import ResolvedMessage
from mail_relay.errors import RelayError
from mail_relay.prometheus import MailMetrics
from mail_relay.rate_limit import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    return MailMetrics()


@pytest.fixture
def client(settings, relay, clock, metrics):
    app = create_app(settings, relay=relay, limiter=RateLimiter(clock=clock), metrics=metrics)
    return TestClient(app)


def test_health_check(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.text == HEALTH_MESSAGE
    assert response.headers["content-type"].startswith("text/plain")


def test_health_check_is_never_rate_limited(client):
    for _ in range(10):
        assert client.get("/").status_code == 200


def test_send_with_explicit_fields(client, relay):
    response = client.post(SEND_PATH, json={"recipients": "a@x.com,b@x.com", "subject": "Hi", "message": "Body"})

    assert response.status_code == 200
    assert response.content == b""
    assert relay.sent == [ResolvedMessage(("a@x.com", "b@x.com"), "Subject: Hi", "Body")]


def test_send_falls_back_to_defaults(client, relay):
    response = client.post(SEND_PATH, json={"recipients": "", "subject": "", "message": "Body"})

    assert response.status_code == 200
    assert relay.sent == [ResolvedMessage(("c@x.com",), "Subject: Default\n", "Body")]


def test_missing_and_null_fields_default_to_empty(client, relay):
    assert client.post(SEND_PATH, json={"message": "Body"}).status_code == 200
    assert client.post(SEND_PATH, json={"recipients": None, "subject": None, "message": None}).status_code == 200
    assert relay.sent[0] == ResolvedMessage(("c@x.com",), "Subject: Default\n", "Body")
    assert relay.sent[1] == ResolvedMessage(("c@x.com",), "Subject: Default\n", "")


def test_unknown_fields_are_ignored(client, relay):
    response = client.post(SEND_PATH, json={"message": "Body", "priority": "high"})
    assert response.status_code == 200
    assert len(relay.sent) == 1


@pytest.mark.parametrize(
    "kwargs",
    [
        {"content": b"{not json", "headers": {"content-type": "application/json"}},
        {"content": b"", "headers": {"content-type": "application/json"}},
        {"json": ["a@x.com"]},
        {"json": {"recipients": 42, "message": "Body"}},
        {"json": {"message": {"text": "Body"}}},
    ],
    ids=["broken-json", "empty-body", "array", "number-field", "object-field"],
)
def test_malformed_body_is_400_without_relay(client, relay, kwargs):
    response = client.post(SEND_PATH, **kwargs)

    assert response.status_code == 400
    assert response.content == b""
    assert relay.sent == []


def test_invalid_recipients_are_400_without_relay(client, relay):
    response = client.post(SEND_PATH, json={"recipients": "nobody", "message": "Body"})
    assert response.status_code == 400
    assert relay.sent == []


def test_no_recipient_configured_is_400(settings, relay):
    app = create_app(dataclasses.replace(settings, default_recipients=()), relay=relay)
    response = TestClient(app).post(SEND_PATH, json={"message": "Body"})

    assert response.status_code == 400
    assert relay.sent == []


def test_relay_failure_is_400_and_service_keeps_serving(client, relay, caplog):
    relay.fail = RelayError("535 5.7.8 Authentication credentials invalid")

    with caplog.at_level("ERROR", logger="mail_relay.api"):
        response = client.post(SEND_PATH, json={"recipients": "a@x.com", "message": "Body"})

    assert response.status_code == 400
    assert response.content == b""
    assert "Authentication credentials invalid" in caplog.text

    relay.fail = None
    assert client.post(SEND_PATH, json={"recipients": "a@x.com", "message": "Body"}).status_code == 200
    assert client.get("/").status_code == 200


def test_sixth_request_in_window_is_rate_limited(client, relay):
    payload = {"recipients": "a@x.com", "message": "Body"}
    for _ in range(5):
        assert client.post(SEND_PATH, json=payload).status_code == 200

    response = client.post(SEND_PATH, json=payload)

    assert response.status_code == 429
    assert response.json() == {"message": "Too many requests"}
    assert response.headers["Retry-After"] == "60"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert len(relay.sent) == 5


def test_rate_limit_window_resets(client, clock):
    payload = {"recipients": "a@x.com", "message": "Body"}
    for _ in range(5):
        client.post(SEND_PATH, json=payload)
    assert client.post(SEND_PATH, json=payload).status_code == 429

    clock.now += 60
    assert client.post(SEND_PATH, json=payload).status_code == 200


def test_failed_requests_do_not_count(client, relay):
    for _ in range(5):
        assert client.post(SEND_PATH, content=b"{", headers={"content-type": "application/json"}).status_code == 400
    relay.fail = RelayError("relay down")
    for _ in range(5):
        assert client.post(SEND_PATH, json={"recipients": "a@x.com"}).status_code == 400
    relay.fail = None

    for _ in range(5):
        assert client.post(SEND_PATH, json={"recipients": "a@x.com"}).status_code == 200
    assert client.post(SEND_PATH, json={"recipients": "a@x.com"}).status_code == 429


def test_rate_limit_headers_on_send(client):
    response = client.post(SEND_PATH, json={"recipients": "a@x.com"})
    assert response.headers["X-RateLimit-Limit"] == "5"
    assert response.headers["X-RateLimit-Remaining"] == "4"
    assert response.headers["X-RateLimit-Reset"] == "60"

    failed = client.post(SEND_PATH, json={"recipients": "bad"})
    assert failed.headers["X-RateLimit-Remaining"] == "4"


def test_quota_is_per_client_key(settings, relay, clock):
    app = create_app(
        settings,
        relay=relay,
        limiter=RateLimiter(max_requests=1, clock=clock),
        key_func=lambda request: request.headers.get("x-client", "anon"),
    )
    client = TestClient(app)
    payload = {"recipients": "a@x.com"}

    assert client.post(SEND_PATH, json=payload, headers={"x-client": "one"}).status_code == 200
    assert client.post(SEND_PATH, json=payload, headers={"x-client": "one"}).status_code == 429
    assert client.post(SEND_PATH, json=payload, headers={"x-client": "two"}).status_code == 200


def test_metrics_endpoint_counts_outcomes(client, relay):
    client.post(SEND_PATH, json={"recipients": "a@x.com"})
    client.post(SEND_PATH, content=b"{", headers={"content-type": "application/json"})
    client.post(SEND_PATH, json={"recipients": "bad"})
    relay.fail = RelayError("down")
    client.post(SEND_PATH, json={"recipients": "a@x.com"})

    response = client.get("/metrics")

    assert response.status_code == 200
    body = response.text
    assert "mr_sent_total 1.0" in body
    assert "mr_errors_total 1.0" in body
    assert 'mr_rejected_total{reason="request_decode_error"} 1.0' in body
    assert 'mr_rejected_total{reason="invalid_recipients"} 1.0' in body


def test_metrics_count_rate_limited(client):
    for _ in range(6):
        client.post(SEND_PATH, json={"recipients": "a@x.com"})
    assert "mr_rate_limited_total 1.0" in client.get("/metrics").text


def test_cors_allows_any_origin(client):
    response = client.get("/", headers={"Origin": "https://example.org"})
    assert response.headers["access-control-allow-origin"] == "*"


def test_state_exposes_collaborators(settings, relay):
    app = create_app(settings, relay=relay)
    assert app.state.settings is settings
    assert app.state.relay is relay
    assert isinstance(app.state.limiter, RateLimiter)
    assert app.state.limiter.max_requests == 5
    assert app.state.limiter.window_seconds == 60


def test_requests_are_access_logged(client, caplog):
    with caplog.at_level("INFO", logger="mail_relay.api"):
        client.post(SEND_PATH, json={"recipients": "a@x.com", "message": "Body"})

    records = [r.getMessage() for r in caplog.records if r.name == "mail_relay.api"]
    assert any("POST" in line and SEND_PATH in line and "-> 200" in line for line in records)


def test_subject_with_line_break_is_400_without_relay(client, relay):
    response = client.post(SEND_PATH, json={"recipients": "a@x.com", "subject": "Hi\r\nBcc: evil@x.com", "message": "Body"})

    assert response.status_code == 400
    assert relay.sent == []
