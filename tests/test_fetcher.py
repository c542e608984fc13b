import logging
import pickle

import pytest
import requests

from portal.errors import FetchError, RequestCancelled
from portal.fetcher import NO_CONTENT, CancellationToken, Fetcher


@pytest.fixture
def fetcher(fake_session):
    return Fetcher(session=fake_session)


def test_204_returns_no_content(fetcher, fake_session, make_response):
    fake_session.queue(make_response(204))
    assert fetcher("http://api.test/x") is NO_CONTENT


@pytest.mark.parametrize("content_type", ["text/html", "text/plain; charset=utf-8", None])
def test_non_json_success_returns_no_content(fetcher, fake_session, make_response, content_type):
    fake_session.queue(make_response(200, b"<html></html>", content_type=content_type))
    assert fetcher("http://api.test/x") is NO_CONTENT


def test_json_body_is_decoded(fetcher, fake_session, make_response):
    body = {"data": {"unreadCount": 4, "breakdown": {"announcements": 1, "messages": 3}}}
    fake_session.queue(make_response(200, body, content_type="application/json; charset=utf-8"))
    assert fetcher("http://api.test/x") == body


def test_same_url_twice_gives_equal_results(fetcher, fake_session, make_response):
    fake_session.queue(make_response(200, {"data": [1, 2, 3]}))
    assert fetcher("http://api.test/x") == fetcher("http://api.test/x")
    assert len(fake_session.calls) == 2


def test_error_message_from_body(fetcher, fake_session, make_response):
    fake_session.queue(make_response(403, {"message": "Not allowed for BURSAR"}))
    with pytest.raises(FetchError) as exc:
        fetcher("http://api.test/fees")
    assert exc.value.kind == FetchError.HTTP
    assert exc.value.status == 403
    assert exc.value.message == "Not allowed for BURSAR"
    assert str(exc.value) == "API Error: Not allowed for BURSAR"


def test_error_field_used_when_no_message(fetcher, fake_session, make_response):
    fake_session.queue(make_response(401, {"error": "Token expired"}))
    with pytest.raises(FetchError) as exc:
        fetcher("http://api.test/x")
    assert exc.value.message == "Token expired"


@pytest.mark.parametrize(
    "status,body,phrase",
    [
        (404, b"<h1>nope</h1>", "Not Found"),
        (500, None, "Internal Server Error"),
        (502, {"detail": "upstream"}, "Bad Gateway"),
    ],
)
def test_error_falls_back_to_reason_phrase(fetcher, fake_session, make_response, status, body, phrase):
    fake_session.queue(make_response(status, body, content_type="text/html"))
    with pytest.raises(FetchError) as exc:
        fetcher("http://api.test/x")
    assert exc.value.status == status
    assert exc.value.message == phrase


def test_http_failure_is_logged(fetcher, fake_session, make_response, caplog):
    fake_session.queue(make_response(500, {"message": "boom"}))
    with caplog.at_level(logging.ERROR, logger="portal.fetcher"):
        with pytest.raises(FetchError):
            fetcher("http://api.test/x")
    assert "Fetch error (500)" in caplog.text


def test_malformed_json_is_a_decode_failure(fetcher, fake_session, make_response):
    fake_session.queue(make_response(200, b"{not json"))
    with pytest.raises(FetchError) as exc:
        fetcher("http://api.test/x")
    assert exc.value.kind == FetchError.DECODE
    assert exc.value.status == 200


def test_transport_failure_is_a_network_failure(fetcher, fake_session):
    fake_session.queue(requests.ConnectionError("connection refused"))
    with pytest.raises(FetchError) as exc:
        fetcher("http://api.test/x")
    assert exc.value.kind == FetchError.NETWORK
    assert exc.value.status is None
    assert len(fake_session.calls) == 1


def test_no_token_means_no_authorization_header(fake_session, make_response):
    fake_session.queue(make_response(204))
    Fetcher(token_getter=lambda: None, session=fake_session)("http://api.test/x")
    headers = fake_session.calls[0]["headers"]
    assert "Authorization" not in headers
    assert headers["Accept"] == "application/json"
    assert headers["Content-Type"] == "application/json"


def test_token_sent_as_bearer(fake_session, make_response):
    fake_session.queue(make_response(204))
    Fetcher(token_getter=lambda: "abc123", session=fake_session)("http://api.test/x")
    assert fake_session.calls[0]["headers"]["Authorization"] == "Bearer abc123"


def test_token_is_read_on_every_call(fake_session, make_response):
    tokens = iter(["first", "second"])
    fetcher = Fetcher(token_getter=lambda: next(tokens), session=fake_session)
    fake_session.queue(make_response(204))
    fetcher("http://api.test/x")
    fetcher("http://api.test/x")
    assert [c["headers"]["Authorization"] for c in fake_session.calls] == [
        "Bearer first",
        "Bearer second",
    ]


def test_relative_urls_join_base_url(fake_session, make_response):
    fake_session.queue(make_response(204))
    fetcher = Fetcher(base_url="http://api.test/api/v1/", session=fake_session)
    fetcher("/notifications/me")
    fetcher("https://other.test/ping")
    assert fake_session.calls[0]["url"] == "http://api.test/api/v1/notifications/me"
    assert fake_session.calls[1]["url"] == "https://other.test/ping"


def test_single_attempt_and_no_default_timeout(fetcher, fake_session, make_response):
    fake_session.queue(make_response(503, None))
    with pytest.raises(FetchError):
        fetcher("http://api.test/x")
    assert len(fake_session.calls) == 1
    assert fake_session.calls[0]["timeout"] is None


def test_mutation_sends_json_body(fetcher, fake_session, make_response):
    fake_session.queue(make_response(201, {"data": {"id": 9}}))
    result = fetcher.post("http://api.test/communications/announcements", data={"title": "Exams"})
    assert result == {"data": {"id": 9}}
    assert fake_session.calls[0]["method"] == "POST"
    assert fake_session.calls[0]["json"] == {"title": "Exams"}


def test_cancelled_token_skips_request(fetcher, fake_session, make_response):
    fake_session.queue(make_response(204))
    token = CancellationToken()
    token.cancel()
    with pytest.raises(RequestCancelled):
        fetcher("http://api.test/x", cancel_token=token)
    assert fake_session.calls == []


def test_cancel_while_in_flight_discards_result(fetcher, fake_session, make_response):
    token = CancellationToken()

    def respond():
        token.cancel()
        return make_response(200, {"data": 1})

    fake_session.queue(respond)
    with pytest.raises(RequestCancelled):
        fetcher("http://api.test/x", cancel_token=token)


def test_close_releases_session(fetcher, fake_session):
    fetcher.close()
    assert fake_session.closed


def test_no_content_is_falsy_singleton():
    assert not NO_CONTENT
    assert pickle.loads(pickle.dumps(NO_CONTENT)) is NO_CONTENT


def test_fetch_error_survives_pickling():
    error = pickle.loads(pickle.dumps(FetchError.http(404, "Missing", url="/x")))
    assert (error.kind, error.status, error.message, error.url) == ("http", 404, "Missing", "/x")


def test_unknown_kind_rejected():
    with pytest.raises(ValueError):
        FetchError("timeout", "slow")
