import pytest
import requests

from conftest import FakeSession, make_response
from sendy_sync import config
from sendy_sync.models import CandidateRecord, SubscribeOutcome, SubscriptionStatus
from sendy_sync.sendy_client import SendyClient, classify_subscribe_response


def sendy(responses, sleeps, base_url="http://sendy.example.com"):
    return SendyClient(base_url=base_url, api_key="key", max_retries=3, rate_limit_buffer=0.5,
                       session=FakeSession(responses), sleep=sleeps.append)


def text(body, status_code=200):
    return make_response(status_code, text=body)


@pytest.mark.parametrize("body, outcome", [
    ("true", SubscribeOutcome.SUBSCRIBED),
    ("1", SubscribeOutcome.SUBSCRIBED),
    ("Already subscribed.", SubscribeOutcome.ALREADY_SUBSCRIBED),
    ("Invalid email address.", SubscribeOutcome.FAILED),
    ("Some fields are missing.", SubscribeOutcome.FAILED),
    ("Invalid list ID.", SubscribeOutcome.FAILED),
    ("Bounced email address.", SubscribeOutcome.FAILED),
    ("Email is suppressed. Complained.", SubscribeOutcome.FAILED),
    ("", SubscribeOutcome.UNRECOGNIZED),
    ("<html><body>Error 1</body></html>", SubscribeOutcome.UNRECOGNIZED),
    ("Error code 1 occurred", SubscribeOutcome.UNRECOGNIZED),
])
def test_classify_subscribe_response(body, outcome):
    assert classify_subscribe_response(body) is outcome


def test_classify_success_flags():
    assert classify_subscribe_response("Already subscribed.").success
    assert not classify_subscribe_response("something odd").success


def test_subscriber_status(sleeps):
    client = sendy([text("Subscribed")], sleeps)
    assert client.get_subscriber_status("a@x.com", "L1") is SubscriptionStatus.SUBSCRIBED
    call = client.session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "http://sendy.example.com/api/subscribers/subscription-status.php"
    assert call["data"] == {"api_key": "key", "email": "a@x.com", "list_id": "L1"}


def test_subscriber_status_not_in_list(sleeps):
    client = sendy([text("Email does not exist in list")], sleeps)
    assert client.get_subscriber_status("a@x.com", "L1") is SubscriptionStatus.NOT_IN_LIST


def test_no_data_passed_retries_as_get(sleeps):
    client = sendy([text("No data passed"), text("Unsubscribed")], sleeps)
    assert client.get_subscriber_status("a@x.com", "L1") is SubscriptionStatus.UNSUBSCRIBED
    retry = client.session.calls[1]
    assert retry["method"] == "GET"
    assert retry["params"]["api_key"] == "key"


def test_no_data_passed_falls_back_to_https(sleeps):
    client = sendy([text("No data passed"), text("No data passed"), text("Bounced")], sleeps)
    assert client.get_subscriber_status("a@x.com", "L1") is SubscriptionStatus.BOUNCED
    assert client.session.calls[2]["url"].startswith("https://sendy.example.com/")


def test_status_check_network_error_is_unknown(sleeps):
    client = sendy([requests.exceptions.ConnectionError("down")], sleeps)
    assert client.get_subscriber_status("a@x.com", "L1") is SubscriptionStatus.UNKNOWN


def test_subscribe_success(sleeps):
    client = sendy([text("true")], sleeps, base_url="https://sendy.example.com/")
    result = client.subscribe("a@x.com", "L1", name="Ann")
    assert result.success
    assert result.message == "true"
    assert result.status_code == 200
    data = client.session.calls[0]["data"]
    assert client.session.calls[0]["url"] == "https://sendy.example.com/subscribe"
    assert data["list"] == "L1"
    assert data["boolean"] == "true"
    assert data["name"] == "Ann"


def test_subscribe_failure_keeps_message_verbatim(sleeps):
    client = sendy([text("Invalid email address.")], sleeps)
    result = client.subscribe("bad", "L1")
    assert not result.success
    assert result.message == "Invalid email address."


def test_subscribe_empty_body_retried_once(sleeps):
    client = sendy([text(""), text("true")], sleeps)
    assert client.subscribe("a@x.com", "L1").success
    assert client.session.calls[1]["url"] == "https://sendy.example.com/subscribe"


def test_subscribe_retries_server_error(sleeps):
    client = sendy([text("Service Unavailable", 503), text("true")], sleeps)
    result = client.subscribe("a@x.com", "L1")
    assert result.success
    assert result.status_code == 200
    assert sleeps == [1]
    assert len(client.session.calls) == 2


def test_subscribe_waits_out_rate_limit(sleeps):
    limited = make_response(429, text="Too Many Requests", headers={"Retry-After": "1"})
    client = sendy([limited, text("true")], sleeps)
    assert client.subscribe("a@x.com", "L1").success
    assert sleeps == [1.5]


def test_subscribe_gives_up_after_max_retries(sleeps):
    client = sendy([text("Bad Gateway", 502)] * 3, sleeps)
    result = client.subscribe("a@x.com", "L1")
    assert not result.success
    assert result.status_code == 502
    assert sleeps == [1, 2]


def test_status_check_retries_server_error(sleeps):
    client = sendy([text("Internal Server Error", 500), text("Subscribed")], sleeps)
    assert client.get_subscriber_status("a@x.com", "L1") is SubscriptionStatus.SUBSCRIBED
    assert sleeps == [1]


def test_status_check_waits_out_rate_limit(sleeps):
    limited = make_response(429, text="Too Many Requests", headers={"Retry-After": "2"})
    client = sendy([limited, text("Unsubscribed")], sleeps)
    assert client.get_subscriber_status("a@x.com", "L1") is SubscriptionStatus.UNSUBSCRIBED
    assert sleeps == [2.5]
    assert [c["method"] for c in client.session.calls] == ["POST", "POST"]


def test_subscribe_network_error_is_a_failed_result(sleeps):
    client = sendy([requests.exceptions.Timeout("slow")], sleeps)
    result = client.subscribe("a@x.com", "L1")
    assert not result.success
    assert "slow" in result.message


def test_bulk_subscribe_throttles_between_calls(sleeps):
    client = sendy([text("true"), text("true"), text("Already subscribed.")], sleeps)
    records = [CandidateRecord(f"{n}@x.com") for n in range(3)]
    results = client.bulk_subscribe("L1", records, batch_size=2, throttle_ms=250)
    assert [r.success for r in results] == [True, True, True]
    assert [r.email for r in results] == ["0@x.com", "1@x.com", "2@x.com"]
    assert sleeps == [0.25, 0.25]


def test_bulk_subscribe_dry_run_makes_no_calls(sleeps):
    client = sendy([], sleeps)
    records = [CandidateRecord("a@x.com"), CandidateRecord("b@x.com")]
    results = client.bulk_subscribe("L1", records, dry_run=True)
    assert [(r.success, r.message, r.dry_run) for r in results] == [(False, "dry-run", True)] * 2
    assert client.session.calls == []
    assert sleeps == []


def test_active_subscriber_count(sleeps):
    client = sendy([text("42")], sleeps)
    assert client.get_active_subscriber_count("L1")["count"] == 42
    client = sendy([text("Invalid API key")], sleeps)
    result = client.get_active_subscriber_count("L1")
    assert not result["success"]
    assert result["raw"] == "Invalid API key"


def test_list_lists_requires_brand(sleeps, monkeypatch):
    monkeypatch.setattr(config, "SENDY_BRAND_ID", "")
    result = sendy([], sleeps).list_lists()
    assert not result["success"]
    assert "SENDY_BRAND_ID" in result["message"]


def test_list_lists_parses_json(sleeps):
    client = sendy([text('{"list1": {"id": "abc", "name": "Main"}}')], sleeps)
    result = client.list_lists(brand_id="1")
    assert result["success"]
    assert result["lists"]["list1"]["name"] == "Main"
    assert client.session.calls[0]["data"]["brand_id"] == "1"


def test_list_brands_html_response(sleeps):
    result = sendy([text("<!DOCTYPE html><html></html>")], sleeps).list_brands()
    assert not result["success"]
    assert "HTML response" in result["message"]
