import json
import os

from sendy_sync.models import SyncResult
from sendy_sync.report import SkipCounters, SyncReport, report_filename, write_report


def sample_report():
    return SyncReport(
        list_id="L1",
        since="2024-01-01T00:00:00Z",
        checked=3,
        attempted=2,
        skipped=SkipCounters(already_subscribed=1, not_in_list=2),
        results=[SyncResult("a@x.com", True, "true", 200),
                 SyncResult("b@x.com", False, "Invalid email address.", 200)],
    )


def test_report_filename():
    assert report_filename("sync_report", 1700000000000) == "sync_report_1700000000000.json"
    assert report_filename("shopify_sync_report", 5) == "shopify_sync_report_5.json"


def test_report_shape():
    data = sample_report().to_dict()
    assert data["dryRun"] is False
    assert data["listId"] == "L1"
    assert data["until"] is None
    assert data["totals"] == {
        "checked": 3,
        "attempted": 2,
        "subscribed": 1,
        "would_subscribe": 2,
        "skipped": {"cached": 0, "alreadySubscribed": 1, "unsubscribed": 0,
                    "bouncedOrComplained": 0, "notInList": 2, "unknownStatus": 0},
        "subscriptionFailures": 1,
    }
    assert data["results"][1] == {"email": "b@x.com", "success": False,
                                  "message": "Invalid email address.", "statusCode": 200}


def test_report_extras():
    report = sample_report()
    report.extra_totals = {"orders_fetched": 4}
    report.extra = {"sample_customers": [{"email": "a@x.com"}]}
    data = report.to_dict()
    assert data["totals"]["orders_fetched"] == 4
    assert data["sample_customers"] == [{"email": "a@x.com"}]
    assert list(data)[-1] == "results"


def test_write_report(tmp_path):
    path = write_report(sample_report(), directory=str(tmp_path))
    assert os.path.dirname(path) == str(tmp_path)
    assert os.path.basename(path).startswith("sync_report_")
    with open(path) as f:
        assert json.load(f)["totals"]["subscribed"] == 1


def test_write_report_never_overwrites(tmp_path):
    first = write_report(sample_report(), directory=str(tmp_path), now_ms=1700000000000)
    second_report = sample_report()
    second_report.list_id = "L2"
    second = write_report(second_report, directory=str(tmp_path), now_ms=1700000000000)
    third = write_report(sample_report(), directory=str(tmp_path), now_ms=1700000000000)

    assert os.path.basename(first) == "sync_report_1700000000000.json"
    assert os.path.basename(second) == "sync_report_1700000000000_1.json"
    assert os.path.basename(third) == "sync_report_1700000000000_2.json"
    with open(first) as f:
        assert json.load(f)["listId"] == "L1"
    with open(second) as f:
        assert json.load(f)["listId"] == "L2"
