import pytest

from conftest import FakeSendy
from sendy_sync.cache import DualLayerCache, FileCache, MemoryCache
from sendy_sync.models import CandidateRecord, SubscriptionStatus, SyncWindow, dedupe_records
from sendy_sync.sync import SyncOptions, SyncOrchestrator

LIST_ID = "L1"


@pytest.fixture
def cache(tmp_path):
    return DualLayerCache(memory=MemoryCache(ttl=3600), file=FileCache(str(tmp_path / "cache.json")))


def orchestrator(sendy, cache, **options):
    return SyncOrchestrator(sendy, cache, LIST_ID, SyncOptions(throttle_ms=0, **options), show_progress=False)


def records(*emails):
    return [CandidateRecord(email) for email in emails]


def test_persistent_hit_skips_status_check(cache):
    cache.file.set_email(LIST_ID, "known@x.com")
    sendy = FakeSendy()
    report = orchestrator(sendy, cache).run(records("known@x.com", "new@x.com"))

    assert sendy.status_checks == ["new@x.com"]
    assert sendy.subscribed == ["new@x.com"]
    assert report.skipped.already_subscribed == 1
    assert report.skipped.not_in_list == 1
    assert report.checked == 2
    assert report.attempted == 1
    assert report.subscribed == 1


def test_unsubscribed_is_never_resubscribed(cache):
    sendy = FakeSendy(statuses={"gone@x.com": SubscriptionStatus.UNSUBSCRIBED})
    report = orchestrator(sendy, cache).run(records("gone@x.com"))

    assert sendy.subscribed == []
    assert report.skipped.unsubscribed == 1
    assert cache.memory_hit(LIST_ID, "gone@x.com")
    assert not cache.persistent_hit(LIST_ID, "gone@x.com")


def test_subscribed_status_is_remembered_in_both_layers(cache):
    sendy = FakeSendy(statuses={"in@x.com": SubscriptionStatus.SUBSCRIBED})
    report = orchestrator(sendy, cache).run(records("in@x.com"))

    assert sendy.subscribed == []
    assert report.skipped.already_subscribed == 1
    assert cache.persistent_hit(LIST_ID, "in@x.com")


def test_bounced_and_complained_are_skipped(cache):
    sendy = FakeSendy(statuses={"b@x.com": SubscriptionStatus.BOUNCED,
                                "c@x.com": SubscriptionStatus.COMPLAINED})
    report = orchestrator(sendy, cache).run(records("b@x.com", "c@x.com"))

    assert sendy.subscribed == []
    assert report.skipped.bounced_or_complained == 2
    assert not cache.persistent_hit(LIST_ID, "b@x.com")


def test_unknown_status_is_queued(cache):
    sendy = FakeSendy(statuses={"u@x.com": SubscriptionStatus.UNKNOWN,
                                "p@x.com": SubscriptionStatus.UNCONFIRMED})
    report = orchestrator(sendy, cache).run(records("u@x.com", "p@x.com"))

    assert sendy.subscribed == ["u@x.com", "p@x.com"]
    assert report.skipped.unknown_status == 2


def test_failed_subscribe_leaves_cache_untouched(cache):
    sendy = FakeSendy(failures={"bad@x.com"})
    report = orchestrator(sendy, cache).run(records("bad@x.com", "good@x.com"))

    assert report.subscribed == 1
    assert report.subscription_failures == 1
    assert not cache.memory_hit(LIST_ID, "bad@x.com")
    assert not cache.persistent_hit(LIST_ID, "bad@x.com")
    assert cache.persistent_hit(LIST_ID, "good@x.com")


def test_dry_run_makes_no_subscribe_calls(cache):
    sendy = FakeSendy()
    report = orchestrator(sendy, cache, dry_run=True).run(records("a@x.com", "b@x.com"))

    assert sendy.subscribed == []
    assert [r.dry_run for r in report.results] == [True, True]
    totals = report.to_dict()["totals"]
    assert totals["attempted"] == 2
    assert totals["would_subscribe"] == 2
    assert totals["subscribed"] == 0
    assert totals["subscriptionFailures"] == 2
    assert cache.persistent_count(LIST_ID) == 0


def test_second_run_hits_memory_cache(cache):
    sendy = FakeSendy()
    sync = orchestrator(sendy, cache)
    sync.run(records("a@x.com"))
    cache.use_persistent = False
    report = sync.run(records("a@x.com"))

    assert sendy.status_checks == ["a@x.com"]
    assert report.skipped.cached == 1


def test_duplicate_bookings_subscribe_once(cache):
    """Three bookings by two people in a window: one subscribe call per person."""
    sendy = FakeSendy(statuses={"b@x.com": SubscriptionStatus.SUBSCRIBED})
    raw = [
        CandidateRecord("A@x.com", created_at="2024-01-03T00:00:00Z"),
        CandidateRecord("b@x.com", created_at="2024-01-02T00:00:00Z"),
        CandidateRecord("a@x.com", created_at="2024-01-05T00:00:00Z"),
    ]
    window = SyncWindow("2024-01-01T00:00:00Z", "2024-01-31T23:59:59Z")
    report = orchestrator(sendy, cache).run(dedupe_records(raw), window, source="calendly")

    assert sendy.status_checks == ["b@x.com", "a@x.com"]
    assert sendy.subscribed == ["a@x.com"]
    assert report.since == "2024-01-01T00:00:00Z"
    assert report.checked == 2
    assert report.subscribed == 1
