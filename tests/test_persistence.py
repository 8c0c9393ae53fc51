from datetime import datetime, timedelta, timezone

from sqlmodel import Session

from db.models import CacheEntry, Option, as_utc
from db.persistence import SQLCache, SQLOptionStore


def test_option_store_round_trip(engine):
    store = SQLOptionStore(engine)

    assert store.get("missing", "fallback") == "fallback"
    store.set("key", {"nested": [1, 2]})
    assert store.get("key") == {"nested": [1, 2]}
    store.set("key", "replaced")
    assert store.get("key") == "replaced"
    store.delete("key")
    assert store.get("key") is None


def test_cache_respects_ttl(engine):
    now = [datetime(2026, 1, 1, 0, 0, 0)]
    cache = SQLCache(engine, clock=lambda: now[0])

    cache.set("ips", ["1.2.3.4"], ttl_seconds=3600)
    assert cache.get("ips") == ["1.2.3.4"]

    now[0] += timedelta(seconds=3599)
    assert cache.get("ips") == ["1.2.3.4"]

    now[0] += timedelta(seconds=1)
    assert cache.get("ips") is None


def test_cache_overwrite_and_delete(engine):
    cache = SQLCache(engine)

    cache.set("ips", ["a"], ttl_seconds=60)
    cache.set("ips", ["b"], ttl_seconds=60)
    assert cache.get("ips") == ["b"]
    cache.delete("ips")
    assert cache.get("ips") is None
    cache.delete("ips")


def test_timestamps_are_timezone_aware(engine):
    SQLOptionStore(engine).set("key", "value")
    SQLCache(engine).set("ips", ["1.2.3.4"], ttl_seconds=60)

    with Session(engine) as session:
        option = session.get(Option, "key")
        entry = session.get(CacheEntry, "ips")
        assert as_utc(option.updated_at).tzinfo is timezone.utc
        assert as_utc(entry.expires_at) > as_utc(entry.created_at)


def test_cache_expiry_with_aware_clock(engine):
    now = [datetime(2026, 1, 1, tzinfo=timezone.utc)]
    cache = SQLCache(engine, clock=lambda: now[0])

    cache.set("ips", ["1.2.3.4"], ttl_seconds=10)
    assert cache.get("ips") == ["1.2.3.4"]

    now[0] += timedelta(seconds=10)
    assert cache.get("ips") is None
