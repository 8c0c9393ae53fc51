import asyncio

from conftest import FEED_URL, FIVE_CIDRS, FakeFetcher

from models.schemas import FailureReason, FetchResponse, OutcomeKind, TargetKind
from pipeline.artifact import FileArtifactWriter
from pipeline.engine import CACHE_KEY, OptionKey, SyncState
from pipeline.fetcher import FetchTransportError, HttpFetcher


def _messages(options):
    return [record["message"] for record in options.get(OptionKey.LOG, [])]


class ReadOnlyWriter(FileArtifactWriter):
    def is_writable(self, path):
        return False


class BrokenWriter(FileArtifactWriter):
    def write_marked_block(self, path, marker, lines):
        return False


def test_feed_below_threshold_aborts(make_orchestrator, options, cache, htaccess):
    original = htaccess.read_text()
    fetcher = FakeFetcher("10.0.0.0/8\n192.168.1.1\n# comment\n\nbad.ip\n")
    orchestrator = make_orchestrator(fetcher)

    outcome = orchestrator.run()

    assert outcome.kind == OutcomeKind.FAILURE
    assert outcome.reason == FailureReason.TOO_FEW_VALID.value
    assert not outcome.ok
    messages = _messages(options)
    assert "WARNING: Skipping invalid IP: bad.ip" in messages
    assert messages[-1] == "ERROR: Too few valid IPs (2) - aborting"
    assert cache.get(CACHE_KEY) is None
    assert htaccess.read_text() == original
    assert options.get(OptionKey.LAST_STATUS) == "error"
    assert options.get(OptionKey.LAST_ERROR) == "too_few_valid"


def test_full_cycle_writes_apache_block(make_orchestrator, options, cache, htaccess):
    options.set(OptionKey.CUSTOM_IPS, "1.2.3.4")
    fetcher = FakeFetcher(FIVE_CIDRS)
    orchestrator = make_orchestrator(fetcher)

    outcome = orchestrator.run()

    assert outcome.kind == OutcomeKind.SUCCESS
    assert outcome.ok
    assert outcome.allow_list.entries == [
        "192.0.64.0/18",
        "192.0.80.0/20",
        "192.0.96.0/20",
        "195.234.108.0/22",
        "122.248.245.244/32",
        "1.2.3.4",
    ]
    assert outcome.artifacts["apache"].count("Require ip ") == 6

    contents = htaccess.read_text()
    assert contents.startswith("RewriteEngine On\nRewriteBase /\n")
    assert contents.count("Require ip ") == 6
    assert "# BEGIN Whitelist XML-RPC" in contents
    assert "# END Whitelist XML-RPC" in contents

    assert fetcher.calls == [(FEED_URL, 30, True)]
    assert cache.get(CACHE_KEY) == outcome.allow_list.entries
    assert options.get(OptionKey.LAST_IP_COUNT) == 6
    assert options.get(OptionKey.LAST_STATUS) == "success"
    assert options.get(OptionKey.LAST_SYNC) == "2026-01-02T03:04:05"
    assert _messages(options)[-1] == "Successfully updated .htaccess with 6 IPs"
    assert orchestrator.transitions == [
        SyncState.IDLE,
        SyncState.FETCHING,
        SyncState.PARSING,
        SyncState.GATING,
        SyncState.MERGING,
        SyncState.RENDERING,
        SyncState.PERSISTING,
        SyncState.DONE,
    ]


def test_one_log_entry_per_transition(make_orchestrator, options):
    orchestrator = make_orchestrator(FakeFetcher(FIVE_CIDRS))

    orchestrator.run()

    # IDLE is the starting state, every later state logs exactly once
    assert len(_messages(options)) == len(orchestrator.transitions) - 1


def test_http_error_leaves_previous_state_untouched(make_orchestrator, options, cache, htaccess):
    cache.set(CACHE_KEY, ["9.9.9.9"], 3600)
    original = htaccess.read_text()
    orchestrator = make_orchestrator(FakeFetcher(status_code=500))

    outcome = orchestrator.run()

    assert outcome.reason == FailureReason.FETCH_ERROR.value
    assert cache.get(CACHE_KEY) == ["9.9.9.9"]
    assert htaccess.read_text() == original
    messages = _messages(options)
    assert [m for m in messages if "500" in m] == ["ERROR: IP source returned HTTP 500"]
    assert orchestrator.state == SyncState.ABORTED


def test_transport_error_and_empty_body(make_orchestrator, options):
    outcome = make_orchestrator(FakeFetcher(error=FetchTransportError("connection refused"))).run()
    assert outcome.reason == FailureReason.FETCH_ERROR.value
    assert _messages(options)[-1] == "ERROR: Failed to fetch IPs - connection refused"

    outcome = make_orchestrator(FakeFetcher(body="")).run()
    assert outcome.reason == FailureReason.FETCH_ERROR.value
    assert _messages(options)[-1] == "ERROR: Empty response from IP source"


def test_hung_fetcher_is_bounded(make_orchestrator, options, monkeypatch):
    monkeypatch.setattr("pipeline.engine.FETCH_GRACE_SECONDS", 0.0)

    class HangingFetcher:
        async def fetch(self, url, timeout, verify_tls):
            await asyncio.sleep(10)

    outcome = make_orchestrator(HangingFetcher(), fetch_timeout=0.05).run()

    assert outcome.reason == FailureReason.FETCH_ERROR.value
    assert "timed out" in _messages(options)[-1]


def test_too_many_invalid_lines(make_orchestrator, options):
    body = FIVE_CIDRS + "\nx\ny\nz\nw\n"

    outcome = make_orchestrator(FakeFetcher(body)).run()

    assert outcome.reason == FailureReason.TOO_MANY_INVALID.value
    assert _messages(options)[-1] == "ERROR: Too many invalid IPs (4) - possible data corruption"


def test_disabled_short_circuits(make_orchestrator, options):
    options.set(OptionKey.ENABLED, "0")
    fetcher = FakeFetcher(FIVE_CIDRS)

    outcome = make_orchestrator(fetcher).run()

    assert outcome.reason == FailureReason.DISABLED.value
    assert fetcher.calls == []
    assert _messages(options) == ["Sync skipped - disabled"]


def test_nginx_target_is_degraded_but_cached(make_orchestrator, options, cache, htaccess):
    original = htaccess.read_text()

    outcome = make_orchestrator(FakeFetcher(FIVE_CIDRS), target=TargetKind.NGINX).run()

    assert outcome.kind == OutcomeKind.DEGRADED
    assert outcome.ok
    assert outcome.target == TargetKind.NGINX
    assert "allow 192.0.64.0/18;" in outcome.artifacts["nginx"]
    assert htaccess.read_text() == original
    assert cache.get(CACHE_KEY) == outcome.allow_list.entries
    assert options.get(OptionKey.LAST_IP_COUNT) == 5
    assert options.get(OptionKey.LAST_STATUS) == "manual_required"


def test_unknown_target_falls_back_to_apache(make_orchestrator, htaccess):
    outcome = make_orchestrator(FakeFetcher(FIVE_CIDRS), target=TargetKind.UNKNOWN).run()

    assert outcome.kind == OutcomeKind.SUCCESS
    assert outcome.target == TargetKind.APACHE
    assert "Require ip 192.0.64.0/18" in htaccess.read_text()


def test_unwritable_config_needs_manual_step(make_orchestrator, options, cache, htaccess):
    original = htaccess.read_text()

    outcome = make_orchestrator(FakeFetcher(FIVE_CIDRS), writer=ReadOnlyWriter(log_level="ERROR")).run()

    assert outcome.kind == OutcomeKind.DEGRADED
    assert "# BEGIN Whitelist XML-RPC" in outcome.artifacts["apache"]
    assert htaccess.read_text() == original
    assert cache.get(CACHE_KEY) is not None


def test_missing_config_is_apply_error_but_cache_written(make_orchestrator, options, cache, htaccess):
    htaccess.unlink()

    outcome = make_orchestrator(FakeFetcher(FIVE_CIDRS)).run()

    assert outcome.reason == FailureReason.APPLY_ERROR.value
    assert outcome.allow_list is not None
    assert cache.get(CACHE_KEY) == outcome.allow_list.entries
    assert options.get(OptionKey.LAST_STATUS) == "error"
    assert options.get(OptionKey.LAST_SYNC) is None
    assert _messages(options)[-1].startswith("ERROR: .htaccess file not found at ")


def test_write_failure_is_apply_error(make_orchestrator, options):
    outcome = make_orchestrator(FakeFetcher(FIVE_CIDRS), writer=BrokenWriter(log_level="ERROR")).run()

    assert outcome.reason == FailureReason.APPLY_ERROR.value
    assert _messages(options)[-1] == "ERROR: Failed to update .htaccess"


def test_overlapping_trigger_is_rejected(make_orchestrator):
    release = asyncio.Event()

    class SlowFetcher:
        async def fetch(self, url, timeout, verify_tls):
            await release.wait()
            return FetchResponse(status_code=200, body=FIVE_CIDRS)

    orchestrator = make_orchestrator(SlowFetcher())

    async def scenario():
        first = asyncio.create_task(orchestrator.sync_cycle())
        await asyncio.sleep(0)
        assert orchestrator.in_progress
        second = await orchestrator.sync_cycle()
        release.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert first.kind == OutcomeKind.SUCCESS
    assert second.reason == FailureReason.IN_PROGRESS.value
    assert not orchestrator.in_progress


def test_activity_log_is_bounded_across_cycles(make_orchestrator, options):
    orchestrator = make_orchestrator(FakeFetcher(FIVE_CIDRS))

    for _ in range(10):
        orchestrator.run()

    assert len(options.get(OptionKey.LOG)) == 50


def test_undecodable_feed_bytes_count_as_invalid_lines(make_orchestrator, options, tmp_path):
    feed = tmp_path / "ips-v4.txt"
    feed.write_bytes(b"192.0.64.0/18\n192.0.80.0/20\n192.0.96.0/20\n\xff\xfe garbage\n")
    options.set(OptionKey.IP_SOURCE, f"file://{feed}")

    outcome = make_orchestrator(HttpFetcher(log_level="ERROR")).run()

    assert outcome.kind == OutcomeKind.SUCCESS
    assert outcome.allow_list.entries == ["192.0.64.0/18", "192.0.80.0/20", "192.0.96.0/20"]
    messages = _messages(options)
    assert "WARNING: Skipping invalid IP: �� garbage" in messages
    assert messages[-1] == "Successfully updated .htaccess with 3 IPs"
