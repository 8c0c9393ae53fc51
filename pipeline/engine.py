# engine.py
from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Tuple

from db.persistence import Cache, OptionStore
from models.schemas import (
    AllowList,
    DegradedReason,
    FailureReason,
    FetchResponse,
    OutcomeKind,
    RenderMetadata,
    SyncOutcome,
    TargetKind,
)
from pipeline.activity_log import ActivityLog
from pipeline.artifact import ArtifactWriter
from pipeline.fetcher import DEFAULT_TIMEOUT, Fetcher, FetchTransportError
from pipeline.gate import FeedSanityGate
from pipeline.parser import FeedParser
from pipeline.reconciler import AllowListReconciler, split_custom_entries
from pipeline.renderers import DEFAULT_MARKER, renderer_for
from pipeline.target import effective_target
from utils.config_loader import DEFAULT_IP_SOURCE
from utils.logger import get_logger, log_metric, log_stage

OPTION_PREFIX = "xmlrpc_allowlist_"
CACHE_KEY = "xmlrpc_allowlist_cached_ips"
DEFAULT_CACHE_TTL = 3600
# Slack on top of the fetcher's own timeout before the orchestrator gives up on it
FETCH_GRACE_SECONDS = 5.0


class OptionKey:
    ENABLED = OPTION_PREFIX + "enabled"
    IP_SOURCE = OPTION_PREFIX + "ip_source"
    CUSTOM_IPS = OPTION_PREFIX + "custom_ips"
    LAST_SYNC = OPTION_PREFIX + "last_sync"
    LAST_IP_COUNT = OPTION_PREFIX + "last_ip_count"
    LAST_STATUS = OPTION_PREFIX + "last_status"
    LAST_ERROR = OPTION_PREFIX + "last_error"
    LOG = OPTION_PREFIX + "log"

    ALL = (ENABLED, IP_SOURCE, CUSTOM_IPS, LAST_SYNC, LAST_IP_COUNT, LAST_STATUS, LAST_ERROR, LOG)


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    GATING = "gating"
    MERGING = "merging"
    RENDERING = "rendering"
    PERSISTING = "persisting"
    DONE = "done"
    ABORTED = "aborted"


class LastStatus:
    SUCCESS = "success"
    MANUAL_REQUIRED = "manual_required"
    ERROR = "error"
    DISABLED = "disabled"


def is_enabled(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


class _Abort(Exception):
    """Internal: ends the cycle with a failure outcome."""

    def __init__(self, reason: FailureReason, message: str, allow_list: Optional[AllowList] = None):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.allow_list = allow_list


# ----------------------------------------------------------------------
# Orchestrator
# ----------------------------------------------------------------------
class SyncOrchestrator:
    """
    Drives one reconciliation cycle:
      fetch -> parse -> gate -> merge -> render -> persist

    Collaborators are injected; this is the only component that touches the
    option store, the cache and the activity log.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        options: OptionStore,
        cache: Cache,
        writer: ArtifactWriter,
        detect_target: Callable[[], TargetKind],
        *,
        config_path: str,
        marker: str = DEFAULT_MARKER,
        default_source: str = DEFAULT_IP_SOURCE,
        fetch_timeout: float = DEFAULT_TIMEOUT,
        verify_tls: bool = True,
        cache_ttl: int = DEFAULT_CACHE_TTL,
        clock: Callable[[], datetime] = datetime.now,
        log_level: str = "INFO",
    ):
        self.logger = get_logger("engine.orchestrator", log_level, "engine.log")
        self.fetcher = fetcher
        self.options = options
        self.cache = cache
        self.writer = writer
        self.detect_target = detect_target
        self.config_path = config_path
        self.marker = marker
        self.default_source = default_source
        self.fetch_timeout = fetch_timeout
        self.verify_tls = verify_tls
        self.cache_ttl = cache_ttl
        self.clock = clock

        self.parser = FeedParser()
        self.gate = FeedSanityGate()
        self.reconciler = AllowListReconciler()

        self.state = SyncState.IDLE
        self.transitions: List[SyncState] = []
        self._activity: Optional[ActivityLog] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Activity log / state bookkeeping
    # ------------------------------------------------------------------
    def _record(self, message: str, level: int = logging.INFO) -> None:
        self._activity.append(message)
        self.options.set(OptionKey.LOG, self._activity.to_records())
        self.logger.log(level, "[%s] %s", self.state.value, message)

    def _transition(self, state: SyncState, message: str, level: int = logging.INFO) -> None:
        self.state = state
        self.transitions.append(state)
        self._record(message, level)

    def _set_status(self, status: str, error: Optional[str] = None) -> None:
        self.options.set(OptionKey.LAST_STATUS, status)
        self.options.set(OptionKey.LAST_ERROR, error)

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def activity_log(self) -> ActivityLog:
        return ActivityLog.from_records(self.options.get(OptionKey.LOG, []), clock=self.clock)

    def note(self, message: str, level: int = logging.INFO) -> None:
        """Append an out-of-cycle event (activation, settings change...) to the activity log."""
        with self._lock:
            activity = self.activity_log()
            activity.append(message)
            self.options.set(OptionKey.LOG, activity.to_records())
        self.logger.log(level, "%s", message)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    async def sync_cycle(self) -> SyncOutcome:
        if not self._lock.acquire(blocking=False):
            # the running cycle owns the activity log; only the diagnostic log hears about this
            self.logger.warning("Sync trigger ignored: a cycle is already in progress")
            return SyncOutcome.failure(FailureReason.IN_PROGRESS, "another sync is in progress")
        try:
            self.transitions = [SyncState.IDLE]
            self.state = SyncState.IDLE
            self._activity = ActivityLog.from_records(self.options.get(OptionKey.LOG, []), clock=self.clock)
            with log_stage(self.logger, "sync_cycle"):
                outcome = await self._run_cycle()
            self.logger.info("Sync cycle finished: %s", outcome.status)
            return outcome
        finally:
            self._activity = None
            self._lock.release()

    def run(self) -> SyncOutcome:
        """Synchronous wrapper for cron-style and CLI callers."""
        return asyncio.run(self.sync_cycle())

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    async def _run_cycle(self) -> SyncOutcome:
        if not is_enabled(self.options.get(OptionKey.ENABLED, "0")):
            self._transition(SyncState.ABORTED, "Sync skipped - disabled")
            self._set_status(LastStatus.DISABLED, FailureReason.DISABLED.value)
            return SyncOutcome.failure(FailureReason.DISABLED, "sync skipped - disabled")

        try:
            source_url = self.options.get(OptionKey.IP_SOURCE, None) or self.default_source
            body = await self._fetch(source_url)
            remote = self._parse_and_gate(body)
            allow_list = self._merge(remote)
            target, lines, artifact = self._render(allow_list, source_url)
            return self._persist(allow_list, target, lines, artifact)
        except _Abort as abort:
            self._transition(SyncState.ABORTED, abort.message, logging.ERROR)
            self._set_status(LastStatus.ERROR, abort.reason.value)
            return SyncOutcome.failure(abort.reason, abort.message, allow_list=abort.allow_list)

    async def _fetch(self, source_url: str) -> str:
        self._transition(SyncState.FETCHING, "Starting IP sync...")
        try:
            with log_stage(self.logger, "fetch"):
                response: FetchResponse = await asyncio.wait_for(
                    self.fetcher.fetch(source_url, self.fetch_timeout, self.verify_tls),
                    timeout=self.fetch_timeout + FETCH_GRACE_SECONDS,
                )
        except FetchTransportError as e:
            raise _Abort(FailureReason.FETCH_ERROR, f"ERROR: Failed to fetch IPs - {e}") from e
        except asyncio.TimeoutError as e:
            raise _Abort(
                FailureReason.FETCH_ERROR,
                f"ERROR: Failed to fetch IPs - timed out after {self.fetch_timeout:g}s",
            ) from e

        if response.status_code != 200:
            raise _Abort(FailureReason.FETCH_ERROR, f"ERROR: IP source returned HTTP {response.status_code}")
        if not response.body:
            raise _Abort(FailureReason.FETCH_ERROR, "ERROR: Empty response from IP source")
        return response.body

    def _parse_and_gate(self, body: str) -> List[str]:
        result = self.parser.parse(body)
        for warning in result.warnings:
            self._record(warning.message, logging.WARNING)
        log_metric(self.logger, "feed_valid_total", len(result.valid_entries), stage="parse")
        log_metric(self.logger, "feed_invalid_total", result.invalid_count, stage="parse")
        self._transition(
            SyncState.PARSING,
            f"Parsed {len(result.valid_entries)} valid and {result.invalid_count} invalid entries "
            f"from {result.total_lines} lines",
        )

        verdict = self.gate.check(result)
        if not verdict.ok:
            raise _Abort(FailureReason(verdict.reason.value), verdict.message)
        self._transition(SyncState.GATING, "Feed passed sanity checks")
        return result.valid_entries

    def _merge(self, remote: List[str]) -> AllowList:
        custom = split_custom_entries(self.options.get(OptionKey.CUSTOM_IPS, ""))
        allow_list = self.reconciler.merge(remote, custom)
        if allow_list.empty:
            raise _Abort(FailureReason.NO_VALID_IPS, "ERROR: No valid IPs to whitelist")
        log_metric(self.logger, "allowlist_entries_total", len(allow_list), stage="merge")
        log_metric(self.logger, "allowlist_addresses_total", allow_list.address_count(), stage="merge")
        self._transition(
            SyncState.MERGING,
            f"Merged {len(allow_list)} IPs ({len(remote)} remote, {len(custom)} custom configured)",
        )
        return allow_list

    def _render(self, allow_list: AllowList, source_url: str) -> Tuple[TargetKind, List[str], str]:
        detected = self.detect_target()
        target = effective_target(detected)
        renderer = renderer_for(target, self.marker)
        metadata = RenderMetadata(source_url=source_url, timestamp=self.clock())
        lines = renderer.render_lines(allow_list, metadata)
        artifact = renderer.render(allow_list, metadata)
        self._transition(SyncState.RENDERING, f"Rendered {target.value} rules for {len(allow_list)} IPs")
        return target, lines, artifact

    def _apply(self, target: TargetKind, lines: List[str], count: int) -> Tuple[OutcomeKind, str]:
        if target == TargetKind.NGINX:
            return OutcomeKind.DEGRADED, f"Nginx detected - manual configuration required for {count} IPs"

        path = self.config_path
        if not self.writer.path_exists(path):
            return OutcomeKind.FAILURE, f"ERROR: .htaccess file not found at {path}"
        if not self.writer.is_writable(path):
            return OutcomeKind.DEGRADED, f"WARNING: .htaccess is not writable - manual update required for {count} IPs"
        if not self.writer.write_marked_block(path, self.marker, lines):
            return OutcomeKind.FAILURE, "ERROR: Failed to update .htaccess"
        return OutcomeKind.SUCCESS, f"Successfully updated .htaccess with {count} IPs"

    def _persist(self, allow_list: AllowList, target: TargetKind, lines: List[str], artifact: str) -> SyncOutcome:
        self._transition(SyncState.PERSISTING, f"Caching {len(allow_list)} IPs for {self.cache_ttl}s")
        with log_stage(self.logger, "persist"):
            kind, message = self._apply(target, lines, len(allow_list))
            # cached even when apply fails
            self.cache.set(CACHE_KEY, list(allow_list.entries), self.cache_ttl)

        artifacts = {target.value: artifact}
        if kind == OutcomeKind.FAILURE:
            raise _Abort(FailureReason.APPLY_ERROR, message, allow_list=allow_list)

        self.options.set(OptionKey.LAST_SYNC, self.clock().isoformat(timespec="seconds"))
        self.options.set(OptionKey.LAST_IP_COUNT, len(allow_list))
        if kind == OutcomeKind.DEGRADED:
            self._set_status(LastStatus.MANUAL_REQUIRED, DegradedReason.MANUAL_STEP_REQUIRED.value)
            self._transition(SyncState.DONE, message, logging.WARNING)
            return SyncOutcome.degraded(DegradedReason.MANUAL_STEP_REQUIRED, message, allow_list, artifacts, target)

        self._set_status(LastStatus.SUCCESS)
        self._transition(SyncState.DONE, message)
        return SyncOutcome.success(allow_list, artifacts, target, detail=message)


__all__ = [
    "SyncOrchestrator",
    "SyncState",
    "OptionKey",
    "LastStatus",
    "CACHE_KEY",
    "OPTION_PREFIX",
    "is_enabled",
]
