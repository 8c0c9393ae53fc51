#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Allow-list service

Wires the sync orchestrator to its concrete collaborators (SQL option store
and cache, aiohttp fetcher, file artifact writer) and exposes the
administrative lifecycle used by the CLI and the HTTP API:
activation, deactivation, uninstall, settings updates, status and the
manual rules shown when the config file cannot be written.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional
from urllib.parse import urlsplit

from sqlalchemy.engine import Engine

from db.persistence import SQLCache, SQLOptionStore
from db.session import create_db_engine, init_db
from models.schemas import AllowList, RenderMetadata, SyncOutcome, SyncStatus
from pipeline import matcher
from pipeline.artifact import FileArtifactWriter
from pipeline.engine import CACHE_KEY, OptionKey, SyncOrchestrator, is_enabled
from pipeline.fetcher import Fetcher, HttpFetcher
from pipeline.reconciler import sanitize_custom_entries, split_custom_entries
from pipeline.renderers import renderer_for
from pipeline.target import effective_target, target_detector
from utils.config_loader import AllowListSettings
from utils.logger import get_logger

REMOTE_SOURCE_SCHEMES = {"http", "https"}


def validate_source_url(url: str, allow_local: bool = True) -> str:
    """Feed URL check. Local file sources are only accepted when ``allow_local`` is set."""
    cleaned = (url or "").strip()
    parts = urlsplit(cleaned)
    if parts.scheme in REMOTE_SOURCE_SCHEMES and parts.netloc:
        return cleaned
    if allow_local and parts.scheme == "file":
        return cleaned
    expected = "http(s):// or file://" if allow_local else "http(s)://"
    raise ValueError(f"Unsupported IP source URL '{url}'. Expected {expected}")


class AllowListService:
    def __init__(
        self,
        settings: AllowListSettings,
        *,
        engine: Optional[Engine] = None,
        fetcher: Optional[Fetcher] = None,
        writer: Optional[FileArtifactWriter] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings
        self.logger = get_logger("service", settings.log_level, "service.log")
        self.engine = engine or create_db_engine(settings.database_url)
        init_db(self.engine)
        self.options = SQLOptionStore(self.engine)
        self.cache = SQLCache(self.engine)
        self.writer = writer or FileArtifactWriter(log_level=settings.log_level)
        self.detect_target = target_detector(settings.target, settings.server_software)
        self.clock = clock
        self.orchestrator = SyncOrchestrator(
            fetcher or HttpFetcher(log_level=settings.log_level),
            self.options,
            self.cache,
            self.writer,
            self.detect_target,
            config_path=settings.config_path,
            marker=settings.marker,
            default_source=settings.default_source,
            fetch_timeout=settings.fetch_timeout,
            verify_tls=settings.verify_tls,
            cache_ttl=settings.cache_ttl,
            clock=clock,
            log_level=settings.log_level,
        )

    # ------------------------------------------------------------------
    # Sync triggers
    # ------------------------------------------------------------------
    def sync(self) -> SyncOutcome:
        return self.orchestrator.run()

    async def sync_async(self) -> SyncOutcome:
        return await self.orchestrator.sync_cycle()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def activate(self) -> SyncOutcome:
        if self.options.get(OptionKey.ENABLED) is None:
            self.options.set(OptionKey.ENABLED, "1")
        if self.options.get(OptionKey.IP_SOURCE) is None:
            self.options.set(OptionKey.IP_SOURCE, self.settings.default_source)
        self.orchestrator.note("Activated - running initial sync")
        return self.sync()

    def remove_rules(self, reason: str) -> bool:
        path = self.settings.config_path
        if not (self.writer.path_exists(path) and self.writer.is_writable(path)):
            return False
        if not self.writer.write_marked_block(path, self.settings.marker, []):
            return False
        self.orchestrator.note(f"Removed .htaccess rules ({reason})")
        return True

    def deactivate(self) -> bool:
        return self.remove_rules("deactivated")

    def uninstall(self) -> None:
        self.remove_rules("uninstalled")
        for key in OptionKey.ALL:
            self.options.delete(key)
        self.cache.delete(CACHE_KEY)
        self.logger.info("Removed all stored options and cached IPs")

    def update_settings(
        self,
        *,
        enabled: Optional[bool] = None,
        ip_source: Optional[str] = None,
        custom_ips: Optional[str] = None,
        allow_local_source: bool = True,
    ) -> Optional[SyncOutcome]:
        """Save settings, then re-sync when protection is on or strip rules when it was turned off."""
        if ip_source is not None:
            self.options.set(OptionKey.IP_SOURCE, validate_source_url(ip_source, allow_local=allow_local_source))
        if custom_ips is not None:
            sanitized = sanitize_custom_entries(custom_ips)
            dropped = len(split_custom_entries(custom_ips)) - len(split_custom_entries(sanitized))
            if dropped:
                self.logger.warning("Dropped %d invalid custom IP entries on save", dropped)
            self.options.set(OptionKey.CUSTOM_IPS, sanitized)
        if enabled is not None:
            self.options.set(OptionKey.ENABLED, "1" if enabled else "0")

        if not self.enabled:
            self.remove_rules("protection disabled")
            return None
        self.orchestrator.note("Settings updated - re-syncing")
        return self.sync()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    @property
    def enabled(self) -> bool:
        return is_enabled(self.options.get(OptionKey.ENABLED, "0"))

    @property
    def source_url(self) -> str:
        return self.options.get(OptionKey.IP_SOURCE, None) or self.settings.default_source

    def display_ips(self) -> List[str]:
        """Cached allow list, or the valid custom entries when the cache is cold. Never fetches."""
        cached = self.cache.get(CACHE_KEY)
        if isinstance(cached, list):
            return [str(entry) for entry in cached]
        custom = split_custom_entries(self.options.get(OptionKey.CUSTOM_IPS, ""))
        return [entry for entry in custom if matcher.validate(entry)]

    def manual_rules(self) -> str:
        ips = self.display_ips()
        if not ips:
            return ""
        renderer = renderer_for(effective_target(self.detect_target()), self.settings.marker)
        metadata = RenderMetadata(source_url=self.source_url, timestamp=self.clock())
        return renderer.render(AllowList(entries=ips), metadata)

    def verify_artifact(self) -> bool:
        return self.writer.has_marked_block(self.settings.config_path, self.settings.marker)

    def status(self) -> SyncStatus:
        return SyncStatus(
            enabled=self.enabled,
            source_url=self.source_url,
            last_sync=self.options.get(OptionKey.LAST_SYNC, None),
            last_ip_count=int(self.options.get(OptionKey.LAST_IP_COUNT, 0) or 0),
            last_status=self.options.get(OptionKey.LAST_STATUS, None) or "unknown",
            last_error=self.options.get(OptionKey.LAST_ERROR, None),
            cached=self.cache.get(CACHE_KEY) is not None,
            target=effective_target(self.detect_target()),
            artifact_verified=self.verify_artifact(),
            artifact_writable=self.writer.is_writable(self.settings.config_path),
        )

    def log_lines(self, limit: Optional[int] = None) -> List[str]:
        entries = self.orchestrator.activity_log().newest_first()
        if limit is not None and limit >= 0:
            entries = entries[:limit]
        return [entry.display() for entry in entries]


__all__ = ["AllowListService", "validate_source_url"]
