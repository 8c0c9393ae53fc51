#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Feed Fetcher

- Downloads the remote IP list with aiohttp (bounded total timeout)
- Reads file:// URLs and bare paths from disk for local feeds
- Returns status + body; transport problems raise FetchTransportError
- Logs fetch activity to logs/fetcher.log
"""

import asyncio
import os
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import urlsplit

import aiohttp

from models.schemas import FetchResponse
from utils.logger import get_logger, log_metric

DEFAULT_TIMEOUT = 30


class FetchTransportError(Exception):
    """The request never produced an HTTP response (DNS, TLS, timeout, missing file...)."""


def decode_body(raw: bytes, charset: Optional[str] = None) -> str:
    """Undecodable bytes become U+FFFD so the line fails validation instead of the cycle."""
    try:
        return raw.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


class Fetcher(Protocol):
    async def fetch(self, url: str, timeout: float, verify_tls: bool) -> FetchResponse:
        ...


# ----------------------------------------------------------------------
# Fetcher
# ----------------------------------------------------------------------
class HttpFetcher:
    """
    Fetch-only component used by the sync orchestrator.
    """

    def __init__(self, proxy: Optional[str] = None, log_level: str = "INFO"):
        self.logger = get_logger("fetcher", log_level, "fetcher.log")
        self.proxy = proxy or os.getenv("HTTPS_PROXY") or os.getenv("HTTP_PROXY")
        if self.proxy:
            self.logger.info("Using proxy for feed fetch: %s", self.proxy)

    @staticmethod
    def _local_path(url: str) -> Optional[Path]:
        parts = urlsplit(url)
        if parts.scheme == "file":
            return Path(parts.path)
        if not parts.scheme:
            return Path(url)
        return None

    def _fetch_file(self, path: Path) -> FetchResponse:
        try:
            self.logger.debug("Reading feed file: %s", path)
            body = decode_body(path.read_bytes())
        except OSError as e:
            self.logger.error("Failed to read file %s: %s", path, e)
            raise FetchTransportError(f"cannot read {path}: {e.strerror or e}") from e
        log_metric(self.logger, "feed_bytes_fetched", len(body), stage="fetch", source="file")
        return FetchResponse(status_code=200, body=body)

    async def _fetch_url(self, url: str, timeout: float, verify_tls: bool) -> FetchResponse:
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        kwargs = {"proxy": self.proxy} if self.proxy else {}
        try:
            self.logger.debug("Fetching URL: %s (timeout=%ss verify_tls=%s)", url, timeout, verify_tls)
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.get(url, ssl=verify_tls, **kwargs) as resp:
                    body = decode_body(await resp.read(), resp.charset)
                    self.logger.info("%s returned HTTP %s (%d bytes)", url, resp.status, len(body))
                    log_metric(self.logger, "feed_bytes_fetched", len(body), stage="fetch", status=resp.status)
                    return FetchResponse(status_code=resp.status, body=body)
        except asyncio.TimeoutError as e:
            self.logger.error("Timed out after %ss fetching %s", timeout, url)
            raise FetchTransportError(f"timed out after {timeout}s") from e
        except aiohttp.ClientError as e:
            self.logger.error("Failed to fetch URL %s: %s", url, e)
            raise FetchTransportError(str(e) or e.__class__.__name__) from e

    async def fetch(self, url: str, timeout: float = DEFAULT_TIMEOUT, verify_tls: bool = True) -> FetchResponse:
        local = self._local_path(url)
        if local is not None:
            return await asyncio.to_thread(self._fetch_file, local)
        return await self._fetch_url(url, timeout, verify_tls)


__all__ = ["Fetcher", "HttpFetcher", "FetchTransportError", "DEFAULT_TIMEOUT"]
