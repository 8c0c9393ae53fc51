from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

from db.persistence import SQLCache, SQLOptionStore
from db.session import create_db_engine, init_db
from models.schemas import FetchResponse, TargetKind
from pipeline.artifact import FileArtifactWriter
from pipeline.engine import OptionKey, SyncOrchestrator

FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5)
FEED_URL = "https://feed.example/ips-v4.txt"

FIVE_CIDRS = "\n".join(
    [
        "# published ranges",
        "192.0.64.0/18",
        "192.0.80.0/20",
        "192.0.96.0/20",
        "",
        "195.234.108.0/22",
        "122.248.245.244/32",
        "",
    ]
)


class FakeFetcher:
    def __init__(self, body: str = "", status_code: int = 200, error: Optional[Exception] = None):
        self.body = body
        self.status_code = status_code
        self.error = error
        self.calls: List[Tuple[str, float, bool]] = []

    async def fetch(self, url: str, timeout: float, verify_tls: bool) -> FetchResponse:
        self.calls.append((url, timeout, verify_tls))
        if self.error is not None:
            raise self.error
        return FetchResponse(status_code=self.status_code, body=self.body)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("ALLOWLIST_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("ALLOWLIST_CONFIG", raising=False)
    monkeypatch.delenv("ALLOWLIST_API_KEY_HASH", raising=False)
    monkeypatch.delenv("SERVER_SOFTWARE", raising=False)


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'allowlist.db'}"


@pytest.fixture
def engine(db_url):
    engine = create_db_engine(db_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def options(engine) -> SQLOptionStore:
    store = SQLOptionStore(engine)
    store.set(OptionKey.ENABLED, "1")
    store.set(OptionKey.IP_SOURCE, FEED_URL)
    return store


@pytest.fixture
def cache(engine) -> SQLCache:
    return SQLCache(engine)


@pytest.fixture
def htaccess(tmp_path) -> Path:
    path = tmp_path / ".htaccess"
    path.write_text("RewriteEngine On\nRewriteBase /\n", encoding="utf-8")
    return path


@pytest.fixture
def make_orchestrator(options, cache, htaccess):
    def factory(fetcher, *, target=TargetKind.APACHE, writer=None, **kwargs) -> SyncOrchestrator:
        return SyncOrchestrator(
            fetcher,
            options,
            cache,
            writer or FileArtifactWriter(log_level="ERROR"),
            lambda: target,
            config_path=str(htaccess),
            clock=lambda: FIXED_NOW,
            log_level="ERROR",
            **kwargs,
        )

    return factory
