import logging
import os
import re
import uuid
import gzip
import shutil
from pathlib import Path
from logging.handlers import TimedRotatingFileHandler
from time import perf_counter

LOG_DIR_ENV = "ALLOWLIST_LOG_DIR"


# ----------------------------------------------------------------------
# Custom Filters
# ----------------------------------------------------------------------
class CorrelationFilter(logging.Filter):
    """Attach correlation/run ID to every log record."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "run_id"):
            record.run_id = self.run_id
        return True


class RedactFilter(logging.Filter):
    """Redact API keys and key hashes, including values passed as log arguments."""

    PATTERN = re.compile(r"(X-API-Key:\s*|api_key(?:_hash)?[=:]\s*)\S+", re.IGNORECASE)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.PATTERN.sub(r"\1***", message)
        if redacted != message:
            record.msg, record.args = redacted, ()
        return True


# ----------------------------------------------------------------------
# Log rotation with gzip compression
# ----------------------------------------------------------------------
def _rotator(source, dest):
    with open(source, "rb") as sf, gzip.open(dest + ".gz", "wb") as df:
        shutil.copyfileobj(sf, df)
    Path(source).unlink()


def _namer(name):
    return name


def log_dir() -> Path:
    return Path(os.getenv(LOG_DIR_ENV, "logs"))


# ----------------------------------------------------------------------
# Logger Setup
# ----------------------------------------------------------------------
def get_logger(
    name: str,
    log_level: str = "INFO",
    log_file: str = "allowlist.log",
    run_id: str = None,
    retention_days: int = 30,
) -> logging.Logger:
    """
    Create or retrieve a logger:
    - Console + rotating file (daily, compress, retain N days)
    - Correlation ID (run_id)
    - Redaction filter
    """

    directory = log_dir()
    directory.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    run_id = run_id or str(uuid.uuid4())
    corr_filter = CorrelationFilter(run_id)
    redact_filter = RedactFilter()

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | run_id=%(run_id)s | "
        "%(filename)s:%(lineno)d | %(message)s"
    )

    # Console handler
    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG)
    ch.setFormatter(fmt)
    ch.addFilter(corr_filter)
    ch.addFilter(redact_filter)

    # File handler (rotates daily, keeps retention_days, compresses old logs)
    fh = TimedRotatingFileHandler(
        directory / log_file, when="midnight", backupCount=retention_days, encoding="utf-8"
    )
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(fmt)
    fh.rotator = _rotator
    fh.namer = _namer
    fh.addFilter(corr_filter)
    fh.addFilter(redact_filter)

    logger.addHandler(ch)
    logger.addHandler(fh)
    return logger


# ----------------------------------------------------------------------
# Metrics Logging Helper
# ----------------------------------------------------------------------
def log_metric(logger: logging.Logger, name: str, value: int, **labels):
    """Log a structured metric in a consistent format."""
    label_str = " ".join(f"{k}={v}" for k, v in labels.items())
    logger.info("METRIC | %s=%s %s", name, value, label_str)


# ----------------------------------------------------------------------
# Stage Timing Context Manager
# ----------------------------------------------------------------------
class log_stage:
    """Context manager for timing a sync stage."""

    def __init__(self, logger: logging.Logger, stage: str):
        self.logger = logger
        self.stage = stage

    def __enter__(self):
        self.start = perf_counter()
        self.logger.debug("Stage '%s' started", self.stage)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = perf_counter() - self.start
        if exc_type is not None:
            self.logger.warning("Stage '%s' failed after %.2fs: %s", self.stage, duration, exc_val)
        else:
            self.logger.info("Stage '%s' completed in %.2fs", self.stage, duration)
