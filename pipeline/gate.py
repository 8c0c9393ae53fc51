"""
Sanity gate for parsed remote feeds.

The feed is fetched from a third party with no signature, so the only
integrity check available is the shape of the parsed result.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from models.schemas import FailureReason, FeedParseResult

MIN_VALID_ENTRIES = 3
MAX_INVALID_ENTRIES = 3


class GateReason(str, Enum):
    TOO_FEW_VALID = FailureReason.TOO_FEW_VALID.value
    TOO_MANY_INVALID = FailureReason.TOO_MANY_INVALID.value


@dataclass(frozen=True)
class GateResult:
    reason: Optional[GateReason] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.reason is None


class FeedSanityGate:
    def __init__(self, min_valid: int = MIN_VALID_ENTRIES, max_invalid: int = MAX_INVALID_ENTRIES) -> None:
        self.min_valid = min_valid
        self.max_invalid = max_invalid

    def check(self, result: FeedParseResult) -> GateResult:
        valid_count = len(result.valid_entries)
        # too-few is reported first even when both limits are breached
        if valid_count < self.min_valid:
            return GateResult(
                GateReason.TOO_FEW_VALID,
                f"ERROR: Too few valid IPs ({valid_count}) - aborting",
            )
        if result.invalid_count > self.max_invalid:
            return GateResult(
                GateReason.TOO_MANY_INVALID,
                f"ERROR: Too many invalid IPs ({result.invalid_count}) - possible data corruption",
            )
        return GateResult()


__all__ = ["FeedSanityGate", "GateResult", "GateReason", "MIN_VALID_ENTRIES", "MAX_INVALID_ENTRIES"]
