"""
Shared Pydantic schemas used across the allow-list pipeline.
"""
from __future__ import annotations

import ipaddress
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TargetKind(str, Enum):
    APACHE = "apache"
    NGINX = "nginx"
    UNKNOWN = "unknown"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    DEGRADED = "degraded"
    FAILURE = "failure"


class FailureReason(str, Enum):
    DISABLED = "disabled"
    IN_PROGRESS = "in_progress"
    FETCH_ERROR = "fetch_error"
    TOO_FEW_VALID = "too_few_valid"
    TOO_MANY_INVALID = "too_many_invalid"
    NO_VALID_IPS = "no_valid_ips"
    APPLY_ERROR = "apply_error"


class DegradedReason(str, Enum):
    MANUAL_STEP_REQUIRED = "manual_step_required"


class AddressEntry(BaseModel):
    """Numeric view of an accepted literal. Host bits are kept as written."""

    model_config = ConfigDict(frozen=True)

    literal: str = Field(..., description="Literal exactly as it appeared in the source")
    network: int = Field(..., ge=0, le=0xFFFFFFFF, description="32-bit address value")
    prefix_length: int = Field(32, ge=0, le=32, description="CIDR prefix length")

    @classmethod
    def from_literal(cls, literal: str) -> "AddressEntry":
        address, _, prefix = literal.partition("/")
        return cls(
            literal=literal,
            network=int(ipaddress.IPv4Address(address)),
            prefix_length=int(prefix) if prefix else 32,
        )

    @property
    def size(self) -> int:
        """Number of addresses the entry covers."""
        return 1 << (32 - self.prefix_length)


class ParseWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_number: int = Field(..., description="1-based line number inside the feed")
    value: str = Field(..., description="Trimmed line that failed validation")
    message: str = Field(..., description="Activity log text for this warning")


class FeedParseResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid_entries: List[str] = Field(default_factory=list, description="Accepted literals in feed order")
    invalid_count: int = Field(0, ge=0)
    total_lines: int = Field(0, ge=0)
    warnings: List[ParseWarning] = Field(default_factory=list)


class AllowList(BaseModel):
    model_config = ConfigDict(frozen=True)

    entries: List[str] = Field(default_factory=list, description="Unique literals, remote first then custom")

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def empty(self) -> bool:
        return not self.entries

    def addresses(self) -> List[AddressEntry]:
        return [AddressEntry.from_literal(entry) for entry in self.entries]

    def address_count(self) -> int:
        # overlapping ranges are counted once per entry
        return sum(entry.size for entry in self.addresses())


class RenderMetadata(BaseModel):
    source_url: str
    timestamp: datetime


class FetchResponse(BaseModel):
    status_code: int
    body: str = ""


class LogEntry(BaseModel):
    time: str = Field(..., description="Local timestamp, Y-m-d H:M:S")
    message: str

    def display(self) -> str:
        return f"[{self.time}] {self.message}"


class SyncOutcome(BaseModel):
    kind: OutcomeKind
    reason: Optional[str] = Field(None, description="FailureReason or DegradedReason value")
    detail: str = Field("", description="Human-readable status line")
    allow_list: Optional[AllowList] = None
    artifacts: Dict[str, str] = Field(default_factory=dict, description="Rendered text per target")
    target: Optional[TargetKind] = None

    @property
    def ok(self) -> bool:
        return self.kind in (OutcomeKind.SUCCESS, OutcomeKind.DEGRADED)

    @property
    def status(self) -> str:
        if self.kind == OutcomeKind.SUCCESS:
            return self.detail or "success"
        return f"{self.kind.value}: {self.reason} - {self.detail}" if self.detail else f"{self.kind.value}: {self.reason}"

    @classmethod
    def success(cls, allow_list: AllowList, artifacts: Dict[str, str], target: TargetKind, detail: str = "") -> "SyncOutcome":
        return cls(kind=OutcomeKind.SUCCESS, allow_list=allow_list, artifacts=artifacts, target=target, detail=detail)

    @classmethod
    def degraded(
        cls,
        reason: DegradedReason,
        detail: str,
        allow_list: AllowList,
        artifacts: Dict[str, str],
        target: TargetKind,
    ) -> "SyncOutcome":
        return cls(
            kind=OutcomeKind.DEGRADED,
            reason=reason.value,
            detail=detail,
            allow_list=allow_list,
            artifacts=artifacts,
            target=target,
        )

    @classmethod
    def failure(cls, reason: FailureReason, detail: str = "", allow_list: Optional[AllowList] = None) -> "SyncOutcome":
        return cls(kind=OutcomeKind.FAILURE, reason=reason.value, detail=detail, allow_list=allow_list)


class SyncStatus(BaseModel):
    enabled: bool
    source_url: str
    last_sync: Optional[datetime] = None
    last_ip_count: int = 0
    last_status: str = "unknown"
    last_error: Optional[str] = None
    cached: bool = False
    target: TargetKind = TargetKind.APACHE
    artifact_verified: bool = False
    artifact_writable: bool = False
