from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from models.schemas import OutcomeKind, SyncOutcome


class APIKeySettings(BaseModel):
    header_name: str = Field(
        "X-API-Key",
        description="HTTP header that must carry the admin API key.",
    )


class SyncResponse(BaseModel):
    ok: bool
    kind: OutcomeKind
    reason: Optional[str] = None
    status: str
    target: Optional[str] = None
    ip_count: int = 0
    entries: List[str] = Field(default_factory=list)
    artifacts: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_outcome(cls, outcome: SyncOutcome) -> "SyncResponse":
        entries = list(outcome.allow_list.entries) if outcome.allow_list else []
        return cls(
            ok=outcome.ok,
            kind=outcome.kind,
            reason=outcome.reason,
            status=outcome.status,
            target=outcome.target.value if outcome.target else None,
            ip_count=len(entries),
            entries=entries,
            artifacts=dict(outcome.artifacts),
        )


class LogResponse(BaseModel):
    lines: List[str] = Field(default_factory=list, description="Newest first, '[time] message'.")


class RulesResponse(BaseModel):
    target: str
    rules: str = Field("", description="Marker-delimited block for manual copy/paste.")
    ips: List[str] = Field(default_factory=list)


class SettingsUpdateRequest(BaseModel):
    enabled: Optional[bool] = None
    ip_source: Optional[str] = Field(None, description="Feed URL (http or https).")
    custom_ips: Optional[str] = Field(None, description="Extra IPs/CIDRs, one per line.")
