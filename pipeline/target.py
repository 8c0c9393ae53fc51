"""
Web-server detection from a server signature string (e.g. SERVER_SOFTWARE).
"""

from __future__ import annotations

import os
from typing import Callable, Optional

from models.schemas import TargetKind

SERVER_SOFTWARE_ENV = "SERVER_SOFTWARE"


def detect_target(server_software: Optional[str] = None) -> TargetKind:
    signature = server_software if server_software is not None else os.getenv(SERVER_SOFTWARE_ENV, "")
    signature = signature.lower()
    if "nginx" in signature or "openresty" in signature:
        return TargetKind.NGINX
    # LiteSpeed reads .htaccess the same way Apache does
    if "apache" in signature or "litespeed" in signature:
        return TargetKind.APACHE
    return TargetKind.UNKNOWN


def effective_target(kind: TargetKind) -> TargetKind:
    """Unknown servers are treated as Apache."""
    return TargetKind.APACHE if kind == TargetKind.UNKNOWN else kind


def target_detector(override: str = "auto", server_software: Optional[str] = None) -> Callable[[], TargetKind]:
    normalized = (override or "auto").strip().lower()
    if normalized != "auto":
        forced = TargetKind(normalized)
        return lambda: forced
    return lambda: detect_target(server_software)


__all__ = ["detect_target", "effective_target", "target_detector"]
