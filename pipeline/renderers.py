#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Rule renderers

- One renderer per web-server syntax (Apache .htaccess, nginx location block)
- Pure functions of the allow list and render metadata
- Output order follows the allow list, so two renders differ only by timestamp
"""

from __future__ import annotations

from typing import Dict, List, Type

from models.schemas import AllowList, RenderMetadata, TargetKind

DEFAULT_MARKER = "Whitelist XML-RPC"
GUARDED_FILE = "xmlrpc.php"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class RuleRenderer:
    """Base renderer. Subclasses supply the body lines for their syntax."""

    target: TargetKind = TargetKind.UNKNOWN

    def __init__(self, marker: str = DEFAULT_MARKER) -> None:
        self.marker = marker

    def header_lines(self, metadata: RenderMetadata) -> List[str]:
        return [
            f"# Whitelist IPs for {GUARDED_FILE} access",
            f"# Source: {metadata.source_url}",
            f"# Last updated: {metadata.timestamp.strftime(TIMESTAMP_FORMAT)}",
        ]

    def body_lines(self, allow_list: AllowList) -> List[str]:
        raise NotImplementedError

    def render_lines(self, allow_list: AllowList, metadata: RenderMetadata) -> List[str]:
        """Lines that go between the BEGIN/END markers. Empty list for an empty allow list."""
        if allow_list.empty:
            return []
        return self.header_lines(metadata) + self.body_lines(allow_list)

    def render(self, allow_list: AllowList, metadata: RenderMetadata) -> str:
        lines = self.render_lines(allow_list, metadata)
        if not lines:
            return ""
        return "\n".join([f"# BEGIN {self.marker}", *lines, f"# END {self.marker}"])


class ApacheRenderer(RuleRenderer):
    target = TargetKind.APACHE

    def body_lines(self, allow_list: AllowList) -> List[str]:
        lines = [f'<Files "{GUARDED_FILE}">', "    <RequireAny>"]
        lines.extend(f"        Require ip {entry}" for entry in allow_list.entries)
        lines.extend(["    </RequireAny>", '    ErrorDocument 403 "Forbidden"', "</Files>"])
        return lines


class NginxRenderer(RuleRenderer):
    target = TargetKind.NGINX

    def body_lines(self, allow_list: AllowList) -> List[str]:
        lines = [f"location = /{GUARDED_FILE} {{"]
        lines.extend(f"    allow {entry};" for entry in allow_list.entries)
        lines.extend(["    deny all;", "    # keep your existing PHP handler here, e.g. include fastcgi_params;", "}"])
        return lines


RENDERERS: Dict[TargetKind, Type[RuleRenderer]] = {
    TargetKind.APACHE: ApacheRenderer,
    TargetKind.NGINX: NginxRenderer,
    TargetKind.UNKNOWN: ApacheRenderer,
}


def renderer_for(target: TargetKind, marker: str = DEFAULT_MARKER) -> RuleRenderer:
    return RENDERERS.get(target, ApacheRenderer)(marker=marker)


__all__ = [
    "RuleRenderer",
    "ApacheRenderer",
    "NginxRenderer",
    "renderer_for",
    "DEFAULT_MARKER",
    "TIMESTAMP_FORMAT",
]
