#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Address matcher for allow-list entries.

- Accepts dotted-decimal IPv4 with an optional /0-/32 suffix
- Exact match only: no whitespace tolerance, no canonicalization
- IPv6 literals are always rejected
"""

from __future__ import annotations

import ipaddress
from typing import Optional

MAX_PREFIX_LENGTH = 32


def _is_ipv4(addr: str) -> bool:
    try:
        ipaddress.IPv4Address(addr)
        return True
    except ValueError:
        return False


def _is_prefix(text: str) -> bool:
    # isdigit() alone accepts non-ASCII digits such as "³"
    if not (text.isascii() and text.isdigit()):
        return False
    return 0 <= int(text) <= MAX_PREFIX_LENGTH


def validate(candidate: Optional[str]) -> bool:
    """Return True when ``candidate`` is an IPv4 address or IPv4 CIDR literal."""
    if not candidate or not isinstance(candidate, str):
        return False

    parts = candidate.split("/", 1)
    if not _is_ipv4(parts[0]):
        return False
    if len(parts) == 2 and not _is_prefix(parts[1]):
        return False
    return True


class AddressMatcher:
    """Thin object wrapper so the matcher can be injected where a class is expected."""

    @staticmethod
    def validate(candidate: Optional[str]) -> bool:
        return validate(candidate)


__all__ = ["AddressMatcher", "validate", "MAX_PREFIX_LENGTH"]
