#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Feed parser for newline-delimited IP lists.

Responsibilities:
- Split raw feed text into lines and trim surrounding whitespace
- Skip blank lines and '#' comment lines wherever they appear
- Run every remaining line through the address matcher
- Return accepted literals, invalid count and one warning per rejected line
"""

from __future__ import annotations

from typing import Callable, Iterator, List, Optional, Tuple

from models.schemas import FeedParseResult, ParseWarning
from pipeline import matcher

# Same character set PHP's trim() removes; str.strip() would also eat Unicode spaces.
_TRIM_CHARS = " \t\n\r\0\x0b"
COMMENT_PREFIX = "#"
# Rejected lines are echoed into the activity log; keep them short.
MAX_ECHO_LENGTH = 64


def iter_candidates(raw_text: Optional[str]) -> Iterator[Tuple[int, str]]:
    """Yield ``(line_number, trimmed_line)`` for every non-blank, non-comment line."""
    if not raw_text:
        return
    for index, line in enumerate(raw_text.split("\n"), start=1):
        cleaned = line.strip(_TRIM_CHARS)
        if not cleaned or cleaned.startswith(COMMENT_PREFIX):
            continue
        yield index, cleaned


def _echo(value: str) -> str:
    if len(value) <= MAX_ECHO_LENGTH:
        return value
    return value[:MAX_ECHO_LENGTH] + "..."


def count_lines(raw_text: Optional[str]) -> int:
    return len(raw_text.split("\n")) if raw_text else 0


class FeedParser:
    """
    Turns feed text into a `FeedParseResult`. Holds no state between calls.
    """

    def __init__(self, validator: Callable[[Optional[str]], bool] = matcher.validate) -> None:
        self.validator = validator

    def parse(self, raw_text: Optional[str]) -> FeedParseResult:
        valid: List[str] = []
        warnings: List[ParseWarning] = []

        for line_number, candidate in iter_candidates(raw_text):
            if self.validator(candidate):
                valid.append(candidate)
                continue
            warnings.append(
                ParseWarning(
                    line_number=line_number,
                    value=candidate,
                    message=f"WARNING: Skipping invalid IP: {_echo(candidate)}",
                )
            )

        return FeedParseResult(
            valid_entries=valid,
            invalid_count=len(warnings),
            total_lines=count_lines(raw_text),
            warnings=warnings,
        )


def parse(raw_text: Optional[str]) -> FeedParseResult:
    return FeedParser().parse(raw_text)


__all__ = ["FeedParser", "parse", "iter_candidates", "count_lines"]
