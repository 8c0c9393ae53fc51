"""
Merges the remote feed with operator-supplied custom entries.
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Sequence, Set

from models.schemas import AllowList
from pipeline import matcher
from pipeline.parser import iter_candidates


def split_custom_entries(text: Optional[str]) -> List[str]:
    """Custom IP text as stored in settings: one literal per line, comments allowed."""
    return [candidate for _, candidate in iter_candidates(text)]


def sanitize_custom_entries(text: Optional[str]) -> str:
    """Drop blanks, comments and invalid literals; used when settings are saved."""
    return "\n".join(entry for entry in split_custom_entries(text) if matcher.validate(entry))


def _stable_unique(values: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    unique: List[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        unique.append(value)
    return unique


class AllowListReconciler:
    def __init__(self, validator: Callable[[Optional[str]], bool] = matcher.validate) -> None:
        self.validator = validator

    def merge(self, remote: Sequence[str], custom: Sequence[str]) -> AllowList:
        # remote entries were already validated by the parser
        accepted_custom = [entry for entry in custom if self.validator(entry)]
        return AllowList(entries=_stable_unique([*remote, *accepted_custom]))


def merge(remote: Sequence[str], custom: Sequence[str]) -> AllowList:
    return AllowListReconciler().merge(remote, custom)


__all__ = ["AllowListReconciler", "merge", "split_custom_entries", "sanitize_custom_entries"]
