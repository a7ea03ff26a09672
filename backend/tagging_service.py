"""Helpers to turn recommended folders into IMAP keywords consistently."""

from __future__ import annotations

import re
from typing import Iterable, List, Sequence

from classifier import RankedFolder


_TAG_SANITIZE_RE = re.compile(r"[^0-9A-Za-z._+/:-]+")


def format_recommendation_tag(label: str, prefix: str | None) -> str | None:
    cleaned = label.strip()
    if not cleaned:
        return None
    normalized = re.sub(r"\s+", "-", cleaned)
    normalized = _TAG_SANITIZE_RE.sub("", normalized)
    normalized = normalized.strip("-/")[:48]
    if not normalized:
        return None
    if prefix:
        base = prefix.strip("/")
        if not base:
            return normalized
        return f"{base}/{normalized}"
    return normalized


def _unique(values: Iterable[str | None]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if not value or value in seen:
            continue
        seen.append(value)
    return seen


def recommendation_tags(ranked: Sequence[RankedFolder], prefix: str | None) -> List[str]:
    """Keywords for ``ranked`` in ranking order."""

    return _unique(format_recommendation_tag(entry.name, prefix) for entry in ranked)


def is_recommendation_tag(flag: str, prefix: str | None) -> bool:
    base = (prefix or "").strip("/")
    if not base:
        return False
    return flag.startswith(f"{base}/")
