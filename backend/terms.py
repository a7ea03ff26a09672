"""Turn raw item fields into a term -> count vector."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Sequence, Tuple

from configuration import EngineConfig


_LEADING_NON_WORD = re.compile(r"^\W+")
_TRAILING_NON_WORD = re.compile(r"\W+$")


@dataclass(frozen=True)
class TextField:
    """One named field of an item.

    ``no_spaces`` fields (addressee lists and the like) keep each value as a
    single token by replacing inner spaces with underscores.
    """

    name: str
    values: Tuple[str, ...]
    no_spaces: bool = False

    @classmethod
    def of(cls, name: str, value: str | Sequence[str] | None, *, no_spaces: bool = False) -> "TextField":
        if value is None:
            values: Tuple[str, ...] = ()
        elif isinstance(value, str):
            values = (value,)
        else:
            values = tuple(str(item) for item in value if item is not None)
        return cls(name=name, values=values, no_spaces=no_spaces)


def _concatenate(fields: Iterable[TextField]) -> str:
    parts = []
    for field in fields:
        for value in field.values:
            parts.append(value.replace(" ", "_") if field.no_spaces else value)
    return " ".join(parts)


def normalize_token(token: str) -> str:
    lowered = token.lower()
    lowered = _TRAILING_NON_WORD.sub("", lowered)
    lowered = _LEADING_NON_WORD.sub("", lowered)
    return lowered.strip()


def iter_terms(fields: Sequence[TextField], language: str | None, config: EngineConfig) -> Iterator[str]:
    """Yield the accepted terms of ``fields`` in text order.

    The generator can be recreated at will; it holds no state beyond its inputs.
    """

    resolved = config.resolve_language(language)
    for token in _concatenate(fields).split():
        term = normalize_token(token)
        if len(term) < 2:
            continue
        if config.is_stop_word(term, resolved):
            continue
        yield term


def extract_terms(fields: Sequence[TextField], language: str | None, config: EngineConfig) -> Dict[str, float]:
    counts = Counter(iter_terms(fields, language, config))
    return {term: float(count) for term, count in counts.items()}
