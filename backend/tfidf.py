"""Derive IDF, TF-IDF and folder vector lengths from a frequency store.

Statistics are always recomputed from scratch; nothing in here patches a
previous result.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Mapping

from errors import ModelInvariantError
from frequency_store import FrequencyStore


CountTable = Mapping[str, Mapping[str, float]]


@dataclass(frozen=True)
class ModelStatistics:
    """Immutable result of one statistics build."""

    total_folders: int = 0
    idf: Dict[str, float] = field(default_factory=dict)
    tfidf: Dict[str, Dict[str, float]] = field(default_factory=dict)
    vector_lengths: Dict[str, float] = field(default_factory=dict)


def _table(store: FrequencyStore | CountTable) -> CountTable:
    if isinstance(store, FrequencyStore):
        return dict(store.items())
    return store


def compute_idf(store: FrequencyStore | CountTable, total_folders: int) -> Dict[str, float]:
    counts = _table(store)
    if counts and total_folders < 1:
        raise ModelInvariantError(f"cannot compute idf for {len(counts)} terms with {total_folders} folders")
    idf: Dict[str, float] = {}
    for term, folder_counts in counts.items():
        df = len(folder_counts)
        if df < 1:
            raise ModelInvariantError(f"term {term!r} has no folder entries")
        if df > total_folders:
            raise ModelInvariantError(
                f"term {term!r} appears in {df} folders but only {total_folders} are known"
            )
        idf[term] = math.log(total_folders / df)
    return idf


def compute_tfidf(store: FrequencyStore | CountTable, idf: Mapping[str, float]) -> Dict[str, Dict[str, float]]:
    tfidf: Dict[str, Dict[str, float]] = {}
    for term, folder_counts in _table(store).items():
        if term not in idf:
            raise ModelInvariantError(f"term {term!r} is missing from the idf table")
        weight = idf[term]
        tfidf[term] = {folder: count * weight for folder, count in folder_counts.items()}
    return tfidf


def compute_vector_lengths(tfidf: Mapping[str, Mapping[str, float]]) -> Dict[str, float]:
    squares: Dict[str, float] = {}
    for folder_weights in tfidf.values():
        for folder, weight in folder_weights.items():
            squares[folder] = squares.get(folder, 0.0) + weight * weight
    return {folder: math.sqrt(total) for folder, total in squares.items()}


def build_statistics(store: FrequencyStore, folders: Mapping[str, str]) -> ModelStatistics:
    """Run the three computations over ``store`` for the known ``folders``."""

    unknown = store.folders() - set(folders)
    if unknown:
        raise ModelInvariantError(f"counts reference unknown folders: {sorted(unknown)}")
    total = len(folders)
    idf = compute_idf(store, total)
    tfidf = compute_tfidf(store, idf)
    return ModelStatistics(
        total_folders=total,
        idf=idf,
        tfidf=tfidf,
        vector_lengths=compute_vector_lengths(tfidf),
    )
