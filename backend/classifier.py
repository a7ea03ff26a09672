from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Tuple

from tfidf import ModelStatistics


logger = logging.getLogger(__name__)


MAX_RECOMMENDATIONS = 3


@dataclass(frozen=True)
class RankedFolder:
    name: str
    score: float

    def as_dict(self) -> Dict[str, object]:
        return {"name": self.name, "score": self.score}


class TopK:
    """Fixed slots filled by strict-greater comparison; ties keep the earlier entry."""

    def __init__(self, size: int = MAX_RECOMMENDATIONS) -> None:
        self._scores = [0.0] * size
        self._names = [""] * size

    def offer(self, name: str, score: float) -> None:
        last = len(self._scores) - 1
        if not score > self._scores[last]:
            return
        self._scores[last] = score
        self._names[last] = name
        slot = last
        while slot > 0 and score > self._scores[slot - 1]:
            self._scores[slot] = self._scores[slot - 1]
            self._names[slot] = self._names[slot - 1]
            self._scores[slot - 1] = score
            self._names[slot - 1] = name
            slot -= 1

    def ranked(self) -> List[RankedFolder]:
        return [
            RankedFolder(name=name, score=score)
            for name, score in zip(self._names, self._scores)
            if name
        ]


def document_weights(term_vector: Mapping[str, float], idf: Mapping[str, float]) -> Tuple[Dict[str, float], float]:
    weights = {term: count * idf.get(term, 0.0) for term, count in term_vector.items()}
    length = math.sqrt(sum(weight * weight for weight in weights.values()))
    return weights, length


def dot_products(
    doc_weights: Mapping[str, float],
    tfidf: Mapping[str, Mapping[str, float]],
) -> Dict[str, float]:
    products: Dict[str, float] = {}
    for term, doc_weight in doc_weights.items():
        folder_weights = tfidf.get(term)
        if not folder_weights:
            continue
        for folder, folder_weight in folder_weights.items():
            products[folder] = products.get(folder, 0.0) + folder_weight * doc_weight
    return products


def score_folders(
    term_vector: Mapping[str, float],
    idf: Mapping[str, float],
    tfidf: Mapping[str, Mapping[str, float]],
    vector_lengths: Mapping[str, float],
) -> Dict[str, float]:
    """Similarity per folder with a nonzero dot product.

    The score is ``dot / doc_length * folder_length``. This multiplies by the
    folder length instead of dividing by it and must stay that way: stored
    rankings and user expectations depend on it.
    """

    doc_weights, doc_length = document_weights(term_vector, idf)
    if doc_length == 0:
        return {}
    scores: Dict[str, float] = {}
    for folder, product in dot_products(doc_weights, tfidf).items():
        if product == 0:
            continue
        scores[folder] = product / doc_length * vector_lengths.get(folder, 0.0)
    return scores


def classify(term_vector: Mapping[str, float], stats: ModelStatistics) -> List[RankedFolder]:
    """Return up to three folders for ``term_vector``, best first.

    Folders are offered in lexicographic order, so equal scores rank the
    alphabetically smaller folder first. An empty list means no recommendation.
    """

    scores = score_folders(term_vector, stats.idf, stats.tfidf, stats.vector_lengths)
    top = TopK()
    for folder in sorted(scores):
        top.offer(folder, scores[folder])
    ranked = top.ranked()
    logger.debug("Ranked %s of %s scored folders", len(ranked), len(scores))
    return ranked
