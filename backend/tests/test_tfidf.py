import math

import pytest

from errors import ModelInvariantError
from frequency_store import FrequencyStore
from tfidf import build_statistics, compute_idf, compute_tfidf, compute_vector_lengths


def _store():
    return FrequencyStore(
        {
            "invoice": {"Projects": 3.0, "Personal": 1.0},
            "budget": {"Projects": 2.0},
            "vacation": {"Personal": 4.0},
        }
    )


def test_term_in_every_folder_gets_zero_idf():
    idf = compute_idf(_store(), 2)

    assert idf["invoice"] == 0.0
    assert idf["budget"] == pytest.approx(math.log(2))


def test_vector_length_is_euclidean_norm():
    store = _store()
    tfidf = compute_tfidf(store, compute_idf(store, 2))
    lengths = compute_vector_lengths(tfidf)

    assert tfidf["budget"]["Projects"] == pytest.approx(2 * math.log(2))
    assert tfidf["invoice"] == {"Projects": 0.0, "Personal": 0.0}
    assert lengths["Projects"] == pytest.approx(2 * math.log(2))
    assert lengths["Personal"] == pytest.approx(4 * math.log(2))


def test_document_frequency_above_folder_total_fails():
    with pytest.raises(ModelInvariantError):
        compute_idf(_store(), 1)


def test_tfidf_requires_idf_for_every_term():
    with pytest.raises(ModelInvariantError):
        compute_tfidf(_store(), {"budget": 1.0})


def test_counts_for_unknown_folder_fail():
    with pytest.raises(ModelInvariantError):
        build_statistics(_store(), {"Projects": "1"})


def test_build_statistics_is_deterministic():
    folders = {"Projects": "1", "Personal": "2"}

    first = build_statistics(_store(), folders)
    second = build_statistics(_store(), folders)

    assert first == second
    assert first.total_folders == 2


def test_empty_store_yields_empty_statistics():
    stats = build_statistics(FrequencyStore(), {})

    assert stats.idf == {}
    assert stats.vector_lengths == {}
