import math

import pytest

from classifier import TopK, classify
from frequency_store import FrequencyStore
from tfidf import ModelStatistics, build_statistics


@pytest.fixture()
def projects_personal():
    store = FrequencyStore(
        {
            "invoice": {"Projects": 3.0, "Personal": 1.0},
            "budget": {"Projects": 2.0},
            "vacation": {"Personal": 4.0},
        }
    )
    return build_statistics(store, {"Projects": "p", "Personal": "q"})


def test_budget_item_is_filed_to_projects(projects_personal):
    ranked = classify({"budget": 1.0}, projects_personal)

    assert [entry.name for entry in ranked] == ["Projects"]
    assert ranked[0].score == pytest.approx(4 * math.log(2) ** 2)


def test_terms_with_zero_idf_give_no_recommendation(projects_personal):
    assert classify({"invoice": 5.0}, projects_personal) == []


def test_unknown_terms_give_no_recommendation(projects_personal):
    assert classify({"unrelated": 1.0}, projects_personal) == []
    assert classify({}, ModelStatistics()) == []


def test_ranking_is_ordered_and_capped_at_three():
    store = FrequencyStore(
        {
            "alpha": {"A": 1.0},
            "beta": {"B": 2.0},
            "gamma": {"C": 3.0},
            "delta": {"D": 4.0},
        }
    )
    stats = build_statistics(store, {name: name for name in "ABCDE"})

    ranked = classify({"alpha": 1.0, "beta": 1.0, "gamma": 1.0, "delta": 1.0}, stats)

    assert [entry.name for entry in ranked] == ["D", "C", "B"]
    assert ranked[0].score > ranked[1].score > ranked[2].score


def test_equal_scores_keep_alphabetical_order():
    store = FrequencyStore({"alpha": {"Zeta": 1.0}, "beta": {"Alpha": 1.0}})
    stats = build_statistics(store, {"Zeta": "z", "Alpha": "a", "Other": "o"})

    ranked = classify({"alpha": 1.0, "beta": 1.0}, stats)

    assert [entry.name for entry in ranked] == ["Alpha", "Zeta"]


def test_topk_ignores_ties_and_non_positive_scores():
    top = TopK()
    top.offer("a", 1.0)
    top.offer("b", 1.0)
    top.offer("c", 0.0)
    top.offer("d", 2.0)

    assert [(entry.name, entry.score) for entry in top.ranked()] == [("d", 2.0), ("a", 1.0), ("b", 1.0)]
