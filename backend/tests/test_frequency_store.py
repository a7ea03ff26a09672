import pytest

from frequency_store import FrequencyStore, RecordedState, diff_folders, reconcile_item


EXCLUDED = {"INBOX", "Drafts", "Trash"}


def _is_excluded(name):
    return name in EXCLUDED


def test_subtract_removes_entries_that_reach_zero():
    store = FrequencyStore()
    store.add_counts({"budget": 2.0, "invoice": 1.0}, "Projects")
    store.subtract_counts({"budget": 1.0, "invoice": 3.0}, "Projects")

    assert store.count("budget", "Projects") == 1.0
    assert "invoice" not in store
    assert store.dirty is True


def test_constructor_drops_non_positive_counts():
    store = FrequencyStore({"a": {"X": 0.0, "Y": 2.0}, "b": {"X": -1.0}})

    assert store.to_dict() == {"a": {"Y": 2.0}}


def test_first_sighting_only_records_membership():
    store = FrequencyStore()
    calls = []

    result = reconcile_item(store, {"Projects"}, None, lambda: calls.append(1) or {"x": 1.0}, _is_excluded)

    assert result.action == "recorded"
    assert result.state == RecordedState(folders=frozenset({"Projects"}))
    assert calls == []
    assert len(store) == 0


def test_move_unlearns_old_folder_and_learns_new_one():
    store = FrequencyStore()
    vector = {"budget": 2.0, "meeting": 1.0}
    store.add_counts(vector, "Projects")
    recorded = RecordedState(folders=frozenset({"Projects"}))

    result = reconcile_item(store, {"Personal"}, recorded, lambda: vector, _is_excluded)

    assert result.learned is True
    assert result.unlearned_from == ("Projects",)
    assert result.learned_into == ("Personal",)
    assert store.to_dict() == {"budget": {"Personal": 2.0}, "meeting": {"Personal": 1.0}}


def test_reconciliation_is_idempotent():
    store = FrequencyStore()
    vector = {"budget": 2.0}
    recorded = RecordedState(folders=frozenset({"INBOX"}), classified=True)

    first = reconcile_item(store, {"Projects"}, recorded, lambda: vector, _is_excluded)
    snapshot = store.to_dict()
    second = reconcile_item(store, {"Projects"}, first.state, lambda: vector, _is_excluded)

    assert first.action == "learned"
    assert second.action == "unchanged"
    assert store.to_dict() == snapshot


def test_classified_item_is_not_unlearned_from_its_source():
    store = FrequencyStore()
    recorded = RecordedState(folders=frozenset({"INBOX"}), classified=True)

    result = reconcile_item(store, {"Projects"}, recorded, lambda: {"budget": 1.0}, _is_excluded)

    assert result.unlearned_from == ()
    assert result.state == RecordedState(folders=frozenset({"Projects"}), classified=False)
    assert store.count("budget", "Projects") == 1.0


def test_classified_item_still_in_inbox_is_left_alone():
    store = FrequencyStore()
    recorded = RecordedState(folders=frozenset({"INBOX"}), classified=True)

    def _vector():
        raise AssertionError("term vector must not be computed")

    result = reconcile_item(store, {"INBOX"}, recorded, _vector, _is_excluded)

    assert result.action == "unchanged"
    assert result.state is None


def test_move_between_excluded_folders_only_updates_state():
    store = FrequencyStore()
    recorded = RecordedState(folders=frozenset({"INBOX"}))

    result = reconcile_item(store, {"Trash"}, recorded, lambda: {"x": 1.0}, _is_excluded)

    assert result.action == "recorded"
    assert result.learned is False
    assert result.state.folders == frozenset({"Trash"})


def test_unlearn_then_relearn_restores_counts():
    store = FrequencyStore({"budget": {"Projects": 3.0}, "vacation": {"Personal": 4.0}})
    before = store.to_dict()
    vector = {"budget": 1.0, "report": 2.0}

    store.add_counts(vector, "Projects")
    store.subtract_counts(vector, "Projects")

    assert store.to_dict() == before


def test_drop_folder_removes_every_entry():
    store = FrequencyStore({"budget": {"Projects": 3.0}, "invoice": {"Projects": 1.0, "Personal": 2.0}})

    assert store.drop_folder("Projects") == 2
    assert store.to_dict() == {"invoice": {"Personal": 2.0}}
    assert store.folders() == {"Personal"}


@pytest.mark.parametrize(
    "known,current,expected",
    [
        ({"A", "B"}, {"A", "B"}, (set(), set())),
        ({"A"}, {"A", "B"}, ({"B"}, set())),
        ({"A", "B"}, {"B"}, (set(), {"A"})),
    ],
)
def test_diff_folders(known, current, expected):
    assert diff_folders(known, current) == expected
