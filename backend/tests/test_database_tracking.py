from frequency_store import RecordedState


def test_tracked_state_roundtrip(backend_env):
    database = backend_env["database"]

    assert database.load_tracked_states() == {}
    database.set_tracked_state("<a@example.org>", ["Projects", "INBOX", "Projects"], True)

    state = database.load_tracked_states()["<a@example.org>"]
    assert state.folders == frozenset({"INBOX", "Projects"})
    assert state.classified is True

    database.set_tracked_state("<a@example.org>", ["Archive"], False)
    assert database.load_tracked_states()["<a@example.org>"].folders == frozenset({"Archive"})


def test_tracker_records_and_resolves_recommendations(backend_env):
    database = backend_env["database"]
    tracker = database.DatabaseTracker()

    tracker.set_state("<b@example.org>", RecordedState(folders=frozenset({"INBOX"}), classified=True))
    tracker.record_recommendations(
        "<b@example.org>",
        src_folder="INBOX",
        subject="Budget",
        from_addr="boss@example.org",
        ranked=[{"name": "Projects", "score": 1.5}],
    )
    tracker.record_recommendations(
        "<b@example.org>",
        src_folder="INBOX",
        subject="Budget",
        from_addr="boss@example.org",
        ranked=[{"name": "Finance", "score": 2.0}],
    )

    open_rows = database.list_recommendations()
    assert len(open_rows) == 1
    assert open_rows[0].ranked == [{"name": "Finance", "score": 2.0}]

    tracker.resolve_recommendations("<b@example.org>", ["Finance"])

    assert database.list_recommendations() == []
    filed = database.list_recommendations(include_all=True)
    assert filed[0].status == "filed"
    assert filed[0].filed_to == ["Finance"]
    assert database.recommendation_status_counts() == {"open": 0, "filed": 1, "dismissed": 0, "total": 1}

    reloaded = database.DatabaseTracker()
    assert reloaded.get_state("<b@example.org>").classified is True


def test_tracker_dismisses_open_recommendation(backend_env):
    database = backend_env["database"]
    tracker = database.DatabaseTracker()
    tracker.record_recommendations(
        "<d@example.org>",
        src_folder="INBOX",
        subject="Newsletter",
        from_addr="news@example.org",
        ranked=[{"name": "Lesen", "score": 0.4}],
    )

    tracker.dismiss_recommendations("<d@example.org>")

    assert database.list_recommendations() == []
    dismissed = database.list_recommendations(include_all=True)[0]
    assert dismissed.status == "dismissed"
    assert dismissed.filed_to == []
    assert dismissed.resolved_at is not None
    assert database.recommendation_status_counts()["dismissed"] == 1

def test_config_overrides(backend_env):
    database = backend_env["database"]
    runtime_settings = backend_env["runtime_settings"]

    assert runtime_settings.resolve_excluded_folders() == ["INBOX", "Drafts", "Sent", "Trash", "Junk"]
    database.set_excluded_folders(["Trash", " ", "Spam", "Trash"])
    assert runtime_settings.resolve_excluded_folders() == ["Trash", "Spam"]

    database.set_poll_interval(3)
    assert runtime_settings.resolve_poll_interval_seconds() == 10.0

    database.set_default_language("xx")
    assert runtime_settings.resolve_default_language() == "en"
    database.set_default_language("DE")
    assert runtime_settings.resolve_default_language() == "de"

    config = runtime_settings.load_engine_config()
    assert config.default_language == "de"
    assert config.is_excluded_folder("Spam") is True
    assert config.is_stop_word("und", "de") is True
