from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from engine import PassReport
from errors import PassBusyError


def test_healthz(backend_env):
    with TestClient(backend_env["app_module"].app) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_classify_without_model_returns_503(backend_env):
    with TestClient(backend_env["app_module"].app) as client:
        response = client.post("/api/classify", json={"fields": {"Subject": "budget"}})

    assert response.status_code == 503


def test_classify_during_running_pass_returns_503(backend_env, mail_store, tracker, engine_config):
    imap_worker = backend_env["imap_worker"]
    mail_store.add("p1", "Projects", "budget budget report")
    engine = imap_worker.get_engine()
    engine.run_pass(mail_store, tracker, engine_config)
    engine.model_loaded = False
    store = engine.store

    engine._run_lock.acquire()
    try:
        with TestClient(backend_env["app_module"].app) as client:
            response = client.post("/api/classify", json={"fields": {"Subject": "budget"}})
    finally:
        engine._run_lock.release()

    assert response.status_code == 503
    assert engine.store is store
    assert engine.model_loaded is False


def test_classify_with_trained_model(backend_env, mail_store, tracker, engine_config):
    imap_worker = backend_env["imap_worker"]
    mail_store.add("p1", "Projects", "budget budget report")
    mail_store.add("p2", "Personal", "vacation family")
    imap_worker.get_engine().run_pass(mail_store, tracker, engine_config)

    with TestClient(backend_env["app_module"].app) as client:
        response = client.post(
            "/api/classify",
            json={"fields": {"subject": "Budget review", "from": ["Boss <boss@example.org>"]}, "language": "en-US"},
        )
        summary = client.get("/api/model").json()

    assert response.status_code == 200
    payload = response.json()
    assert payload["language"] == "en"
    assert [entry["name"] for entry in payload["recommendations"]] == ["Projects"]
    assert summary["loaded"] is True
    assert summary["folders"] == ["Personal", "Projects"]
    assert summary["busy"] is False


def test_recommendations_listing(backend_env):
    database = backend_env["database"]
    database.save_recommendation(
        database.Recommendation(
            message_key="<c@example.org>",
            src_folder="INBOX",
            subject="Anfrage",
            from_addr="kunde@example.org",
            ranked=[{"name": "Kunden", "score": 0.9}],
        )
    )

    with TestClient(backend_env["app_module"].app) as client:
        response = client.get("/api/recommendations")

    assert response.status_code == 200
    payload = response.json()
    assert payload["open_count"] == 1
    assert payload["filed_count"] == 0
    assert payload["dismissed_count"] == 0
    assert payload["total_count"] == 1
    assert payload["recommendations"][0]["message_key"] == "<c@example.org>"


def test_config_update_and_validation(backend_env):
    with TestClient(backend_env["app_module"].app) as client:
        too_fast = client.put("/api/config", json={"poll_interval_seconds": 5})
        unknown_language = client.put("/api/config", json={"default_language": "xx"})
        response = client.put(
            "/api/config",
            json={
                "poll_interval_seconds": 60,
                "default_language": "de",
                "excluded_folders": ["INBOX", "Spam"],
                "classify_folders": ["INBOX"],
            },
        )
        current = client.get("/api/config").json()

    assert too_fast.status_code == 422
    assert unknown_language.status_code == 422
    assert response.status_code == 200
    assert current["poll_interval_seconds"] == 60.0
    assert current["default_language"] == "de"
    assert current["excluded_folders"] == ["INBOX", "Spam"]
    assert current["classify_folders"] == ["INBOX"]
    assert "de" in current["languages"] and "en" in current["languages"]


def test_rescan_reports_pass(monkeypatch, backend_env):
    app_module = backend_env["app_module"]
    calls = []

    async def _fake_scan(force_rebuild=False):
        calls.append(force_rebuild)
        return PassReport(rebuilt=force_rebuild, learned=True)

    monkeypatch.setattr("rescan_control.one_shot_scan", _fake_scan)

    with TestClient(app_module.app) as client:
        rescan = client.post("/api/rescan", json={})
        rebuild = client.post("/api/rebuild")
        status = client.get("/api/scan/status").json()

    assert rescan.status_code == 200
    assert rescan.json()["report"]["learned"] is True
    assert rebuild.json()["report"]["rebuilt"] is True
    assert calls == [False, True]
    assert status["rescan_active"] is False
    assert status["rescan_report"]["rebuilt"] is True


@pytest.mark.parametrize("path", ["/api/rescan", "/api/rebuild"])
def test_busy_pass_returns_409(monkeypatch, backend_env, path):
    async def _busy(force_rebuild=False):
        raise PassBusyError("Es läuft bereits ein Durchlauf.")

    monkeypatch.setattr("rescan_control.one_shot_scan", _busy)

    with TestClient(backend_env["app_module"].app) as client:
        response = client.post(path)

    assert response.status_code == 409
