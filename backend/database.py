
from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from sqlalchemy import func
from sqlmodel import Session, SQLModel, create_engine, select

from frequency_store import RecordedState
from models import AppConfig, Recommendation, TrackedMessage
from settings import S


os.makedirs("data", exist_ok=True)


logger = logging.getLogger(__name__)


def _make_engine():
    connect_args = {"check_same_thread": False} if S.DATABASE_URL.startswith("sqlite") else {}
    return create_engine(S.DATABASE_URL, echo=False, connect_args=connect_args)


engine = _make_engine()


_schema_lock = threading.Lock()
_schema_ready = False


def _ensure_schema() -> None:
    global _schema_ready
    if _schema_ready:
        return
    with _schema_lock:
        if _schema_ready:
            return
        SQLModel.metadata.create_all(engine)
        _schema_ready = True


def _reset_sqlite_file() -> None:
    if not S.DATABASE_URL.startswith("sqlite:///"):
        return
    path = S.DATABASE_URL.replace("sqlite:///", "", 1)
    if not path:
        return
    try:
        engine.dispose()
    except Exception:
        logger.debug("Failed to dispose engine before reset", exc_info=True)
    if os.path.exists(path):
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Could not delete SQLite file %s: %s", path, exc)


def init_db() -> None:
    global _schema_ready
    with _schema_lock:
        if S.INIT_RUN:
            logger.info("INIT_RUN active, resetting database")
            SQLModel.metadata.drop_all(engine)
            _schema_ready = False
            if S.DATABASE_URL.startswith("sqlite:///"):
                _reset_sqlite_file()
        SQLModel.metadata.create_all(engine)
        _schema_ready = True


@contextmanager
def get_session() -> Iterator[Session]:
    _ensure_schema()
    with Session(engine) as session:
        yield session


def _state_from_row(row: TrackedMessage) -> RecordedState:
    return RecordedState(folders=frozenset(row.folders or []), classified=bool(row.classified))


def load_tracked_states() -> Dict[str, RecordedState]:
    with get_session() as ses:
        rows = ses.exec(select(TrackedMessage)).all()
        return {row.message_key: _state_from_row(row) for row in rows}


def set_tracked_state(message_key: str, folders: Iterable[str], classified: bool) -> None:
    ordered = sorted({str(folder) for folder in folders})
    with get_session() as ses:
        row = ses.exec(select(TrackedMessage).where(TrackedMessage.message_key == message_key)).first()
        if not row:
            row = TrackedMessage(message_key=message_key)
        row.folders = ordered
        row.classified = bool(classified)
        row.updated_at = datetime.utcnow()
        ses.add(row)
        ses.commit()


def save_recommendation(rec: Recommendation) -> None:
    with get_session() as ses:
        existing = ses.exec(
            select(Recommendation)
            .where(Recommendation.message_key == rec.message_key)
            .where(Recommendation.status == "open")
        ).first()
        if existing:
            data = rec.dict(exclude_unset=True)
            data.pop("id", None)
            for key, value in data.items():
                setattr(existing, key, value)
            ses.add(existing)
        else:
            ses.add(rec)
        ses.commit()


def resolve_recommendation(
    message_key: str, filed_to: Sequence[str], status: str = "filed"
) -> Optional[Recommendation]:
    with get_session() as ses:
        row = ses.exec(
            select(Recommendation)
            .where(Recommendation.message_key == message_key)
            .where(Recommendation.status == "open")
        ).first()
        if not row:
            return None
        row.status = status
        row.filed_to = sorted({str(folder) for folder in filed_to})
        row.resolved_at = datetime.utcnow()
        ses.add(row)
        ses.commit()
        ses.refresh(row)
        return row


def dismiss_recommendation(message_key: str) -> Optional[Recommendation]:
    return resolve_recommendation(message_key, [], status="dismissed")


def list_recommendations(include_all: bool = False) -> List[Recommendation]:
    with get_session() as ses:
        stmt = select(Recommendation).order_by(Recommendation.id.desc())
        if not include_all:
            stmt = stmt.where(Recommendation.status == "open")
        return ses.exec(stmt).all()


def recommendation_status_counts() -> Dict[str, int]:
    counts = {"open": 0, "filed": 0, "dismissed": 0}
    total = 0
    with get_session() as ses:
        rows = ses.exec(
            select(Recommendation.status, func.count()).group_by(Recommendation.status)
        ).all()
        for status, amount in rows:
            count = int(amount or 0)
            normalized = (status or "open").strip().lower()
            counts[normalized] = counts.get(normalized, 0) + count
            total += count
    counts["total"] = total
    return counts


def _set_config_value(key: str, value: str) -> None:
    with get_session() as ses:
        entry = ses.exec(select(AppConfig).where(AppConfig.key == key)).first()
        if not entry:
            entry = AppConfig(key=key, value=value)
        else:
            entry.value = value
        ses.add(entry)
        ses.commit()


def _get_config_value(key: str) -> Optional[str]:
    with get_session() as ses:
        entry = ses.exec(select(AppConfig).where(AppConfig.key == key)).first()
        return entry.value if entry else None


def _set_folder_list(key: str, folders: Sequence[str]) -> None:
    unique = list(dict.fromkeys(str(folder).strip() for folder in folders if str(folder).strip()))
    _set_config_value(key, json.dumps(unique))


def _get_folder_list(key: str) -> Optional[List[str]]:
    raw = _get_config_value(key)
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Stored folder list %s could not be parsed", key)
        return None
    if not isinstance(data, list):
        return None
    return [str(folder) for folder in data if isinstance(folder, str) and folder.strip()]


def set_excluded_folders(folders: Sequence[str]) -> None:
    _set_folder_list("EXCLUDED_FOLDERS", folders)


def get_excluded_folders_override() -> Optional[List[str]]:
    return _get_folder_list("EXCLUDED_FOLDERS")


def set_classify_folders(folders: Sequence[str]) -> None:
    _set_folder_list("CLASSIFY_FOLDERS", folders)


def get_classify_folders_override() -> Optional[List[str]]:
    return _get_folder_list("CLASSIFY_FOLDERS")


def set_default_language(language: str) -> None:
    normalized = str(language or "").strip().lower()
    if not normalized:
        raise ValueError("default language must not be empty")
    _set_config_value("DEFAULT_LANGUAGE", normalized)


def get_default_language_override() -> Optional[str]:
    value = _get_config_value("DEFAULT_LANGUAGE")
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized or None


def set_poll_interval(seconds: int) -> None:
    _set_config_value("POLL_INTERVAL_SECONDS", str(int(seconds)))


def get_poll_interval_override() -> Optional[int]:
    value = _get_config_value("POLL_INTERVAL_SECONDS")
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def get_mailbox_settings_entry() -> Dict[str, Any]:
    raw = _get_config_value("MAILBOX_SETTINGS")
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Persisted mailbox settings could not be parsed.")
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def set_mailbox_settings_entry(values: Dict[str, Any]) -> None:
    payload = json.dumps(values, ensure_ascii=False)
    _set_config_value("MAILBOX_SETTINGS", payload)


class DatabaseTracker:
    """Recorded item state backed by the ``TrackedMessage`` table.

    All rows are loaded once when the tracker is created; updates are written
    through immediately so that a failed pass still keeps per-item progress.
    """

    def __init__(self) -> None:
        self._states = load_tracked_states()

    def get_state(self, key: str) -> Optional[RecordedState]:
        return self._states.get(key)

    def set_state(self, key: str, state: RecordedState) -> None:
        set_tracked_state(key, state.folders, state.classified)
        self._states[key] = state

    def record_recommendations(
        self,
        key: str,
        *,
        src_folder: str | None,
        subject: str | None,
        from_addr: str | None,
        ranked: Sequence[Dict[str, Any]],
    ) -> None:
        save_recommendation(
            Recommendation(
                message_key=key,
                src_folder=src_folder,
                subject=subject,
                from_addr=from_addr,
                ranked=list(ranked),
                status="open",
            )
        )

    def resolve_recommendations(self, key: str, folders: Iterable[str]) -> None:
        resolve_recommendation(key, list(folders))

    def dismiss_recommendations(self, key: str) -> None:
        dismiss_recommendation(key)
