"""FastAPI application for the SmartFile backend."""

from __future__ import annotations

import asyncio
import logging

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from configuration import available_languages
from database import (
    init_db,
    list_recommendations,
    recommendation_status_counts,
    set_classify_folders,
    set_default_language,
    set_excluded_folders,
    set_poll_interval,
)
from errors import ModelInvariantError, ModelLoadError, PassBusyError
from imap_worker import get_engine
from mail_settings import persist_mailbox_settings, verify_mailbox_connection
from mailbox import list_folders
from models import Recommendation
from rescan_control import RescanCancelledError, RescanStatus, controller as rescan_controller
from runtime_settings import (
    MIN_POLL_INTERVAL_SECONDS,
    load_engine_config,
    resolve_classify_folders,
    resolve_default_language,
    resolve_excluded_folders,
    resolve_mailbox_settings,
    resolve_poll_interval_seconds,
)
from scan_control import ScanStatus, controller as scan_controller
from settings import S
from utils import mapping_fields


class RankedFolderResponse(BaseModel):
    name: str
    score: float


class ClassifyRequest(BaseModel):
    fields: Dict[str, Union[str, List[str]]] = Field(default_factory=dict)
    language: Optional[str] = None


class ClassifyResponse(BaseModel):
    language: str
    recommendations: List[RankedFolderResponse]


class ModelSummaryResponse(BaseModel):
    loaded: bool
    path: str
    folders: List[str]
    folder_ids: Dict[str, str]
    vector_lengths: Dict[str, float]
    terms: int
    pairs: int
    total_folders: int
    dirty: bool
    busy: bool


class RecommendationsResponse(BaseModel):
    recommendations: List[Recommendation]
    open_count: int
    filed_count: int
    dismissed_count: int
    total_count: int


class FolderOverviewResponse(BaseModel):
    available: List[str]
    excluded: List[str]
    classify: List[str]


class ConfigResponse(BaseModel):
    enabled: bool
    default_language: str
    languages: List[str]
    excluded_folders: List[str]
    classify_folders: List[str]
    poll_interval_seconds: float
    write_recommendation_tags: bool
    tag_prefix: str | None = None


class ConfigUpdateRequest(BaseModel):
    default_language: Optional[str] = None
    excluded_folders: Optional[List[str]] = None
    classify_folders: Optional[List[str]] = None
    poll_interval_seconds: Optional[int] = Field(default=None, ge=MIN_POLL_INTERVAL_SECONDS)


class PassRequest(BaseModel):
    force_rebuild: bool = False


class ScanStatusResponse(BaseModel):
    active: bool
    poll_interval: float
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_error: str | None = None
    last_report: Dict[str, Any] | None = None
    rescan_active: bool = False
    rescan_force_rebuild: bool = False
    rescan_started_at: datetime | None = None
    rescan_finished_at: datetime | None = None
    rescan_error: str | None = None
    rescan_report: Dict[str, Any] | None = None
    rescan_cancelled: bool = False

    @classmethod
    def from_status(
        cls,
        status: ScanStatus,
        *,
        rescan_status: RescanStatus | None = None,
    ) -> "ScanStatusResponse":
        rescan = rescan_status or RescanStatus()
        return cls(
            active=status.active,
            poll_interval=float(status.poll_interval),
            last_started_at=status.last_started_at,
            last_finished_at=status.last_finished_at,
            last_error=status.last_error,
            last_report=status.last_report,
            rescan_active=rescan.active,
            rescan_force_rebuild=rescan.force_rebuild,
            rescan_started_at=rescan.started_at,
            rescan_finished_at=rescan.finished_at,
            rescan_error=rescan.last_error,
            rescan_report=rescan.last_report,
            rescan_cancelled=rescan.cancelled,
        )


class ScanStartResponse(BaseModel):
    started: bool
    status: ScanStatusResponse


class ScanStopResponse(BaseModel):
    stopped: bool
    status: ScanStatusResponse


class MailboxSettingsResponse(BaseModel):
    host: str
    port: int
    username: str
    inbox: str
    use_ssl: bool
    has_password: bool


class MailboxSettingsUpdate(BaseModel):
    host: str
    port: int
    username: str
    inbox: str
    use_ssl: bool
    password: Optional[str] = None
    clear_password: bool = False


class MailboxConnectionTestRequest(BaseModel):
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    inbox: Optional[str] = None
    use_ssl: Optional[bool] = None
    use_stored_password: bool = False


class MailboxConnectionTestResponse(BaseModel):
    ok: bool
    message: Optional[str] = None


app = FastAPI(title="SmartFile")
app.add_middleware(
    CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"]
)

logger = logging.getLogger(__name__)


@app.on_event("startup")
async def _startup() -> None:
    init_db()
    engine = get_engine()
    try:
        await asyncio.to_thread(engine.ensure_loaded)
    except (ModelLoadError, ModelInvariantError, PassBusyError) as exc:
        logger.info("Kein nutzbares Modell beim Start (%s), es wird beim nächsten Durchlauf aufgebaut.", exc)


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/model", response_model=ModelSummaryResponse)
def api_model() -> ModelSummaryResponse:
    return ModelSummaryResponse(**get_engine().summary())


@app.post("/api/classify", response_model=ClassifyResponse)
def api_classify(payload: ClassifyRequest) -> ClassifyResponse:
    engine = get_engine()
    if not engine.model_loaded:
        try:
            engine.ensure_loaded()
        except PassBusyError as exc:
            raise HTTPException(503, str(exc)) from exc
        except (ModelLoadError, ModelInvariantError) as exc:
            raise HTTPException(503, f"Kein Modell verfügbar: {exc}") from exc
    config = load_engine_config()
    language = config.resolve_language(payload.language)
    ranked = engine.classify_fields(mapping_fields(payload.fields, config), config, language)
    return ClassifyResponse(
        language=language,
        recommendations=[RankedFolderResponse(name=entry.name, score=entry.score) for entry in ranked],
    )


@app.get("/api/recommendations", response_model=RecommendationsResponse)
def api_recommendations(include_all: bool = Query(False)) -> RecommendationsResponse:
    counts = recommendation_status_counts()
    return RecommendationsResponse(
        recommendations=list_recommendations(include_all=include_all),
        open_count=counts.get("open", 0),
        filed_count=counts.get("filed", 0),
        dismissed_count=counts.get("dismissed", 0),
        total_count=counts.get("total", 0),
    )


@app.get("/api/folders", response_model=FolderOverviewResponse)
def api_folders() -> FolderOverviewResponse:
    return FolderOverviewResponse(
        available=list_folders(),
        excluded=resolve_excluded_folders(),
        classify=resolve_classify_folders(),
    )


def _config_response() -> ConfigResponse:
    return ConfigResponse(
        enabled=bool(S.ENABLED),
        default_language=resolve_default_language(),
        languages=available_languages(),
        excluded_folders=resolve_excluded_folders(),
        classify_folders=resolve_classify_folders(),
        poll_interval_seconds=resolve_poll_interval_seconds(),
        write_recommendation_tags=bool(S.WRITE_RECOMMENDATION_TAGS),
        tag_prefix=S.IMAP_TAG_PREFIX or None,
    )


@app.get("/api/config", response_model=ConfigResponse)
def api_config() -> ConfigResponse:
    return _config_response()


@app.put("/api/config", response_model=ConfigResponse)
def api_update_config(payload: ConfigUpdateRequest) -> ConfigResponse:
    updates = payload.model_dump(exclude_unset=True)
    if "default_language" in updates:
        language = (payload.default_language or "").strip().lower()
        if language not in available_languages():
            raise HTTPException(422, f"Keine Stoppwortliste für Sprache '{language}' vorhanden.")
        set_default_language(language)
    if "excluded_folders" in updates:
        set_excluded_folders(payload.excluded_folders or [])
    if "classify_folders" in updates:
        set_classify_folders(payload.classify_folders or [])
    if "poll_interval_seconds" in updates:
        if payload.poll_interval_seconds is None:
            raise HTTPException(422, "poll_interval_seconds must not be null")
        set_poll_interval(payload.poll_interval_seconds)
    return _config_response()


def _mailbox_settings_payload() -> MailboxSettingsResponse:
    settings = resolve_mailbox_settings(include_password=True)
    return MailboxSettingsResponse(
        host=settings.host,
        port=settings.port,
        username=settings.username,
        inbox=settings.inbox,
        use_ssl=settings.use_ssl,
        has_password=bool(settings.password),
    )


@app.get("/api/mailbox/config", response_model=MailboxSettingsResponse)
def api_mailbox_config() -> MailboxSettingsResponse:
    return _mailbox_settings_payload()


@app.put("/api/mailbox/config", response_model=MailboxSettingsResponse)
def api_update_mailbox_config(payload: MailboxSettingsUpdate) -> MailboxSettingsResponse:
    if payload.clear_password and payload.password:
        raise HTTPException(400, "Passwort kann nicht gleichzeitig gesetzt und gelöscht werden.")
    password_value = payload.password
    clear_password = payload.clear_password
    if password_value is not None and not password_value.strip():
        password_value = None
        clear_password = True
    try:
        persist_mailbox_settings(
            host=(payload.host or "").strip(),
            port=payload.port,
            username=(payload.username or "").strip(),
            inbox=(payload.inbox or "").strip(),
            use_ssl=payload.use_ssl,
            password=password_value,
            clear_password=clear_password,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    return _mailbox_settings_payload()


@app.post("/api/mailbox/config/test", response_model=MailboxConnectionTestResponse)
async def api_mailbox_config_test(payload: MailboxConnectionTestRequest) -> MailboxConnectionTestResponse:
    current = resolve_mailbox_settings(include_password=True)
    host = (payload.host or current.host).strip()
    username = (payload.username or current.username).strip()
    inbox = (payload.inbox or current.inbox).strip() or "INBOX"
    use_ssl = payload.use_ssl if payload.use_ssl is not None else current.use_ssl
    port = payload.port if payload.port is not None else current.port
    if payload.password is not None:
        if not payload.password:
            raise HTTPException(400, "Passwort darf nicht leer sein.")
        password_value = payload.password
    elif current.password:
        password_value = current.password
    else:
        raise HTTPException(400, "Bitte gib ein Passwort an oder speichere eines in den Einstellungen.")
    try:
        report = await asyncio.to_thread(
            verify_mailbox_connection,
            host=host,
            port=port,
            username=username,
            password=password_value,
            inbox=inbox,
            use_ssl=use_ssl,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    except Exception as exc:  # pragma: no cover - network guard
        logger.exception("Mailbox-Verbindungstest fehlgeschlagen", exc_info=True)
        raise HTTPException(500, "Verbindungstest fehlgeschlagen") from exc
    return MailboxConnectionTestResponse(ok=True, message=report.message())


async def _run_manual_pass(force_rebuild: bool) -> Dict[str, Any]:
    if not S.ENABLED:
        return {"ok": False, "disabled": True}
    try:
        report = await rescan_controller.run(force_rebuild=force_rebuild)
    except PassBusyError as exc:
        raise HTTPException(409, str(exc)) from exc
    except RescanCancelledError:
        return {"ok": False, "cancelled": True}
    return {"ok": True, "report": report.as_dict() if report else None}


@app.post("/api/rescan")
async def api_rescan(payload: PassRequest = Body(default_factory=PassRequest)) -> Dict[str, Any]:
    return await _run_manual_pass(payload.force_rebuild)


@app.post("/api/rebuild")
async def api_rebuild() -> Dict[str, Any]:
    return await _run_manual_pass(True)


@app.get("/api/scan/status", response_model=ScanStatusResponse)
async def api_scan_status() -> ScanStatusResponse:
    return ScanStatusResponse.from_status(scan_controller.status, rescan_status=rescan_controller.status)


@app.post("/api/scan/start", response_model=ScanStartResponse)
async def api_scan_start() -> ScanStartResponse:
    started = await scan_controller.start()
    return ScanStartResponse(
        started=started,
        status=ScanStatusResponse.from_status(
            scan_controller.status,
            rescan_status=rescan_controller.status,
        ),
    )


@app.post("/api/scan/stop", response_model=ScanStopResponse)
async def api_scan_stop() -> ScanStopResponse:
    auto_stopped = await scan_controller.stop()
    one_shot_stopped = await rescan_controller.stop()
    return ScanStopResponse(
        stopped=auto_stopped or one_shot_stopped,
        status=ScanStatusResponse.from_status(
            scan_controller.status,
            rescan_status=rescan_controller.status,
        ),
    )
