"""Background worker that runs SmartFile passes against the IMAP account."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from typing import Optional

from database import DatabaseTracker
from engine import PassReport, SmartFileEngine
from mailbox import open_mail_store
from runtime_settings import load_engine_config, resolve_poll_interval_seconds
from settings import S


logger = logging.getLogger(__name__)


_engine: Optional[SmartFileEngine] = None
_engine_lock = threading.Lock()


def get_engine() -> SmartFileEngine:
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = SmartFileEngine(S.MODEL_PATH)
        return _engine


def _should_autostart() -> bool:
    raw = os.getenv("SMARTFILE_WORKER_AUTOSTART")
    if raw is None:
        return False
    normalized = raw.strip().lower()
    return normalized in {"1", "true", "yes", "on"}


async def _idle_loop(interval: float) -> None:
    delay = max(interval, 5.0)
    while True:
        await asyncio.sleep(delay)


def run_mailbox_pass(force_rebuild: bool = False) -> PassReport:
    """Open the mailbox, run one pass and close the connection again."""

    config = load_engine_config()
    tracker = DatabaseTracker()
    engine = get_engine()
    with open_mail_store(config) as mail_store:
        return engine.run_pass(mail_store, tracker, config, force_rebuild=force_rebuild)


async def one_shot_scan(force_rebuild: bool = False) -> PassReport | None:
    """Run a single pass unless SmartFile is disabled."""

    if not S.ENABLED:
        logger.info("SmartFile ist deaktiviert, Durchlauf übersprungen.")
        return None
    return await asyncio.to_thread(run_mailbox_pass, force_rebuild)


async def process_loop() -> None:
    """Continuously run passes in the configured interval."""

    while True:
        try:
            report = await one_shot_scan()
            if report and report.classified:
                logger.info("Classified %s new messages", report.classified)
        except Exception:  # pragma: no cover - defensive background handling
            logger.exception("Unexpected error while scanning mailbox")
        await asyncio.sleep(resolve_poll_interval_seconds())


if __name__ == "__main__":
    logging.basicConfig(level=getattr(logging, S.LOG_LEVEL.upper(), logging.INFO))
    try:
        if _should_autostart():
            asyncio.run(process_loop())
        else:
            logger.info(
                "Mailbox worker im Idle-Modus - setze SMARTFILE_WORKER_AUTOSTART=1, um die Durchläufe automatisch zu starten."
            )
            asyncio.run(_idle_loop(resolve_poll_interval_seconds()))
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        pass
