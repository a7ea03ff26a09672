import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from errors import PassBusyError
from imap_worker import one_shot_scan
from runtime_settings import resolve_poll_interval_seconds

logger = logging.getLogger(__name__)


@dataclass
class ScanStatus:
    """Holds runtime information about the periodic pass controller."""

    active: bool = False
    poll_interval: float = field(default_factory=resolve_poll_interval_seconds)
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_report: Optional[Dict[str, Any]] = None


class ScanController:
    """Manage a cancellable background task that repeatedly runs passes."""

    def __init__(self) -> None:
        self._task: Optional[asyncio.Task[None]] = None
        self._lock = asyncio.Lock()
        self._status = ScanStatus()

    @property
    def status(self) -> ScanStatus:
        return self._status

    async def start(self) -> bool:
        async with self._lock:
            if self._task and not self._task.done():
                return False
            self._status.active = True
            self._status.last_error = None
            self._status.poll_interval = resolve_poll_interval_seconds()
            self._task = asyncio.create_task(self._run())
            return True

    async def stop(self) -> bool:
        async with self._lock:
            if not self._task:
                return False
            task = self._task
            self._task = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        finally:
            self._status.active = False
        return True

    async def _run(self) -> None:
        try:
            while True:
                interval = resolve_poll_interval_seconds()
                self._status.poll_interval = interval
                self._status.last_started_at = datetime.utcnow()
                try:
                    report = await one_shot_scan()
                    self._status.last_report = report.as_dict() if report else None
                    self._status.last_error = None
                except asyncio.CancelledError:
                    raise
                except PassBusyError as exc:
                    logger.info("Skipping scheduled pass: %s", exc)
                    self._status.last_error = str(exc)
                except Exception as exc:  # pragma: no cover - defensive mailbox interaction
                    logger.exception("Scan iteration failed")
                    self._status.last_error = str(exc)
                finally:
                    self._status.last_finished_at = datetime.utcnow()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.debug("Scan controller cancelled")
            raise
        finally:
            self._status.active = False


controller = ScanController()
