import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from engine import PassReport
from errors import PassBusyError
from imap_worker import one_shot_scan

logger = logging.getLogger(__name__)


@dataclass
class RescanStatus:
    """Runtime information for the manually triggered pass."""

    active: bool = False
    force_rebuild: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    last_report: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None
    cancelled: bool = False


class RescanCancelledError(Exception):
    """Raised when an ongoing manual pass gets cancelled."""


class RescanController:
    """Run one pass on demand; a second request while active is rejected."""

    def __init__(self) -> None:
        self._task: asyncio.Task[Optional[PassReport]] | None = None
        self._lock = asyncio.Lock()
        self._status = RescanStatus()

    @property
    def status(self) -> RescanStatus:
        return self._status

    async def run(self, force_rebuild: bool = False) -> Optional[PassReport]:
        async with self._lock:
            if self._task and not self._task.done():
                raise PassBusyError("manual pass already active")
            self._status.active = True
            self._status.force_rebuild = force_rebuild
            self._status.cancelled = False
            self._status.started_at = datetime.utcnow()
            self._status.finished_at = None
            self._status.last_error = None
            self._status.last_report = None
            task = asyncio.create_task(self._execute(force_rebuild))
            self._task = task

        try:
            return await task
        except asyncio.CancelledError as exc:  # pragma: no cover - cooperative cancellation
            raise RescanCancelledError() from exc
        finally:
            await self._finalize()

    async def stop(self) -> bool:
        async with self._lock:
            task = self._task
            self._task = None
        if not task:
            return False

        self._status.cancelled = True
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            pass
        finally:
            await self._finalize(cancelled=True)
        return True

    async def _execute(self, force_rebuild: bool) -> Optional[PassReport]:
        try:
            report = await one_shot_scan(force_rebuild)
            self._status.last_report = report.as_dict() if report else None
            return report
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Manual pass failed")
            self._status.last_error = str(exc)
            raise

    async def _finalize(self, cancelled: bool = False) -> None:
        self._status.active = False
        self._status.cancelled = self._status.cancelled or cancelled
        self._status.finished_at = datetime.utcnow()
        async with self._lock:
            self._task = None


controller = RescanController()
