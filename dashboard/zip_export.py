"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Dashboard - Export ZIP mensuel des factures                                 ║
║                                                                              ║
║  idle -> starting -> running -> completed | failed | abandoned               ║
║                                                                              ║
║  - progressId neuf à chaque lancement                                        ║
║  - canal de progression ouvert AVANT la requête d'export                     ║
║  - le dernier message reçu fait foi; statut != running -> canal fermé        ║
║  - fin du job: fermeture du canal après un délai de grâce                    ║
║  - teardown: fermeture immédiate (le job serveur continue)                   ║
║  - un seul canal ouvert à la fois, jamais de mélange entre progressId        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio
import logging
import time
import uuid
import secrets
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from dashboard.config import (
    ZIP_BASE, PROGRESS_GRACE_SECONDS, PROGRESS_CONNECT_TIMEOUT, ERROR_SNIPPET_LENGTH,
)
from dashboard.downloads import filename_from_disposition, save_download
from dashboard.progress import ProgressSubscription

logger = logging.getLogger("dashboard.zip_export")

ZIP_ERROR_MESSAGE = "Échec lors de la création/téléchargement du ZIP"
IDLE_LABEL = "Télécharger le ZIP du mois"
PENDING_LABEL = "Préparation du ZIP…"


class ExportState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


class ZipProgress(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    done: int = 0
    total: int = 0
    failed: int = 0
    status: str
    message: Optional[str] = None


def new_progress_id() -> str:
    try:
        return uuid.uuid4().hex
    except NotImplementedError:
        # pas de source aléatoire système
        return f"{time.time_ns():x}{secrets.randbits(32):08x}"


def default_zip_filename(month: str) -> str:
    return f"FACTURES-{month}.zip"


class ZipExportCoordinator:

    def __init__(
        self,
        client: httpx.AsyncClient,
        zip_base: str = ZIP_BASE,
        save_file: Callable[[str, bytes], Awaitable[Any]] = save_download,
        alert: Optional[Callable[[str], None]] = None,
        grace_seconds: float = PROGRESS_GRACE_SECONDS,
        connect_timeout: float = PROGRESS_CONNECT_TIMEOUT,
        subscription_factory: Callable[..., ProgressSubscription] = ProgressSubscription,
    ):
        self.client = client
        self.zip_base = zip_base.rstrip("/")
        self.save_file = save_file
        self.alert = alert or (lambda message: logger.error(f"[ALERT] {message}"))
        self.grace_seconds = grace_seconds
        self.connect_timeout = connect_timeout
        self.subscription_factory = subscription_factory

        self.state = ExportState.IDLE
        self.progress: Optional[ZipProgress] = None
        self.progress_id: Optional[str] = None
        self.filename: Optional[str] = None

        self._channel: Optional[ProgressSubscription] = None
        self._channel_progress_id: Optional[str] = None
        self._grace_timer: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Callable[[], None]] = []

    # ---- observation ----

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self):
        for listener in list(self._listeners):
            listener()

    @property
    def running(self) -> bool:
        return self.state in (ExportState.STARTING, ExportState.RUNNING)

    @property
    def disabled(self) -> bool:
        return self.running

    @property
    def channel_open(self) -> bool:
        return self._channel is not None

    @property
    def button_label(self) -> str:
        if not self.running:
            return IDLE_LABEL
        if self.progress is None or not self.progress.total:
            return PENDING_LABEL
        label = f"ZIP {self.progress.done}/{self.progress.total}"
        if self.progress.failed:
            label += f" · {self.progress.failed} échec(s)"
        return label

    # ---- canal ----

    def progress_url(self, progress_id: str) -> str:
        return f"{self.zip_base}/invoices/progress/{progress_id}"

    def _close_channel(self):
        if self._channel is not None:
            self._channel.close()
        self._channel = None
        self._channel_progress_id = None

    def _cancel_grace_timer(self):
        if self._grace_timer is not None:
            self._grace_timer.cancel()
            self._grace_timer = None

    def _close_channel_of(self, progress_id: str):
        self._grace_timer = None
        if self._channel_progress_id == progress_id:
            self._close_channel()

    def _schedule_channel_close(self, progress_id: str):
        self._cancel_grace_timer()
        loop = asyncio.get_running_loop()
        self._grace_timer = loop.call_later(self.grace_seconds, self._close_channel_of, progress_id)

    def _on_progress(self, progress_id: str, raw: Dict[str, Any]):
        if progress_id != self._channel_progress_id:
            return
        try:
            progress = ZipProgress.model_validate(raw)
        except ValidationError:
            logger.debug(f"[ZIP_PROGRESS] message ignoré: {raw!r}")
            return
        self.progress = progress
        if progress.status != "running":
            self._close_channel()
        self._notify()

    def _on_channel_error(self, progress_id: str, error: Exception):
        if progress_id != self._channel_progress_id:
            return
        logger.warning(f"[ZIP_PROGRESS] canal fermé sur erreur: {error}")
        self._close_channel()

    # ---- job ----

    def _set_state(self, progress_id: str, state: ExportState):
        if progress_id == self.progress_id:
            self.state = state
            self._notify()

    async def _fetch_archive(self, month: str, status: Optional[str], progress_id: str) -> ExportState:
        params = {"month": month, "progressId": progress_id}
        if status:
            params["status"] = status

        async with self.client.stream(
            "GET", f"{self.zip_base}/invoices/zip", params=params, timeout=None
        ) as response:
            if not response.is_success:
                snippet = ""
                async for chunk in response.aiter_text():
                    snippet += chunk
                    if len(snippet) >= ERROR_SNIPPET_LENGTH:
                        break
                snippet = snippet[:ERROR_SNIPPET_LENGTH]
                logger.error(f"[ZIP_FAILED] month={month} status={response.status_code} body={snippet!r}")
                self.alert(f"{ZIP_ERROR_MESSAGE} ({response.status_code}) {snippet}".strip())
                return ExportState.FAILED

            content = await response.aread()
            filename = (
                filename_from_disposition(response.headers.get("content-disposition"))
                or default_zip_filename(month)
            )

        await self.save_file(filename, content)
        self.filename = filename
        logger.info(f"[ZIP_SAVED] month={month} file={filename} bytes={len(content)}")
        return ExportState.COMPLETED

    async def start(self, month: Optional[str], status: Optional[str] = None) -> ExportState:
        """Lance un export pour le mois (YYYY-MM) et le filtre de statut courants"""
        if not month:
            return self.state

        self._cancel_grace_timer()
        self._close_channel()

        progress_id = new_progress_id()
        self.progress_id = progress_id
        self.progress = None
        self.filename = None
        self._set_state(progress_id, ExportState.STARTING)

        channel = self.subscription_factory(
            self.client,
            self.progress_url(progress_id),
            on_message=lambda raw: self._on_progress(progress_id, raw),
            on_error=lambda error: self._on_channel_error(progress_id, error),
        )
        self._channel = channel
        self._channel_progress_id = progress_id
        await channel.open(self.connect_timeout)

        self._set_state(progress_id, ExportState.RUNNING)
        result = ExportState.FAILED
        try:
            result = await self._fetch_archive(month, status, progress_id)
        except (httpx.HTTPError, OSError) as e:
            logger.error(f"[ZIP_FAILED] month={month} error={e}")
            self.alert(ZIP_ERROR_MESSAGE)
        finally:
            if progress_id == self.progress_id:
                self._schedule_channel_close(progress_id)
            self._set_state(progress_id, result)

        return result

    def teardown(self):
        """Fermeture immédiate du canal (démontage de la page)"""
        self._cancel_grace_timer()
        self._close_channel()
        if self.running:
            self.state = ExportState.ABANDONED
        self.progress_id = None
        self._notify()
