"""
Dashboard - État de la page Factures

Conteneur d'état unique de la page: collection en cache, filtres, page
courante, mois sélectionné et compteur annuel. Toute mutation passe par une
méthode explicite, remplace les références (jamais de modification en place)
et notifie les abonnés.
"""

import logging
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError

from dashboard.api import ApiError, FacturesApi
from dashboard.config import PAGE_SIZE
from dashboard.counter import fetch_counter, save_counter
from dashboard.deletion import ConfirmCallback, DeleteState, DeletionOrchestrator
from dashboard.downloads import save_download
from dashboard.filters import DateRange, FactureFilters, PageView, project
from dashboard.models import Facture, STATUS_LABELS
from dashboard.renumbering import apply_renumbering, reconcile_counter
from dashboard.zip_export import ExportState, ZipExportCoordinator

logger = logging.getLogger("dashboard.store")

MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

STATUS_ERROR_MESSAGE = "Échec de la mise à jour du statut de la facture."
COUNTER_ERROR_MESSAGE = "Échec de l'enregistrement du compteur."
PDF_ERROR_MESSAGE = "Échec du téléchargement de la facture."
PDF_MISSING_REF_MESSAGE = "Référence de facture introuvable, téléchargement impossible."


def _log_alert(message: str):
    logger.error(f"[ALERT] {message}")


class FacturesStore:

    def __init__(
        self,
        api: FacturesApi,
        confirm: Optional[ConfirmCallback] = None,
        alert: Optional[Callable[[str], None]] = None,
        page_size: int = PAGE_SIZE,
    ):
        self.api = api
        self.alert = alert or _log_alert
        self.page_size = page_size

        self.factures: Tuple[Facture, ...] = ()
        self.filters = FactureFilters()
        self.current_page = 1
        self.loading = False

        self.month: Optional[str] = None
        self.counter: Optional[Dict[str, int]] = None
        self.counter_saving = False
        self.status_updating: Set[str] = set()
        self.message: Optional[str] = None

        self.deletions = DeletionOrchestrator(self, confirm)
        self._listeners: List[Callable[[], None]] = []

    # ---- abonnements ----

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self):
        for listener in list(self._listeners):
            listener()

    # ---- collection ----

    def replace_factures(self, factures: Iterable[Facture]):
        self.factures = tuple(factures)
        self._notify()

    @staticmethod
    def _parse_rows(raw: Iterable[Dict[str, Any]]) -> List[Facture]:
        """Une ligne invalide est écartée, le reste de la collection est chargé"""
        factures = []
        for item in raw:
            try:
                factures.append(Facture.model_validate(item))
            except ValidationError as e:
                row_id = item.get("_id") if isinstance(item, dict) else None
                logger.warning(f"[LOAD_SKIP] id={row_id} errors={e.error_count()}")
        return factures

    async def load(self):
        """Chargement initial de la collection complète"""
        self.loading = True
        self._notify()
        try:
            raw = await self.api.list_factures()
            self.replace_factures(self._parse_rows(raw))
        except ApiError as e:
            logger.error(f"[LOAD_FAILED] error={e}")
        finally:
            self.loading = False
            self._notify()

    def apply_renumbering(self, renumbered: Optional[List[Dict[str, Any]]]):
        self.counter = reconcile_counter(self.counter, renumbered)
        self.replace_factures(apply_renumbering(self.factures, renumbered))

    # ---- filtres / pagination ----

    def _set_filters(self, **changes):
        self.filters = self.filters.model_copy(update=changes)
        self.current_page = 1
        self._notify()

    def set_search(self, search: str):
        self._set_filters(search=search)

    def set_status_filter(self, status: str):
        if status and status not in STATUS_LABELS:
            raise ValueError(f"Statut invalide: {status}")
        self._set_filters(status=status)

    def set_date_range(self, date_range: Optional[DateRange]):
        self._set_filters(date_range=date_range)

    def set_page(self, page: int):
        self.current_page = max(1, page)
        self._notify()

    def view(self) -> PageView:
        return project(self.factures, self.filters, self.current_page, self.page_size)

    # ---- mois / compteur ----

    @property
    def year(self) -> Optional[int]:
        return int(self.month[:4]) if self.month else None

    async def set_month(self, month: str):
        """Sélectionne le mois; le compteur n'est relu que si l'année change"""
        if not MONTH_RE.match(month or ""):
            raise ValueError(f"Mois invalide: {month!r} (format YYYY-MM)")
        previous_year = self.year
        self.month = month
        self._notify()
        if self.year != previous_year:
            await self.refresh_counter()

    async def refresh_counter(self):
        year = self.year
        if year is None:
            return
        counter = await fetch_counter(self.api, year)
        # réponse d'une année qui n'est plus affichée
        if year == self.year:
            self.counter = counter
            self._notify()

    async def save_counter(self, seq: Any) -> bool:
        year = self.year
        if year is None:
            return False
        self.counter_saving = True
        self._notify()
        try:
            counter = await save_counter(self.api, year, seq)
        except ApiError as e:
            logger.error(f"[COUNTER_SAVE_FAILED] year={year} error={e}")
            self.alert(COUNTER_ERROR_MESSAGE)
            return False
        else:
            if year == self.year:
                self.counter = counter
            return True
        finally:
            self.counter_saving = False
            self._notify()

    # ---- statut ----

    def _find(self, facture_id: str) -> Optional[Facture]:
        return next((f for f in self.factures if f.id == facture_id), None)

    def _replace_one(self, facture_id: str, replacement: Facture) -> bool:
        for index, facture in enumerate(self.factures):
            if facture.id == facture_id:
                self.replace_factures(self.factures[:index] + (replacement,) + self.factures[index + 1:])
                return True
        return False

    async def update_status(self, facture_id: str, status: str) -> bool:
        """Mise à jour optimiste du statut, annulée si le serveur refuse"""
        previous = self._find(facture_id)
        if previous is None or previous.status == status:
            return False

        optimistic = previous.model_copy(update={"status": status})
        self._replace_one(facture_id, optimistic)
        self.status_updating.add(facture_id)
        try:
            await self.api.update_status(facture_id, status)
        except ApiError as e:
            logger.error(f"[STATUS_FAILED] id={facture_id} status={status} error={e}")
            self._rollback_status(facture_id, optimistic, previous)
            self.alert(STATUS_ERROR_MESSAGE)
            return False
        finally:
            self.status_updating.discard(facture_id)
            self._notify()
        return True

    def _rollback_status(self, facture_id: str, optimistic: Facture, previous: Facture):
        """
        Rétablit l'ancien statut sur la ligne courante. La ligne a pu être
        remplacée entre-temps (renumérotation): seul le statut est restauré,
        et seulement si elle porte encore le statut optimiste.
        """
        current = self._find(facture_id)
        if current is None or current.status != optimistic.status:
            return
        if current is optimistic:
            restored = previous
        else:
            restored = current.model_copy(update={"status": previous.status})
        self._replace_one(facture_id, restored)

    # ---- suppression ----

    async def delete_facture(self, facture_id: str) -> DeleteState:
        return await self.deletions.delete(facture_id)

    # ---- téléchargements ----

    async def download_invoice(
        self,
        facture: Facture,
        save_file: Callable[[str, bytes], Awaitable[Any]] = save_download,
    ) -> Optional[Path]:
        ref = facture.ref or facture.orderRef
        if not ref:
            self.message = PDF_MISSING_REF_MESSAGE
            self._notify()
            return None

        self.message = None
        try:
            pdf = await self.api.download_invoice_pdf(ref)
        except ApiError as e:
            logger.error(f"[PDF_FAILED] ref={ref} error={e}")
            self.alert(PDF_ERROR_MESSAGE)
            return None
        return await save_file(f"{ref}.pdf", pdf)

    async def start_export(self, coordinator: ZipExportCoordinator) -> ExportState:
        """Export du mois sélectionné, filtré par le statut courant"""
        return await coordinator.start(self.month, self.filters.status or None)
