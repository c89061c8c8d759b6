"""
Back-office - Export ZIP mensuel des factures

- Sélection des factures d'un mois (date d'émission, sinon date de création)
- Rendu PDF de chaque facture, archive ZIP en mémoire
- Progression publiée par progressId, consommée en SSE par le dashboard

La progression vit indépendamment du canal: fermer le flux SSE n'arrête pas
le job, et un abonné tardif reçoit d'abord l'état courant.
"""

import asyncio
import io
import logging
import re
import zipfile
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from config import db, ZIP_PROGRESS_TTL_SECONDS
from services.pdf_renderer import render_invoice_pdf, PdfRenderError

logger = logging.getLogger("zip_export")

MONTH_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")

STATUS_RUNNING = "running"
STATUS_DONE = "done"
STATUS_ERROR = "error"


class ZipExportError(Exception):
    """Raised when no archive could be produced"""
    pass


# ════════════════════════════════════════════════════════════════════════════
# PROGRESSION
# ════════════════════════════════════════════════════════════════════════════

class ProgressRegistry:
    """États de progression en mémoire, indexés par progressId"""

    def __init__(self, ttl_seconds: float = ZIP_PROGRESS_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._states: Dict[str, Dict[str, Any]] = {}
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}
        # progressId ayant reçu au moins un publish (job réellement lancé)
        self._published: Set[str] = set()

    def get(self, progress_id: str) -> Optional[Dict[str, Any]]:
        state = self._states.get(progress_id)
        return dict(state) if state else None

    def ensure(self, progress_id: str) -> Dict[str, Any]:
        if progress_id not in self._states:
            self._states[progress_id] = {
                "done": 0, "total": 0, "failed": 0, "status": STATUS_RUNNING,
            }
        return dict(self._states[progress_id])

    def publish(self, progress_id: str, **fields) -> Dict[str, Any]:
        self.ensure(progress_id)
        self._published.add(progress_id)
        state = self._states[progress_id]
        state.update({k: v for k, v in fields.items() if v is not None})
        snapshot = dict(state)

        for queue in self._subscribers.get(progress_id, ()):
            queue.put_nowait(snapshot)

        if snapshot["status"] != STATUS_RUNNING:
            asyncio.get_running_loop().call_later(self.ttl_seconds, self._evict, progress_id)
        return snapshot

    async def stream(self, progress_id: str) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield l'état courant puis chaque mise à jour, jusqu'au premier état
        terminal inclus.
        """
        current = self.ensure(progress_id)
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(progress_id, set()).add(queue)
        try:
            yield current
            if current["status"] != STATUS_RUNNING:
                return
            while True:
                state = await queue.get()
                yield state
                if state["status"] != STATUS_RUNNING:
                    return
        finally:
            subscribers = self._subscribers.get(progress_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    self._subscribers.pop(progress_id, None)
                    # jamais publié: l'état créé par ensure() part avec le dernier abonné
                    if progress_id not in self._published:
                        self._states.pop(progress_id, None)

    def _evict(self, progress_id: str):
        if self._subscribers.get(progress_id):
            asyncio.get_running_loop().call_later(self.ttl_seconds, self._evict, progress_id)
            return
        state = self._states.get(progress_id)
        if state and state["status"] != STATUS_RUNNING:
            self._states.pop(progress_id, None)
            self._published.discard(progress_id)


registry = ProgressRegistry()


# ════════════════════════════════════════════════════════════════════════════
# SÉLECTION
# ════════════════════════════════════════════════════════════════════════════

def month_bounds(month: str) -> Tuple[str, str]:
    """
    "2025-03" -> ("2025-03", "2025-04"): bornes de comparaison de chaînes ISO.
    Lève ValueError si le mois est mal formé.
    """
    match = MONTH_RE.match(month or "")
    if not match:
        raise ValueError(f"Mois invalide: {month!r} (format YYYY-MM)")
    year, mon = int(match.group(1)), int(match.group(2))
    if mon == 12:
        return month, f"{year + 1}-01"
    return month, f"{year}-{mon + 1:02d}"


def zip_filename(month: str) -> str:
    return f"FACTURES-{month}.zip"


def build_month_query(month: str, status: Optional[str] = None) -> Dict[str, Any]:
    start, end = month_bounds(month)
    in_month = {"$gte": start, "$lt": end}
    query: Dict[str, Any] = {"$or": [
        {"issuedAt": in_month},
        {"issuedAt": {"$in": [None, ""]}, "createdAt": in_month},
    ]}
    if status:
        query["status"] = status
    return query


async def load_month_factures(month: str, status: Optional[str] = None) -> List[Dict]:
    return await db.factures.find(
        build_month_query(month, status), {"_id": 1, "ref": 1, "orderRef": 1}
    ).sort([("year", 1), ("seq", 1)]).to_list(None)


# ════════════════════════════════════════════════════════════════════════════
# JOB
# ════════════════════════════════════════════════════════════════════════════

def _entry_name(facture: Dict) -> Tuple[Optional[str], str]:
    ref = facture.get("ref") or facture.get("orderRef")
    name = ref or f"facture-{facture.get('_id')}"
    return ref, f"{name.replace('/', '_')}.pdf"


async def build_month_zip(
    month: str,
    status: Optional[str],
    progress_id: str,
    render: Callable[[str], Awaitable[bytes]] = render_invoice_pdf,
    loader: Callable[..., Awaitable[List[Dict]]] = load_month_factures,
    progress: ProgressRegistry = registry,
) -> Tuple[bytes, str]:
    """
    Construit l'archive du mois en publiant la progression après chaque facture.

    Returns: (contenu ZIP, nom de fichier)
    Raises: ZipExportError si toutes les factures ont échoué
    """
    month_bounds(month)
    progress.ensure(progress_id)

    try:
        factures = await loader(month, status)
        total = len(factures)
        done = failed = 0
        progress.publish(progress_id, done=0, total=total, failed=0, status=STATUS_RUNNING)
        logger.info(f"[ZIP_START] month={month} status={status} total={total} progress={progress_id}")

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for facture in factures:
                ref, entry = _entry_name(facture)
                try:
                    archive.writestr(entry, await render(ref))
                except PdfRenderError as e:
                    failed += 1
                    logger.warning(f"[ZIP_SKIP] month={month} ref={ref} error={e}")
                done += 1
                progress.publish(progress_id, done=done, failed=failed)
    except Exception as e:
        progress.publish(progress_id, status=STATUS_ERROR, message=f"Erreur export: {e}")
        logger.error(f"[ZIP_ERROR] month={month} progress={progress_id} error={e}")
        raise

    if total and failed == total:
        message = f"Aucun PDF n'a pu être généré ({failed} échec(s))"
        progress.publish(progress_id, status=STATUS_ERROR, message=message)
        raise ZipExportError(message)

    message = f"{total - failed} facture(s) exportée(s)" if total else "Aucune facture pour ce mois"
    progress.publish(progress_id, status=STATUS_DONE, message=message)
    logger.info(f"[ZIP_DONE] month={month} total={total} failed={failed} progress={progress_id}")
    return buffer.getvalue(), zip_filename(month)
