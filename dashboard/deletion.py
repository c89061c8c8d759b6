"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Dashboard - Suppression optimiste d'une facture                             ║
║                                                                              ║
║  idle -> confirming -> optimistic_removed -> committed | rolled_back         ║
║                                                                              ║
║  - retrait local AVANT l'appel réseau                                        ║
║  - ok=False ou erreur transport: restauration du snapshot + alerte           ║
║  - ok=True: réconciliation de la renumérotation, pas de rechargement         ║
║  - un snapshot par appel: des suppressions concurrentes ne s'écrasent pas    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from dashboard.api import ApiError
from dashboard.models import Facture
from dashboard.renumbering import apply_renumbering

if TYPE_CHECKING:
    from dashboard.store import FacturesStore

logger = logging.getLogger("dashboard.deletion")

DELETE_ERROR_MESSAGE = "Échec de la suppression de la facture."

ConfirmCallback = Callable[[str], Union[bool, Awaitable[bool]]]


class DeleteState(str, Enum):
    IDLE = "idle"
    CONFIRMING = "confirming"
    OPTIMISTIC_REMOVED = "optimistic_removed"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class DeleteSnapshot:
    """État capturé avant le retrait optimiste d'une facture"""
    facture: Facture
    index: int
    before: Tuple[Facture, ...]
    after: Tuple[Facture, ...]
    # renumérotations validées par d'autres suppressions pendant que la facture était retirée
    missed: List[List[Dict]] = field(default_factory=list)


def confirmation_message(facture: Facture) -> str:
    if facture.ref:
        return f"Supprimer la facture {facture.ref} ? Les références suivantes de l'année seront renumérotées."
    return "Supprimer cette facture ?"


class DeletionOrchestrator:

    def __init__(self, store: "FacturesStore", confirm: Optional[ConfirmCallback] = None):
        self.store = store
        self.confirm = confirm
        self.states: Dict[str, DeleteState] = {}
        self.pending: Dict[str, DeleteSnapshot] = {}

    async def _confirmed(self, message: str) -> bool:
        if self.confirm is None:
            logger.warning("[DELETE] aucune confirmation disponible, suppression annulée")
            return False
        answer = self.confirm(message)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    def _take_snapshot(self, facture_id: str) -> Optional[DeleteSnapshot]:
        before = self.store.factures
        for index, facture in enumerate(before):
            if facture.id == facture_id:
                after = before[:index] + before[index + 1:]
                return DeleteSnapshot(facture=facture, index=index, before=before, after=after)
        return None

    def _restore(self, snapshot: DeleteSnapshot):
        current = self.store.factures
        if current is snapshot.after:
            self.store.replace_factures(snapshot.before)
            return
        if any(f.id == snapshot.facture.id for f in current):
            return

        # la collection a bougé entre-temps: ne réinsérer que cette facture
        restored = (snapshot.facture,)
        for renumbered in snapshot.missed:
            restored = apply_renumbering(restored, renumbered)
        index = min(snapshot.index, len(current))
        self.store.replace_factures(current[:index] + restored + current[index:])

    def _commit(self, facture_id: str, renumbered: List[Dict]):
        for other_id, other in self.pending.items():
            if other_id != facture_id and renumbered:
                other.missed.append(renumbered)
        self.store.apply_renumbering(renumbered)

    async def delete(self, facture_id: str) -> DeleteState:
        facture = next((f for f in self.store.factures if f.id == facture_id), None)
        if facture is None or facture_id in self.pending:
            return DeleteState.IDLE

        self.states[facture_id] = DeleteState.CONFIRMING
        if not await self._confirmed(confirmation_message(facture)):
            self.states.pop(facture_id, None)
            return DeleteState.IDLE

        snapshot = self._take_snapshot(facture_id)
        if snapshot is None:
            self.states.pop(facture_id, None)
            return DeleteState.IDLE

        self.pending[facture_id] = snapshot
        self.store.replace_factures(snapshot.after)
        self.states[facture_id] = DeleteState.OPTIMISTIC_REMOVED

        try:
            result = await self.store.api.delete_factures([facture_id])
            if not isinstance(result, dict) or not result.get("ok"):
                raise ApiError(DELETE_ERROR_MESSAGE, payload=result)
        except ApiError as e:
            logger.error(f"[DELETE_FAILED] id={facture_id} ref={facture.ref} error={e}")
            self._restore(snapshot)
            self.states[facture_id] = DeleteState.ROLLED_BACK
            self.store.alert(DELETE_ERROR_MESSAGE)
        else:
            renumbered = result.get("renumbered") or []
            self._commit(facture_id, renumbered)
            self.states[facture_id] = DeleteState.COMMITTED
            logger.info(f"[DELETE_OK] id={facture_id} ref={facture.ref} renumbered={renumbered}")
        finally:
            self.pending.pop(facture_id, None)

        return self.states.pop(facture_id)
