"""
Back-office - Routes Factures
Liste, création depuis commande, statut, compteur annuel, suppression avec
renumérotation.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException

from models.facture import (
    FactureCreate, FactureStatusUpdate, CounterUpdate, DeleteFacturesRequest,
    DeleteFacturesResponse,
)
from routes.auth import require_admin
from services import facture_numbering
from services.facture_numbering import FactureNumberingError
from services.event_logger import log_event

router = APIRouter(prefix="/factures", tags=["Factures"])
logger = logging.getLogger("factures")

MIN_YEAR, MAX_YEAR = 1970, 9999


def _check_year(year: int):
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise HTTPException(status_code=400, detail=f"Année invalide: {year}")


# ---- Liste / création ----

@router.get("")
async def list_factures(user: dict = Depends(require_admin)):
    """Collection complète (le dashboard filtre et pagine localement)"""
    factures = await facture_numbering.list_factures()
    return {"factures": factures}


@router.post("")
async def create_facture(data: FactureCreate, user: dict = Depends(require_admin)):
    """Génère une facture à partir d'une commande"""
    try:
        facture = await facture_numbering.create_facture(
            data.model_dump(mode="json"), created_by=user.get("email")
        )
    except FactureNumberingError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "facture": facture}


# ---- Compteur annuel ----

@router.get("/counter/{year}")
async def get_counter(year: int, user: dict = Depends(require_admin)):
    _check_year(year)
    return await facture_numbering.get_counter(year)


@router.put("/counter/{year}")
async def set_counter(year: int, data: CounterUpdate, user: dict = Depends(require_admin)):
    """Override manuel. Une valeur trop basse peut créer des collisions futures."""
    _check_year(year)
    previous = await facture_numbering.get_counter(year)
    counter = await facture_numbering.set_counter(year, data.seq, updated_by=user.get("email"))

    await log_event(
        action="counter_override",
        entity_type="facture_counter",
        entity_id=str(year),
        user=user.get("email", "system"),
        details={"old_value": previous["seq"], "new_value": counter["seq"]},
    )
    return {"success": True, **counter}


# ---- Statut ----

@router.put("/updateStatus/{facture_id}")
async def update_status(facture_id: str, data: FactureStatusUpdate, user: dict = Depends(require_admin)):
    facture = await facture_numbering.update_status(facture_id, data.status.value)
    if not facture:
        raise HTTPException(status_code=404, detail="Facture non trouvée")

    await log_event(
        action="facture_status",
        entity_type="facture",
        entity_id=facture_id,
        user=user.get("email", "system"),
        details={"new_value": data.status.value},
    )
    return {"success": True, "facture": facture}


# ---- Suppression + renumérotation ----

@router.post("/delete", response_model=DeleteFacturesResponse)
async def delete_factures(data: DeleteFacturesRequest, user: dict = Depends(require_admin)):
    """
    Supprime les factures demandées et referme les trous de numérotation.
    ok=False (HTTP 200) quand aucune facture n'a été supprimée.
    """
    if not data.ids:
        raise HTTPException(status_code=400, detail="Aucun identifiant fourni")

    result = await facture_numbering.delete_factures(data.ids)

    if result["ok"]:
        await log_event(
            action="facture_delete",
            entity_type="facture",
            entity_id=",".join(data.ids),
            user=user.get("email", "system"),
            details={"deleted": result["deleted"], "renumbered": result["renumbered"]},
        )
    else:
        logger.warning(
            f"[DELETE_NOOP] ids={data.ids} invalid={result['invalidIds']} "
            f"not_found={result['notFoundIds']}"
        )
    return result
