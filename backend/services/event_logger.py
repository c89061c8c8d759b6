"""
Back-office - Event Logger

Journal d'audit des actions sensibles sur les factures
(suppression/renumérotation, override du compteur, changement de statut).
"""

import uuid
from config import db, now_iso


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
):
    """
    Write a single event to the event_log collection.

    Args:
        action: e.g. facture_delete, facture_status, counter_override
        entity_type: facture | facture_counter
        entity_id: ID of the primary entity (facture id, year)
        user: email of user performing action
        details: free-form dict (old_value, new_value, renumbered, etc.)
    """
    await db.event_log.insert_one({
        "id": str(uuid.uuid4()),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user": user,
        "details": details or {},
        "created_at": now_iso()
    })
