"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Back-office - Numérotation des factures                                     ║
║                                                                              ║
║  SEUL CE MODULE attribue, renumérote et corrige les références FC-<seq>-<an> ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - (year, seq) unique tant que la facture existe                             ║
║  - après suppression, les seq d'une année forment 1..N sans trou             ║
║  - le compteur annuel = plus grand seq en usage (0 si aucun)                 ║
║  - une suppression ne fait jamais passer le compteur sous 0                  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio
import logging
import math
from bisect import bisect_left
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument, UpdateOne

from config import db, now_iso

logger = logging.getLogger("facture_numbering")

REF_PREFIX = "FC"

# Une seule mutation de numérotation à la fois (suppression + renumérotation, création)
_numbering_lock = asyncio.Lock()


class FactureNumberingError(Exception):
    """Raised when a facture cannot be numbered"""
    pass


# ════════════════════════════════════════════════════════════════════════════
# PURE HELPERS
# ════════════════════════════════════════════════════════════════════════════

def format_ref(seq: int, year: int) -> str:
    return f"{REF_PREFIX}-{seq}-{year}"


def coerce_seq(value: Any) -> int:
    """
    Convertit une saisie admin en entier >= 0.
    Valeur invalide ou NaN -> 0.
    """
    if isinstance(value, bool) or value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number):
        return 0
    return max(0, int(number))


def issue_year(issued_at: str) -> int:
    """Année civile UTC d'une date ISO (accepte le suffixe Z, sans fuseau = UTC)"""
    try:
        parsed = datetime.fromisoformat(issued_at.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise FactureNumberingError(f"Date d'émission invalide: {issued_at!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.year


def plan_renumbering(survivors: List[Dict], deleted_seqs: List[int]) -> List[Tuple[Any, int]]:
    """
    Calcule les nouveaux seq des factures survivantes d'une même année.

    Chaque survivante descend du nombre de seq supprimés strictement inférieurs
    au sien. Le plan est trié par seq croissant : appliqué dans cet ordre,
    chaque cible est déjà libre et l'index unique (year, seq) tient.

    Returns: [(facture _id, nouveau seq), ...] pour les seules factures déplacées
    """
    deleted = sorted(deleted_seqs)
    plan = []
    for doc in sorted(survivors, key=lambda d: d["seq"]):
        dec = bisect_left(deleted, doc["seq"])
        if dec:
            plan.append((doc["_id"], doc["seq"] - dec))
    return plan


def serialize_facture(doc: Dict) -> Dict:
    """Document Mongo -> forme exposée au dashboard (_id str, sans seq/year)"""
    out = {k: v for k, v in doc.items() if k not in ("seq", "year")}
    out["_id"] = str(doc["_id"])
    return out


# ════════════════════════════════════════════════════════════════════════════
# INDEXES
# ════════════════════════════════════════════════════════════════════════════

async def ensure_indexes():
    await db.factures.create_index(
        [("year", ASCENDING), ("seq", ASCENDING)],
        unique=True,
        partialFilterExpression={"seq": {"$exists": True}},
    )
    await db.facture_counters.create_index("year", unique=True)


# ════════════════════════════════════════════════════════════════════════════
# COMPTEUR ANNUEL
# ════════════════════════════════════════════════════════════════════════════

async def get_counter(year: int) -> Dict[str, int]:
    doc = await db.facture_counters.find_one({"year": year}, {"_id": 0})
    return {"year": year, "seq": int(doc.get("seq", 0)) if doc else 0}


async def set_counter(year: int, seq: Any, updated_by: Optional[str] = None) -> Dict[str, int]:
    """
    Override manuel du compteur.

    Aucune vérification contre le plus grand seq réellement en usage : fixer
    une valeur trop basse provoquera des collisions de référence à la
    prochaine création. C'est un risque opérateur assumé.
    """
    value = coerce_seq(seq)
    await db.facture_counters.update_one(
        {"year": year},
        {"$set": {"seq": value, "updatedAt": now_iso(), "updatedBy": updated_by}},
        upsert=True,
    )
    logger.info(f"[COUNTER_OVERRIDE] year={year} seq={value} by={updated_by}")
    return {"year": year, "seq": value}


async def allocate_seq(year: int) -> int:
    """Réserve atomiquement le prochain seq de l'année"""
    doc = await db.facture_counters.find_one_and_update(
        {"year": year},
        {"$inc": {"seq": 1}, "$set": {"updatedAt": now_iso()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(doc["seq"])


async def _lower_counter(year: int, deleted_count: int) -> int:
    doc = await db.facture_counters.find_one_and_update(
        {"year": year},
        [{"$set": {
            "seq": {"$max": [0, {"$subtract": ["$seq", deleted_count]}]},
            "updatedAt": now_iso(),
        }}],
        return_document=ReturnDocument.AFTER,
    )
    return int(doc["seq"]) if doc else 0


# ════════════════════════════════════════════════════════════════════════════
# FACTURES
# ════════════════════════════════════════════════════════════════════════════

async def list_factures() -> List[Dict]:
    docs = await db.factures.find({}).sort(
        [("year", DESCENDING), ("seq", DESCENDING)]
    ).to_list(None)
    return [serialize_facture(d) for d in docs]


async def create_facture(data: Dict[str, Any], created_by: Optional[str] = None) -> Dict:
    """
    Crée une facture et lui attribue FC-<seq>-<année d'émission>.
    """
    issued_at = data.get("issuedAt") or now_iso()
    year = issue_year(issued_at)

    # le seq alloué doit être inséré avant qu'une suppression ne renumérote l'année
    async with _numbering_lock:
        seq = await allocate_seq(year)

        now = now_iso()
        doc = {
            **data,
            "ref": format_ref(seq, year),
            "seq": seq,
            "year": year,
            "issuedAt": issued_at,
            "createdAt": now,
            "updatedAt": now,
            "createdBy": created_by,
        }
        result = await db.factures.insert_one(doc)
        doc["_id"] = result.inserted_id

    logger.info(f"[FACTURE_CREATED] ref={doc['ref']} order={data.get('orderRef')}")
    return serialize_facture(doc)


async def update_status(facture_id: str, status: str) -> Optional[Dict]:
    if not ObjectId.is_valid(facture_id):
        return None
    doc = await db.factures.find_one_and_update(
        {"_id": ObjectId(facture_id)},
        {"$set": {"status": status, "updatedAt": now_iso()}},
        return_document=ReturnDocument.AFTER,
    )
    return serialize_facture(doc) if doc else None


async def delete_factures(ids: List[str]) -> Dict[str, Any]:
    """
    Supprime un lot de factures puis referme les trous de numérotation.

    Returns:
        {ok, deleted, invalidIds, notFoundIds, renumbered: [{year, deletedSeqs,
        modified, counterSeq}]}; ok=False si rien n'a été supprimé.
    """
    async with _numbering_lock:
        return await _delete_and_renumber(ids)


async def _delete_and_renumber(ids: List[str]) -> Dict[str, Any]:
    invalid_ids: List[str] = []
    object_ids: List[ObjectId] = []
    for raw in dict.fromkeys(ids):
        if ObjectId.is_valid(raw):
            object_ids.append(ObjectId(raw))
        else:
            invalid_ids.append(raw)

    docs = []
    if object_ids:
        docs = await db.factures.find(
            {"_id": {"$in": object_ids}}, {"_id": 1, "seq": 1, "year": 1}
        ).to_list(len(object_ids))

    found = {d["_id"] for d in docs}
    not_found_ids = [str(o) for o in object_ids if o not in found]

    if not docs:
        return {
            "ok": False,
            "deleted": 0,
            "invalidIds": invalid_ids,
            "notFoundIds": not_found_ids,
            "renumbered": [],
        }

    result = await db.factures.delete_many({"_id": {"$in": list(found)}})

    deleted_by_year: Dict[int, List[int]] = {}
    for d in docs:
        # Factures legacy sans numérotation: rien à refermer
        if isinstance(d.get("year"), int) and isinstance(d.get("seq"), int):
            deleted_by_year.setdefault(d["year"], []).append(d["seq"])

    renumbered = []
    for year in sorted(deleted_by_year):
        deleted_seqs = sorted(deleted_by_year[year])
        survivors = await db.factures.find(
            {"year": year, "seq": {"$gt": deleted_seqs[0]}}, {"_id": 1, "seq": 1}
        ).sort("seq", ASCENDING).to_list(None)

        plan = plan_renumbering(survivors, deleted_seqs)
        if plan:
            await db.factures.bulk_write(
                [
                    UpdateOne(
                        {"_id": _id},
                        {"$set": {"seq": new_seq, "ref": format_ref(new_seq, year), "updatedAt": now_iso()}},
                    )
                    for _id, new_seq in plan
                ],
                ordered=True,
            )

        counter_seq = await _lower_counter(year, len(deleted_seqs))
        renumbered.append({
            "year": year,
            "deletedSeqs": deleted_seqs,
            "modified": len(plan),
            "counterSeq": counter_seq,
        })
        logger.info(
            f"[RENUMBER] year={year} deleted={deleted_seqs} "
            f"shifted={len(plan)} counter={counter_seq}"
        )

    return {
        "ok": True,
        "deleted": result.deleted_count,
        "invalidIds": invalid_ids,
        "notFoundIds": not_found_ids,
        "renumbered": renumbered,
    }
