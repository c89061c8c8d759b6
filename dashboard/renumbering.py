"""
Réconciliation locale après une suppression renumérotée par le serveur

Le serveur renvoie, par année touchée, les seq supprimés (deletedSeqs) et le
nouveau compteur (counterSeq). Chaque facture en cache descend du nombre de
seq supprimés strictement inférieurs au sien; rien n'est recalculé au-delà.
"""

from bisect import bisect_left
from typing import Dict, Iterable, List, Optional, Tuple

from dashboard.models import Facture
from dashboard.refs import format_ref, parse_ref


def _deleted_by_year(renumbered: Optional[Iterable[Dict]]) -> Dict[int, List[int]]:
    out: Dict[int, List[int]] = {}
    for entry in renumbered or ():
        try:
            year = int(entry["year"])
            seqs = sorted(int(s) for s in entry.get("deletedSeqs") or ())
        except (KeyError, TypeError, ValueError):
            continue
        out[year] = seqs
    return out


def apply_renumbering(
    factures: Tuple[Facture, ...],
    renumbered: Optional[Iterable[Dict]],
) -> Tuple[Facture, ...]:
    """
    Réécrit les références de toute la collection en une passe.
    Retourne la même collection si aucune référence ne change.
    """
    deleted_by_year = _deleted_by_year(renumbered)
    if not any(deleted_by_year.values()):
        return factures

    changed = False
    result = []
    for facture in factures:
        parsed = parse_ref(facture.ref)
        deleted = deleted_by_year.get(parsed["year"]) if parsed else None
        dec = bisect_left(deleted, parsed["seq"]) if deleted else 0
        if dec:
            facture = facture.model_copy(update={"ref": format_ref(parsed["seq"] - dec, parsed["year"])})
            changed = True
        result.append(facture)

    return tuple(result) if changed else factures


def reconcile_counter(
    counter: Optional[Dict[str, int]],
    renumbered: Optional[Iterable[Dict]],
) -> Optional[Dict[str, int]]:
    """Compteur affiché -> counterSeq du serveur si son année est touchée"""
    if not counter:
        return counter
    for entry in renumbered or ():
        try:
            year, counter_seq = int(entry["year"]), int(entry["counterSeq"])
        except (KeyError, TypeError, ValueError):
            continue
        if year == counter.get("year"):
            return {"year": year, "seq": counter_seq}
    return counter
