"""
Compteur annuel des factures (miroir client)

Le serveur est la source de vérité. Côté client le compteur sert à
l'affichage et à l'override manuel par un administrateur.

Attention: l'override n'est pas vérifié contre le plus grand seq réellement
utilisé. Une valeur trop basse provoquera des collisions de référence aux
prochaines créations; c'est un risque opérateur assumé.
"""

import logging
import math
from typing import Any, Dict

from dashboard.api import ApiError, FacturesApi

logger = logging.getLogger("dashboard.counter")


def coerce_counter_seq(value: Any) -> int:
    """Saisie admin -> entier >= 0 (invalide ou NaN -> 0)"""
    if isinstance(value, bool) or value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number):
        return 0
    return max(0, int(number))


async def fetch_counter(api: FacturesApi, year: int) -> Dict[str, int]:
    """Lecture non bloquante: en cas d'échec, {year, seq: 0}"""
    try:
        data = await api.get_counter(year)
    except ApiError as e:
        logger.warning(f"[COUNTER_FETCH_FAILED] year={year} error={e}")
        return {"year": year, "seq": 0}
    return {"year": year, "seq": coerce_counter_seq((data or {}).get("seq"))}


async def save_counter(api: FacturesApi, year: int, seq: Any) -> Dict[str, int]:
    """Persiste l'override; lève ApiError en cas d'échec"""
    value = coerce_counter_seq(seq)
    await api.set_counter(year, value)
    logger.info(f"[COUNTER_SAVED] year={year} seq={value}")
    return {"year": year, "seq": value}
