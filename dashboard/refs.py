"""
Références de facture FC-<seq>-<année>
"""

import re
from typing import Dict, Optional

REF_RE = re.compile(r"FC-([0-9]+)-([0-9]+)")


def parse_ref(ref) -> Optional[Dict[str, int]]:
    """{"seq", "year"} ou None si la référence n'a pas la forme exacte (ne lève jamais)"""
    if not isinstance(ref, str):
        return None
    match = REF_RE.fullmatch(ref)
    if not match:
        return None
    return {"seq": int(match.group(1)), "year": int(match.group(2))}


def format_ref(seq: int, year: int) -> str:
    return f"FC-{seq}-{year}"
