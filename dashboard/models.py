"""
Dashboard - Modèle Facture côté client

Les factures sont immuables : toute modification produit une nouvelle
instance (model_copy), et la collection est un tuple remplacé par référence.
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

FactureStatus = Literal["Paid", "Cancelled"]

STATUS_LABELS = {
    "Paid": "Payée",
    "Cancelled": "Annulée",
}


def parse_iso(value: str) -> datetime:
    """ISO -> datetime aware (UTC si aucun fuseau)"""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Facture(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    id: str = Field(alias="_id")
    ref: str = ""
    orderRef: Optional[str] = None
    clientName: str = ""
    status: FactureStatus = "Paid"
    issuedAt: Optional[str] = None
    createdAt: str
    currency: Optional[str] = "TND"
    grandTotalTTC: float = 0.0

    @property
    def issue_date(self) -> datetime:
        """Date d'émission, à défaut date de création"""
        return parse_iso(self.issuedAt or self.createdAt)

    @property
    def status_label(self) -> str:
        return STATUS_LABELS.get(self.status, self.status)
