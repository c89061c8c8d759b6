"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Back-office - Modèles Facture                                               ║
║                                                                              ║
║  Une facture = document généré à partir d'une commande                       ║
║  - Référence FC-<seq>-<année>, seq contigu 1..N par année                    ║
║  - Statut Paid | Cancelled                                                   ║
║                                                                              ║
║  RÈGLE: seul le serveur attribue et renumérote les références                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Optional, List, Any
from pydantic import BaseModel, Field, ConfigDict, field_validator


class FactureStatus(str, Enum):
    """Statuts possibles d'une facture"""
    PAID = "Paid"
    CANCELLED = "Cancelled"


VALID_FACTURE_STATUSES = [s.value for s in FactureStatus]


class FactureCreate(BaseModel):
    """
    Création d'une facture depuis une commande

    Exemple:
    {
        "orderRef": "CMD-2025-0042",
        "clientName": "Société Alpha",
        "grandTotalTTC": 119.0,
        "currency": "TND"
    }
    """
    model_config = ConfigDict(extra="allow")

    orderRef: Optional[str] = None
    clientName: str
    status: FactureStatus = FactureStatus.PAID
    issuedAt: Optional[str] = None  # ISO, défaut = maintenant
    currency: str = "TND"
    grandTotalTTC: float = 0.0
    items: List[Any] = Field(default_factory=list)

    @field_validator("clientName")
    @classmethod
    def validate_client_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Nom client requis")
        return v.strip()


class FactureStatusUpdate(BaseModel):
    status: FactureStatus


class CounterUpdate(BaseModel):
    """Override manuel du compteur annuel (risque opérateur assumé)"""
    seq: Any = 0


class DeleteFacturesRequest(BaseModel):
    ids: List[str] = Field(default_factory=list)


class RenumberedYear(BaseModel):
    year: int
    deletedSeqs: List[int]
    modified: int
    counterSeq: int


class DeleteFacturesResponse(BaseModel):
    ok: bool
    deleted: int
    invalidIds: List[str] = Field(default_factory=list)
    notFoundIds: List[str] = Field(default_factory=list)
    renumbered: List[RenumberedYear] = Field(default_factory=list)
