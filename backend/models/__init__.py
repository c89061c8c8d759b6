"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Back-office - Models Package                                                ║
║                                                                              ║
║  Exports tous les modèles pour import facile                                 ║
║  from models import FactureCreate, FactureStatus, etc.                       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Auth
from .auth import ADMIN_ROLES, UserLogin

# Facture
from .facture import (
    FactureStatus,
    VALID_FACTURE_STATUSES,
    FactureCreate,
    FactureStatusUpdate,
    CounterUpdate,
    DeleteFacturesRequest,
    DeleteFacturesResponse,
    RenumberedYear,
)
