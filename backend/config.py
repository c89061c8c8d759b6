"""
Configuration et utilitaires partagés
"""

import os
import hashlib
import secrets
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'test_database')  # Default to test_database

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

print(f"[CONFIG] Using database: {DB_NAME}")

# Rendu PDF externe (opaque, appelé par référence)
PDF_RENDERER_URL = os.environ.get('PDF_RENDERER_URL', 'http://localhost:4000').rstrip('/')
PDF_RENDERER_TIMEOUT = float(os.environ.get('PDF_RENDERER_TIMEOUT', '30'))

# Export ZIP: durée de vie d'un état de progression terminé
ZIP_PROGRESS_TTL_SECONDS = float(os.environ.get('ZIP_PROGRESS_TTL_SECONDS', '60'))

# Cookie de session (le ZIP est demandé avec credentials)
SESSION_COOKIE_NAME = os.environ.get('SESSION_COOKIE_NAME', 'token')


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash un mot de passe avec SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def generate_token() -> str:
    """Génère un token de session sécurisé"""
    return secrets.token_urlsafe(32)

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()
