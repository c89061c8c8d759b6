"""
Configuration du dashboard
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# API REST (les endpoints sont préfixés par /api)
API_URL = os.environ.get('DASHBOARD_API_URL', 'http://localhost:3000').rstrip('/')

# Base des endpoints d'export ZIP (progress + zip)
ZIP_BASE = os.environ.get('DASHBOARD_ZIP_BASE', f"{API_URL}/api/dashboardadmin").rstrip('/')

# Dossier où sont enregistrés les ZIP et PDF téléchargés
DOWNLOAD_DIR = Path(os.environ.get('DASHBOARD_DOWNLOAD_DIR', str(Path.home() / 'Downloads')))

SESSION_COOKIE_NAME = os.environ.get('SESSION_COOKIE_NAME', 'token')

REQUEST_TIMEOUT = 30.0

# Tableau des factures
PAGE_SIZE = 8

# Export ZIP
PROGRESS_GRACE_SECONDS = 4.0      # fermeture différée du canal après la fin du job
PROGRESS_CONNECT_TIMEOUT = 5.0    # attente max de l'ouverture du canal avant la requête
ERROR_SNIPPET_LENGTH = 300        # extrait du corps d'erreur joint au message
