"""
Back-office Factures - API Backend

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

import os
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("backoffice")

# Créer l'app
app = FastAPI(
    title="Back-office Factures",
    description="Numérotation, renumérotation et export ZIP des factures",
    version="1.0.0"
)

# CORS (credentials: le ZIP et le flux SSE passent par le cookie de session)
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get('CORS_ORIGINS', 'http://localhost:3000').split(','),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

# ==================== IMPORT DES ROUTES ====================

from routes import auth, factures, invoices_zip

app.include_router(auth.router, prefix="/api")
app.include_router(factures.router, prefix="/api/dashboardadmin")
app.include_router(invoices_zip.router, prefix="/api/dashboardadmin")
app.include_router(invoices_zip.pdf_router, prefix="/api")


# ==================== ROUTE RACINE ====================

@app.get("/")
async def root():
    return {
        "name": "Back-office Factures API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    from config import db
    from services.facture_numbering import ensure_indexes

    await db.users.create_index("email", unique=True)
    await db.sessions.create_index("token")
    await db.sessions.create_index("expires_at")
    await ensure_indexes()

    logger.info("✅ Index MongoDB créés")


@app.on_event("shutdown")
async def shutdown_db_client():
    from config import client
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
