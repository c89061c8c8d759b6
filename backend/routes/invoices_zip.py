"""
Back-office - Routes Export ZIP + PDF

- GET /invoices/progress/{progressId}: flux SSE de progression
- GET /invoices/zip?month=YYYY-MM[&status=]&progressId=: archive du mois
- GET /pdf/invoice/{ref}: PDF unitaire (proxy vers le rendu externe)
"""

import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import StreamingResponse

from models.facture import VALID_FACTURE_STATUSES
from routes.auth import require_admin
from services.pdf_renderer import render_invoice_pdf, PdfRenderError
from services.zip_export import registry, build_month_zip, month_bounds, ZipExportError

router = APIRouter(prefix="/invoices", tags=["Export ZIP"])
pdf_router = APIRouter(prefix="/pdf", tags=["PDF"])
logger = logging.getLogger("invoices_zip")


@router.get("/progress/{progress_id}")
async def zip_progress(progress_id: str, user: dict = Depends(require_admin)):
    """Un événement `data: {json}` par mise à jour, fin après l'état terminal"""
    async def events():
        async for state in registry.stream(progress_id):
            yield f"data: {json.dumps(state)}\n\n"

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/zip")
async def download_month_zip(
    month: str,
    status: Optional[str] = None,
    progressId: Optional[str] = None,
    user: dict = Depends(require_admin)
):
    """Construit et renvoie le ZIP des factures du mois"""
    try:
        month_bounds(month)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if status and status not in VALID_FACTURE_STATUSES:
        raise HTTPException(status_code=400, detail=f"Statut invalide: {status}")

    progress_id = progressId or uuid.uuid4().hex

    try:
        content, filename = await build_month_zip(month, status or None, progress_id)
    except ZipExportError as e:
        raise HTTPException(status_code=502, detail=str(e))

    logger.info(f"[ZIP_SENT] month={month} bytes={len(content)} by={user.get('email')}")
    return Response(
        content=content,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@pdf_router.get("/invoice/{ref}")
async def download_invoice_pdf(ref: str, user: dict = Depends(require_admin)):
    try:
        pdf = await render_invoice_pdf(ref)
    except PdfRenderError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{ref}.pdf"'}
    )
