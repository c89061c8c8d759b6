"""
Back-office - Rendu PDF des factures

Le rendu est un service externe opaque, appelé par référence:
GET {PDF_RENDERER_URL}/pdf/invoice/{ref} -> application/pdf
"""

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from config import PDF_RENDERER_URL, PDF_RENDERER_TIMEOUT

logger = logging.getLogger("pdf_renderer")


class PdfRenderError(Exception):
    """Raised when the external renderer cannot produce a PDF"""
    pass


def renderer_url(ref: str) -> str:
    return f"{PDF_RENDERER_URL}/pdf/invoice/{quote(ref, safe='')}"


async def render_invoice_pdf(ref: str, http_client: Optional[httpx.AsyncClient] = None) -> bytes:
    """Retourne le PDF d'une facture ou lève PdfRenderError"""
    if not ref:
        raise PdfRenderError("Référence manquante")

    try:
        if http_client is not None:
            response = await http_client.get(renderer_url(ref))
        else:
            async with httpx.AsyncClient(timeout=PDF_RENDERER_TIMEOUT) as client:
                response = await client.get(renderer_url(ref))
    except httpx.TimeoutException:
        logger.error(f"[PDF_ERROR] ref={ref} timeout")
        raise PdfRenderError(f"Timeout du rendu PDF pour {ref}")
    except httpx.HTTPError as e:
        logger.error(f"[PDF_ERROR] ref={ref} transport={e}")
        raise PdfRenderError(f"Rendu PDF injoignable pour {ref}")

    if response.status_code != 200:
        logger.error(f"[PDF_ERROR] ref={ref} status={response.status_code}")
        raise PdfRenderError(f"Rendu PDF en erreur ({response.status_code}) pour {ref}")

    return response.content
