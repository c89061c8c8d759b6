"""
Client REST du back-office (équivalent de fetchFromAPI)

Toutes les erreurs (réseau, HTTP non 2xx) remontent en ApiError; chaque
action du dashboard les attrape à son propre niveau.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from dashboard.config import API_URL, REQUEST_TIMEOUT, SESSION_COOKIE_NAME

logger = logging.getLogger("dashboard.api")


class ApiError(Exception):
    """Échec d'un appel API (transport ou statut HTTP)"""

    def __init__(self, message: str, status: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status = status
        self.payload = payload


def api_url(endpoint: str) -> str:
    path = endpoint if endpoint.startswith("/api") else f"/api{endpoint}"
    return f"{API_URL}{path}"


def create_http_client(token: Optional[str] = None, **kwargs) -> httpx.AsyncClient:
    """Client HTTP avec credentials (cookie de session) pour tout le dashboard"""
    cookies = {SESSION_COOKIE_NAME: token} if token else None
    kwargs.setdefault("timeout", REQUEST_TIMEOUT)
    return httpx.AsyncClient(cookies=cookies, **kwargs)


def _error_message(response: httpx.Response, payload: Any) -> str:
    # préférer le message serveur (detail FastAPI ou message), sinon le statut
    if isinstance(payload, dict):
        for key in ("detail", "message"):
            if isinstance(payload.get(key), str):
                return payload[key]
    return response.reason_phrase or f"HTTP {response.status_code}"


async def fetch_from_api(
    client: httpx.AsyncClient,
    endpoint: str,
    method: str = "GET",
    json: Any = None,
) -> Any:
    """Appel JSON; retourne le corps décodé (None si vide) ou lève ApiError"""
    try:
        response = await client.request(method, api_url(endpoint), json=json)
    except httpx.HTTPError as e:
        raise ApiError(f"Erreur réseau: {e}") from e

    try:
        payload = response.json()
    except ValueError:
        payload = None

    if not response.is_success:
        raise ApiError(_error_message(response, payload), status=response.status_code, payload=payload)
    return payload


class FacturesApi:
    """Endpoints factures consommés par la page"""

    BASE = "/dashboardadmin/factures"

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def list_factures(self) -> List[Dict]:
        data = await fetch_from_api(self.client, self.BASE)
        return (data or {}).get("factures") or []

    async def get_counter(self, year: int) -> Dict:
        return await fetch_from_api(self.client, f"{self.BASE}/counter/{year}")

    async def set_counter(self, year: int, seq: int) -> Dict:
        return await fetch_from_api(
            self.client, f"{self.BASE}/counter/{year}", method="PUT", json={"seq": seq}
        )

    async def update_status(self, facture_id: str, status: str) -> Dict:
        return await fetch_from_api(
            self.client, f"{self.BASE}/updateStatus/{facture_id}", method="PUT", json={"status": status}
        )

    async def delete_factures(self, ids: List[str]) -> Dict:
        return await fetch_from_api(
            self.client, f"{self.BASE}/delete", method="POST", json={"ids": ids}
        )

    async def download_invoice_pdf(self, ref: str) -> bytes:
        try:
            response = await self.client.get(api_url(f"/pdf/invoice/{quote(ref, safe='')}"))
        except httpx.HTTPError as e:
            raise ApiError(f"Erreur réseau: {e}") from e
        if not response.is_success:
            raise ApiError(f"PDF indisponible ({response.status_code})", status=response.status_code)
        return response.content
