"""
Fixtures partagées: factures factices et API REST simulée (httpx.MockTransport)
"""

import json

import httpx
import pytest
import pytest_asyncio

from dashboard.api import FacturesApi
from dashboard.models import Facture


def facture_doc(seq, year=2025, **overrides):
    doc = {
        "_id": f"f{year}-{seq}",
        "ref": f"FC-{seq}-{year}",
        "orderRef": f"CMD-{year}-{seq:04d}",
        "clientName": f"Client {seq}",
        "status": "Paid",
        "issuedAt": f"{year}-03-{min(seq, 28):02d}T10:00:00Z",
        "createdAt": f"{year}-03-{min(seq, 28):02d}T09:00:00Z",
        "currency": "TND",
        "grandTotalTTC": 100.0 * seq,
    }
    doc.update(overrides)
    return doc


def make_factures(seqs, year=2025):
    return tuple(Facture.model_validate(facture_doc(s, year)) for s in seqs)


class FakeBackend:
    """
    Routeur minimal pour httpx.MockTransport.
    routes: {(METHOD, path): réponse | callable(request) -> réponse}
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = (request.method, request.url.path)
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, request.url.path, body))
        if key not in self.routes:
            return httpx.Response(404, json={"detail": "Not Found"})
        route = self.routes[key]
        response = route(request) if callable(route) else route
        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.Response):
            # une réponse fixe peut servir plusieurs requêtes
            response = httpx.Response(
                response.status_code, headers=response.headers, content=response.content
            )
        return response

    def count(self, method, path):
        return sum(1 for m, p, _ in self.calls if m == method and p == path)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest_asyncio.fixture
async def http_client(backend):
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as client:
        yield client


@pytest.fixture
def api(http_client):
    return FacturesApi(http_client)


@pytest.fixture
def alerts():
    return []
