"""
Fixtures backend: base Mongo simulée (MagicMock/AsyncMock ou en mémoire) et utilisateur admin
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId

FIXED_NOW = "2025-06-01T12:00:00+00:00"

ADMIN_USER = {"id": "u-admin", "email": "admin@factures.test", "role": "admin", "is_active": True}


def cursor(docs):
    """Curseur motor minimal: find(...).sort(...).to_list(n)"""
    c = MagicMock()
    c.sort.return_value = c
    c.to_list = AsyncMock(return_value=list(docs))
    return c


@pytest.fixture
def mock_db(monkeypatch):
    """Remplace la base du service de numérotation"""
    from services import facture_numbering

    db = MagicMock()
    db.factures.find.return_value = cursor([])
    db.factures.delete_many = AsyncMock(return_value=MagicMock(deleted_count=0))
    db.factures.bulk_write = AsyncMock()
    db.factures.insert_one = AsyncMock()
    db.factures.find_one_and_update = AsyncMock(return_value=None)
    db.facture_counters.find_one = AsyncMock(return_value=None)
    db.facture_counters.update_one = AsyncMock()
    db.facture_counters.find_one_and_update = AsyncMock(return_value=None)

    monkeypatch.setattr(facture_numbering, "db", db)
    monkeypatch.setattr(facture_numbering, "now_iso", lambda: FIXED_NOW)
    monkeypatch.setattr(facture_numbering, "_numbering_lock", asyncio.Lock())
    return db


# ════════════════════════════════════════════════════════════════════════════
# BASE EN MÉMOIRE (chaque opération cède la main à la boucle)
# ════════════════════════════════════════════════════════════════════════════

def _matches(doc, query):
    for key, cond in query.items():
        value = doc.get(key)
        if isinstance(cond, dict):
            if "$in" in cond and value not in cond["$in"]:
                return False
            if "$gt" in cond and not (value is not None and value > cond["$gt"]):
                return False
        elif value != cond:
            return False
    return True


class MemoryCursor:

    def __init__(self, docs):
        self.docs = docs

    def sort(self, key, direction=1):
        self.docs.sort(key=lambda d: d[key], reverse=direction == -1)
        return self

    async def to_list(self, length):
        await asyncio.sleep(0)
        return [dict(d) for d in self.docs]


class MemoryFactures:

    def __init__(self):
        self.docs = []

    def find(self, query, projection=None):
        return MemoryCursor([d for d in self.docs if _matches(d, query)])

    async def insert_one(self, doc):
        await asyncio.sleep(0)
        doc.setdefault("_id", ObjectId())
        self.docs.append(dict(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def delete_many(self, query):
        await asyncio.sleep(0)
        before = len(self.docs)
        self.docs = [d for d in self.docs if not _matches(d, query)]
        return SimpleNamespace(deleted_count=before - len(self.docs))

    async def bulk_write(self, ops, ordered=True):
        await asyncio.sleep(0)
        for op in ops:
            filter_, update = op
            for d in self.docs:
                if _matches(d, filter_):
                    d.update(update["$set"])

    def seqs(self, year):
        return sorted(d["seq"] for d in self.docs if d["year"] == year)


class MemoryCounters:

    def __init__(self):
        self.seqs = {}

    async def find_one_and_update(self, query, update, upsert=False, return_document=None):
        await asyncio.sleep(0)
        year = query["year"]
        if isinstance(update, list):
            if year not in self.seqs:
                return None
            n = update[0]["$set"]["seq"]["$max"][1]["$subtract"][1]
            self.seqs[year] = max(0, self.seqs[year] - n)
        else:
            self.seqs[year] = self.seqs.get(year, 0) + update["$inc"]["seq"]
        return {"year": year, "seq": self.seqs[year]}


@pytest.fixture
def memory_db(monkeypatch):
    """Base en mémoire: factures 1..5 de 2025, compteur à 5"""
    from services import facture_numbering

    db = SimpleNamespace(factures=MemoryFactures(), facture_counters=MemoryCounters())
    for seq in range(1, 6):
        db.factures.docs.append({
            "_id": ObjectId(), "seq": seq, "year": 2025, "ref": f"FC-{seq}-2025",
        })
    db.facture_counters.seqs[2025] = 5

    monkeypatch.setattr(facture_numbering, "db", db)
    monkeypatch.setattr(facture_numbering, "UpdateOne", lambda filter_, update: (filter_, update))
    monkeypatch.setattr(facture_numbering, "now_iso", lambda: FIXED_NOW)
    monkeypatch.setattr(facture_numbering, "_numbering_lock", asyncio.Lock())
    return db
