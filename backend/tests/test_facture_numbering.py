"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Back-office - Numérotation / renumérotation des factures                    ║
║                                                                              ║
║  1. Helpers purs (référence, saisie compteur, année d'émission)              ║
║  2. Plan de renumérotation (ordre croissant, décalage par lot)               ║
║  3. Suppression: trous refermés, compteur abaissé, ok=False sans suppression ║
║  4. Création: seq alloué sur l'année d'émission                              ║
║  5. Suppressions et créations concurrentes sérialisées                       ║
╚══════════════════════════════════════════════════════════════════════════════╝
Run: cd backend && pytest tests/test_facture_numbering.py -v
"""

import asyncio

import pytest
from bson import ObjectId
from pymongo import UpdateOne

from services.facture_numbering import (
    FactureNumberingError, coerce_seq, create_facture, delete_factures, format_ref,
    issue_year, plan_renumbering, serialize_facture, set_counter, update_status,
)

from .conftest import FIXED_NOW, cursor


def shift(_id, seq, year=2025):
    return UpdateOne(
        {"_id": _id},
        {"$set": {"seq": seq, "ref": format_ref(seq, year), "updatedAt": FIXED_NOW}},
    )


# ═══════════════════════════════════════════════════════════════
# 1. HELPERS
# ═══════════════════════════════════════════════════════════════

class TestHelpers:

    def test_format_ref(self):
        assert format_ref(12, 2025) == "FC-12-2025"

    @pytest.mark.parametrize("raw,expected", [
        (5, 5), ("12", 12), (3.7, 3), (-1, 0), ("abc", 0), (None, 0),
        (float("nan"), 0), (float("inf"), 0), (True, 0), ([], 0),
    ])
    def test_coerce_seq(self, raw, expected):
        assert coerce_seq(raw) == expected

    def test_issue_year_accepts_z_suffix(self):
        assert issue_year("2024-12-31T23:59:59Z") == 2024
        assert issue_year("2025-01-01T00:00:00+00:00") == 2025

    def test_issue_year_is_utc(self):
        assert issue_year("2025-01-01T00:30:00+01:00") == 2024
        assert issue_year("2024-12-31T23:30:00-02:00") == 2025
        # sans fuseau: lu comme UTC
        assert issue_year("2025-01-01T00:30:00") == 2025

    @pytest.mark.parametrize("bad", ["", "31/12/2024", None])
    def test_issue_year_invalid(self, bad):
        with pytest.raises(FactureNumberingError):
            issue_year(bad)

    def test_serialize_hides_internal_fields(self):
        oid = ObjectId()
        out = serialize_facture({"_id": oid, "ref": "FC-1-2025", "seq": 1, "year": 2025})
        assert out == {"_id": str(oid), "ref": "FC-1-2025"}


# ═══════════════════════════════════════════════════════════════
# 2. PLAN DE RENUMÉROTATION
# ═══════════════════════════════════════════════════════════════

class TestPlanRenumbering:

    def test_middle_deletion(self):
        """FC-1..5, suppression de 3 -> 4->3, 5->4"""
        survivors = [{"_id": "d5", "seq": 5}, {"_id": "d4", "seq": 4}]
        assert plan_renumbering(survivors, [3]) == [("d4", 3), ("d5", 4)]

    def test_highest_deletion_moves_nothing(self):
        assert plan_renumbering([], [5]) == []

    def test_batch_deletion(self):
        """Suppression de 2 et 4 parmi 1..6"""
        survivors = [{"_id": "d3", "seq": 3}, {"_id": "d5", "seq": 5}, {"_id": "d6", "seq": 6}]
        assert plan_renumbering(survivors, [4, 2]) == [("d3", 2), ("d5", 3), ("d6", 4)]

    def test_targets_are_free_when_applied_in_order(self):
        survivors = [{"_id": f"d{s}", "seq": s} for s in (2, 3, 5, 8, 9)]
        occupied = {2, 3, 5, 8, 9}
        for _id, new_seq in plan_renumbering(survivors, [1, 4, 6, 7]):
            old_seq = int(_id[1:])
            occupied.discard(old_seq)
            assert new_seq not in occupied
            occupied.add(new_seq)
        assert occupied == {1, 2, 3, 4, 5}


# ═══════════════════════════════════════════════════════════════
# 3. SUPPRESSION
# ═══════════════════════════════════════════════════════════════

class TestDeleteFactures:

    @pytest.mark.asyncio
    async def test_middle_deletion_closes_gap(self, mock_db):
        deleted, d4, d5 = ObjectId(), ObjectId(), ObjectId()
        mock_db.factures.find.side_effect = [
            cursor([{"_id": deleted, "seq": 3, "year": 2025}]),
            cursor([{"_id": d4, "seq": 4}, {"_id": d5, "seq": 5}]),
        ]
        mock_db.factures.delete_many.return_value.deleted_count = 1
        mock_db.facture_counters.find_one_and_update.return_value = {"year": 2025, "seq": 4}

        result = await delete_factures([str(deleted)])

        assert result == {
            "ok": True,
            "deleted": 1,
            "invalidIds": [],
            "notFoundIds": [],
            "renumbered": [{"year": 2025, "deletedSeqs": [3], "modified": 2, "counterSeq": 4}],
        }
        ops = mock_db.factures.bulk_write.await_args.args[0]
        assert ops == [shift(d4, 3), shift(d5, 4)]
        assert mock_db.factures.bulk_write.await_args.kwargs == {"ordered": True}

        survivors_query = mock_db.factures.find.call_args_list[1].args[0]
        assert survivors_query == {"year": 2025, "seq": {"$gt": 3}}

    @pytest.mark.asyncio
    async def test_counter_lowered_by_deleted_count(self, mock_db):
        a, b = ObjectId(), ObjectId()
        mock_db.factures.find.side_effect = [
            cursor([{"_id": a, "seq": 2, "year": 2025}, {"_id": b, "seq": 4, "year": 2025}]),
            cursor([]),
        ]
        mock_db.facture_counters.find_one_and_update.return_value = {"year": 2025, "seq": 3}

        result = await delete_factures([str(a), str(b)])

        pipeline = mock_db.facture_counters.find_one_and_update.await_args.args[1]
        assert pipeline[0]["$set"]["seq"] == {"$max": [0, {"$subtract": ["$seq", 2]}]}
        assert result["renumbered"][0]["deletedSeqs"] == [2, 4]
        mock_db.factures.bulk_write.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_multi_year_batch(self, mock_db):
        a, b, c = ObjectId(), ObjectId(), ObjectId()
        mock_db.factures.find.side_effect = [
            cursor([{"_id": a, "seq": 1, "year": 2025}, {"_id": b, "seq": 2, "year": 2024}]),
            cursor([{"_id": c, "seq": 3}]),
            cursor([]),
        ]
        mock_db.factures.delete_many.return_value.deleted_count = 2
        mock_db.facture_counters.find_one_and_update.side_effect = [
            {"year": 2024, "seq": 2}, {"year": 2025, "seq": 0},
        ]

        result = await delete_factures([str(a), str(b)])

        assert [r["year"] for r in result["renumbered"]] == [2024, 2025]
        assert result["renumbered"][0]["modified"] == 1
        assert mock_db.factures.bulk_write.await_args.args[0] == [shift(c, 2, 2024)]

    @pytest.mark.asyncio
    async def test_nothing_found_returns_ok_false(self, mock_db):
        missing = str(ObjectId())

        result = await delete_factures([missing, "pas-un-id"])

        assert result["ok"] is False
        assert result["deleted"] == 0
        assert result["notFoundIds"] == [missing]
        assert result["invalidIds"] == ["pas-un-id"]
        mock_db.factures.delete_many.assert_not_awaited()
        mock_db.facture_counters.find_one_and_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_only_invalid_ids_skip_lookup(self, mock_db):
        result = await delete_factures(["x", "y"])
        assert result["ok"] is False
        mock_db.factures.find.assert_not_called()

    @pytest.mark.asyncio
    async def test_legacy_facture_without_seq(self, mock_db):
        legacy = ObjectId()
        mock_db.factures.find.return_value = cursor([{"_id": legacy}])
        mock_db.factures.delete_many.return_value.deleted_count = 1

        result = await delete_factures([str(legacy)])

        assert result["ok"] is True
        assert result["renumbered"] == []
        assert mock_db.factures.find.call_count == 1


# ═══════════════════════════════════════════════════════════════
# 4. CRÉATION / STATUT / COMPTEUR
# ═══════════════════════════════════════════════════════════════

class TestCreateAndUpdate:

    @pytest.mark.asyncio
    async def test_create_uses_issue_year(self, mock_db):
        oid = ObjectId()
        mock_db.facture_counters.find_one_and_update.return_value = {"year": 2024, "seq": 7}
        mock_db.factures.insert_one.return_value.inserted_id = oid

        facture = await create_facture(
            {"orderRef": "CMD-1", "clientName": "Alpha", "issuedAt": "2024-12-31T22:00:00Z"},
            created_by="admin@factures.test",
        )

        assert facture["ref"] == "FC-7-2024"
        assert facture["_id"] == str(oid)
        assert "seq" not in facture and "year" not in facture
        assert mock_db.facture_counters.find_one_and_update.await_args.args[0] == {"year": 2024}
        inserted = mock_db.factures.insert_one.await_args.args[0]
        assert inserted["seq"] == 7 and inserted["year"] == 2024

    @pytest.mark.asyncio
    async def test_create_invalid_date_allocates_nothing(self, mock_db):
        with pytest.raises(FactureNumberingError):
            await create_facture({"clientName": "Alpha", "issuedAt": "demain"})
        mock_db.facture_counters.find_one_and_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_status_invalid_id(self, mock_db):
        assert await update_status("nope", "Cancelled") is None
        mock_db.factures.find_one_and_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_counter_coerces_and_upserts(self, mock_db):
        counter = await set_counter(2025, "n/a", updated_by="admin@factures.test")

        assert counter == {"year": 2025, "seq": 0}
        args, kwargs = mock_db.facture_counters.update_one.await_args
        assert args[0] == {"year": 2025}
        assert args[1]["$set"]["seq"] == 0
        assert kwargs == {"upsert": True}


# ═══════════════════════════════════════════════════════════════
# 5. MUTATIONS CONCURRENTES (base en mémoire)
# ═══════════════════════════════════════════════════════════════

class TestConcurrentNumbering:

    @pytest.mark.asyncio
    async def test_concurrent_deletes_leave_no_gap(self, memory_db):
        by_seq = {d["seq"]: str(d["_id"]) for d in memory_db.factures.docs}

        first, second = await asyncio.gather(
            delete_factures([by_seq[3]]), delete_factures([by_seq[4]]),
        )

        assert first["ok"] is True and second["ok"] is True
        assert memory_db.factures.seqs(2025) == [1, 2, 3]
        assert memory_db.facture_counters.seqs[2025] == 3
        assert sorted(d["ref"] for d in memory_db.factures.docs) == ["FC-1-2025", "FC-2-2025", "FC-3-2025"]
        # la seconde suppression voit la renumérotation de la première
        assert second["renumbered"][0]["counterSeq"] == 3

    @pytest.mark.asyncio
    async def test_create_during_delete_keeps_seqs_unique(self, memory_db):
        by_seq = {d["seq"]: str(d["_id"]) for d in memory_db.factures.docs}

        created, deleted = await asyncio.gather(
            create_facture({"clientName": "Alpha", "issuedAt": "2025-05-02T10:00:00Z"}),
            delete_factures([by_seq[3]]),
        )

        assert deleted["ok"] is True
        assert memory_db.factures.seqs(2025) == [1, 2, 3, 4, 5]
        assert memory_db.facture_counters.seqs[2025] == 5
        refs = [d["ref"] for d in memory_db.factures.docs]
        assert len(set(refs)) == 5
        assert created["ref"] == "FC-6-2025"


class TestPlanMatchesDashboard:
    """Le plan serveur et la réconciliation du dashboard donnent les mêmes références"""

    @pytest.mark.parametrize("seqs,deleted", [
        ([1, 2, 3, 4, 5], [3]),
        ([1, 2, 3, 4, 5, 6], [2, 4]),
        ([1, 2, 3], [3]),
        ([1, 2, 3, 4, 5, 6, 7, 8, 9, 10], [1, 5, 6, 10]),
    ])
    def test_same_result(self, seqs, deleted):
        from dashboard.models import Facture
        from dashboard.renumbering import apply_renumbering

        survivors = [{"_id": f"d{s}", "seq": s} for s in seqs if s not in deleted]
        server = {s["_id"]: format_ref(s["seq"], 2025) for s in survivors}
        server.update({_id: format_ref(seq, 2025) for _id, seq in plan_renumbering(survivors, deleted)})

        cached = tuple(
            Facture.model_validate({
                "_id": s["_id"], "ref": format_ref(s["seq"], 2025), "createdAt": "2025-01-01T00:00:00Z",
            })
            for s in survivors
        )
        client = apply_renumbering(cached, [{"year": 2025, "deletedSeqs": deleted}])

        assert {f.id: f.ref for f in client} == server
        assert sorted(server.values(), key=lambda r: int(r.split("-")[1])) == [
            format_ref(i, 2025) for i in range(1, len(survivors) + 1)
        ]
