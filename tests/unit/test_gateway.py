"""
Unit tests for the submission gateway.

Service calls are patched; the gateway is exercised for its ordering of
access checks, validation and writes.
"""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from electoral.core.exceptions import (
    Conflict,
    Forbidden,
    InvalidCorrection,
    InvalidPayload,
    NotFound,
)
from electoral.services import gateway
from electoral.services.access import CurrentUser
from electoral.services.corrections import validate_correction_values


@pytest.fixture
def grants_for(mock_conn, make_grant):
    """Program the access_grants query for one user."""

    def _set(user: CurrentUser, *grants: tuple[int, str]) -> None:
        mock_conn.fetch.return_value = [
            make_grant(user, code, level).model_dump() for code, level in grants
        ]

    return _set


class TestParticipationSubmission:
    @pytest.mark.asyncio
    @patch("electoral.services.gateway.participation_service")
    async def test_forbidden_before_any_write(self, mock_service, hierarchy, field_user, mock_conn):
        mock_service.upsert_department_participation = AsyncMock()

        with pytest.raises(Forbidden):
            await gateway.submit_department_participation(
                mock_conn, hierarchy, field_user, 10, {"nombre_inscrit": 10}
            )

        mock_service.upsert_department_participation.assert_not_awaited()

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.participation_service")
    async def test_enriched_with_ancestry(
        self, mock_service, hierarchy, field_user, mock_conn, grants_for, no_transaction
    ):
        grants_for(field_user, (10, "edit"))
        mock_service.upsert_department_participation = AsyncMock(
            return_value={"code_departement": 10, "nombre_inscrit": 150}
        )

        record = await gateway.submit_department_participation(
            mock_conn, hierarchy, field_user, 10, {"nombre_inscrit": 150}
        )

        assert record["territoire"]["region"] == {"code": 1, "libelle": "Centre"}
        mock_service.upsert_department_participation.assert_awaited_once_with(
            mock_conn, 10, {"nombre_inscrit": 150}, submitted_by=field_user.user_id
        )

    @pytest.mark.asyncio
    async def test_department_code_must_be_a_department(self, hierarchy, admin_user, mock_conn):
        with pytest.raises(InvalidPayload):
            await gateway.submit_department_participation(mock_conn, hierarchy, admin_user, 100, {})

    @pytest.mark.asyncio
    async def test_unknown_node(self, hierarchy, admin_user, mock_conn):
        with pytest.raises(NotFound):
            await gateway.submit_department_participation(mock_conn, hierarchy, admin_user, 4242, {})

    @pytest.mark.asyncio
    async def test_station_must_belong_to_claimed_arrondissement(
        self, hierarchy, admin_user, mock_conn
    ):
        with pytest.raises(InvalidPayload):
            await gateway.submit_station_participation(
                mock_conn, hierarchy, admin_user, 1010, {"nombre_inscrit": 5}, code_arrondissement=100
            )

    @pytest.mark.asyncio
    async def test_arrondissement_must_belong_to_claimed_department(
        self, hierarchy, admin_user, mock_conn
    ):
        with pytest.raises(InvalidPayload):
            await gateway.submit_arrondissement_participation(
                mock_conn, hierarchy, admin_user, 200, {}, code_departement=10
            )


class TestCorrectionSubmission:
    @pytest.mark.asyncio
    async def test_requires_edit_at_owning_department(
        self, hierarchy, field_user, mock_conn, grants_for
    ):
        grants_for(field_user, (100, "edit"))

        with pytest.raises(Forbidden):
            await gateway.submit_correction(
                mock_conn,
                hierarchy,
                field_user,
                "bureau",
                1000,
                corrected={"nombre_inscrit": 100, "nombre_votant": 85},
                reason="recount",
            )

    @pytest.mark.asyncio
    async def test_targets_polling_stations_only(self, hierarchy, admin_user, mock_conn):
        with pytest.raises(InvalidPayload):
            await gateway.submit_correction(
                mock_conn, hierarchy, admin_user, "bureau", 100, corrected={}, reason="recount"
            )

    @pytest.mark.asyncio
    async def test_reason_required(self, hierarchy, admin_user, mock_conn):
        with pytest.raises(InvalidPayload):
            await gateway.submit_correction(
                mock_conn,
                hierarchy,
                admin_user,
                "bureau",
                1000,
                corrected={"nombre_inscrit": 100, "nombre_votant": 85},
                reason="  ",
            )

    @pytest.mark.asyncio
    async def test_candidate_needs_party(self, hierarchy, admin_user, mock_conn):
        with pytest.raises(InvalidPayload):
            await gateway.submit_correction(
                mock_conn, hierarchy, admin_user, "candidat", 1000, corrected={"nombre_vote": 3}, reason="x"
            )

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.corrections_service")
    @patch("electoral.services.gateway.participation_service")
    async def test_initial_defaults_to_stored_snapshot(
        self, mock_participation, mock_corrections, hierarchy, admin_user, mock_conn, no_transaction
    ):
        mock_participation.get_station_participation = AsyncMock(
            return_value={"code_bureau_vote": 1000, "nombre_inscrit": 100, "nombre_votant": 80, "bulletin_nul": 1}
        )
        mock_corrections.record_correction = AsyncMock(
            return_value={"id": 1, "code_bureau_vote": 1000}
        )

        entry = await gateway.submit_correction(
            mock_conn,
            hierarchy,
            admin_user,
            "bureau",
            1000,
            corrected={"nombre_inscrit": 100, "nombre_votant": 85},
            reason="recount",
        )

        kwargs = mock_corrections.record_correction.call_args.kwargs
        assert kwargs["initial"] == {"nombre_inscrit": 100, "nombre_votant": 80}
        assert kwargs["reason"] == "recount"
        assert entry["territoire"]["arrondissement"]["code"] == 100

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.participation_service")
    async def test_no_stored_snapshot_and_no_initial(
        self, mock_participation, hierarchy, admin_user, mock_conn
    ):
        mock_participation.get_station_participation = AsyncMock(return_value=None)

        with pytest.raises(InvalidCorrection):
            await gateway.submit_correction(
                mock_conn,
                hierarchy,
                admin_user,
                "bureau",
                1000,
                corrected={"nombre_inscrit": 100, "nombre_votant": 85},
                reason="recount",
            )


    @pytest.mark.asyncio
    @patch("electoral.services.gateway.corrections_service")
    @patch("electoral.services.gateway.participation_service")
    async def test_unreported_count_defaults_to_zero(
        self, mock_participation, mock_corrections, hierarchy, admin_user, mock_conn, no_transaction
    ):
        mock_participation.get_station_participation = AsyncMock(
            return_value={
                "code_bureau_vote": 1000,
                "nombre_inscrit": 100,
                "nombre_votant": 80,
                "bulletin_nul": None,
            }
        )
        mock_corrections.record_correction = AsyncMock(
            return_value={"id": 2, "code_bureau_vote": 1000}
        )
        corrected = {"nombre_inscrit": 100, "nombre_votant": 85, "bulletin_nul": 2}

        await gateway.submit_correction(
            mock_conn, hierarchy, admin_user, "bureau", 1000, corrected=corrected, reason="recount"
        )

        initial = mock_corrections.record_correction.call_args.kwargs["initial"]
        assert initial == {"nombre_inscrit": 100, "nombre_votant": 80, "bulletin_nul": 0}
        validate_correction_values("bureau", initial, corrected)


class TestCorrectionReview:
    @pytest.mark.asyncio
    @patch("electoral.services.gateway.corrections_service")
    async def test_reject_without_reason(self, mock_corrections, hierarchy, admin_user, mock_conn):
        mock_corrections.get_correction = AsyncMock(return_value={"id": 1, "code_bureau_vote": 1000})
        mock_corrections.set_correction_status = AsyncMock()

        with pytest.raises(InvalidPayload):
            await gateway.review_correction(mock_conn, hierarchy, admin_user, 1, "reject", None)

        mock_corrections.set_correction_status.assert_not_awaited()

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.corrections_service")
    async def test_unknown_action(self, mock_corrections, hierarchy, admin_user, mock_conn):
        mock_corrections.get_correction = AsyncMock(return_value={"id": 1, "code_bureau_vote": 1000})
        with pytest.raises(InvalidPayload):
            await gateway.review_correction(mock_conn, hierarchy, admin_user, 1, "archive")

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.corrections_service")
    async def test_access_checked_before_reason(
        self, mock_corrections, hierarchy, field_user, reviewer_user, mock_conn, grants_for
    ):
        mock_corrections.get_correction = AsyncMock(return_value={"id": 1, "code_bureau_vote": 1000})

        with pytest.raises(Forbidden):
            await gateway.review_correction(mock_conn, hierarchy, field_user, 1, "reject", None)

        grants_for(reviewer_user, (20, "edit"))
        with pytest.raises(Forbidden):
            await gateway.review_correction(mock_conn, hierarchy, reviewer_user, 1, "reject", None)

    @pytest.mark.asyncio
    async def test_requires_review_capability(self, hierarchy, field_user, mock_conn, grants_for):
        grants_for(field_user, (10, "edit"))
        with pytest.raises(Forbidden):
            await gateway.review_correction(mock_conn, hierarchy, field_user, 1, "approve")

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.corrections_service")
    async def test_reviewer_needs_department_edit(
        self, mock_corrections, hierarchy, reviewer_user, mock_conn, grants_for
    ):
        grants_for(reviewer_user, (20, "edit"))
        mock_corrections.get_correction = AsyncMock(return_value={"id": 1, "code_bureau_vote": 1000})
        mock_corrections.set_correction_status = AsyncMock()

        with pytest.raises(Forbidden):
            await gateway.review_correction(mock_conn, hierarchy, reviewer_user, 1, "approve")

        mock_corrections.set_correction_status.assert_not_awaited()

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.corrections_service")
    async def test_reject_persists_status(
        self, mock_corrections, hierarchy, reviewer_user, mock_conn, grants_for, no_transaction
    ):
        grants_for(reviewer_user, (10, "edit"))
        mock_corrections.get_correction = AsyncMock(return_value={"id": 1, "code_bureau_vote": 1000})
        mock_corrections.set_correction_status = AsyncMock(
            return_value={"id": 1, "code_bureau_vote": 1000, "status": "rejected"}
        )

        entry = await gateway.review_correction(
            mock_conn, hierarchy, reviewer_user, 1, "reject", "duplicate entry"
        )

        assert entry["status"] == "rejected"
        mock_corrections.set_correction_status.assert_awaited_once_with(
            mock_conn, 1, status="rejected", changed_by=reviewer_user.user_id, reason="duplicate entry"
        )


class TestAccessAdministration:
    @pytest.mark.asyncio
    async def test_grant_requires_manage_grants(self, hierarchy, reviewer_user, mock_conn):
        with pytest.raises(Forbidden):
            await gateway.grant_access(
                mock_conn, hierarchy, reviewer_user, user_id=uuid4(), node_code=10, level="read"
            )

    @pytest.mark.asyncio
    async def test_check_other_user_requires_manage_grants(self, hierarchy, field_user, mock_conn):
        with pytest.raises(Forbidden):
            await gateway.check_access(
                mock_conn, hierarchy, field_user, 10, "read", user_id=uuid4()
            )

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.access_service.get_user_role", new_callable=AsyncMock)
    async def test_check_other_user(self, mock_role, hierarchy, admin_user, mock_conn, make_grant):
        other = CurrentUser(user_id=uuid4(), role="scrutateur")
        mock_role.return_value = "scrutateur"
        mock_conn.fetch.return_value = [make_grant(other, 100, "edit").model_dump()]

        assert await gateway.check_access(
            mock_conn, hierarchy, admin_user, 1000, "edit", user_id=other.user_id
        ) is True
        assert await gateway.check_access(
            mock_conn, hierarchy, admin_user, 10, "edit", user_id=other.user_id
        ) is False

    @pytest.mark.asyncio
    async def test_own_grants_only_without_manage_grants(self, field_user, mock_conn):
        with pytest.raises(Forbidden):
            await gateway.list_grants(mock_conn, field_user, user_id=uuid4())


class TestDocuments:
    @pytest.mark.asyncio
    async def test_document_type_must_match_node(self, hierarchy, admin_user, mock_conn):
        with pytest.raises(InvalidPayload):
            await gateway.register_document(
                mock_conn,
                hierarchy,
                admin_user,
                100,
                document_type="pv_departement",
                filename="pv.pdf",
                content=b"%PDF",
            )

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.documents_service")
    @patch("electoral.services.gateway.storage.store_document")
    async def test_stores_then_records(
        self, mock_store, mock_documents, hierarchy, admin_user, mock_conn, no_transaction
    ):
        mock_store.return_value = {"path": "documents/10/abc.pdf", "content_hash": "f" * 64}
        mock_documents.register_document = AsyncMock(
            return_value={"id": 3, "node_code": 10, "file_path": "documents/10/abc.pdf"}
        )

        document = await gateway.register_document(
            mock_conn,
            hierarchy,
            admin_user,
            10,
            document_type="pv_departement",
            filename="pv.pdf",
            content=b"%PDF-1.7",
            content_type="application/pdf",
        )

        mock_store.assert_called_once_with(
            b"%PDF-1.7", node_code=10, filename="pv.pdf", content_type="application/pdf"
        )
        assert mock_documents.register_document.call_args.kwargs["content_hash"] == "f" * 64
        assert document["territoire"]["department"]["code"] == 10


    @pytest.mark.asyncio
    @patch("electoral.services.gateway.documents_service")
    @patch("electoral.services.gateway.storage.delete_document")
    @patch("electoral.services.gateway.storage.store_document")
    async def test_failed_record_removes_stored_object(
        self, mock_store, mock_delete, mock_documents, hierarchy, admin_user, mock_conn, no_transaction
    ):
        mock_store.return_value = {"path": "documents/10/abc.pdf", "content_hash": "f" * 64}
        mock_documents.register_document = AsyncMock(side_effect=Conflict("duplicate document"))

        with pytest.raises(Conflict):
            await gateway.register_document(
                mock_conn,
                hierarchy,
                admin_user,
                10,
                document_type="pv_departement",
                filename="pv.pdf",
                content=b"%PDF-1.7",
            )

        mock_delete.assert_called_once_with("documents/10/abc.pdf")

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.documents_service")
    @patch("electoral.services.gateway.storage.delete_document")
    @patch("electoral.services.gateway.storage.store_document")
    async def test_recorded_object_is_kept(
        self, mock_store, mock_delete, mock_documents, hierarchy, admin_user, mock_conn, no_transaction
    ):
        mock_store.return_value = {"path": "documents/10/abc.pdf", "content_hash": "f" * 64}
        mock_documents.register_document = AsyncMock(return_value={"id": 3, "node_code": 10})

        await gateway.register_document(
            mock_conn,
            hierarchy,
            admin_user,
            10,
            document_type="pv_departement",
            filename="pv.pdf",
            content=b"%PDF-1.7",
        )

        mock_delete.assert_not_called()


class TestHierarchyListing:
    @pytest.mark.asyncio
    async def test_global_user_sees_regions(self, hierarchy, admin_user, mock_conn):
        listing = await gateway.read_hierarchy(mock_conn, hierarchy, admin_user, depth="department")
        assert [node["code"] for node in listing] == [1]

    @pytest.mark.asyncio
    async def test_grant_user_sees_granted_subtrees(
        self, hierarchy, field_user, mock_conn, grants_for
    ):
        grants_for(field_user, (100, "read"), (1000, "edit"), (200, "read"))

        listing = await gateway.read_hierarchy(mock_conn, hierarchy, field_user)

        assert [node["code"] for node in listing] == [100, 200]

    @pytest.mark.asyncio
    async def test_node_outside_grants(self, hierarchy, field_user, mock_conn, grants_for):
        grants_for(field_user, (100, "read"))
        with pytest.raises(Forbidden):
            await gateway.read_hierarchy(mock_conn, hierarchy, field_user, node_code=10)


class TestCorrectionReads:
    @pytest.mark.asyncio
    @patch("electoral.services.gateway.corrections_service")
    async def test_listing_covers_department_stations(
        self, mock_corrections, hierarchy, field_user, mock_conn, grants_for
    ):
        grants_for(field_user, (10, "read"))
        mock_corrections.list_corrections = AsyncMock(
            return_value=[{"id": 4, "code_bureau_vote": 1010, "status": "approved"}]
        )

        entries = await gateway.list_corrections(
            mock_conn, hierarchy, field_user, 10, status="approved"
        )

        kwargs = mock_corrections.list_corrections.call_args.kwargs
        assert kwargs["station_codes"] == [1000, 1001, 1010]
        assert kwargs["status"] == "approved"
        assert entries[0]["territoire"]["arrondissement"]["code"] == 101

    @pytest.mark.asyncio
    async def test_listing_needs_department_read(self, hierarchy, field_user, mock_conn, grants_for):
        grants_for(field_user, (100, "edit"))
        with pytest.raises(Forbidden):
            await gateway.list_corrections(mock_conn, hierarchy, field_user, 10)

    @pytest.mark.asyncio
    async def test_listing_unknown_status(self, hierarchy, admin_user, mock_conn):
        with pytest.raises(InvalidPayload):
            await gateway.list_corrections(mock_conn, hierarchy, admin_user, 10, status="archived")

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.corrections_service")
    @patch("electoral.services.gateway.participation_service")
    async def test_latest_overlays_stored_snapshot(
        self, mock_participation, mock_corrections, hierarchy, admin_user, mock_conn
    ):
        mock_participation.get_station_participation = AsyncMock(
            return_value={"nombre_inscrit": 150, "nombre_votant": 120, "bulletin_nul": 2}
        )
        mock_corrections.latest_correction = AsyncMock(
            return_value={
                "id": 9,
                "initial_values": {"nombre_votant": 120},
                "corrected_values": {"nombre_votant": 125},
            }
        )

        latest = await gateway.read_latest_correction(mock_conn, hierarchy, admin_user, "bureau", 1000)

        assert latest["latest"]["id"] == 9
        assert latest["effective"] == {"nombre_inscrit": 150, "nombre_votant": 125, "bulletin_nul": 2}

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.corrections_service")
    @patch("electoral.services.gateway.results_service")
    async def test_latest_without_corrections(
        self, mock_results, mock_corrections, hierarchy, admin_user, mock_conn
    ):
        mock_results.get_station_result = AsyncMock(return_value={"code_parti": 1, "nombre_vote": 40})
        mock_corrections.latest_correction = AsyncMock(return_value=None)

        latest = await gateway.read_latest_correction(
            mock_conn, hierarchy, admin_user, "candidat", 1000, party_code=1
        )

        assert latest["latest"] is None
        assert latest["effective"]["nombre_vote"] == 40


class TestParticipationReads:
    @pytest.mark.asyncio
    @patch("electoral.services.gateway.participation_service")
    async def test_listing_limited_to_readable_departments(
        self, mock_service, hierarchy, field_user, mock_conn, grants_for
    ):
        grants_for(field_user, (20, "read"), (100, "edit"))
        mock_service.list_department_participation = AsyncMock(
            return_value=[{"code_departement": 20, "nombre_inscrit": 300}]
        )

        records = await gateway.list_department_participation(mock_conn, hierarchy, field_user)

        mock_service.list_department_participation.assert_awaited_once_with(mock_conn, [20])
        assert records[0]["territoire"]["department"]["libelle"] == "Lekie"

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.participation_service")
    async def test_global_listing_is_unfiltered(self, mock_service, hierarchy, admin_user, mock_conn):
        mock_service.list_department_participation = AsyncMock(return_value=[])

        await gateway.list_department_participation(mock_conn, hierarchy, admin_user)

        mock_service.list_department_participation.assert_awaited_once_with(mock_conn, None)

    @pytest.mark.asyncio
    async def test_arrondissement_read_checks_kind(self, hierarchy, admin_user, mock_conn):
        with pytest.raises(InvalidPayload):
            await gateway.read_arrondissement_participation(mock_conn, hierarchy, admin_user, 10)


class TestDocumentListing:
    @pytest.mark.asyncio
    @patch("electoral.services.gateway.documents_service")
    async def test_lists_node_subtree(self, mock_documents, hierarchy, admin_user, mock_conn):
        mock_documents.list_documents = AsyncMock(return_value=[{"id": 1, "node_code": 100}])

        documents = await gateway.list_documents(
            mock_conn, hierarchy, admin_user, 100, "pv_arrondissement"
        )

        mock_documents.list_documents.assert_awaited_once_with(
            mock_conn, [100, 1000, 1001], "pv_arrondissement"
        )
        assert documents[0]["territoire"]["arrondissement"]["libelle"] == "Yaounde I"

    @pytest.mark.asyncio
    async def test_unknown_document_type(self, hierarchy, admin_user, mock_conn):
        with pytest.raises(InvalidPayload):
            await gateway.list_documents(mock_conn, hierarchy, admin_user, 100, "photo")


class TestArrondissementReview:
    @pytest.mark.asyncio
    @patch("electoral.services.gateway.participation_service")
    async def test_reject_requires_reason(self, mock_service, hierarchy, admin_user, mock_conn):
        mock_service.set_arrondissement_status = AsyncMock()

        with pytest.raises(InvalidPayload):
            await gateway.review_arrondissement_participation(
                mock_conn, hierarchy, admin_user, 100, "reject", "  "
            )

        mock_service.set_arrondissement_status.assert_not_awaited()

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.participation_service")
    async def test_review_without_capability(
        self, mock_service, hierarchy, field_user, mock_conn, grants_for
    ):
        grants_for(field_user, (100, "edit"))
        mock_service.set_arrondissement_status = AsyncMock()

        with pytest.raises(Forbidden):
            await gateway.review_arrondissement_participation(
                mock_conn, hierarchy, field_user, 100, "reject", None
            )

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.participation_service")
    async def test_re_review_overwrites(
        self, mock_service, hierarchy, reviewer_user, mock_conn, grants_for, no_transaction
    ):
        grants_for(reviewer_user, (10, "edit"))
        mock_service.set_arrondissement_status = AsyncMock(
            side_effect=[
                {"code_arrondissement": 100, "status": "approved"},
                {"code_arrondissement": 100, "status": "rejected"},
            ]
        )

        first = await gateway.review_arrondissement_participation(
            mock_conn, hierarchy, reviewer_user, 100, "approve"
        )
        second = await gateway.review_arrondissement_participation(
            mock_conn, hierarchy, reviewer_user, 100, "reject", "totals do not match the PV"
        )

        assert first["status"] == "approved"
        assert second["status"] == "rejected"
        statuses = [
            call.kwargs["status"] for call in mock_service.set_arrondissement_status.call_args_list
        ]
        assert statuses == ["approved", "rejected"]

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.participation_service")
    async def test_bulk_approve_all_or_nothing(
        self, mock_service, hierarchy, reviewer_user, mock_conn, grants_for
    ):
        grants_for(reviewer_user, (100, "edit"))
        mock_service.set_arrondissement_status = AsyncMock()

        with pytest.raises(Forbidden):
            await gateway.bulk_approve_arrondissement_participation(
                mock_conn, hierarchy, reviewer_user, [100, 200]
            )

        mock_service.set_arrondissement_status.assert_not_awaited()

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.participation_service")
    async def test_bulk_approve(
        self, mock_service, hierarchy, reviewer_user, mock_conn, grants_for, no_transaction
    ):
        grants_for(reviewer_user, (10, "edit"))
        mock_service.set_arrondissement_status = AsyncMock(
            side_effect=lambda conn, code, **kwargs: {"code_arrondissement": code, "status": "approved"}
        )

        records = await gateway.bulk_approve_arrondissement_participation(
            mock_conn, hierarchy, reviewer_user, [100, 101]
        )

        assert [r["code_arrondissement"] for r in records] == [100, 101]
        assert records[1]["territoire"]["arrondissement"]["libelle"] == "Yaounde II"

    @pytest.mark.asyncio
    async def test_bulk_approve_needs_codes(self, hierarchy, admin_user, mock_conn):
        with pytest.raises(InvalidPayload):
            await gateway.bulk_approve_arrondissement_participation(
                mock_conn, hierarchy, admin_user, []
            )


class TestCommissions:
    @pytest.mark.asyncio
    @patch("electoral.services.gateway.commissions_service")
    async def test_create_commission(
        self, mock_service, hierarchy, field_user, mock_conn, grants_for, no_transaction
    ):
        grants_for(field_user, (10, "edit"))
        mock_service.create_commission = AsyncMock(
            return_value={"code": 1, "code_departement": 10, "libelle": "CDS Mfoundi"}
        )

        commission = await gateway.create_commission(
            mock_conn, hierarchy, field_user, code_departement=10, libelle="  CDS Mfoundi "
        )

        assert mock_service.create_commission.call_args.kwargs["libelle"] == "CDS Mfoundi"
        assert commission["territoire"]["department"]["code"] == 10

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.commissions_service")
    async def test_create_commission_needs_department_edit(
        self, mock_service, hierarchy, field_user, mock_conn, grants_for
    ):
        grants_for(field_user, (10, "read"))
        mock_service.create_commission = AsyncMock()

        with pytest.raises(Forbidden):
            await gateway.create_commission(
                mock_conn, hierarchy, field_user, code_departement=10, libelle="CDS"
            )

        mock_service.create_commission.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_commission_needs_label(self, hierarchy, admin_user, mock_conn):
        with pytest.raises(InvalidPayload):
            await gateway.create_commission(
                mock_conn, hierarchy, admin_user, code_departement=10, libelle=" "
            )

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.commissions_service")
    async def test_create_member_checks_commission_department(
        self, mock_service, hierarchy, field_user, mock_conn, grants_for
    ):
        grants_for(field_user, (10, "edit"))
        mock_service.get_commission = AsyncMock(return_value={"code": 7, "code_departement": 20})
        mock_service.create_member = AsyncMock()

        with pytest.raises(Forbidden):
            await gateway.create_member(
                mock_conn,
                hierarchy,
                field_user,
                noms_prenoms="Ngono Marie",
                code_commission=7,
                code_fonction=1,
            )

        mock_service.create_member.assert_not_awaited()

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.commissions_service")
    async def test_create_member(
        self, mock_service, hierarchy, field_user, mock_conn, grants_for, no_transaction
    ):
        grants_for(field_user, (10, "edit"))
        mock_service.get_commission = AsyncMock(return_value={"code": 7, "code_departement": 10})
        mock_service.get_function = AsyncMock(return_value={"code": 1, "libelle": "Président"})
        mock_service.create_member = AsyncMock(
            return_value={"code": 3, "code_commission": 7, "code_departement": 10}
        )

        member = await gateway.create_member(
            mock_conn,
            hierarchy,
            field_user,
            noms_prenoms="Ngono Marie",
            code_commission=7,
            code_fonction=1,
        )

        mock_service.get_function.assert_awaited_once_with(mock_conn, 1)
        assert member["territoire"]["region"]["code"] == 1

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.commissions_service")
    async def test_moving_member_needs_both_departments(
        self, mock_service, hierarchy, field_user, mock_conn, grants_for
    ):
        grants_for(field_user, (10, "edit"))
        mock_service.get_member = AsyncMock(
            return_value={"code": 3, "code_commission": 7, "code_departement": 10}
        )
        mock_service.get_commission = AsyncMock(return_value={"code": 8, "code_departement": 20})
        mock_service.update_member = AsyncMock()

        with pytest.raises(Forbidden):
            await gateway.update_member(mock_conn, hierarchy, field_user, 3, {"code_commission": 8})

        mock_service.update_member.assert_not_awaited()

    @pytest.mark.asyncio
    @patch("electoral.services.gateway.commissions_service")
    async def test_moving_member_with_both_departments(
        self, mock_service, hierarchy, field_user, mock_conn, grants_for, no_transaction
    ):
        grants_for(field_user, (10, "edit"), (20, "edit"))
        mock_service.get_member = AsyncMock(
            return_value={"code": 3, "code_commission": 7, "code_departement": 10}
        )
        mock_service.get_commission = AsyncMock(return_value={"code": 8, "code_departement": 20})
        mock_service.update_member = AsyncMock(
            return_value={"code": 3, "code_commission": 8, "code_departement": 20}
        )

        member = await gateway.update_member(
            mock_conn, hierarchy, field_user, 3, {"code_commission": 8}
        )

        mock_service.update_member.assert_awaited_once_with(mock_conn, 3, code_commission=8)
        assert member["territoire"]["department"]["libelle"] == "Lekie"


class TestHierarchyStatsListing:
    @pytest.mark.asyncio
    async def test_counts_read_once_for_all_roots(
        self, hierarchy, field_user, mock_conn, make_grant
    ):
        mock_conn.fetch.side_effect = [
            [make_grant(field_user, 100, "read").model_dump(), make_grant(field_user, 200, "read").model_dump()],
            [{"node_code": 100, "total": 2}],
            [{"node_code": 1000, "total": 1}, {"node_code": 200, "total": 1}],
        ]

        listing = await gateway.read_hierarchy(mock_conn, hierarchy, field_user, with_stats=True)

        assert [node["code"] for node in listing] == [100, 200]
        assert listing[0]["stats"] == {"children": 2, "documents": 2, "participations": 1}
        assert listing[1]["stats"] == {"children": 1, "documents": 0, "participations": 1}
        assert mock_conn.fetch.await_count == 3
