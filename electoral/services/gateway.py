"""Submission gateway.

Every boundary operation runs in the same order: the caller's access is
resolved on the target node, the payload and its cross-references are
checked, the write runs in one transaction, and the stored entity is
returned with the labels of its territorial ancestry. Nothing is written
before the access and validation steps have passed.
"""

import asyncio
from functools import partial
from typing import Any
from uuid import UUID

import asyncpg

from electoral.core.config import get_settings
from electoral.core.database import write_transaction
from electoral.core.exceptions import Forbidden, InvalidCorrection, InvalidPayload
from electoral.core.logging_config import get_logger
from electoral.services import access as access_service
from electoral.services import aggregation as aggregation_service
from electoral.services import commissions as commissions_service
from electoral.services import corrections as corrections_service
from electoral.services import documents as documents_service
from electoral.services import participation as participation_service
from electoral.services import results as results_service
from electoral.services.access import (
    GLOBAL_ACCESS,
    MANAGE_GRANTS,
    REVIEW_CORRECTIONS,
    CurrentUser,
    TerritorialAccessChecker,
)
from electoral.services.corrections import CORRECTION_FIELDS, REVIEW_STATUSES, CorrectionTarget
from electoral.services.documents import DOCUMENT_TYPES
from electoral.services.territory import TerritorialHierarchy, TerritorialNode
from electoral.utils import storage

logger = get_logger(__name__)

ACTION_STATUS = {
    "approve": "approved",
    "reject": "rejected",
    "validate": "validated",
}

# Node kind each document type is filed against
DOCUMENT_NODE_KIND = {
    "pv_departement": "department",
    "pv_arrondissement": "arrondissement",
    "document_arrondissement": "arrondissement",
}


def _enrich(hierarchy: TerritorialHierarchy, record: dict[str, Any], code: int) -> dict[str, Any]:
    return {**record, "territoire": hierarchy.ancestry_labels(code)}


def _require_kind(hierarchy: TerritorialHierarchy, code: int, kind: str) -> TerritorialNode:
    node = hierarchy.get_node(code)
    if node.kind != kind:
        raise InvalidPayload(f"Territorial node {code} is a {node.kind}, expected a {kind}")
    return node


def _require_capability(user: CurrentUser, capability: str) -> None:
    if not user.has_capability(capability):
        raise Forbidden(f"Role {user.role or 'none'} lacks the {capability} capability")


def _review_status(action: str, reason: str | None) -> str:
    status = ACTION_STATUS.get(action)
    if status is None:
        raise InvalidPayload(f"Unknown review action: {action}")
    if action == "reject" and not (reason and reason.strip()):
        raise InvalidPayload("A reason is required to reject", errors={"reason": "required"})
    return status


# ============================================
# PARTICIPATION
# ============================================


async def submit_department_participation(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    department_code: int,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """Create or merge the participation record of a department."""
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, department_code, "edit", "submit_department_participation")
    _require_kind(hierarchy, department_code, "department")

    async with write_transaction(conn):
        record = await participation_service.upsert_department_participation(
            conn, department_code, payload, submitted_by=user.user_id
        )

    logger.info(f"Participation submitted for department {department_code} by {user.user_id}")
    return _enrich(hierarchy, record, department_code)


async def submit_arrondissement_participation(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    arrondissement_code: int,
    payload: dict[str, Any],
    code_departement: int | None = None,
) -> dict[str, Any]:
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(
        user, arrondissement_code, "edit", "submit_arrondissement_participation"
    )
    node = _require_kind(hierarchy, arrondissement_code, "arrondissement")
    if code_departement is not None and node.parent_code != code_departement:
        raise InvalidPayload(
            f"Arrondissement {arrondissement_code} does not belong to department {code_departement}"
        )

    async with write_transaction(conn):
        record = await participation_service.upsert_arrondissement_participation(
            conn, arrondissement_code, payload, submitted_by=user.user_id
        )
    return _enrich(hierarchy, record, arrondissement_code)


async def submit_station_participation(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    station_code: int,
    payload: dict[str, Any],
    code_arrondissement: int | None = None,
) -> dict[str, Any]:
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, station_code, "edit", "submit_station_participation")
    node = _require_kind(hierarchy, station_code, "polling_station")
    if code_arrondissement is not None and node.parent_code != code_arrondissement:
        raise InvalidPayload(
            f"Polling station {station_code} does not belong to arrondissement "
            f"{code_arrondissement}"
        )

    async with write_transaction(conn):
        record = await participation_service.upsert_station_participation(
            conn, station_code, payload, submitted_by=user.user_id
        )
    return _enrich(hierarchy, record, station_code)


async def review_arrondissement_participation(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    arrondissement_code: int,
    action: str,
    reason: str | None = None,
) -> dict[str, Any]:
    """Approve, reject or validate an arrondissement record; the last review wins."""
    _require_capability(user, REVIEW_CORRECTIONS)
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, arrondissement_code, "edit", f"{action}_participation")
    _require_kind(hierarchy, arrondissement_code, "arrondissement")
    status = _review_status(action, reason)

    async with write_transaction(conn):
        record = await participation_service.set_arrondissement_status(
            conn, arrondissement_code, status=status, changed_by=user.user_id, reason=reason
        )
    return _enrich(hierarchy, record, arrondissement_code)


async def bulk_approve_arrondissement_participation(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    arrondissement_codes: list[int],
) -> list[dict[str, Any]]:
    """Approve several arrondissement records at once; all or none are updated."""
    if not arrondissement_codes:
        raise InvalidPayload("At least one arrondissement code is required")
    _require_capability(user, REVIEW_CORRECTIONS)

    checker = TerritorialAccessChecker(conn, hierarchy)
    for code in arrondissement_codes:
        await checker.require_access(user, code, "edit", "bulk_approve_participation")
        _require_kind(hierarchy, code, "arrondissement")

    approved = []
    async with write_transaction(conn):
        for code in arrondissement_codes:
            record = await participation_service.set_arrondissement_status(
                conn, code, status="approved", changed_by=user.user_id
            )
            approved.append(_enrich(hierarchy, record, code))
    return approved


async def read_participation_aggregate(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    department_code: int,
) -> dict[str, Any]:
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, department_code, "read", "aggregate_participation")
    summary = await aggregation_service.aggregate_participation(conn, hierarchy, department_code)
    return _enrich(hierarchy, summary, department_code)


async def read_department_participation(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    department_code: int,
) -> dict[str, Any]:
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, department_code, "read", "read_participation")
    _require_kind(hierarchy, department_code, "department")
    record = await participation_service.get_department_participation(conn, department_code)
    return _enrich(hierarchy, record, department_code)


async def list_department_participation(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
) -> list[dict[str, Any]]:
    """Department records the caller can read."""
    checker = TerritorialAccessChecker(conn, hierarchy)
    readable = await checker.accessible_codes(user, "department")
    records = await participation_service.list_department_participation(
        conn, None if readable is None else sorted(readable)
    )
    return [_enrich(hierarchy, r, r["code_departement"]) for r in records]


async def read_arrondissement_participation(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    arrondissement_code: int,
) -> dict[str, Any]:
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, arrondissement_code, "read", "read_participation")
    _require_kind(hierarchy, arrondissement_code, "arrondissement")
    record = await participation_service.get_arrondissement_participation(
        conn, arrondissement_code
    )
    return _enrich(hierarchy, record, arrondissement_code)


# ============================================
# RESULTS
# ============================================


async def _check_parties(conn: asyncpg.Connection, votes: dict[int, int]) -> None:
    if not votes:
        raise InvalidPayload("At least one party vote count is required")
    for party_code in votes:
        await results_service.get_party(conn, party_code)


async def submit_department_results(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    department_code: int,
    votes: dict[int, int],
    validation_status: int | None = None,
) -> dict[str, Any]:
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, department_code, "edit", "submit_department_results")
    _require_kind(hierarchy, department_code, "department")
    await _check_parties(conn, votes)

    async with write_transaction(conn):
        rows = await results_service.upsert_department_results(
            conn,
            department_code,
            votes,
            submitted_by=user.user_id,
            validation_status=validation_status,
        )
    return _enrich(hierarchy, {"code_departement": department_code, "results": rows}, department_code)


async def submit_station_results(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    station_code: int,
    votes: dict[int, int],
) -> dict[str, Any]:
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, station_code, "edit", "submit_station_results")
    _require_kind(hierarchy, station_code, "polling_station")
    await _check_parties(conn, votes)

    async with write_transaction(conn):
        rows = await results_service.upsert_station_results(
            conn, station_code, votes, submitted_by=user.user_id
        )
    return _enrich(hierarchy, {"code_bureau_vote": station_code, "results": rows}, station_code)


async def read_department_results(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    department_code: int,
) -> dict[str, Any]:
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, department_code, "read", "department_results")
    tally = await aggregation_service.aggregate_results_department(
        conn, hierarchy, department_code
    )
    return _enrich(hierarchy, tally, department_code)


# ============================================
# CORRECTIONS
# ============================================


async def _original_values(
    conn: asyncpg.Connection, target: CorrectionTarget
) -> dict[str, Any] | None:
    if target.kind == "bureau":
        return await participation_service.get_station_participation(conn, target.station_code)
    return await results_service.get_station_result(conn, target.station_code, target.party_code)


async def submit_correction(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    target_kind: str,
    station_code: int,
    *,
    corrected: dict[str, Any],
    reason: str,
    initial: dict[str, Any] | None = None,
    party_code: int | None = None,
) -> dict[str, Any]:
    """
    Append a correction for a polling-station snapshot or a station/party count.

    Requires edit access at the department owning the station. When
    ``initial`` is omitted it is taken from the stored submission,
    restricted to the corrected fields.
    """
    if target_kind not in CORRECTION_FIELDS:
        raise InvalidPayload(f"Unknown correction target kind: {target_kind}")

    node = hierarchy.get_node(station_code)
    department = hierarchy.department_of(station_code)
    if department is None:
        raise InvalidPayload(f"Territorial node {station_code} has no owning department")

    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, department.code, "edit", "submit_correction")

    if node.kind != "polling_station":
        raise InvalidPayload(f"Corrections target polling stations, not a {node.kind}")
    if not reason or not reason.strip():
        raise InvalidPayload("A reason is required", errors={"reason": "required"})

    try:
        target = CorrectionTarget(kind=target_kind, station_code=station_code, party_code=party_code)
    except ValueError as e:
        raise InvalidPayload(str(e)) from e
    if target.party_code is not None:
        await results_service.get_party(conn, target.party_code)

    if initial is None:
        original = await _original_values(conn, target)
        if original is None:
            raise InvalidCorrection(
                "No stored submission to correct; initial values are required",
                errors={"initial": "required"},
            )
        # a count stored as NULL was never reported and counts as zero
        initial = {field: original.get(field) or 0 for field in corrected}

    async with write_transaction(conn):
        entry = await corrections_service.record_correction(
            conn,
            target,
            initial=initial,
            corrected=corrected,
            reason=reason,
            created_by=user.user_id,
        )
    return _enrich(hierarchy, entry, station_code)


async def review_correction(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    correction_id: int,
    action: str,
    reason: str | None = None,
) -> dict[str, Any]:
    """Record a review decision on a correction; re-review overwrites the status."""
    _require_capability(user, REVIEW_CORRECTIONS)

    entry = await corrections_service.get_correction(conn, correction_id)
    department = hierarchy.department_of(entry["code_bureau_vote"])
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, department.code, "edit", f"{action}_correction")
    status = _review_status(action, reason)

    async with write_transaction(conn):
        updated = await corrections_service.set_correction_status(
            conn, correction_id, status=status, changed_by=user.user_id, reason=reason
        )
    return _enrich(hierarchy, updated, updated["code_bureau_vote"])


async def read_correction(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    correction_id: int,
) -> dict[str, Any]:
    entry = await corrections_service.get_correction(conn, correction_id)
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, entry["code_bureau_vote"], "read", "read_correction")
    return _enrich(hierarchy, entry, entry["code_bureau_vote"])


async def read_correction_history(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    target_kind: str,
    station_code: int,
    party_code: int | None = None,
) -> dict[str, Any]:
    """Corrections of one target, oldest first, with the current effective values."""
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, station_code, "read", "correction_history")
    _require_kind(hierarchy, station_code, "polling_station")

    try:
        target = CorrectionTarget(kind=target_kind, station_code=station_code, party_code=party_code)
    except ValueError as e:
        raise InvalidPayload(str(e)) from e

    history = await corrections_service.correction_history(conn, target)
    original = await _original_values(conn, target)
    latest = corrections_service.pick_latest(history)
    return _enrich(
        hierarchy,
        {
            "target_kind": target.kind,
            "code_bureau_vote": station_code,
            "code_parti": target.party_code,
            "original": original,
            "effective": aggregation_service.effective_value(original, latest),
            "history": history,
        },
        station_code,
    )


async def read_latest_correction(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    target_kind: str,
    station_code: int,
    party_code: int | None = None,
) -> dict[str, Any]:
    """The most recent correction of a target, None when it was never corrected."""
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, station_code, "read", "latest_correction")
    _require_kind(hierarchy, station_code, "polling_station")

    try:
        target = CorrectionTarget(kind=target_kind, station_code=station_code, party_code=party_code)
    except ValueError as e:
        raise InvalidPayload(str(e)) from e

    latest = await corrections_service.latest_correction(conn, target)
    original = await _original_values(conn, target)
    return _enrich(
        hierarchy,
        {
            "target_kind": target.kind,
            "code_bureau_vote": station_code,
            "code_parti": target.party_code,
            "latest": latest,
            "effective": aggregation_service.effective_value(original, latest),
        },
        station_code,
    )


async def list_corrections(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    department_code: int,
    *,
    target_kind: str | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """Corrections filed in a department, most recent first."""
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, department_code, "read", "list_corrections")
    _require_kind(hierarchy, department_code, "department")
    if target_kind is not None and target_kind not in CORRECTION_FIELDS:
        raise InvalidPayload(f"Unknown correction target kind: {target_kind}")
    if status is not None and status not in REVIEW_STATUSES:
        raise InvalidPayload(f"Unknown review status: {status}")

    stations = [n.code for n in hierarchy.descendants_of_kind(department_code, "polling_station")]
    entries = await corrections_service.list_corrections(
        conn, station_codes=stations, kind=target_kind, status=status, limit=limit, offset=offset
    )
    return [_enrich(hierarchy, e, e["code_bureau_vote"]) for e in entries]


# ============================================
# COMMISSIONS
# ============================================


async def create_commission(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    *,
    code_departement: int,
    libelle: str,
    description: str | None = None,
) -> dict[str, Any]:
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, code_departement, "edit", "create_commission")
    _require_kind(hierarchy, code_departement, "department")
    if not libelle or not libelle.strip():
        raise InvalidPayload("libelle is required", errors={"libelle": "required"})

    async with write_transaction(conn):
        commission = await commissions_service.create_commission(
            conn, code_departement=code_departement, libelle=libelle.strip(), description=description
        )
    return _enrich(hierarchy, commission, code_departement)


async def create_member(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    *,
    noms_prenoms: str,
    code_commission: int,
    code_fonction: int,
    contact: str | None = None,
    email: str | None = None,
) -> dict[str, Any]:
    commission = await commissions_service.get_commission(conn, code_commission)
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, commission["code_departement"], "edit", "create_member")
    await commissions_service.get_function(conn, code_fonction)

    async with write_transaction(conn):
        member = await commissions_service.create_member(
            conn,
            noms_prenoms=noms_prenoms,
            code_commission=code_commission,
            code_fonction=code_fonction,
            contact=contact,
            email=email,
        )
    return _enrich(hierarchy, member, commission["code_departement"])


async def update_member(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    member_code: int,
    changes: dict[str, Any],
) -> dict[str, Any]:
    """
    Update a member. Moving the member to another commission requires edit
    access on both departments.
    """
    member = await commissions_service.get_member(conn, member_code)
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, member["code_departement"], "edit", "update_member")

    if changes.get("code_commission") is not None:
        commission = await commissions_service.get_commission(conn, changes["code_commission"])
        await checker.require_access(user, commission["code_departement"], "edit", "update_member")
    if changes.get("code_fonction") is not None:
        await commissions_service.get_function(conn, changes["code_fonction"])

    async with write_transaction(conn):
        updated = await commissions_service.update_member(conn, member_code, **changes)
    return _enrich(hierarchy, updated, updated["code_departement"])


async def list_commissions(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    department_code: int | None = None,
) -> list[dict[str, Any]]:
    """Commissions the caller can read, optionally for one department."""
    checker = TerritorialAccessChecker(conn, hierarchy)
    if department_code is not None:
        await checker.require_access(user, department_code, "read", "list_commissions")
        codes: list[int] | None = [department_code]
    else:
        readable = await checker.accessible_codes(user, "department")
        codes = None if readable is None else sorted(readable)

    commissions = await commissions_service.list_commissions(conn, codes)
    return [_enrich(hierarchy, c, c["code_departement"]) for c in commissions]


# ============================================
# DOCUMENTS
# ============================================


async def register_document(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    node_code: int,
    *,
    document_type: str,
    filename: str,
    content: bytes,
    content_type: str | None = None,
    libelle: str | None = None,
) -> dict[str, Any]:
    """Store an uploaded PV or document and record it against its node."""
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, node_code, "edit", "register_document")

    expected_kind = DOCUMENT_NODE_KIND.get(document_type)
    if expected_kind is None:
        raise InvalidPayload(
            f"Unknown document type: {document_type}",
            errors={"document_type": sorted(DOCUMENT_NODE_KIND)},
        )
    _require_kind(hierarchy, node_code, expected_kind)

    if not content:
        raise InvalidPayload("Uploaded file is empty")
    max_bytes = get_settings().MAX_DOCUMENT_SIZE_MB * 1024 * 1024
    if len(content) > max_bytes:
        raise InvalidPayload(
            f"File too large. Maximum size: {get_settings().MAX_DOCUMENT_SIZE_MB}MB"
        )

    # boto3 is synchronous
    loop = asyncio.get_event_loop()
    stored = await loop.run_in_executor(
        None,
        partial(
            storage.store_document,
            content,
            node_code=node_code,
            filename=filename,
            content_type=content_type,
        ),
    )

    try:
        async with write_transaction(conn):
            document = await documents_service.register_document(
                conn,
                node_code=node_code,
                document_type=document_type,
                file_name=filename,
                file_path=stored["path"],
                content_hash=stored["content_hash"],
                uploaded_by=user.user_id,
                libelle=libelle,
            )
    except Exception:
        # no row points at the object once the insert has failed
        logger.warning(f"Removing unrecorded document {stored['path']}")
        await loop.run_in_executor(None, storage.delete_document, stored["path"])
        raise
    return _enrich(hierarchy, document, node_code)


async def list_documents(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    node_code: int,
    document_type: str | None = None,
) -> list[dict[str, Any]]:
    """Documents filed at or below a node, newest first."""
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, node_code, "read", "list_documents")
    if document_type is not None and document_type not in DOCUMENT_TYPES:
        raise InvalidPayload(
            f"Unknown document type: {document_type}",
            errors={"document_type": list(DOCUMENT_TYPES)},
        )

    documents = await documents_service.list_documents(
        conn, sorted(hierarchy.get_descendants(node_code)), document_type
    )
    return [_enrich(hierarchy, d, d["node_code"]) for d in documents]


# ============================================
# ACCESS ADMINISTRATION
# ============================================


async def grant_access(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    *,
    user_id: UUID,
    node_code: int,
    level: str,
) -> dict[str, Any]:
    _require_capability(user, MANAGE_GRANTS)
    async with write_transaction(conn):
        grant = await access_service.create_grant(
            conn, hierarchy, user_id=user_id, node_code=node_code, level=level, granted_by=user.user_id
        )
    return _enrich(hierarchy, grant, node_code)


async def revoke_access(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    grant_id: int,
) -> dict[str, Any]:
    _require_capability(user, MANAGE_GRANTS)
    async with write_transaction(conn):
        grant = await access_service.deactivate_grant(conn, grant_id, performed_by=user.user_id)
    if grant["node_code"] not in hierarchy:
        return grant
    return _enrich(hierarchy, grant, grant["node_code"])


async def list_grants(
    conn: asyncpg.Connection,
    user: CurrentUser,
    *,
    user_id: UUID | None = None,
    include_inactive: bool = False,
) -> list[dict[str, Any]]:
    """Grant listing; callers without grant management only see their own."""
    if not user.has_capability(MANAGE_GRANTS):
        if user_id is not None and user_id != user.user_id:
            raise Forbidden("Listing the grants of another user requires grant management")
        user_id = user.user_id
    return await access_service.list_grants(
        conn, user_id=user_id, include_inactive=include_inactive
    )


async def check_access(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    node_code: int,
    level: str,
    user_id: UUID | None = None,
) -> bool:
    """Access decision for the caller, or for another user with grant management."""
    subject = user
    if user_id is not None and user_id != user.user_id:
        _require_capability(user, MANAGE_GRANTS)
        subject = CurrentUser(
            user_id=user_id, role=await access_service.get_user_role(conn, user_id)
        )
    checker = TerritorialAccessChecker(conn, hierarchy)
    return await checker.can_access(subject, node_code, level)


# ============================================
# TERRITORY
# ============================================


async def read_hierarchy(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    node_code: int | None = None,
    depth: str | None = None,
    with_stats: bool = False,
) -> list[dict[str, Any]]:
    """
    Subtree listing. Without a node, global users see every region and
    other users see the subtrees of their active grants.
    """
    checker = TerritorialAccessChecker(conn, hierarchy)

    if node_code is not None:
        await checker.require_access(user, node_code, "read", "read_hierarchy")
        roots: list[int | None] = [node_code]
    elif user.has_capability(GLOBAL_ACCESS):
        roots = [None]
    else:
        granted = {
            g.node_code for g in await checker.active_grants(user.user_id) if g.node_code in hierarchy
        }
        # a grant nested under another grant is already listed
        roots = sorted(
            code
            for code in granted
            if not any(other != code and hierarchy.is_descendant(code, other) for other in granted)
        )

    if with_stats:
        return await aggregation_service.hierarchy_stats(conn, hierarchy, roots, depth)

    listing: list[dict[str, Any]] = []
    for root in roots:
        listing.extend(hierarchy.subtree(root, depth))
    return listing


async def read_node(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    node_code: int,
) -> dict[str, Any]:
    """A node with its parent chain up to the region."""
    checker = TerritorialAccessChecker(conn, hierarchy)
    await checker.require_access(user, node_code, "read", "read_node")
    chain = hierarchy.get_parent_chain(node_code)
    return {
        **chain[0].model_dump(),
        "parents": [node.model_dump() for node in chain[1:]],
        "children": [node.model_dump() for node in hierarchy.get_children(node_code)],
    }

