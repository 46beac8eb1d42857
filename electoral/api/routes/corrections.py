"""Correction (redressement) API routes."""

from typing import Annotated, Any, Literal

import asyncpg
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from electoral.api.deps import CurrentUserDep, HierarchyDep
from electoral.core.database import get_db
from electoral.core.responses import success_response
from electoral.services import gateway

router = APIRouter(prefix="/corrections", tags=["Corrections"])


# ============================================
# PYDANTIC MODELS
# ============================================


class CorrectionSubmit(BaseModel):
    """
    A correction of a polling-station snapshot (``bureau``) or of one party's
    count at a station (``candidat``, which needs ``code_parti``).

    ``initial`` defaults to the stored submission.
    """

    corrected: dict[str, Any]
    reason: str = Field(..., min_length=1, max_length=2000)
    initial: dict[str, Any] | None = None
    code_parti: int | None = None


class ReviewRequest(BaseModel):
    reason: str | None = Field(None, max_length=2000)


# ============================================
# REVIEW ENDPOINTS
# ============================================


async def _review(conn, hierarchy, current_user, correction_id: int, action: str, request):
    entry = await gateway.review_correction(
        conn,
        hierarchy,
        current_user,
        correction_id,
        action,
        reason=request.reason if request else None,
    )
    return success_response(data=entry, message=f"Correction {entry['status']}")


@router.post("/{correction_id}/approve")
async def approve_correction(
    correction_id: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    request: ReviewRequest | None = None,
):
    return await _review(conn, hierarchy, current_user, correction_id, "approve", request)


@router.post("/{correction_id}/reject")
async def reject_correction(
    correction_id: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    request: ReviewRequest | None = None,
):
    """Reject a correction. A reason is required."""
    return await _review(conn, hierarchy, current_user, correction_id, "reject", request)


@router.post("/{correction_id}/validate")
async def validate_correction(
    correction_id: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    request: ReviewRequest | None = None,
):
    return await _review(conn, hierarchy, current_user, correction_id, "validate", request)


# ============================================
# LEDGER ENDPOINTS
# ============================================


@router.get("")
async def list_corrections(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    department: int = Query(..., description="Department whose polling stations are listed"),
    target_kind: Literal["bureau", "candidat"] | None = None,
    status: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Corrections filed in a department, most recent first."""
    entries = await gateway.list_corrections(
        conn,
        hierarchy,
        current_user,
        department,
        target_kind=target_kind,
        status=status,
        limit=limit,
        offset=offset,
    )
    return success_response(data=entries)


@router.post("/{target_kind}/{target_id}")
async def submit_correction(
    target_kind: Literal["bureau", "candidat"],
    target_id: int,
    request: CorrectionSubmit,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    """Append a correction for a polling station. Earlier corrections are kept."""
    entry = await gateway.submit_correction(
        conn,
        hierarchy,
        current_user,
        target_kind,
        target_id,
        corrected=request.corrected,
        reason=request.reason,
        initial=request.initial,
        party_code=request.code_parti,
    )
    return success_response(data=entry, message="Correction recorded")


@router.get("/{target_kind}/{target_id}/history")
async def correction_history(
    target_kind: Literal["bureau", "candidat"],
    target_id: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    code_parti: int | None = None,
):
    history = await gateway.read_correction_history(
        conn, hierarchy, current_user, target_kind, target_id, party_code=code_parti
    )
    return success_response(data=history)


@router.get("/{target_kind}/{target_id}/latest")
async def latest_correction(
    target_kind: Literal["bureau", "candidat"],
    target_id: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    code_parti: int | None = None,
):
    """The latest correction of a target and the value it makes effective."""
    latest = await gateway.read_latest_correction(
        conn, hierarchy, current_user, target_kind, target_id, party_code=code_parti
    )
    return success_response(data=latest)


@router.get("/{correction_id}")
async def get_correction(
    correction_id: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    entry = await gateway.read_correction(conn, hierarchy, current_user, correction_id)
    return success_response(data=entry)
