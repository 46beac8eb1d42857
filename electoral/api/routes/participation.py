"""Participation API routes."""

from typing import Annotated, Literal

import asyncpg
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from electoral.api.deps import CurrentUserDep, HierarchyDep
from electoral.core.database import get_db
from electoral.core.responses import success_response
from electoral.services import gateway

router = APIRouter(prefix="/participation", tags=["Participation"])


# ============================================
# PYDANTIC MODELS
# ============================================


class DepartmentParticipationSubmit(BaseModel):
    """Counts of a department; omitted counts keep their stored value."""

    nombre_bureau_vote: int | None = Field(None, ge=0)
    nombre_inscrit: int | None = Field(None, ge=0)
    nombre_votant: int | None = Field(None, ge=0)
    bulletin_nul: int | None = Field(None, ge=0)
    nombre_enveloppe_urnes: int | None = Field(None, ge=0)
    nombre_enveloppe_bulletins_differents: int | None = Field(None, ge=0)
    nombre_bulletin_electeur_identifiable: int | None = Field(None, ge=0)
    nombre_bulletin_enveloppes_signes: int | None = Field(None, ge=0)
    nombre_enveloppe_non_elecam: int | None = Field(None, ge=0)
    nombre_bulletin_non_elecam: int | None = Field(None, ge=0)
    nombre_bulletin_sans_enveloppe: int | None = Field(None, ge=0)
    nombre_enveloppe_vide: int | None = Field(None, ge=0)
    nombre_suffrages_valable: int | None = Field(None, ge=0)


class ArrondissementParticipationSubmit(BaseModel):
    code_departement: int | None = None
    nombre_bureaux: int | None = Field(None, ge=0)
    nombre_inscrit: int | None = Field(None, ge=0)
    nombre_votant: int | None = Field(None, ge=0)
    bulletin_nul: int | None = Field(None, ge=0)
    suffrage_valable: int | None = Field(None, ge=0)


class StationParticipationSubmit(BaseModel):
    code_arrondissement: int | None = None
    nombre_inscrit: int | None = Field(None, ge=0)
    nombre_votant: int | None = Field(None, ge=0)
    bulletin_nul: int | None = Field(None, ge=0)


class ReviewRequest(BaseModel):
    reason: str | None = Field(None, max_length=2000)


class BulkApproveRequest(BaseModel):
    codes: list[int] = Field(..., min_length=1)


# ============================================
# DEPARTMENT
# ============================================


@router.get("")
async def list_department_participation(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    """Department records the caller can read."""
    records = await gateway.list_department_participation(conn, hierarchy, current_user)
    return success_response(data=records)


@router.get("/{department_code}")
async def get_department_participation(
    department_code: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    record = await gateway.read_department_participation(
        conn, hierarchy, current_user, department_code
    )
    return success_response(data=record)


@router.post("/{department_code}")
async def submit_department_participation(
    department_code: int,
    request: DepartmentParticipationSubmit,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    """Create or update the participation record of a department."""
    record = await gateway.submit_department_participation(
        conn,
        hierarchy,
        current_user,
        department_code,
        request.model_dump(exclude_none=True),
    )
    return success_response(data=record, message="Participation saved")


@router.get("/{department_code}/aggregate")
async def aggregate_department_participation(
    department_code: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    """Participation of a department summed from its polling stations."""
    summary = await gateway.read_participation_aggregate(
        conn, hierarchy, current_user, department_code
    )
    return success_response(data=summary)


# ============================================
# ARRONDISSEMENT
# ============================================


@router.post("/arrondissement/bulk/approve")
async def bulk_approve_arrondissements(
    request: BulkApproveRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    records = await gateway.bulk_approve_arrondissement_participation(
        conn, hierarchy, current_user, request.codes
    )
    return success_response(data=records, message=f"{len(records)} records approved")


@router.get("/arrondissement/{code}")
async def get_arrondissement_participation(
    code: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    record = await gateway.read_arrondissement_participation(conn, hierarchy, current_user, code)
    return success_response(data=record)


@router.post("/arrondissement/{code}")
async def submit_arrondissement_participation(
    code: int,
    request: ArrondissementParticipationSubmit,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    payload = request.model_dump(exclude_none=True)
    claimed = payload.pop("code_departement", None)
    record = await gateway.submit_arrondissement_participation(
        conn, hierarchy, current_user, code, payload, code_departement=claimed
    )
    return success_response(data=record, message="Participation saved")


@router.post("/arrondissement/{code}/{action}")
async def review_arrondissement_participation(
    code: int,
    action: Literal["approve", "reject", "validate"],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    request: ReviewRequest | None = None,
):
    """Approve, reject (a reason is required) or validate a record."""
    record = await gateway.review_arrondissement_participation(
        conn,
        hierarchy,
        current_user,
        code,
        action,
        reason=request.reason if request else None,
    )
    return success_response(data=record, message=f"Participation {record['status']}")


# ============================================
# POLLING STATION
# ============================================


@router.post("/bureau/{code}")
async def submit_station_participation(
    code: int,
    request: StationParticipationSubmit,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    payload = request.model_dump(exclude_none=True)
    claimed = payload.pop("code_arrondissement", None)
    record = await gateway.submit_station_participation(
        conn, hierarchy, current_user, code, payload, code_arrondissement=claimed
    )
    return success_response(data=record, message="Participation saved")
