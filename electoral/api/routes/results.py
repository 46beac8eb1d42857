"""Results API routes."""

from typing import Annotated

import asyncpg
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from electoral.api.deps import CurrentUserDep, HierarchyDep
from electoral.core.database import get_db
from electoral.core.responses import success_response
from electoral.services import aggregation as aggregation_service
from electoral.services import gateway

router = APIRouter(prefix="/results", tags=["Results"])


# ============================================
# PYDANTIC MODELS
# ============================================


class PartyVotes(BaseModel):
    code_parti: int
    nombre_vote: int = Field(..., ge=0)


class DepartmentResultsSubmit(BaseModel):
    votes: list[PartyVotes] = Field(..., min_length=1)
    validation_status: int | None = Field(None, ge=0)


class StationResultsSubmit(BaseModel):
    votes: list[PartyVotes] = Field(..., min_length=1)


def _votes_by_party(votes: list[PartyVotes]) -> dict[int, int]:
    # a party listed twice keeps its last count
    return {vote.code_parti: vote.nombre_vote for vote in votes}


# ============================================
# RESULT ENDPOINTS
# ============================================


@router.post("/department/{code}")
async def submit_department_results(
    code: int,
    request: DepartmentResultsSubmit,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    """Record party votes for a department; percentages are recomputed."""
    results = await gateway.submit_department_results(
        conn,
        hierarchy,
        current_user,
        code,
        _votes_by_party(request.votes),
        validation_status=request.validation_status,
    )
    return success_response(data=results, message="Results saved")


@router.post("/bureau/{code}")
async def submit_station_results(
    code: int,
    request: StationResultsSubmit,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    results = await gateway.submit_station_results(
        conn, hierarchy, current_user, code, _votes_by_party(request.votes)
    )
    return success_response(data=results, message="Results saved")


@router.get("/department/{code}")
async def department_results(
    code: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    tally = await gateway.read_department_results(conn, hierarchy, current_user, code)
    return success_response(data=tally)


@router.get("/national")
async def national_results(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    validation_status: int | None = Query(None, ge=0),
    include_party_details: bool = False,
):
    """
    National tally by party, sorted by descending votes.

    Open to every authenticated user.
    """
    tally = await aggregation_service.aggregate_results_national(
        conn,
        hierarchy,
        validation_status=validation_status,
        include_party_details=include_party_details,
    )
    return success_response(data=tally)
