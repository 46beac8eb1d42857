"""Departmental commission API routes."""

from typing import Annotated

import asyncpg
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from electoral.api.deps import CurrentUserDep, HierarchyDep
from electoral.core.database import get_db
from electoral.core.responses import success_response
from electoral.services import gateway

router = APIRouter(prefix="/commissions", tags=["Commissions"])


# ============================================
# PYDANTIC MODELS
# ============================================


class CommissionCreate(BaseModel):
    code_departement: int
    libelle: str = Field(..., min_length=1, max_length=255)
    description: str | None = None


class MemberCreate(BaseModel):
    noms_prenoms: str = Field(..., min_length=1, max_length=255)
    code_commission: int
    code_fonction: int
    contact: str | None = Field(None, max_length=50)
    email: str | None = Field(None, max_length=255)


class MemberUpdate(BaseModel):
    noms_prenoms: str | None = Field(None, min_length=1, max_length=255)
    code_commission: int | None = None
    code_fonction: int | None = None
    contact: str | None = Field(None, max_length=50)
    email: str | None = Field(None, max_length=255)


# ============================================
# COMMISSION ENDPOINTS
# ============================================


@router.get("")
async def list_commissions(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    department: int | None = None,
):
    """Commissions of the departments the caller can read."""
    commissions = await gateway.list_commissions(
        conn, hierarchy, current_user, department_code=department
    )
    return success_response(data=commissions)


@router.post("")
async def create_commission(
    request: CommissionCreate,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    commission = await gateway.create_commission(
        conn,
        hierarchy,
        current_user,
        code_departement=request.code_departement,
        libelle=request.libelle,
        description=request.description,
    )
    return success_response(data=commission, message="Commission created")


@router.post("/members")
async def create_member(
    request: MemberCreate,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    member = await gateway.create_member(conn, hierarchy, current_user, **request.model_dump())
    return success_response(data=member, message="Member added")


@router.patch("/members/{member_code}")
async def update_member(
    member_code: int,
    request: MemberUpdate,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    member = await gateway.update_member(
        conn, hierarchy, current_user, member_code, request.model_dump(exclude_none=True)
    )
    return success_response(data=member, message="Member updated")
