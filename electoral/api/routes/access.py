"""Territorial access API routes."""

from typing import Annotated, Literal
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from electoral.api.deps import CurrentUserDep, HierarchyDep
from electoral.core.database import get_db
from electoral.core.responses import success_response
from electoral.services import gateway
from electoral.services.access import TerritorialAccessChecker

router = APIRouter(prefix="/access", tags=["Access"])


# ============================================
# PYDANTIC MODELS
# ============================================


class GrantCreate(BaseModel):
    user_id: UUID
    node_code: int
    level: Literal["read", "edit"]


# ============================================
# ACCESS ENDPOINTS
# ============================================


@router.get("/check")
async def check_access(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    node: int,
    level: str = Query("read", pattern="^(read|edit)$"),
    user: UUID | None = None,
):
    """Whether a user (the caller by default) may read or edit a node."""
    allowed = await gateway.check_access(
        conn, hierarchy, current_user, node, level, user_id=user
    )
    return success_response(data={"allowed": allowed})


@router.get("/summary")
async def access_summary(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    """Capabilities and grants of the current user."""
    checker = TerritorialAccessChecker(conn, hierarchy)
    return success_response(data=await checker.access_summary(current_user))


@router.get("/grants")
async def list_grants(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUserDep,
    user: UUID | None = None,
    include_inactive: bool = False,
):
    grants = await gateway.list_grants(
        conn, current_user, user_id=user, include_inactive=include_inactive
    )
    return success_response(data=grants)


@router.post("/grants")
async def create_grant(
    request: GrantCreate,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    """Assign a territorial grant. Requires grant management."""
    grant = await gateway.grant_access(
        conn,
        hierarchy,
        current_user,
        user_id=request.user_id,
        node_code=request.node_code,
        level=request.level,
    )
    return success_response(data=grant, message="Access granted")


@router.post("/grants/{grant_id}/deactivate")
async def deactivate_grant(
    grant_id: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    """Deactivate a grant. The grant is kept for audit."""
    grant = await gateway.revoke_access(conn, hierarchy, current_user, grant_id)
    return success_response(data=grant, message="Access revoked")
