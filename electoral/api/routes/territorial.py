"""Territorial hierarchy API routes."""

from typing import Annotated

import asyncpg
from fastapi import APIRouter, Depends, Query

from electoral.api.deps import CurrentUserDep, HierarchyDep
from electoral.core.database import get_db
from electoral.core.responses import success_response
from electoral.services import gateway

router = APIRouter(prefix="/territorial", tags=["Territorial"])


@router.get("/hierarchy")
async def get_hierarchy_listing(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    node: int | None = None,
    depth: str | None = Query(
        None, pattern="^(region|department|arrondissement|polling_station)$"
    ),
    with_stats: bool = False,
):
    """
    Subtree listing below ``node``, down to the ``depth`` level.

    With ``with_stats`` every node carries its child, document and
    participation counts.
    """
    listing = await gateway.read_hierarchy(
        conn, hierarchy, current_user, node_code=node, depth=depth, with_stats=with_stats
    )
    return success_response(data=listing)


@router.get("/nodes/{code}")
async def get_node(
    code: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
):
    """Get a node with its parent chain and direct children."""
    node = await gateway.read_node(conn, hierarchy, current_user, code)
    return success_response(data=node)
