"""Territorial access control.

A user reaches a node either through a role capability granting global
access, or through an active grant placed on the node or one of its
ancestors. ``edit`` implies ``read``; ``read`` never implies ``edit``.
"""

from typing import Any, Literal
from uuid import UUID

import asyncpg
from pydantic import BaseModel

from electoral.core.exceptions import Forbidden, InvalidPayload, NotFound
from electoral.core.logging_config import audit_logger, get_logger
from electoral.services.territory import TerritorialHierarchy

logger = get_logger(__name__)

AccessLevel = Literal["read", "edit"]

LEVEL_RANK: dict[str, int] = {"read": 1, "edit": 2}

# Capabilities
GLOBAL_ACCESS = "global_access"
MANAGE_GRANTS = "manage_grants"
REVIEW_CORRECTIONS = "review_corrections"

# The only place role names are interpreted.
ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    "administrateur": frozenset({GLOBAL_ACCESS, MANAGE_GRANTS, REVIEW_CORRECTIONS}),
    "superviseur-regionale": frozenset({GLOBAL_ACCESS, REVIEW_CORRECTIONS}),
    "superviseur-departementale": frozenset({REVIEW_CORRECTIONS}),
    "validateur": frozenset({REVIEW_CORRECTIONS}),
    "scrutateur": frozenset(),
    "observateur-local": frozenset(),
}


def capabilities_for_role(role: str | None) -> frozenset[str]:
    if not role:
        return frozenset()
    return ROLE_CAPABILITIES.get(role.strip().lower(), frozenset())


class CurrentUser(BaseModel):
    """Caller identity passed explicitly into every operation."""

    user_id: UUID
    role: str | None = None

    @property
    def capabilities(self) -> frozenset[str]:
        return capabilities_for_role(self.role)

    def has_capability(self, capability: str) -> bool:
        return capability in self.capabilities


class AccessGrant(BaseModel):
    id: int | None = None
    user_id: UUID
    node_code: int
    level: AccessLevel
    active: bool = True


def level_satisfies(granted: str, requested: str) -> bool:
    return LEVEL_RANK[granted] >= LEVEL_RANK[requested]


def resolve_access(
    hierarchy: TerritorialHierarchy,
    user: CurrentUser,
    grants: list[AccessGrant],
    node_code: int,
    level: str,
) -> bool:
    """Canonical access decision over already-loaded grants."""
    if level not in LEVEL_RANK:
        raise InvalidPayload(f"Unknown access level: {level}")
    hierarchy.get_node(node_code)

    if user.has_capability(GLOBAL_ACCESS):
        return True

    for grant in grants:
        if not grant.active or grant.node_code not in hierarchy:
            continue
        if level_satisfies(grant.level, level) and hierarchy.is_descendant(
            node_code, grant.node_code
        ):
            return True
    return False


def _parse_grant(row: asyncpg.Record | None) -> dict[str, Any] | None:
    if not row:
        return None
    result = dict(row)
    for field in ("user_id", "granted_by", "deactivated_by"):
        if result.get(field) is not None:
            result[field] = str(result[field])
    return result


class TerritorialAccessChecker:
    """Request-scoped access checks for one connection and hierarchy."""

    def __init__(self, conn: asyncpg.Connection, hierarchy: TerritorialHierarchy):
        self.conn = conn
        self.hierarchy = hierarchy
        self._grants: dict[UUID, list[AccessGrant]] = {}

    async def active_grants(self, user_id: UUID) -> list[AccessGrant]:
        """Active grants of a user, read once per checker."""
        if user_id not in self._grants:
            rows = await self.conn.fetch(
                """
                SELECT id, user_id, node_code, level, active
                FROM access_grants
                WHERE user_id = $1 AND active = TRUE
                ORDER BY id
                """,
                user_id,
            )
            self._grants[user_id] = [AccessGrant(**dict(row)) for row in rows]
        return self._grants[user_id]

    async def can_access(self, user: CurrentUser, node_code: int, level: str) -> bool:
        if user.has_capability(GLOBAL_ACCESS):
            return resolve_access(self.hierarchy, user, [], node_code, level)
        grants = await self.active_grants(user.user_id)
        return resolve_access(self.hierarchy, user, grants, node_code, level)

    async def can_read(self, user: CurrentUser, node_code: int) -> bool:
        return await self.can_access(user, node_code, "read")

    async def can_edit(self, user: CurrentUser, node_code: int) -> bool:
        return await self.can_access(user, node_code, "edit")

    async def require_access(
        self,
        user: CurrentUser,
        node_code: int,
        level: str,
        operation: str | None = None,
    ) -> None:
        """Raise Forbidden unless ``user`` holds ``level`` on ``node_code``."""
        if not await self.can_access(user, node_code, level):
            audit_logger.log_access_denied(str(user.user_id), node_code, level, operation)
            raise Forbidden(f"{level.capitalize()} access to territorial node {node_code} denied")

    async def accessible_codes(self, user: CurrentUser, kind: str) -> set[int] | None:
        """
        Codes of ``kind`` the user can read. None means every node
        (global access).
        """
        if user.has_capability(GLOBAL_ACCESS):
            return None

        codes: set[int] = set()
        for grant in await self.active_grants(user.user_id):
            if grant.node_code not in self.hierarchy:
                continue
            codes.update(
                node.code
                for node in self.hierarchy.descendants_of_kind(grant.node_code, kind)
            )
        return codes

    async def access_summary(self, user: CurrentUser) -> dict[str, Any]:
        """Grants of the user with the ancestry labels of each granted node."""
        grants = []
        for grant in await self.active_grants(user.user_id):
            if grant.node_code not in self.hierarchy:
                logger.warning(
                    f"Grant {grant.id} references unknown node {grant.node_code}"
                )
                continue
            node = self.hierarchy.get_node(grant.node_code)
            grants.append(
                {
                    "grant_id": grant.id,
                    "node_code": node.code,
                    "kind": node.kind,
                    "libelle": node.libelle,
                    "level": grant.level,
                    "ancestry": self.hierarchy.ancestry_labels(node.code),
                }
            )

        return {
            "user_id": str(user.user_id),
            "role": user.role,
            "capabilities": sorted(user.capabilities),
            "global_access": user.has_capability(GLOBAL_ACCESS),
            "grants": grants,
        }


# ============================================
# GRANT ADMINISTRATION
# ============================================


async def get_user_role(conn: asyncpg.Connection, user_id: UUID) -> str | None:
    """Role registered for a user other than the caller."""
    return await conn.fetchval("SELECT role FROM user_roles WHERE user_id = $1", user_id)


async def create_grant(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    *,
    user_id: UUID,
    node_code: int,
    level: str,
    granted_by: UUID,
) -> dict[str, Any]:
    """Assign a territorial grant to a user."""
    if level not in LEVEL_RANK:
        raise InvalidPayload(f"Unknown access level: {level}")
    hierarchy.get_node(node_code)

    row = await conn.fetchrow(
        """
        INSERT INTO access_grants (user_id, node_code, level, granted_by)
        VALUES ($1, $2, $3, $4)
        RETURNING *
        """,
        user_id,
        node_code,
        level,
        granted_by,
    )
    grant = _parse_grant(row)
    audit_logger.log_grant_change("created", grant["id"], str(user_id), node_code, str(granted_by))
    return grant


async def deactivate_grant(
    conn: asyncpg.Connection,
    grant_id: int,
    *,
    performed_by: UUID,
) -> dict[str, Any]:
    """Soft-deactivate a grant; the row is kept for audit."""
    row = await conn.fetchrow(
        """
        UPDATE access_grants
        SET active = FALSE, deactivated_at = NOW(), deactivated_by = $2
        WHERE id = $1
        RETURNING *
        """,
        grant_id,
        performed_by,
    )
    if not row:
        raise NotFound(f"Access grant {grant_id} not found")

    grant = _parse_grant(row)
    audit_logger.log_grant_change(
        "deactivated", grant_id, grant["user_id"], grant["node_code"], str(performed_by)
    )
    return grant


async def list_grants(
    conn: asyncpg.Connection,
    *,
    user_id: UUID | None = None,
    include_inactive: bool = False,
) -> list[dict[str, Any]]:
    """List grants, optionally for one user."""
    query = "SELECT * FROM access_grants WHERE 1=1"
    params: list[Any] = []
    param_count = 0

    if user_id:
        param_count += 1
        query += f" AND user_id = ${param_count}"
        params.append(user_id)

    if not include_inactive:
        query += " AND active = TRUE"

    query += " ORDER BY created_at, id"
    rows = await conn.fetch(query, *params)
    return [_parse_grant(row) for row in rows]
