"""Departmental commissions and their members."""

from typing import Any

import asyncpg

from electoral.core.exceptions import NotFound

MEMBER_FIELDS = ("noms_prenoms", "contact", "email", "code_commission", "code_fonction")


async def create_commission(
    conn: asyncpg.Connection,
    *,
    code_departement: int,
    libelle: str,
    description: str | None = None,
) -> dict[str, Any]:
    row = await conn.fetchrow(
        """
        INSERT INTO commissions_departementales (code_departement, libelle, description)
        VALUES ($1, $2, $3)
        RETURNING *
        """,
        code_departement,
        libelle,
        description,
    )
    return dict(row)


async def get_commission(conn: asyncpg.Connection, commission_code: int) -> dict[str, Any]:
    row = await conn.fetchrow(
        "SELECT * FROM commissions_departementales WHERE code = $1", commission_code
    )
    if not row:
        raise NotFound(f"Commission {commission_code} not found")
    return dict(row)


async def list_commissions(
    conn: asyncpg.Connection,
    department_codes: list[int] | None = None,
) -> list[dict[str, Any]]:
    """Commissions with their member count, optionally for some departments."""
    query = """
        SELECT c.*, COUNT(m.code) AS nombre_membres
        FROM commissions_departementales c
        LEFT JOIN membres_commission m ON m.code_commission = c.code
    """
    params: list[Any] = []
    if department_codes is not None:
        query += " WHERE c.code_departement = ANY($1::int[])"
        params.append(department_codes)
    query += " GROUP BY c.code ORDER BY c.code_departement, c.libelle"

    rows = await conn.fetch(query, *params)
    return [dict(row) for row in rows]


async def get_function(conn: asyncpg.Connection, function_code: int) -> dict[str, Any]:
    row = await conn.fetchrow(
        "SELECT * FROM fonctions_commission WHERE code = $1", function_code
    )
    if not row:
        raise NotFound(f"Commission function {function_code} not found")
    return dict(row)


async def get_member(conn: asyncpg.Connection, member_code: int) -> dict[str, Any]:
    """A member joined with its commission and function labels."""
    row = await conn.fetchrow(
        """
        SELECT
            m.*,
            c.libelle AS libelle_commission,
            c.code_departement,
            f.libelle AS libelle_fonction
        FROM membres_commission m
        JOIN commissions_departementales c ON c.code = m.code_commission
        JOIN fonctions_commission f ON f.code = m.code_fonction
        WHERE m.code = $1
        """,
        member_code,
    )
    if not row:
        raise NotFound(f"Commission member {member_code} not found")
    return dict(row)


async def create_member(
    conn: asyncpg.Connection,
    *,
    noms_prenoms: str,
    code_commission: int,
    code_fonction: int,
    contact: str | None = None,
    email: str | None = None,
) -> dict[str, Any]:
    code = await conn.fetchval(
        """
        INSERT INTO membres_commission (
            noms_prenoms, contact, email, code_commission, code_fonction
        )
        VALUES ($1, $2, $3, $4, $5)
        RETURNING code
        """,
        noms_prenoms,
        contact,
        email,
        code_commission,
        code_fonction,
    )
    return await get_member(conn, code)


async def update_member(
    conn: asyncpg.Connection,
    member_code: int,
    **kwargs,
) -> dict[str, Any]:
    """Update the given member fields."""
    updates = []
    params: list[Any] = []
    param_num = 1

    for key, value in kwargs.items():
        if key in MEMBER_FIELDS and value is not None:
            updates.append(f"{key} = ${param_num}")
            params.append(value)
            param_num += 1

    if updates:
        updates.append("updated_at = NOW()")
        params.append(member_code)
        result = await conn.execute(
            f"UPDATE membres_commission SET {', '.join(updates)} WHERE code = ${param_num}",
            *params,
        )
        if int(result.split()[-1]) == 0:
            raise NotFound(f"Commission member {member_code} not found")

    return await get_member(conn, member_code)
