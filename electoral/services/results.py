"""Party results at department and polling-station level."""

from decimal import Decimal
from typing import Any
from uuid import UUID

import asyncpg

from electoral.core.exceptions import NotFound
from electoral.core.logging_config import get_logger
from electoral.services.aggregation import share

logger = get_logger(__name__)


def _parse_row(row: asyncpg.Record | None) -> dict[str, Any] | None:
    if not row:
        return None
    result = dict(row)
    if result.get("submitted_by") is not None:
        result["submitted_by"] = str(result["submitted_by"])
    if isinstance(result.get("pourcentage"), Decimal):
        result["pourcentage"] = float(result["pourcentage"])
    return result


async def get_party(conn: asyncpg.Connection, party_code: int) -> dict[str, Any]:
    row = await conn.fetchrow(
        "SELECT code, libelle, abbreviation FROM partis_politiques WHERE code = $1",
        party_code,
    )
    if not row:
        raise NotFound(f"Political party {party_code} not found")
    return dict(row)


async def upsert_department_results(
    conn: asyncpg.Connection,
    department_code: int,
    votes: dict[int, int],
    *,
    submitted_by: UUID,
    validation_status: int | None = None,
) -> list[dict[str, Any]]:
    """
    Store party votes for a department (one row per party) and recompute the
    percentage of every party of that department.
    """
    for party_code, nombre_vote in votes.items():
        await conn.execute(
            """
            INSERT INTO resultat_departement (
                code_departement, code_parti, nombre_vote, validation_status, submitted_by
            )
            VALUES ($1, $2, $3, COALESCE($4, 0), $5)
            ON CONFLICT (code_departement, code_parti) DO UPDATE
            SET nombre_vote = EXCLUDED.nombre_vote,
                validation_status = COALESCE($4, resultat_departement.validation_status),
                submitted_by = EXCLUDED.submitted_by,
                updated_at = NOW()
            """,
            department_code,
            party_code,
            nombre_vote,
            validation_status,
            submitted_by,
        )

    rows = await conn.fetch(
        "SELECT id, code_parti, nombre_vote FROM resultat_departement WHERE code_departement = $1",
        department_code,
    )
    total = sum(row["nombre_vote"] for row in rows)
    for row in rows:
        await conn.execute(
            "UPDATE resultat_departement SET pourcentage = $2 WHERE id = $1",
            row["id"],
            Decimal(str(share(row["nombre_vote"], total))),
        )

    return await list_department_results(conn, department_code)


async def list_department_results(
    conn: asyncpg.Connection, department_code: int
) -> list[dict[str, Any]]:
    rows = await conn.fetch(
        """
        SELECT rd.*, pp.libelle AS libelle_parti, pp.abbreviation AS abbreviation_parti
        FROM resultat_departement rd
        LEFT JOIN partis_politiques pp ON pp.code = rd.code_parti
        WHERE rd.code_departement = $1
        ORDER BY rd.nombre_vote DESC, rd.id
        """,
        department_code,
    )
    return [_parse_row(row) for row in rows]


async def upsert_station_results(
    conn: asyncpg.Connection,
    station_code: int,
    votes: dict[int, int],
    *,
    submitted_by: UUID,
) -> list[dict[str, Any]]:
    """Store party votes counted at a polling station."""
    for party_code, nombre_vote in votes.items():
        await conn.execute(
            """
            INSERT INTO resultat_bureau (code_bureau_vote, code_parti, nombre_vote, submitted_by)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (code_bureau_vote, code_parti) DO UPDATE
            SET nombre_vote = EXCLUDED.nombre_vote,
                submitted_by = EXCLUDED.submitted_by,
                updated_at = NOW()
            """,
            station_code,
            party_code,
            nombre_vote,
            submitted_by,
        )

    rows = await conn.fetch(
        "SELECT * FROM resultat_bureau WHERE code_bureau_vote = $1 ORDER BY id",
        station_code,
    )
    return [_parse_row(row) for row in rows]


async def get_station_result(
    conn: asyncpg.Connection, station_code: int, party_code: int
) -> dict[str, Any] | None:
    row = await conn.fetchrow(
        "SELECT * FROM resultat_bureau WHERE code_bureau_vote = $1 AND code_parti = $2",
        station_code,
        party_code,
    )
    return _parse_row(row)
