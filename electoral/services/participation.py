"""Participation records at department, arrondissement and polling-station level.

Each level holds at most one record per territorial node. Writes are upserts
keyed on the node code: a second submission merges into the existing record
(fields it leaves out keep their stored value) and never adds a row.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID

import asyncpg

from electoral.core.exceptions import InvalidPayload, NotFound
from electoral.core.logging_config import audit_logger, get_logger
from electoral.services.aggregation import rate

logger = get_logger(__name__)

DEPARTMENT_FIELDS = (
    "nombre_bureau_vote",
    "nombre_inscrit",
    "nombre_votant",
    "bulletin_nul",
    "nombre_enveloppe_urnes",
    "nombre_enveloppe_bulletins_differents",
    "nombre_bulletin_electeur_identifiable",
    "nombre_bulletin_enveloppes_signes",
    "nombre_enveloppe_non_elecam",
    "nombre_bulletin_non_elecam",
    "nombre_bulletin_sans_enveloppe",
    "nombre_enveloppe_vide",
    "nombre_suffrages_valable",
)

ARRONDISSEMENT_FIELDS = (
    "nombre_bureaux",
    "nombre_inscrit",
    "nombre_votant",
    "bulletin_nul",
    "suffrage_valable",
)

STATION_FIELDS = ("nombre_inscrit", "nombre_votant", "bulletin_nul")

ARRONDISSEMENT_REVIEW_STATUSES = ("submitted", "approved", "rejected", "validated")


def check_participation_consistency(values: dict[str, Any]) -> list[str]:
    """Simple bounds between counts; returns the list of violations."""
    registered = values.get("nombre_inscrit") or 0
    voters = values.get("nombre_votant") or 0
    errors: list[str] = []

    if voters > registered:
        errors.append("Number of voters cannot exceed registered voters")
    if (values.get("bulletin_nul") or 0) > voters:
        errors.append("Null ballots cannot exceed number of voters")
    if (values.get("nombre_enveloppe_urnes") or 0) > voters:
        errors.append("Envelopes in ballot boxes cannot exceed number of voters")
    return errors


def derive_participation(values: dict[str, Any]) -> dict[str, Any]:
    """Expressed votes, participation and abstention rates from the raw counts."""
    registered = values.get("nombre_inscrit") or 0
    voters = values.get("nombre_votant") or 0
    return {
        "suffrage_exprime": voters - (values.get("bulletin_nul") or 0),
        "taux_participation": rate(voters, registered),
        "taux_abstention": rate(registered - voters, registered),
    }


def _as_decimal(value: float | None) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def merge_submission(
    existing: dict[str, Any] | None,
    submitted: dict[str, Any],
    fields: tuple[str, ...],
) -> dict[str, Any]:
    """Stored counts overlaid with the submitted ones that are present."""
    merged = {field: (existing or {}).get(field) for field in fields}
    for field in fields:
        if submitted.get(field) is not None:
            merged[field] = submitted[field]
    return merged


async def _upsert(
    conn: asyncpg.Connection,
    *,
    table: str,
    key: str,
    key_value: int,
    fields: tuple[str, ...],
    submitted: dict[str, Any],
    extra: dict[str, Any],
) -> dict[str, Any]:
    existing = await conn.fetchrow(
        f"SELECT * FROM {table} WHERE {key} = $1 FOR UPDATE", key_value
    )
    merged = merge_submission(dict(existing) if existing else None, submitted, fields)

    errors = check_participation_consistency(merged)
    if errors:
        raise InvalidPayload("Inconsistent participation counts", errors={"consistency": errors})

    values = {**merged, **extra}
    columns = [key, *values]
    placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
    updates = ", ".join(f"{column} = EXCLUDED.{column}" for column in values)

    row = await conn.fetchrow(
        f"""
        INSERT INTO {table} ({", ".join(columns)})
        VALUES ({placeholders})
        ON CONFLICT ({key}) DO UPDATE
        SET {updates}, updated_at = NOW()
        RETURNING *
        """,
        key_value,
        *values.values(),
    )
    return _parse_row(row)


def _parse_row(row: asyncpg.Record | None) -> dict[str, Any] | None:
    if not row:
        return None
    result = dict(row)
    for field in ("submitted_by", "status_changed_by"):
        if result.get(field) is not None:
            result[field] = str(result[field])
    return result


# ============================================
# DEPARTMENT
# ============================================


async def upsert_department_participation(
    conn: asyncpg.Connection,
    department_code: int,
    submitted: dict[str, Any],
    *,
    submitted_by: UUID,
) -> dict[str, Any]:
    """Create or merge the participation record of a department."""
    record = await _upsert(
        conn,
        table="participation_departement",
        key="code_departement",
        key_value=department_code,
        fields=DEPARTMENT_FIELDS,
        submitted=submitted,
        extra={"submitted_by": submitted_by},
    )
    derived = derive_participation(record)
    row = await conn.fetchrow(
        """
        UPDATE participation_departement
        SET suffrage_exprime = $2, taux_participation = $3
        WHERE code_departement = $1
        RETURNING *
        """,
        department_code,
        derived["suffrage_exprime"],
        _as_decimal(derived["taux_participation"]),
    )
    return _parse_row(row)


async def get_department_participation(
    conn: asyncpg.Connection, department_code: int
) -> dict[str, Any]:
    row = await conn.fetchrow(
        "SELECT * FROM participation_departement WHERE code_departement = $1",
        department_code,
    )
    if not row:
        raise NotFound(f"No participation recorded for department {department_code}")
    return _parse_row(row)


async def list_department_participation(
    conn: asyncpg.Connection,
    department_codes: list[int] | None = None,
) -> list[dict[str, Any]]:
    """Department records, optionally restricted to the given codes."""
    if department_codes is None:
        rows = await conn.fetch(
            "SELECT * FROM participation_departement ORDER BY code_departement"
        )
    else:
        rows = await conn.fetch(
            """
            SELECT * FROM participation_departement
            WHERE code_departement = ANY($1::int[])
            ORDER BY code_departement
            """,
            department_codes,
        )
    return [_parse_row(row) for row in rows]


# ============================================
# ARRONDISSEMENT
# ============================================


async def upsert_arrondissement_participation(
    conn: asyncpg.Connection,
    arrondissement_code: int,
    submitted: dict[str, Any],
    *,
    submitted_by: UUID,
) -> dict[str, Any]:
    """Create or merge the participation record of an arrondissement."""
    record = await _upsert(
        conn,
        table="participation_arrondissement",
        key="code_arrondissement",
        key_value=arrondissement_code,
        fields=ARRONDISSEMENT_FIELDS,
        submitted=submitted,
        extra={"submitted_by": submitted_by},
    )
    derived = derive_participation(record)
    row = await conn.fetchrow(
        """
        UPDATE participation_arrondissement
        SET taux_participation = $2, taux_abstention = $3
        WHERE code_arrondissement = $1
        RETURNING *
        """,
        arrondissement_code,
        _as_decimal(derived["taux_participation"]),
        _as_decimal(derived["taux_abstention"]),
    )
    return _parse_row(row)


async def get_arrondissement_participation(
    conn: asyncpg.Connection, arrondissement_code: int
) -> dict[str, Any]:
    row = await conn.fetchrow(
        "SELECT * FROM participation_arrondissement WHERE code_arrondissement = $1",
        arrondissement_code,
    )
    if not row:
        raise NotFound(f"No participation recorded for arrondissement {arrondissement_code}")
    return _parse_row(row)


async def set_arrondissement_status(
    conn: asyncpg.Connection,
    arrondissement_code: int,
    *,
    status: str,
    changed_by: UUID,
    reason: str | None = None,
) -> dict[str, Any]:
    """Overwrite the review status of an arrondissement record."""
    if status not in ARRONDISSEMENT_REVIEW_STATUSES:
        raise InvalidPayload(f"Unknown review status: {status}")

    row = await conn.fetchrow(
        """
        UPDATE participation_arrondissement
        SET status = $2, status_reason = $3, status_changed_by = $4,
            status_changed_at = NOW()
        WHERE code_arrondissement = $1
        RETURNING *
        """,
        arrondissement_code,
        status,
        reason,
        changed_by,
    )
    if not row:
        raise NotFound(f"No participation recorded for arrondissement {arrondissement_code}")

    audit_logger.log_review(
        "participation_arrondissement", arrondissement_code, status, str(changed_by), reason
    )
    return _parse_row(row)


# ============================================
# POLLING STATION
# ============================================


async def upsert_station_participation(
    conn: asyncpg.Connection,
    station_code: int,
    submitted: dict[str, Any],
    *,
    submitted_by: UUID,
) -> dict[str, Any]:
    """Create or merge the participation snapshot of a polling station."""
    return await _upsert(
        conn,
        table="participation_bureau",
        key="code_bureau_vote",
        key_value=station_code,
        fields=STATION_FIELDS,
        submitted=submitted,
        extra={"submitted_by": submitted_by},
    )


async def get_station_participation(
    conn: asyncpg.Connection, station_code: int
) -> dict[str, Any] | None:
    row = await conn.fetchrow(
        "SELECT * FROM participation_bureau WHERE code_bureau_vote = $1",
        station_code,
    )
    return _parse_row(row)
