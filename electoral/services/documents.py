"""PV and arrondissement documents kept in the blob store."""

from typing import Any
from uuid import UUID

import asyncpg

DOCUMENT_TYPES = ("pv_departement", "pv_arrondissement", "document_arrondissement")


def _parse_row(row: asyncpg.Record) -> dict[str, Any]:
    result = dict(row)
    if result.get("uploaded_by") is not None:
        result["uploaded_by"] = str(result["uploaded_by"])
    return result


async def register_document(
    conn: asyncpg.Connection,
    *,
    node_code: int,
    document_type: str,
    file_name: str,
    file_path: str,
    content_hash: str,
    uploaded_by: UUID,
    libelle: str | None = None,
) -> dict[str, Any]:
    """Record a stored document against its territorial node."""
    row = await conn.fetchrow(
        """
        INSERT INTO documents (
            node_code, document_type, libelle, file_name, file_path,
            content_hash, uploaded_by
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7)
        RETURNING *
        """,
        node_code,
        document_type,
        libelle,
        file_name,
        file_path,
        content_hash,
        uploaded_by,
    )
    return _parse_row(row)


async def list_documents(
    conn: asyncpg.Connection,
    node_codes: list[int],
    document_type: str | None = None,
) -> list[dict[str, Any]]:
    query = "SELECT * FROM documents WHERE node_code = ANY($1::int[])"
    params: list[Any] = [node_codes]
    if document_type:
        query += " AND document_type = $2"
        params.append(document_type)
    query += " ORDER BY created_at DESC"

    rows = await conn.fetch(query, *params)
    return [_parse_row(row) for row in rows]
