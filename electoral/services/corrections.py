"""Correction ledger (redressements).

Corrections are appended, never edited: the value sets of an entry are
fixed once inserted, and a newer entry for the same target becomes the
"latest" while older ones stay queryable. Only the review annotation
(status, reason, reviewer) changes after insert.
"""

import json
from collections.abc import Iterable
from typing import Any, Literal
from uuid import UUID

import asyncpg
from pydantic import BaseModel, model_validator

from electoral.core.exceptions import InvalidCorrection, InvalidPayload, NotFound
from electoral.core.logging_config import audit_logger, get_logger

logger = get_logger(__name__)

TargetKind = Literal["bureau", "candidat"]

REVIEW_STATUSES = ("submitted", "approved", "rejected", "validated")

# Value-set shapes per target kind
CORRECTION_FIELDS: dict[str, dict[str, tuple[str, ...]]] = {
    "bureau": {
        "required": ("nombre_inscrit", "nombre_votant"),
        "optional": ("bulletin_nul",),
    },
    "candidat": {
        "required": ("nombre_vote",),
        "optional": (),
    },
}


class CorrectionTarget(BaseModel):
    """What a correction applies to: a station snapshot or a station/party count."""

    kind: TargetKind
    station_code: int
    party_code: int | None = None

    @model_validator(mode="after")
    def check_party(self) -> "CorrectionTarget":
        if self.kind == "candidat" and self.party_code is None:
            raise ValueError("candidat corrections require a party code")
        if self.kind == "bureau" and self.party_code is not None:
            raise ValueError("bureau corrections do not take a party code")
        return self

    @property
    def key(self) -> tuple[int, int | None]:
        return (self.station_code, self.party_code)


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def validate_correction_values(
    kind: str,
    initial: dict[str, Any],
    corrected: dict[str, Any],
) -> tuple[dict[str, int], dict[str, int]]:
    """
    Check that both value sets have the shape expected for ``kind``.

    Both sets must carry the same keys, every required key, nothing outside
    the allowed fields, and non-negative integer values.
    """
    shape = CORRECTION_FIELDS.get(kind)
    if shape is None:
        raise InvalidPayload(f"Unknown correction target kind: {kind}")

    allowed = set(shape["required"]) | set(shape["optional"])
    errors: dict[str, Any] = {}

    for label, values in (("initial", initial), ("corrected", corrected)):
        if not isinstance(values, dict):
            errors[label] = "must be an object of counts"
            continue
        missing = [f for f in shape["required"] if f not in values]
        unknown = sorted(set(values) - allowed)
        bad = [f for f, v in values.items() if f in allowed and not _is_count(v)]
        if missing:
            errors[f"{label}.missing"] = missing
        if unknown:
            errors[f"{label}.unknown"] = unknown
        if bad:
            errors[f"{label}.not_counts"] = bad

    if not errors and set(initial) != set(corrected):
        errors["fields"] = "initial and corrected must contain the same fields"

    if errors:
        raise InvalidCorrection(f"Inconsistent {kind} correction values", errors=errors)

    return dict(initial), dict(corrected)


def pick_latest(entries: Iterable[dict[str, Any]]) -> dict[str, Any] | None:
    """Entry with the greatest creation time; the last inserted wins ties."""
    latest = None
    for entry in entries:
        if latest is None or (entry["created_at"], entry["id"]) >= (
            latest["created_at"],
            latest["id"],
        ):
            latest = entry
    return latest


def _parse_row(row: asyncpg.Record | None) -> dict[str, Any] | None:
    if not row:
        return None

    result = dict(row)
    for field in ("created_by", "status_changed_by"):
        if result.get(field) is not None:
            result[field] = str(result[field])
    for field in ("initial_values", "corrected_values"):
        if isinstance(result.get(field), str):
            result[field] = json.loads(result[field])
    return result


# ============================================
# LEDGER
# ============================================


async def record_correction(
    conn: asyncpg.Connection,
    target: CorrectionTarget,
    *,
    initial: dict[str, Any],
    corrected: dict[str, Any],
    reason: str,
    created_by: UUID,
) -> dict[str, Any]:
    """Append a correction for ``target``."""
    initial, corrected = validate_correction_values(target.kind, initial, corrected)

    row = await conn.fetchrow(
        """
        INSERT INTO redressements (
            target_kind, code_bureau_vote, code_parti,
            initial_values, corrected_values, raison, created_by
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7)
        RETURNING *
        """,
        target.kind,
        target.station_code,
        target.party_code,
        json.dumps(initial),
        json.dumps(corrected),
        reason,
        created_by,
    )
    entry = _parse_row(row)
    audit_logger.log_correction(
        entry["id"], target.kind, target.station_code, str(created_by), target.party_code
    )
    return entry


def _target_clause(target: CorrectionTarget) -> tuple[str, list[Any]]:
    return (
        "target_kind = $1 AND code_bureau_vote = $2 AND code_parti IS NOT DISTINCT FROM $3",
        [target.kind, target.station_code, target.party_code],
    )


async def latest_correction(
    conn: asyncpg.Connection, target: CorrectionTarget
) -> dict[str, Any] | None:
    clause, params = _target_clause(target)
    row = await conn.fetchrow(
        f"""
        SELECT * FROM redressements
        WHERE {clause}
        ORDER BY created_at DESC, id DESC
        LIMIT 1
        """,
        *params,
    )
    return _parse_row(row)


async def correction_history(
    conn: asyncpg.Connection, target: CorrectionTarget
) -> list[dict[str, Any]]:
    """Every correction for ``target``, oldest first."""
    clause, params = _target_clause(target)
    rows = await conn.fetch(
        f"""
        SELECT * FROM redressements
        WHERE {clause}
        ORDER BY created_at ASC, id ASC
        """,
        *params,
    )
    return [_parse_row(row) for row in rows]


async def latest_corrections_for_stations(
    conn: asyncpg.Connection,
    kind: str,
    station_codes: list[int],
) -> dict[tuple[int, int | None], dict[str, Any]]:
    """Latest correction per target among the given stations."""
    if not station_codes:
        return {}

    rows = await conn.fetch(
        """
        SELECT DISTINCT ON (code_bureau_vote, code_parti) *
        FROM redressements
        WHERE target_kind = $1 AND code_bureau_vote = ANY($2::int[])
        ORDER BY code_bureau_vote, code_parti, created_at DESC, id DESC
        """,
        kind,
        station_codes,
    )
    latest = {}
    for row in rows:
        entry = _parse_row(row)
        latest[(entry["code_bureau_vote"], entry["code_parti"])] = entry
    return latest


async def get_correction(conn: asyncpg.Connection, correction_id: int) -> dict[str, Any]:
    row = await conn.fetchrow("SELECT * FROM redressements WHERE id = $1", correction_id)
    if not row:
        raise NotFound(f"Correction {correction_id} not found")
    return _parse_row(row)


async def list_corrections(
    conn: asyncpg.Connection,
    *,
    station_codes: list[int] | None = None,
    kind: str | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """List corrections, most recent first."""
    query = "SELECT * FROM redressements WHERE 1=1"
    params: list[Any] = []
    param_count = 0

    if station_codes is not None:
        param_count += 1
        query += f" AND code_bureau_vote = ANY(${param_count}::int[])"
        params.append(station_codes)

    if kind:
        param_count += 1
        query += f" AND target_kind = ${param_count}"
        params.append(kind)

    if status:
        param_count += 1
        query += f" AND status = ${param_count}"
        params.append(status)

    query += f" ORDER BY created_at DESC, id DESC LIMIT ${param_count + 1} OFFSET ${param_count + 2}"
    params.extend([limit, offset])

    rows = await conn.fetch(query, *params)
    return [_parse_row(row) for row in rows]


async def set_correction_status(
    conn: asyncpg.Connection,
    correction_id: int,
    *,
    status: str,
    changed_by: UUID,
    reason: str | None = None,
) -> dict[str, Any]:
    """Overwrite the review status of a correction (last write wins)."""
    if status not in REVIEW_STATUSES:
        raise InvalidPayload(f"Unknown review status: {status}")

    row = await conn.fetchrow(
        """
        UPDATE redressements
        SET status = $2,
            status_reason = $3,
            status_changed_by = $4,
            status_changed_at = NOW()
        WHERE id = $1
        RETURNING *
        """,
        correction_id,
        status,
        reason,
        changed_by,
    )
    if not row:
        raise NotFound(f"Correction {correction_id} not found")

    audit_logger.log_review("correction", correction_id, status, str(changed_by), reason)
    return _parse_row(row)
