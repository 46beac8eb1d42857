"""Aggregation engine.

Effective values are the stored submission overlaid with the latest
correction for the same target. Every tally is re-derived from stored rows
on each call: integers are summed, and percentages are computed once from
those sums with Decimal arithmetic, rounded half-up to two places.
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import asyncpg

from electoral.core.exceptions import InvalidPayload
from electoral.core.logging_config import get_logger
from electoral.services import corrections as corrections_service
from electoral.services.territory import TerritorialHierarchy

logger = get_logger(__name__)

TWO_PLACES = Decimal("0.01")

PARTICIPATION_COUNTS = ("nombre_inscrit", "nombre_votant", "bulletin_nul")


# ============================================
# NUMERIC HELPERS
# ============================================


def round_half_up(value: Decimal | int | float) -> float:
    """Round to two decimals, halves away from zero."""
    return float(Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def rate(numerator: int, denominator: int) -> float | None:
    """numerator / denominator as a percentage; None when the denominator is 0."""
    if denominator == 0:
        return None
    return round_half_up(Decimal(numerator) * 100 / Decimal(denominator))


def share(part: int, total: int) -> float:
    """Percentage share of ``part`` in ``total``; 0 when total is 0."""
    return rate(part, total) if total else 0.0


# ============================================
# PURE ROLL-UPS
# ============================================


def effective_value(
    original: dict[str, Any] | None,
    latest: dict[str, Any] | None,
) -> dict[str, Any]:
    """Original values overlaid with the latest correction's corrected values."""
    if latest is None:
        return dict(original or {})

    base = dict(original) if original is not None else dict(latest["initial_values"])
    base.update(latest["corrected_values"])
    return base


def effective_station_participation(
    snapshots: Iterable[dict[str, Any]],
    latest_by_station: dict[tuple[int, int | None], dict[str, Any]],
) -> list[dict[str, Any]]:
    """
    Effective snapshot for each station that has a snapshot or a correction.
    """
    result: list[dict[str, Any]] = []
    seen: set[int] = set()

    for snapshot in snapshots:
        code = snapshot["code_bureau_vote"]
        seen.add(code)
        effective = effective_value(snapshot, latest_by_station.get((code, None)))
        effective["corrected"] = (code, None) in latest_by_station
        result.append(effective)

    for (code, _), latest in sorted(latest_by_station.items()):
        if code in seen:
            continue
        effective = effective_value(None, latest)
        effective["code_bureau_vote"] = code
        effective["corrected"] = True
        result.append(effective)

    return result


def sum_participation(records: Iterable[dict[str, Any]]) -> dict[str, Any]:
    """Sum participation counts; derived figures are computed from the sums."""
    totals = {field: 0 for field in PARTICIPATION_COUNTS}
    for record in records:
        for field in PARTICIPATION_COUNTS:
            totals[field] += int(record.get(field) or 0)

    return {
        "total_inscrit": totals["nombre_inscrit"],
        "total_votant": totals["nombre_votant"],
        "total_bulletin_nul": totals["bulletin_nul"],
        "suffrage_exprime": totals["nombre_votant"] - totals["bulletin_nul"],
        "taux_participation": rate(totals["nombre_votant"], totals["nombre_inscrit"]),
    }


def rank_party_totals(rows: Iterable[tuple[int, int]]) -> tuple[list[dict[str, Any]], int]:
    """
    Group (party, votes) pairs by party and rank them.

    Sorting is strictly by descending votes; equal counts keep the order in
    which their party first appeared.
    """
    votes_by_party: dict[int, int] = {}
    for party_code, votes in rows:
        votes_by_party[party_code] = votes_by_party.get(party_code, 0) + int(votes)

    total = sum(votes_by_party.values())
    ranked = [
        {"code_parti": party, "nombre_vote": votes, "pourcentage": share(votes, total)}
        for party, votes in votes_by_party.items()
    ]
    ranked.sort(key=lambda r: r["nombre_vote"], reverse=True)
    return ranked, total


def rollup_department_votes(
    department_rows: Iterable[dict[str, Any]],
    station_rows: Iterable[dict[str, Any]],
) -> dict[int, dict[int, int]]:
    """
    Votes per department and party.

    A department with station-level results is tallied from those (they
    carry corrections); otherwise its department-level records are used.
    """
    from_stations: dict[int, dict[int, int]] = {}
    for row in station_rows:
        parties = from_stations.setdefault(row["code_departement"], {})
        parties[row["code_parti"]] = parties.get(row["code_parti"], 0) + int(row["nombre_vote"])

    tallies: dict[int, dict[int, int]] = {}
    for row in department_rows:
        department = row["code_departement"]
        if department in from_stations:
            tallies.setdefault(department, {})
            continue
        parties = tallies.setdefault(department, {})
        parties[row["code_parti"]] = parties.get(row["code_parti"], 0) + int(row["nombre_vote"])

    for department, parties in from_stations.items():
        tallies[department] = parties
    return tallies


def annotate_subtree(
    tree: list[dict[str, Any]],
    hierarchy: TerritorialHierarchy,
    document_counts: dict[int, int],
    participation_counts: dict[int, int],
) -> list[dict[str, Any]]:
    """Attach child, document and participation counts (whole subtree) to each node."""

    def annotate(entry: dict[str, Any]) -> None:
        below = hierarchy.get_descendants(entry["code"])
        entry["stats"] = {
            "children": len(hierarchy.get_children(entry["code"])),
            "documents": sum(document_counts.get(code, 0) for code in below),
            "participations": sum(participation_counts.get(code, 0) for code in below),
        }
        for child in entry.get("children", []):
            annotate(child)

    for root in tree:
        annotate(root)
    return tree


# ============================================
# QUERIES
# ============================================


def _require_department(hierarchy: TerritorialHierarchy, department_code: int):
    node = hierarchy.get_node(department_code)
    if node.kind != "department":
        raise InvalidPayload(f"Territorial node {department_code} is not a department")
    return node


async def aggregate_participation(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    department_code: int,
) -> dict[str, Any]:
    """
    Participation of a department from its polling stations.

    An arrondissement without any station snapshot contributes its own
    arrondissement-level record instead.
    """
    department = _require_department(hierarchy, department_code)
    station_codes = [
        node.code for node in hierarchy.descendants_of_kind(department_code, "polling_station")
    ]
    arrondissement_codes = [
        node.code for node in hierarchy.descendants_of_kind(department_code, "arrondissement")
    ]

    snapshots = [
        dict(row)
        for row in await conn.fetch(
            """
            SELECT code_bureau_vote, nombre_inscrit, nombre_votant, bulletin_nul
            FROM participation_bureau
            WHERE code_bureau_vote = ANY($1::int[])
            ORDER BY code_bureau_vote
            """,
            station_codes,
        )
    ]
    latest = await corrections_service.latest_corrections_for_stations(
        conn, "bureau", station_codes
    )
    stations = effective_station_participation(snapshots, latest)

    covered = {
        hierarchy.get_node(s["code_bureau_vote"]).parent_code for s in stations
    }
    arrondissement_rows = [
        dict(row)
        for row in await conn.fetch(
            """
            SELECT code_arrondissement, nombre_inscrit, nombre_votant, bulletin_nul
            FROM participation_arrondissement
            WHERE code_arrondissement = ANY($1::int[])
            ORDER BY code_arrondissement
            """,
            arrondissement_codes,
        )
    ]
    arrondissements = [r for r in arrondissement_rows if r["code_arrondissement"] not in covered]

    summary = sum_participation([*stations, *arrondissements])
    summary.update(
        {
            "code_departement": department.code,
            "libelle_departement": department.libelle,
            "bureaux_comptes": len(stations),
            "bureaux_corriges": sum(1 for s in stations if s["corrected"]),
            "arrondissements_comptes": len(arrondissements),
        }
    )
    return summary


async def effective_station_votes(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    station_codes: list[int],
) -> list[dict[str, Any]]:
    """Station/party vote counts with the latest candidate corrections applied."""
    rows = await conn.fetch(
        """
        SELECT code_bureau_vote, code_parti, nombre_vote
        FROM resultat_bureau
        WHERE code_bureau_vote = ANY($1::int[])
        ORDER BY id
        """,
        station_codes,
    )
    latest = await corrections_service.latest_corrections_for_stations(
        conn, "candidat", station_codes
    )

    effective: list[dict[str, Any]] = []
    seen: set[tuple[int, int]] = set()
    for row in rows:
        key = (row["code_bureau_vote"], row["code_parti"])
        seen.add(key)
        values = effective_value(dict(row), latest.get(key))
        values["corrected"] = key in latest
        effective.append(values)

    for key, entry in sorted(latest.items()):
        if key in seen:
            continue
        values = effective_value(None, entry)
        values.update({"code_bureau_vote": key[0], "code_parti": key[1], "corrected": True})
        effective.append(values)

    for values in effective:
        department = hierarchy.department_of(values["code_bureau_vote"])
        values["code_departement"] = department.code if department else None
    return effective


async def aggregate_results_department(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    department_code: int,
) -> dict[str, Any]:
    """Party tally of one department."""
    department = _require_department(hierarchy, department_code)
    station_codes = [
        node.code for node in hierarchy.descendants_of_kind(department_code, "polling_station")
    ]
    station_rows = await effective_station_votes(conn, hierarchy, station_codes)
    department_rows = [
        dict(row)
        for row in await conn.fetch(
            """
            SELECT code_departement, code_parti, nombre_vote
            FROM resultat_departement
            WHERE code_departement = $1
            ORDER BY id
            """,
            department_code,
        )
    ]

    tallies = rollup_department_votes(department_rows, station_rows)
    ranked, total = rank_party_totals(tallies.get(department_code, {}).items())
    return {
        "code_departement": department.code,
        "libelle_departement": department.libelle,
        "source": "bureaux" if station_rows else "departement",
        "total_votes": total,
        "results": ranked,
    }


async def aggregate_results_national(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    *,
    validation_status: int | None = None,
    include_party_details: bool = False,
) -> dict[str, Any]:
    """
    National tally by party.

    ``validation_status`` restricts the tally to departments whose
    department-level records carry that status.
    """
    query = "SELECT code_departement, code_parti, nombre_vote FROM resultat_departement"
    params: list[Any] = []
    if validation_status is not None:
        query += " WHERE validation_status = $1"
        params.append(validation_status)
    query += " ORDER BY id"
    department_rows = [dict(row) for row in await conn.fetch(query, *params)]

    station_codes = [node.code for node in hierarchy.nodes_of_kind("polling_station")]
    station_rows = await effective_station_votes(conn, hierarchy, station_codes)
    if validation_status is not None:
        allowed = {row["code_departement"] for row in department_rows}
        station_rows = [row for row in station_rows if row["code_departement"] in allowed]

    tallies = rollup_department_votes(department_rows, station_rows)

    pairs: list[tuple[int, int]] = []
    departments_per_party: dict[int, int] = {}
    for parties in tallies.values():
        for party, votes in parties.items():
            pairs.append((party, votes))
            departments_per_party[party] = departments_per_party.get(party, 0) + 1

    ranked, total = rank_party_totals(pairs)
    for entry in ranked:
        entry["nombre_departements"] = departments_per_party[entry["code_parti"]]
        entry["parti"] = None

    if include_party_details and ranked:
        parties = await conn.fetch(
            "SELECT code, libelle, abbreviation FROM partis_politiques WHERE code = ANY($1::int[])",
            [entry["code_parti"] for entry in ranked],
        )
        details = {row["code"]: dict(row) for row in parties}
        for entry in ranked:
            entry["parti"] = details.get(entry["code_parti"])

    return {
        "total_votes": total,
        "total_departements": len(hierarchy.nodes_of_kind("department")),
        "departements_comptes": len(tallies),
        "results": ranked,
        "metadata": {
            "validation_status": validation_status,
            "include_party_details": include_party_details,
            "generated_at": datetime.now(UTC).isoformat(),
        },
    }


async def hierarchy_stats(
    conn: asyncpg.Connection,
    hierarchy: TerritorialHierarchy,
    roots: list[int | None],
    depth: str | None = None,
) -> list[dict[str, Any]]:
    """
    Subtree listings of several roots annotated with document and
    participation counts. A None root lists every region. The counts are
    read once for all roots.
    """
    document_rows = await conn.fetch(
        "SELECT node_code, COUNT(*) AS total FROM documents GROUP BY node_code"
    )
    participation_rows = await conn.fetch(
        """
        SELECT code_departement AS node_code, COUNT(*) AS total
        FROM participation_departement GROUP BY code_departement
        UNION ALL
        SELECT code_arrondissement, COUNT(*) FROM participation_arrondissement
        GROUP BY code_arrondissement
        UNION ALL
        SELECT code_bureau_vote, COUNT(*) FROM participation_bureau
        GROUP BY code_bureau_vote
        """
    )

    participation_counts: dict[int, int] = {}
    for row in participation_rows:
        participation_counts[row["node_code"]] = (
            participation_counts.get(row["node_code"], 0) + row["total"]
        )

    document_counts = {row["node_code"]: row["total"] for row in document_rows}
    listing: list[dict[str, Any]] = []
    for root in roots:
        listing.extend(
            annotate_subtree(
                hierarchy.subtree(root, depth), hierarchy, document_counts, participation_counts
            )
        )
    return listing
