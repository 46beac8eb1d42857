"""Territorial hierarchy store.

Region -> Department -> Arrondissement -> Polling station. Reference data is
loaded once at startup and served read-only; every other table refers to a
node by its integer code.
"""

from collections.abc import Iterable
from typing import Any, Literal

import asyncpg
from pydantic import BaseModel, ConfigDict

from electoral.core.exceptions import InvalidPayload, NotFound
from electoral.core.logging_config import get_logger

logger = get_logger(__name__)

NodeKind = Literal["region", "department", "arrondissement", "polling_station"]

NODE_KINDS: tuple[str, ...] = ("region", "department", "arrondissement", "polling_station")

PARENT_KIND: dict[str, str | None] = {
    "region": None,
    "department": "region",
    "arrondissement": "department",
    "polling_station": "arrondissement",
}


class TerritorialNode(BaseModel):
    """One node of the territorial tree."""

    model_config = ConfigDict(frozen=True)

    code: int
    kind: NodeKind
    libelle: str
    parent_code: int | None = None
    abbreviation: str | None = None


class TerritorialHierarchy:
    """In-memory, read-only view of the territorial tree."""

    def __init__(self, nodes: Iterable[TerritorialNode]):
        self._nodes: dict[int, TerritorialNode] = {}
        self._children: dict[int, list[int]] = {}
        self._descendants: dict[int, frozenset[int]] = {}

        for node in nodes:
            if node.code in self._nodes:
                raise InvalidPayload(f"Duplicate territorial code {node.code}")
            self._nodes[node.code] = node
            self._children[node.code] = []

        for node in self._nodes.values():
            expected_parent_kind = PARENT_KIND[node.kind]
            if expected_parent_kind is None:
                if node.parent_code is not None:
                    raise InvalidPayload(f"Region {node.code} cannot have a parent")
                continue

            parent = self._nodes.get(node.parent_code) if node.parent_code is not None else None
            if parent is None:
                raise InvalidPayload(
                    f"{node.kind} {node.code} references missing parent {node.parent_code}"
                )
            if parent.kind != expected_parent_kind:
                raise InvalidPayload(
                    f"{node.kind} {node.code} must sit under a {expected_parent_kind}, "
                    f"not a {parent.kind}"
                )
            self._children[parent.code].append(node.code)

    @classmethod
    def from_rows(cls, rows: Iterable[Any]) -> "TerritorialHierarchy":
        """Build the tree from database rows or plain dicts."""
        return cls(
            TerritorialNode(
                code=row["code"],
                kind=row["kind"],
                libelle=row["libelle"],
                parent_code=row["parent_code"],
                abbreviation=row.get("abbreviation"),
            )
            for row in rows
        )

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, code: object) -> bool:
        return code in self._nodes

    def get_node(self, code: int) -> TerritorialNode:
        node = self._nodes.get(code)
        if node is None:
            raise NotFound(f"Territorial node {code} not found")
        return node

    def get_parent_chain(self, code: int) -> list[TerritorialNode]:
        """Return the node followed by its ancestors, ending at the region."""
        chain = [self.get_node(code)]
        while chain[-1].parent_code is not None:
            chain.append(self._nodes[chain[-1].parent_code])
        return chain

    def get_children(self, code: int) -> list[TerritorialNode]:
        self.get_node(code)
        return [self._nodes[child] for child in self._children[code]]

    def get_descendants(self, code: int) -> frozenset[int]:
        """Codes at and below ``code``."""
        self.get_node(code)
        cached = self._descendants.get(code)
        if cached is not None:
            return cached

        found: set[int] = set()
        stack = [code]
        while stack:
            current = stack.pop()
            found.add(current)
            stack.extend(self._children[current])

        result = frozenset(found)
        self._descendants[code] = result
        return result

    def is_descendant(self, code: int, ancestor_code: int) -> bool:
        """True when ``code`` is ``ancestor_code`` or sits below it."""
        return code in self.get_descendants(ancestor_code)

    def ancestor_of_kind(self, code: int, kind: str) -> TerritorialNode | None:
        for node in self.get_parent_chain(code):
            if node.kind == kind:
                return node
        return None

    def department_of(self, code: int) -> TerritorialNode | None:
        """The department owning ``code`` (itself if it is one), None for regions."""
        return self.ancestor_of_kind(code, "department")

    def nodes_of_kind(self, kind: str) -> list[TerritorialNode]:
        return [node for node in self._nodes.values() if node.kind == kind]

    def descendants_of_kind(self, code: int, kind: str) -> list[TerritorialNode]:
        return [
            self._nodes[c]
            for c in sorted(self.get_descendants(code))
            if self._nodes[c].kind == kind
        ]

    def ancestry_labels(self, code: int) -> dict[str, dict[str, Any]]:
        """Labels of the node and its ancestors keyed by kind, for display."""
        return {
            node.kind: {"code": node.code, "libelle": node.libelle}
            for node in self.get_parent_chain(code)
        }

    def subtree(self, code: int | None = None, depth: str | None = None) -> list[dict[str, Any]]:
        """
        Nested listing of the tree below ``code`` (all regions when None),
        stopping at nodes of kind ``depth``.
        """
        if depth is not None and depth not in NODE_KINDS:
            raise InvalidPayload(f"Unknown territorial level: {depth}")

        roots = [self.get_node(code)] if code is not None else self.nodes_of_kind("region")
        max_level = NODE_KINDS.index(depth) if depth else len(NODE_KINDS) - 1

        def build(node: TerritorialNode) -> dict[str, Any]:
            entry: dict[str, Any] = node.model_dump()
            if NODE_KINDS.index(node.kind) < max_level:
                entry["children"] = [
                    build(self._nodes[child]) for child in self._children[node.code]
                ]
            return entry

        return [build(root) for root in roots]


# ============================================
# LOADING AND CACHE
# ============================================

_hierarchy: TerritorialHierarchy | None = None


async def load_hierarchy(conn: asyncpg.Connection) -> TerritorialHierarchy:
    """Read every territorial node and build the in-memory tree."""
    rows = await conn.fetch(
        """
        SELECT code, kind, libelle, parent_code, abbreviation
        FROM territorial_nodes
        ORDER BY code
        """
    )
    hierarchy = TerritorialHierarchy.from_rows(rows)
    logger.info(f"Territorial hierarchy loaded: {len(hierarchy)} nodes")
    return hierarchy


def set_hierarchy(hierarchy: TerritorialHierarchy | None) -> None:
    global _hierarchy
    _hierarchy = hierarchy


def get_hierarchy() -> TerritorialHierarchy:
    """FastAPI dependency returning the cached hierarchy."""
    if _hierarchy is None:
        raise RuntimeError("Territorial hierarchy not loaded. Call load_hierarchy() first.")
    return _hierarchy
