"""
Hierarchy Reconstructor — rebuilds parent/child links from outline rows.

A single left-to-right pass keeps, per (group_key, level), the last row
seen.  A row at level L > 0 takes the remembered row at level L-1 of its
own group as parent; when there is none it stays a root (orphan).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable

from req_traceability.models.schemas import Requirement, RequirementNode, RequirementRow

logger = logging.getLogger(__name__)


class HierarchyReconstructor:
    """Annotate rows with parent_sequence_id in O(n)."""

    def reconstruct(self, rows: Iterable[RequirementRow]) -> list[RequirementRow]:
        last_seen: dict[tuple[str, int], RequirementRow] = {}
        annotated: list[RequirementRow] = []
        orphans = 0

        for row in rows:
            out = row.model_copy(update={"parent_sequence_id": None})
            level = row.level or 0
            group = row.group_key or ""

            if level > 0:
                parent = last_seen.get((group, level - 1))
                if parent is not None:
                    out.parent_sequence_id = parent.sequence_id
                else:
                    orphans += 1
                    logger.debug(
                        f"Row {row.row_number} ('{row.sequence_id}') has no level "
                        f"{level - 1} row in group '{group}'; kept as root"
                    )

            # Rows without an SN cannot be referenced, so they never become parents
            if row.sequence_id:
                last_seen[(group, level)] = out
            annotated.append(out)

        logger.info(f"Reconstructed hierarchy for {len(annotated)} rows ({orphans} orphans)")
        return annotated


def build_tree(requirements: Iterable[Requirement]) -> list[RequirementNode]:
    """
    Nest requirements under their parents. Input order is kept among
    siblings. A requirement whose parent is not in the input is a root.
    """
    reqs = list(requirements)
    nodes = {r.id: RequirementNode(requirement=r) for r in reqs}
    children: dict[str, list[RequirementNode]] = defaultdict(list)
    roots: list[RequirementNode] = []

    for r in reqs:
        if r.parent_id and r.parent_id in nodes:
            children[r.parent_id].append(nodes[r.id])
        else:
            roots.append(nodes[r.id])

    for key, node in nodes.items():
        node.children = children.get(key, [])
    return roots


def would_create_cycle(
    requirement_key: str,
    new_parent_key: str,
    parent_of: dict[str, str | None],
) -> bool:
    """True if making new_parent_key the parent of requirement_key closes a loop."""
    seen: set[str] = set()
    current: str | None = new_parent_key
    while current is not None:
        if current == requirement_key:
            return True
        if current in seen:
            # pre-existing loop that does not involve this requirement
            return False
        seen.add(current)
        current = parent_of.get(current)
    return False
