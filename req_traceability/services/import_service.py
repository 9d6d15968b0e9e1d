"""
Import Orchestrator — batch import of canonical requirement rows.

Phases:
  1. Pre-validation   — every row checked, nothing written; any error
                        rejects the whole batch (ImportValidationError).
  2. Creation pass    — rows persisted one by one; a failing row is
                        counted and reported, the loop continues.
  3. Linking pass     — parent links resolved through the sequence-id
                        arena built in pass 2; unresolved parents leave
                        the child as a root.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Sequence

from req_traceability.errors import (
    ImportValidationError,
    ParentResolutionFailure,
    TraceabilityError,
)
from req_traceability.models.enums import Priority, RequirementStatus, RequirementType, RowLayout
from req_traceability.models.schemas import (
    ImportResult,
    Requirement,
    RequirementCreate,
    RequirementRow,
)
from req_traceability.persistence.requirement_repository import RequirementRepository
from req_traceability.services.hierarchy import HierarchyReconstructor, would_create_cycle
from req_traceability.services.requirement_service import RequirementService
from req_traceability.services.row_normalizer import RowNormalizer
from req_traceability.services.spreadsheet_reader import read_requirement_rows

logger = logging.getLogger(__name__)

_VALID_TYPES = [t.value for t in RequirementType]
_VALID_STATUSES = [s.value for s in RequirementStatus]
_VALID_PRIORITIES = [p.value for p in Priority]


class _SequenceArena:
    """
    Requirements created during one import, indexed by row position and SN.

    A parent reference resolves to the latest row with that SN that comes
    before the child, matching how the outline was reconstructed. A repeated
    SN therefore never resolves to the child itself.
    """

    def __init__(self):
        self._by_position: dict[int, Requirement] = {}
        self._by_sn: dict[str, list[tuple[int, Requirement]]] = {}

    def register(self, position: int, sequence_id: str | None, requirement: Requirement) -> None:
        self._by_position[position] = requirement
        if not sequence_id:
            return
        if sequence_id in self._by_sn:
            logger.warning(f"Duplicate SN '{sequence_id}' in import; later rows resolve to the latest")
        self._by_sn.setdefault(sequence_id, []).append((position, requirement))

    def at(self, position: int) -> Requirement | None:
        return self._by_position.get(position)

    def resolve_before(self, sequence_id: str | None, position: int) -> Requirement | None:
        if not sequence_id:
            return None
        earlier = [req for pos, req in self._by_sn.get(sequence_id, []) if pos < position]
        return earlier[-1] if earlier else None


class ImportOrchestrator:
    """Validate, persist and link a batch of RequirementRows for one project."""

    def __init__(
        self,
        repository: RequirementRepository,
        service: RequirementService | None = None,
        normalizer: RowNormalizer | None = None,
        reconstructor: HierarchyReconstructor | None = None,
    ):
        self.repo = repository
        self.service = service or RequirementService(repository)
        self.normalizer = normalizer or RowNormalizer()
        self.reconstructor = reconstructor or HierarchyReconstructor()

    # ── Phase 1: pre-validation ──────────────────────────

    @staticmethod
    def validate(rows: Sequence[RequirementRow]) -> list[str]:
        """Return every rule violation as "Row N: ..."; empty means valid."""
        errors: list[str] = []
        for index, row in enumerate(rows):
            row_num = row.row_number or index + 2  # account for header row

            if not row.title or not row.title.strip():
                errors.append(f"Row {row_num}: Requirement title is required")

            if row.type and row.type not in _VALID_TYPES:
                errors.append(
                    f"Row {row_num}: Invalid type '{row.type}'. "
                    f"Must be one of: {', '.join(_VALID_TYPES)}"
                )
            if row.status and row.status not in _VALID_STATUSES:
                errors.append(
                    f"Row {row_num}: Invalid status '{row.status}'. "
                    f"Must be one of: {', '.join(_VALID_STATUSES)}"
                )
            if row.priority and row.priority not in _VALID_PRIORITIES:
                errors.append(
                    f"Row {row_num}: Invalid priority '{row.priority}'. "
                    f"Must be one of: {', '.join(_VALID_PRIORITIES)}"
                )

            if row.estimated_effort is not None and row.estimated_effort < 0:
                errors.append(f"Row {row_num}: Estimated effort must be a positive number")
            if row.actual_effort is not None and row.actual_effort < 0:
                errors.append(f"Row {row_num}: Actual effort must be a positive number")
        return errors

    # ── Entry points ─────────────────────────────────────

    def import_rows(
        self, rows: Sequence[RequirementRow], project_id: str, actor: str
    ) -> ImportResult:
        """
        Import canonical rows into `project_id`.
        Raises ProjectNotFoundError or ImportValidationError before any write.
        """
        self.service.require_project(project_id)

        errors = self.validate(rows)
        if errors:
            logger.warning(f"Import rejected: {len(errors)} validation errors")
            raise ImportValidationError(errors)

        result = ImportResult()
        arena = _SequenceArena()

        # ── Phase 2: creation ────────────────────────────
        for position, row in enumerate(rows):
            try:
                requirement = self.service.create_requirement(
                    project_id, self._to_create(row), actor, imported=True
                )
            except Exception as e:
                result.failed_count += 1
                result.errors.append(f"Failed to import '{row.title}': {e}")
                logger.warning(f"Row {row.row_number} failed to import: {e}")
                continue

            arena.register(position, row.sequence_id, requirement)
            result.success_count += 1

        # ── Phase 3: parent linking ──────────────────────
        linked = self._link_parents(rows, arena)

        logger.info(
            f"Import into {project_id} finished: {result.success_count} imported, "
            f"{result.failed_count} failed, {linked} parent links"
        )
        return result

    def import_workbook(
        self,
        source: str | Path | bytes | BinaryIO,
        project_id: str,
        actor: str,
        expected_layout: RowLayout | None = None,
    ) -> ImportResult:
        """Read a workbook, normalize, rebuild the outline, and import it."""
        raw_rows = read_requirement_rows(source)
        rows = self.normalizer.normalize(raw_rows, expected_layout=expected_layout)
        if any(r.sequence_id for r in rows):
            rows = self.reconstructor.reconstruct(rows)
        return self.import_rows(rows, project_id, actor)

    # ── Helpers ──────────────────────────────────────────

    def _link_parents(self, rows: Sequence[RequirementRow], arena: _SequenceArena) -> int:
        linked = 0
        parent_of: dict[str, str | None] = {}
        for position, row in enumerate(rows):
            if not (row.parent_sequence_id and row.sequence_id):
                continue
            child = arena.at(position)
            if child is None:
                continue  # the child itself failed and is already reported
            parent = arena.resolve_before(row.parent_sequence_id, position)
            if parent is None:
                failure = ParentResolutionFailure(row.sequence_id, row.parent_sequence_id)
                logger.warning(f"{failure}; '{row.title}' kept as a root requirement")
                continue
            if child.id == parent.id or would_create_cycle(child.id, parent.id, parent_of):
                logger.warning(
                    f"Parent '{row.parent_sequence_id}' of row '{row.sequence_id}' would make "
                    f"it its own ancestor; '{row.title}' kept as a root requirement"
                )
                continue
            try:
                self.repo.assign_parent(child.id, parent.id)
                parent_of[child.id] = parent.id
                linked += 1
            except TraceabilityError as e:
                logger.warning(f"Could not link '{row.title}' to parent: {e}")
        return linked

    @staticmethod
    def _to_create(row: RequirementRow) -> RequirementCreate:
        return RequirementCreate(
            title=row.title.strip(),
            description=row.description,
            acceptance_criteria=row.acceptance_criteria,
            tags=row.tags,
            type=row.type or RequirementType.FUNCTIONAL,
            status=row.status or RequirementStatus.DRAFT,
            priority=row.priority or Priority.MEDIUM,
            source=row.source,
            estimated_effort=row.estimated_effort,
            actual_effort=row.actual_effort,
            epic=row.epic,
        )
