"""
Traceability Matrix Builder — joins requirements with stakeholders, tasks,
meetings and test cases into flat rows for reporting and export.
Read-only.
"""

from __future__ import annotations

import logging

from req_traceability.errors import ProjectNotFoundError
from req_traceability.models.schemas import (
    CoverageSummary,
    MatrixMeeting,
    MatrixRow,
    MatrixStakeholder,
    MatrixTask,
    MatrixTestCase,
    Requirement,
)
from req_traceability.persistence.requirement_repository import RequirementRepository

logger = logging.getLogger(__name__)


class TraceabilityMatrixBuilder:
    """Build the traceability matrix and coverage summary of a project."""

    def __init__(self, repository: RequirementRepository):
        self.repo = repository

    def build_matrix(self, project_id: str) -> list[MatrixRow]:
        if self.repo.get_project(project_id) is None:
            raise ProjectNotFoundError(project_id)

        rows = [self._row(r) for r in self.repo.list_requirements(project_id)]
        logger.info(f"Built traceability matrix for {project_id}: {len(rows)} rows")
        return rows

    def coverage_summary(self, project_id: str) -> CoverageSummary:
        """A requirement is covered when it has both a task and a test case."""
        matrix = self.build_matrix(project_id)
        total = len(matrix)
        covered = sum(1 for m in matrix if m.tasks and m.test_cases)
        partial = sum(1 for m in matrix if m.tasks or m.test_cases)
        return CoverageSummary(
            total_requirements=total,
            covered_requirements=covered,
            partial_coverage=partial,
            no_coverage=total - partial,
            coverage_percentage=round(covered * 100 / total) if total else 0,
        )

    # ── Joins ────────────────────────────────────────────

    def _user_name(self, user_id: str | None) -> str | None:
        if not user_id:
            return None
        user = self.repo.get_user(user_id)
        return user.name if user else None

    def _row(self, req: Requirement) -> MatrixRow:
        stakeholders = []
        for link in self.repo.list_stakeholder_links(req.id):
            stakeholder = self.repo.get_stakeholder(link.stakeholder_id)
            if stakeholder is not None:
                stakeholders.append(
                    MatrixStakeholder(id=stakeholder.id, name=stakeholder.name, role=link.role)
                )

        tasks = []
        for link in self.repo.list_task_links(req.id):
            task = self.repo.get_task(link.task_id)
            if task is not None:
                tasks.append(
                    MatrixTask(
                        id=task.id,
                        title=task.title,
                        status=task.status,
                        assignee=self._user_name(task.assignee_id),
                    )
                )

        meetings = []
        for link in self.repo.list_meeting_links(req.id):
            meeting = self.repo.get_meeting(link.meeting_id)
            if meeting is not None:
                meetings.append(
                    MatrixMeeting(id=meeting.id, title=meeting.title, date=meeting.meeting_date)
                )

        test_cases = [
            MatrixTestCase(id=tc.test_case_id, name=tc.test_case_name, status=tc.status)
            for tc in self.repo.list_test_case_links(req.id)
        ]

        return MatrixRow(
            id=req.id,
            requirement_id=req.requirement_id,
            title=req.title,
            type=req.type,
            status=req.status,
            priority=req.priority,
            owner=self._user_name(req.owner_id) or "",
            stakeholders=stakeholders,
            tasks=tasks,
            meetings=meetings,
            test_cases=test_cases,
        )
