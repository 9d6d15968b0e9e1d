"""
Requirement Service — single-record operations on requirements.

Create, update (optimistic concurrency on `version`), delete, baseline,
the task / test case / stakeholder / meeting links, and comments.
Authorization is the caller's job; every method trusts the `actor` it is given.
"""

from __future__ import annotations

import logging
from typing import Iterable

from req_traceability.errors import (
    InvalidCommentError,
    InvalidParentError,
    LinkError,
    NoChangesDetected,
    ProjectNotFoundError,
    RequirementNotFoundError,
    VersionConflictError,
)
from req_traceability.models.enums import CaseStatus, StakeholderRole
from req_traceability.models.schemas import (
    HistoryEntry,
    MeetingLink,
    Project,
    Requirement,
    RequirementComment,
    RequirementCreate,
    RequirementNode,
    RequirementUpdate,
    StakeholderLink,
    TaskLink,
    TestCaseLink,
    utcnow,
)
from req_traceability.persistence.requirement_repository import RequirementRepository
from req_traceability.services.hierarchy import build_tree, would_create_cycle
from req_traceability.services.history import HistoryRecorder
from req_traceability.services.id_allocator import IdentifierAllocator

logger = logging.getLogger(__name__)


class RequirementService:
    """Direct (non-import) requirement operations."""

    def __init__(
        self,
        repository: RequirementRepository,
        allocator: IdentifierAllocator | None = None,
        recorder: HistoryRecorder | None = None,
    ):
        self.repo = repository
        self.allocator = allocator or IdentifierAllocator(repository)
        self.recorder = recorder or HistoryRecorder()

    # ── Lookups ──────────────────────────────────────────

    def require_project(self, project_id: str) -> Project:
        project = self.repo.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def get_requirement(self, key: str) -> Requirement:
        requirement = self.repo.get_requirement(key)
        if requirement is None:
            raise RequirementNotFoundError(key)
        return requirement

    def list_requirements(
        self,
        project_id: str,
        status: str | None = None,
        priority: str | None = None,
        type: str | None = None,
    ) -> list[Requirement]:
        return self.repo.list_requirements(project_id, status=status, priority=priority, type=type)

    def get_history(self, key: str) -> list[HistoryEntry]:
        self.get_requirement(key)
        return self.repo.list_history(key)

    def get_hierarchy(self, project_id: str) -> list[RequirementNode]:
        self.require_project(project_id)
        return build_tree(self.repo.list_requirements(project_id))

    # ── Create ───────────────────────────────────────────

    def create_requirement(
        self,
        project_id: str,
        data: RequirementCreate,
        actor: str,
        stakeholder_ids: Iterable[str] = (),
        imported: bool = False,
    ) -> Requirement:
        """Allocate an id, store the requirement with its CREATED entry, link stakeholders."""
        self.require_project(project_id)
        if data.parent_id:
            self._check_parent(project_id, None, data.parent_id)
        stakeholder_ids = list(dict.fromkeys(stakeholder_ids))
        missing = [s for s in stakeholder_ids if self.repo.get_stakeholder(s) is None]
        if missing:
            raise LinkError(f"Stakeholder not found: {', '.join(missing)}")

        draft = Requirement(project_id=project_id, owner_id=actor, **data.model_dump())
        entry = self.recorder.record_creation(draft, actor, imported=imported)
        result = self.allocator.allocate(project_id, draft, entry)
        requirement = result.requirement

        for stakeholder_id in stakeholder_ids:
            self.link_stakeholder(requirement.id, stakeholder_id)

        logger.info(
            f"Created {requirement.requirement_id} '{requirement.title}'"
            + (" (fallback id)" if result.used_fallback else "")
        )
        return requirement

    # ── Update ───────────────────────────────────────────

    def update_requirement(
        self, key: str, update: RequirementUpdate, actor: str
    ) -> tuple[Requirement, HistoryEntry]:
        """
        Apply `update` if it was based on the stored version.
        Raises VersionConflictError, NoChangesDetected or InvalidParentError.
        """
        current = self.get_requirement(key)
        if update.expected_version != current.version:
            raise VersionConflictError(key, update.expected_version, current.version)

        fields = update.proposed_fields()
        if fields.get("parent_id"):
            self._check_parent(current.project_id, current.id, fields["parent_id"])

        try:
            entry, updated = self.recorder.record_change(current, update, actor)
        except NoChangesDetected:
            logger.info(f"No changes detected for {current.requirement_id}; update rejected")
            raise

        if not self.repo.commit_update(updated, current.version, entry):
            latest = self.get_requirement(key)
            raise VersionConflictError(key, update.expected_version, latest.version)

        logger.info(
            f"Updated {updated.requirement_id} to v{updated.version} ({entry.action.value})"
        )
        return updated, entry

    def _check_parent(self, project_id: str, key: str | None, parent_key: str) -> None:
        parent = self.repo.get_requirement(parent_key)
        if parent is None:
            raise InvalidParentError(f"Parent requirement not found: {parent_key}")
        if parent.project_id != project_id:
            raise InvalidParentError("Parent requirement must be in the same project")
        if key is None:
            return
        parent_of = {r.id: r.parent_id for r in self.repo.list_requirements(project_id)}
        if would_create_cycle(key, parent_key, parent_of):
            raise InvalidParentError("A requirement cannot be its own ancestor")

    # ── Delete / baseline ────────────────────────────────

    def delete_requirement(self, key: str) -> None:
        if not self.repo.delete_requirement(key):
            raise RequirementNotFoundError(key)
        logger.info(f"Deleted requirement {key}")

    def baseline_requirement(self, key: str, actor: str) -> Requirement:
        current = self.get_requirement(key)
        entry, updated = self.recorder.record_baseline(current, actor)
        if not self.repo.commit_update(updated, current.version, entry):
            latest = self.get_requirement(key)
            raise VersionConflictError(key, current.version, latest.version)
        logger.info(f"Baselined {updated.requirement_id} at v{updated.baseline_version}")
        return updated

    # ── Links ────────────────────────────────────────────

    def link_task(self, key: str, task_id: str, actor: str) -> TaskLink:
        requirement = self.get_requirement(key)
        task = self.repo.get_task(task_id)
        if task is None:
            raise LinkError(f"Task not found: {task_id}")
        if task.project_id != requirement.project_id:
            raise LinkError("Requirement and task must be in the same project")
        if self.repo.find_task_link(key, task_id):
            raise LinkError("This requirement is already linked to this task")

        link = self.repo.add_task_link(TaskLink(requirement_id=key, task_id=task_id))
        self.repo.append_history(self.recorder.record_task_link(requirement, task, actor))
        return link

    def link_test_case(
        self, key: str, test_case_id: str, test_case_name: str, actor: str
    ) -> TestCaseLink:
        requirement = self.get_requirement(key)
        if self.repo.find_test_case_link(key, test_case_id):
            raise LinkError("This test case is already linked to this requirement")

        link = self.repo.add_test_case_link(
            TestCaseLink(requirement_id=key, test_case_id=test_case_id, test_case_name=test_case_name)
        )
        self.repo.append_history(
            self.recorder.record_test_case_link(requirement, test_case_id, test_case_name, actor)
        )
        return link

    def update_test_case_status(
        self, key: str, test_case_id: str, status: CaseStatus
    ) -> TestCaseLink:
        link = self.repo.find_test_case_link(key, test_case_id)
        if link is None:
            raise LinkError(f"Test case {test_case_id} is not linked to requirement {key}")
        link.status = CaseStatus(status)
        link.last_tested_at = utcnow()
        return self.repo.save_test_case_link(link)

    def link_stakeholder(
        self,
        key: str,
        stakeholder_id: str,
        role: StakeholderRole = StakeholderRole.REVIEWER,
    ) -> StakeholderLink:
        self.get_requirement(key)
        if self.repo.get_stakeholder(stakeholder_id) is None:
            raise LinkError(f"Stakeholder not found: {stakeholder_id}")
        if any(l.stakeholder_id == stakeholder_id for l in self.repo.list_stakeholder_links(key)):
            raise LinkError("This stakeholder is already linked to this requirement")
        return self.repo.add_stakeholder_link(
            StakeholderLink(requirement_id=key, stakeholder_id=stakeholder_id, role=role)
        )

    def link_meeting(self, key: str, meeting_id: str) -> MeetingLink:
        requirement = self.get_requirement(key)
        meeting = self.repo.get_meeting(meeting_id)
        if meeting is None:
            raise LinkError(f"Meeting not found: {meeting_id}")
        if meeting.project_id != requirement.project_id:
            raise LinkError("Requirement and meeting must be in the same project")
        if any(l.meeting_id == meeting_id for l in self.repo.list_meeting_links(key)):
            raise LinkError("This meeting is already linked to this requirement")
        return self.repo.add_meeting_link(MeetingLink(requirement_id=key, meeting_id=meeting_id))

    # ── Comments ─────────────────────────────────────────

    def add_comment(self, key: str, content: str, actor: str) -> RequirementComment:
        self.get_requirement(key)
        if not content or not content.strip():
            raise InvalidCommentError("Comment content is required")
        comment = self.repo.add_comment(
            RequirementComment(requirement_id=key, user_id=actor, content=content)
        )
        logger.info(f"Comment added to {key} by {actor}")
        return comment

    def list_comments(self, key: str) -> list[RequirementComment]:
        self.get_requirement(key)
        return self.repo.list_comments(key)
