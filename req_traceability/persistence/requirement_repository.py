"""
Requirement Repository — the persistence capability every service receives.

The repository is the only shared mutable resource.  It owns the opaque
requirement keys, enforces requirement_id uniqueness, and commits a
requirement change together with its history entry.

InMemoryRequirementRepository is the default (mock mode) backend and the
one the tests run against; MongoRequirementRepository lives in
mongo_repository.py.
"""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel

from req_traceability.errors import IdentifierCollisionError
from req_traceability.models.schemas import (
    HistoryEntry,
    Meeting,
    MeetingLink,
    Project,
    Requirement,
    RequirementComment,
    Stakeholder,
    StakeholderLink,
    Task,
    TaskLink,
    TestCaseLink,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)


class InsertOutcome(BaseModel):
    """Result of an insert: either the stored record or a typed conflict."""
    requirement: Optional[Requirement] = None
    conflict: Optional[IdentifierCollisionError] = None

    model_config = {"arbitrary_types_allowed": True}

    @property
    def ok(self) -> bool:
        return self.conflict is None and self.requirement is not None


class RequirementRepository(ABC):
    """Abstract persistence interface for requirements and their links."""

    # ── Collaborator records ─────────────────────────────

    @abstractmethod
    def save_project(self, project: Project) -> Project: ...

    @abstractmethod
    def get_project(self, project_id: str) -> Project | None: ...

    @abstractmethod
    def save_user(self, user: User) -> User: ...

    @abstractmethod
    def get_user(self, user_id: str) -> User | None: ...

    @abstractmethod
    def save_stakeholder(self, stakeholder: Stakeholder) -> Stakeholder: ...

    @abstractmethod
    def get_stakeholder(self, stakeholder_id: str) -> Stakeholder | None: ...

    @abstractmethod
    def save_task(self, task: Task) -> Task: ...

    @abstractmethod
    def get_task(self, task_id: str) -> Task | None: ...

    @abstractmethod
    def save_meeting(self, meeting: Meeting) -> Meeting: ...

    @abstractmethod
    def get_meeting(self, meeting_id: str) -> Meeting | None: ...

    # ── Requirements ─────────────────────────────────────

    @abstractmethod
    def insert_requirement(
        self, requirement: Requirement, initial_entry: HistoryEntry
    ) -> InsertOutcome:
        """
        Store a new requirement and its first history entry.
        A taken requirement_id yields a conflict outcome, not an exception.
        """

    @abstractmethod
    def requirement_id_exists(self, requirement_id: str) -> bool: ...

    @abstractmethod
    def count_requirements(self, project_id: str) -> int: ...

    @abstractmethod
    def get_requirement(self, key: str) -> Requirement | None: ...

    @abstractmethod
    def list_requirements(
        self,
        project_id: str,
        status: str | None = None,
        priority: str | None = None,
        type: str | None = None,
    ) -> list[Requirement]:
        """Requirements of a project, oldest first."""

    @abstractmethod
    def commit_update(
        self, requirement: Requirement, expected_version: int, entry: HistoryEntry
    ) -> bool:
        """
        Replace the stored requirement and append `entry`, but only if the
        stored version still equals `expected_version`. Returns False when
        the compare-and-swap loses.
        """

    @abstractmethod
    def assign_parent(self, key: str, parent_key: str | None) -> None:
        """Set parent_id without a version bump (import linking pass)."""

    @abstractmethod
    def delete_requirement(self, key: str) -> bool:
        """Delete a requirement with its history and link rows."""

    # ── History ──────────────────────────────────────────

    @abstractmethod
    def append_history(self, entry: HistoryEntry) -> HistoryEntry: ...

    @abstractmethod
    def list_history(self, key: str) -> list[HistoryEntry]: ...

    # ── Links ────────────────────────────────────────────

    @abstractmethod
    def add_stakeholder_link(self, link: StakeholderLink) -> StakeholderLink: ...

    @abstractmethod
    def list_stakeholder_links(self, key: str) -> list[StakeholderLink]: ...

    @abstractmethod
    def add_task_link(self, link: TaskLink) -> TaskLink: ...

    @abstractmethod
    def list_task_links(self, key: str) -> list[TaskLink]: ...

    @abstractmethod
    def add_meeting_link(self, link: MeetingLink) -> MeetingLink: ...

    @abstractmethod
    def list_meeting_links(self, key: str) -> list[MeetingLink]: ...

    @abstractmethod
    def add_test_case_link(self, link: TestCaseLink) -> TestCaseLink: ...

    @abstractmethod
    def save_test_case_link(self, link: TestCaseLink) -> TestCaseLink: ...

    @abstractmethod
    def list_test_case_links(self, key: str) -> list[TestCaseLink]: ...

    # ── Comments ─────────────────────────────────────────

    @abstractmethod
    def add_comment(self, comment: RequirementComment) -> RequirementComment: ...

    @abstractmethod
    def list_comments(self, key: str) -> list[RequirementComment]:
        """Comments on a requirement, newest first."""

    # ── Helpers shared by backends ───────────────────────

    def find_task_link(self, key: str, task_id: str) -> TaskLink | None:
        return next((l for l in self.list_task_links(key) if l.task_id == task_id), None)

    def find_test_case_link(self, key: str, test_case_id: str) -> TestCaseLink | None:
        return next(
            (l for l in self.list_test_case_links(key) if l.test_case_id == test_case_id),
            None,
        )


class InMemoryRequirementRepository(RequirementRepository):
    """
    Dict-backed repository. A single lock makes insert-with-uniqueness and
    compare-and-swap atomic, standing in for the database's unique index.
    Records are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._projects: dict[str, Project] = {}
        self._users: dict[str, User] = {}
        self._stakeholders: dict[str, Stakeholder] = {}
        self._tasks: dict[str, Task] = {}
        self._meetings: dict[str, Meeting] = {}
        self._requirements: dict[str, Requirement] = {}
        self._requirement_ids: set[str] = set()
        self._history: dict[str, list[HistoryEntry]] = {}
        self._stakeholder_links: list[StakeholderLink] = []
        self._task_links: list[TaskLink] = []
        self._meeting_links: list[MeetingLink] = []
        self._test_case_links: list[TestCaseLink] = []
        self._comments: list[RequirementComment] = []

    # ── Collaborator records ─────────────────────────────

    def save_project(self, project: Project) -> Project:
        with self._lock:
            self._projects[project.id] = project.model_copy(deep=True)
        return project

    def get_project(self, project_id: str) -> Project | None:
        found = self._projects.get(project_id)
        return found.model_copy(deep=True) if found else None

    def save_user(self, user: User) -> User:
        with self._lock:
            self._users[user.id] = user.model_copy(deep=True)
        return user

    def get_user(self, user_id: str) -> User | None:
        found = self._users.get(user_id)
        return found.model_copy(deep=True) if found else None

    def save_stakeholder(self, stakeholder: Stakeholder) -> Stakeholder:
        with self._lock:
            self._stakeholders[stakeholder.id] = stakeholder.model_copy(deep=True)
        return stakeholder

    def get_stakeholder(self, stakeholder_id: str) -> Stakeholder | None:
        found = self._stakeholders.get(stakeholder_id)
        return found.model_copy(deep=True) if found else None

    def save_task(self, task: Task) -> Task:
        with self._lock:
            self._tasks[task.id] = task.model_copy(deep=True)
        return task

    def get_task(self, task_id: str) -> Task | None:
        found = self._tasks.get(task_id)
        return found.model_copy(deep=True) if found else None

    def save_meeting(self, meeting: Meeting) -> Meeting:
        with self._lock:
            self._meetings[meeting.id] = meeting.model_copy(deep=True)
        return meeting

    def get_meeting(self, meeting_id: str) -> Meeting | None:
        found = self._meetings.get(meeting_id)
        return found.model_copy(deep=True) if found else None

    # ── Requirements ─────────────────────────────────────

    def insert_requirement(
        self, requirement: Requirement, initial_entry: HistoryEntry
    ) -> InsertOutcome:
        with self._lock:
            if requirement.requirement_id in self._requirement_ids:
                logger.debug(f"Insert conflict on {requirement.requirement_id}")
                return InsertOutcome(
                    conflict=IdentifierCollisionError(requirement.requirement_id)
                )
            stored = requirement.model_copy(deep=True)
            stored.id = stored.id or str(uuid.uuid4())
            entry = initial_entry.model_copy(deep=True)
            entry.id = entry.id or str(uuid.uuid4())
            entry.requirement_id = stored.id
            self._requirements[stored.id] = stored
            self._requirement_ids.add(stored.requirement_id)
            self._history[stored.id] = [entry]
            return InsertOutcome(requirement=stored.model_copy(deep=True))

    def requirement_id_exists(self, requirement_id: str) -> bool:
        return requirement_id in self._requirement_ids

    def count_requirements(self, project_id: str) -> int:
        with self._lock:
            return sum(1 for r in self._requirements.values() if r.project_id == project_id)

    def get_requirement(self, key: str) -> Requirement | None:
        found = self._requirements.get(key)
        return found.model_copy(deep=True) if found else None

    def list_requirements(
        self,
        project_id: str,
        status: str | None = None,
        priority: str | None = None,
        type: str | None = None,
    ) -> list[Requirement]:
        with self._lock:
            rows = [r for r in self._requirements.values() if r.project_id == project_id]
        if status:
            rows = [r for r in rows if r.status.value == status]
        if priority:
            rows = [r for r in rows if r.priority.value == priority]
        if type:
            rows = [r for r in rows if r.type.value == type]
        # dict order is insertion order, which breaks created_at ties
        rows.sort(key=lambda r: r.created_at)
        return [r.model_copy(deep=True) for r in rows]

    def commit_update(
        self, requirement: Requirement, expected_version: int, entry: HistoryEntry
    ) -> bool:
        with self._lock:
            current = self._requirements.get(requirement.id)
            if current is None or current.version != expected_version:
                return False
            stored = requirement.model_copy(deep=True)
            stored.updated_at = utcnow()
            self._requirements[stored.id] = stored
            self._append_locked(entry)
            return True

    def assign_parent(self, key: str, parent_key: str | None) -> None:
        with self._lock:
            current = self._requirements[key]
            current.parent_id = parent_key
            current.updated_at = utcnow()

    def delete_requirement(self, key: str) -> bool:
        with self._lock:
            removed = self._requirements.pop(key, None)
            if removed is None:
                return False
            # requirement_id stays reserved so it is never handed out again
            self._history.pop(key, None)
            self._stakeholder_links = [l for l in self._stakeholder_links if l.requirement_id != key]
            self._task_links = [l for l in self._task_links if l.requirement_id != key]
            self._meeting_links = [l for l in self._meeting_links if l.requirement_id != key]
            self._test_case_links = [l for l in self._test_case_links if l.requirement_id != key]
            self._comments = [c for c in self._comments if c.requirement_id != key]
            for child in self._requirements.values():
                if child.parent_id == key:
                    child.parent_id = None
            return True

    # ── History ──────────────────────────────────────────

    def _append_locked(self, entry: HistoryEntry) -> HistoryEntry:
        stored = entry.model_copy(deep=True)
        stored.id = stored.id or str(uuid.uuid4())
        self._history.setdefault(stored.requirement_id, []).append(stored)
        return stored

    def append_history(self, entry: HistoryEntry) -> HistoryEntry:
        with self._lock:
            return self._append_locked(entry).model_copy(deep=True)

    def list_history(self, key: str) -> list[HistoryEntry]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._history.get(key, [])]

    # ── Links ────────────────────────────────────────────

    def add_stakeholder_link(self, link: StakeholderLink) -> StakeholderLink:
        with self._lock:
            self._stakeholder_links.append(link.model_copy(deep=True))
        return link

    def list_stakeholder_links(self, key: str) -> list[StakeholderLink]:
        return [l.model_copy(deep=True) for l in self._stakeholder_links if l.requirement_id == key]

    def add_task_link(self, link: TaskLink) -> TaskLink:
        with self._lock:
            self._task_links.append(link.model_copy(deep=True))
        return link

    def list_task_links(self, key: str) -> list[TaskLink]:
        return [l.model_copy(deep=True) for l in self._task_links if l.requirement_id == key]

    def add_meeting_link(self, link: MeetingLink) -> MeetingLink:
        with self._lock:
            self._meeting_links.append(link.model_copy(deep=True))
        return link

    def list_meeting_links(self, key: str) -> list[MeetingLink]:
        return [l.model_copy(deep=True) for l in self._meeting_links if l.requirement_id == key]

    def add_test_case_link(self, link: TestCaseLink) -> TestCaseLink:
        with self._lock:
            self._test_case_links.append(link.model_copy(deep=True))
        return link

    def save_test_case_link(self, link: TestCaseLink) -> TestCaseLink:
        with self._lock:
            for i, existing in enumerate(self._test_case_links):
                if (existing.requirement_id, existing.test_case_id) == (
                    link.requirement_id,
                    link.test_case_id,
                ):
                    self._test_case_links[i] = link.model_copy(deep=True)
                    break
        return link

    def list_test_case_links(self, key: str) -> list[TestCaseLink]:
        return [l.model_copy(deep=True) for l in self._test_case_links if l.requirement_id == key]

    # ── Comments ─────────────────────────────────────────

    def add_comment(self, comment: RequirementComment) -> RequirementComment:
        with self._lock:
            stored = comment.model_copy(deep=True)
            stored.id = stored.id or str(uuid.uuid4())
            self._comments.append(stored)
            return stored.model_copy(deep=True)

    def list_comments(self, key: str) -> list[RequirementComment]:
        with self._lock:
            found = [c for c in self._comments if c.requirement_id == key]
        # newest first; insertion order breaks created_at ties
        found = sorted(reversed(found), key=lambda c: c.created_at, reverse=True)
        return [c.model_copy(deep=True) for c in found]
