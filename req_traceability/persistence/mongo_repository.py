"""
MongoDB-backed RequirementRepository.

Every requirement_id ever issued is kept in `requirement_ids` (keyed by
the id itself, never cleaned up on delete), so a DuplicateKeyError there
is the conflict outcome the allocator absorbs.  Version compare-and-swap
is a filtered find_one_and_update.

A record write and its history entry are two documents.  When the history
insert fails the record write is undone before the error propagates, so
version and history count stay in step without needing a replica set.
"""

from __future__ import annotations

import functools
import logging
import uuid
from enum import Enum
from typing import Any, Callable, TypeVar

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from req_traceability.errors import IdentifierCollisionError, PersistenceError
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
from req_traceability.persistence.requirement_repository import (
    InsertOutcome,
    RequirementRepository,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
F = TypeVar("F", bound=Callable[..., Any])

_LINK_COLLECTIONS = (
    "requirement_stakeholders",
    "requirement_tasks",
    "requirement_meetings",
    "requirement_test_cases",
    "requirement_comments",
)


def _translate_errors(fn: F) -> F:
    """Re-raise driver failures as PersistenceError."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except PyMongoError as e:
            logger.error(f"MongoDB failure in {fn.__name__}: {e}")
            raise PersistenceError(str(e)) from e

    return wrapper  # type: ignore[return-value]


def _to_doc(model: BaseModel, key_field: str | None = "id") -> dict[str, Any]:
    doc = model.model_dump()
    for k, v in doc.items():
        if isinstance(v, Enum):
            doc[k] = v.value
    if key_field:
        doc["_id"] = doc[key_field]
    return doc


def _from_doc(model_cls: type[M], doc: dict[str, Any] | None) -> M | None:
    if doc is None:
        return None
    doc = dict(doc)
    doc.pop("_id", None)
    return model_cls(**doc)


class MongoRequirementRepository(RequirementRepository):
    """Repository over a pymongo Database handle."""

    def __init__(self, db: Any):
        self._db = db

    @_translate_errors
    def ensure_indexes(self) -> None:
        self._db.requirements.create_index("requirement_id", unique=True)
        self._db.requirements.create_index([("project_id", ASCENDING), ("created_at", ASCENDING)])
        self._db.requirement_history.create_index(
            [("requirement_id", ASCENDING), ("timestamp", ASCENDING)]
        )
        self._db.requirement_stakeholders.create_index(
            [("requirement_id", ASCENDING), ("stakeholder_id", ASCENDING)], unique=True
        )
        self._db.requirement_tasks.create_index(
            [("requirement_id", ASCENDING), ("task_id", ASCENDING)], unique=True
        )
        self._db.requirement_meetings.create_index(
            [("requirement_id", ASCENDING), ("meeting_id", ASCENDING)], unique=True
        )
        self._db.requirement_test_cases.create_index(
            [("requirement_id", ASCENDING), ("test_case_id", ASCENDING)], unique=True
        )
        self._db.requirement_comments.create_index(
            [("requirement_id", ASCENDING), ("created_at", ASCENDING)]
        )
        logger.info("MongoDB indexes ensured")

    # ── Collaborator records ─────────────────────────────

    def _save(self, collection: str, model: M) -> M:
        self._db[collection].replace_one({"_id": model.id}, _to_doc(model), upsert=True)
        return model

    @_translate_errors
    def save_project(self, project: Project) -> Project:
        return self._save("projects", project)

    @_translate_errors
    def get_project(self, project_id: str) -> Project | None:
        return _from_doc(Project, self._db.projects.find_one({"_id": project_id}))

    @_translate_errors
    def save_user(self, user: User) -> User:
        return self._save("users", user)

    @_translate_errors
    def get_user(self, user_id: str) -> User | None:
        return _from_doc(User, self._db.users.find_one({"_id": user_id}))

    @_translate_errors
    def save_stakeholder(self, stakeholder: Stakeholder) -> Stakeholder:
        return self._save("stakeholders", stakeholder)

    @_translate_errors
    def get_stakeholder(self, stakeholder_id: str) -> Stakeholder | None:
        return _from_doc(Stakeholder, self._db.stakeholders.find_one({"_id": stakeholder_id}))

    @_translate_errors
    def save_task(self, task: Task) -> Task:
        return self._save("tasks", task)

    @_translate_errors
    def get_task(self, task_id: str) -> Task | None:
        return _from_doc(Task, self._db.tasks.find_one({"_id": task_id}))

    @_translate_errors
    def save_meeting(self, meeting: Meeting) -> Meeting:
        return self._save("meetings", meeting)

    @_translate_errors
    def get_meeting(self, meeting_id: str) -> Meeting | None:
        return _from_doc(Meeting, self._db.meetings.find_one({"_id": meeting_id}))

    # ── Requirements ─────────────────────────────────────

    @_translate_errors
    def insert_requirement(
        self, requirement: Requirement, initial_entry: HistoryEntry
    ) -> InsertOutcome:
        stored = requirement.model_copy(deep=True)
        stored.id = stored.id or str(uuid.uuid4())
        try:
            self._db.requirement_ids.insert_one(
                {"_id": stored.requirement_id, "project_id": stored.project_id, "reserved_at": utcnow()}
            )
            self._db.requirements.insert_one(_to_doc(stored))
        except DuplicateKeyError:
            logger.debug(f"Insert conflict on {stored.requirement_id}")
            return InsertOutcome(conflict=IdentifierCollisionError(stored.requirement_id))

        entry = initial_entry.model_copy(deep=True)
        entry.requirement_id = stored.id
        try:
            self._insert_history(entry)
        except PyMongoError:
            # the id stays reserved; only the record is withdrawn
            self._db.requirements.delete_one({"_id": stored.id})
            raise
        return InsertOutcome(requirement=stored)

    @_translate_errors
    def requirement_id_exists(self, requirement_id: str) -> bool:
        return self._db.requirement_ids.count_documents({"_id": requirement_id}, limit=1) > 0

    @_translate_errors
    def count_requirements(self, project_id: str) -> int:
        return self._db.requirements.count_documents({"project_id": project_id})

    @_translate_errors
    def get_requirement(self, key: str) -> Requirement | None:
        return _from_doc(Requirement, self._db.requirements.find_one({"_id": key}))

    @_translate_errors
    def list_requirements(
        self,
        project_id: str,
        status: str | None = None,
        priority: str | None = None,
        type: str | None = None,
    ) -> list[Requirement]:
        query: dict[str, Any] = {"project_id": project_id}
        if status:
            query["status"] = status
        if priority:
            query["priority"] = priority
        if type:
            query["type"] = type
        cursor = self._db.requirements.find(query).sort("created_at", ASCENDING)
        return [_from_doc(Requirement, doc) for doc in cursor]

    @_translate_errors
    def commit_update(
        self, requirement: Requirement, expected_version: int, entry: HistoryEntry
    ) -> bool:
        doc = _to_doc(requirement)
        doc["updated_at"] = utcnow()
        doc.pop("_id")
        before = self._db.requirements.find_one_and_update(
            {"_id": requirement.id, "version": expected_version},
            {"$set": doc},
            return_document=ReturnDocument.BEFORE,
        )
        if before is None:
            return False
        try:
            self._insert_history(entry)
        except PyMongoError:
            # restore only if nobody has committed on top of this write
            self._db.requirements.replace_one(
                {"_id": requirement.id, "version": requirement.version}, before
            )
            raise
        return True

    @_translate_errors
    def assign_parent(self, key: str, parent_key: str | None) -> None:
        self._db.requirements.update_one(
            {"_id": key}, {"$set": {"parent_id": parent_key, "updated_at": utcnow()}}
        )

    @_translate_errors
    def delete_requirement(self, key: str) -> bool:
        result = self._db.requirements.delete_one({"_id": key})
        if result.deleted_count == 0:
            return False
        self._db.requirement_history.delete_many({"requirement_id": key})
        for name in _LINK_COLLECTIONS:
            self._db[name].delete_many({"requirement_id": key})
        self._db.requirements.update_many({"parent_id": key}, {"$set": {"parent_id": None}})
        return True

    # ── History ──────────────────────────────────────────

    def _insert_history(self, entry: HistoryEntry) -> HistoryEntry:
        stored = entry.model_copy(deep=True)
        stored.id = stored.id or str(uuid.uuid4())
        self._db.requirement_history.insert_one(_to_doc(stored))
        return stored

    @_translate_errors
    def append_history(self, entry: HistoryEntry) -> HistoryEntry:
        return self._insert_history(entry)

    @_translate_errors
    def list_history(self, key: str) -> list[HistoryEntry]:
        cursor = self._db.requirement_history.find({"requirement_id": key}).sort(
            "timestamp", ASCENDING
        )
        return [_from_doc(HistoryEntry, doc) for doc in cursor]

    # ── Links ────────────────────────────────────────────

    def _insert_link(self, collection: str, link: M) -> M:
        self._db[collection].insert_one(_to_doc(link, key_field=None))
        return link

    def _list_links(self, collection: str, model_cls: type[M], key: str) -> list[M]:
        return [_from_doc(model_cls, doc) for doc in self._db[collection].find({"requirement_id": key})]

    @_translate_errors
    def add_stakeholder_link(self, link: StakeholderLink) -> StakeholderLink:
        return self._insert_link("requirement_stakeholders", link)

    @_translate_errors
    def list_stakeholder_links(self, key: str) -> list[StakeholderLink]:
        return self._list_links("requirement_stakeholders", StakeholderLink, key)

    @_translate_errors
    def add_task_link(self, link: TaskLink) -> TaskLink:
        return self._insert_link("requirement_tasks", link)

    @_translate_errors
    def list_task_links(self, key: str) -> list[TaskLink]:
        return self._list_links("requirement_tasks", TaskLink, key)

    @_translate_errors
    def add_meeting_link(self, link: MeetingLink) -> MeetingLink:
        return self._insert_link("requirement_meetings", link)

    @_translate_errors
    def list_meeting_links(self, key: str) -> list[MeetingLink]:
        return self._list_links("requirement_meetings", MeetingLink, key)

    @_translate_errors
    def add_test_case_link(self, link: TestCaseLink) -> TestCaseLink:
        return self._insert_link("requirement_test_cases", link)

    @_translate_errors
    def save_test_case_link(self, link: TestCaseLink) -> TestCaseLink:
        doc = _to_doc(link, key_field=None)
        self._db.requirement_test_cases.update_one(
            {"requirement_id": link.requirement_id, "test_case_id": link.test_case_id},
            {"$set": doc},
        )
        return link

    @_translate_errors
    def list_test_case_links(self, key: str) -> list[TestCaseLink]:
        return self._list_links("requirement_test_cases", TestCaseLink, key)

    # ── Comments ─────────────────────────────────────────

    @_translate_errors
    def add_comment(self, comment: RequirementComment) -> RequirementComment:
        stored = comment.model_copy(deep=True)
        stored.id = stored.id or str(uuid.uuid4())
        self._db.requirement_comments.insert_one(_to_doc(stored))
        return stored

    @_translate_errors
    def list_comments(self, key: str) -> list[RequirementComment]:
        cursor = self._db.requirement_comments.find({"requirement_id": key}).sort(
            "created_at", DESCENDING
        )
        return [_from_doc(RequirementComment, doc) for doc in cursor]
