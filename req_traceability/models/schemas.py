"""
Record schemas shared by the traceability services and the repository.
Each schema is a plain record; no schema talks to the store itself.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import (
    RequirementType,
    RequirementStatus,
    Priority,
    HistoryAction,
    StakeholderRole,
    CaseStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


# ── Collaborator records (owned by other modules) ────────


class Project(BaseModel):
    id: str
    name: str = ""


class User(BaseModel):
    id: str
    name: str = ""
    email: str = ""


class Stakeholder(BaseModel):
    id: str
    project_id: str = ""
    name: str = ""


class Task(BaseModel):
    id: str
    project_id: str
    title: str = ""
    status: str = "TODO"
    assignee_id: Optional[str] = None


class Meeting(BaseModel):
    id: str
    project_id: str
    title: str = ""
    meeting_date: Optional[datetime] = None


# ── Requirement ──────────────────────────────────────────


class Requirement(BaseModel):
    """A persisted requirement. `id` is assigned by the repository."""
    id: str = ""
    requirement_id: str = ""
    project_id: str
    title: str
    description: str = ""
    acceptance_criteria: list[str] = []
    tags: list[str] = []
    type: RequirementType = RequirementType.FUNCTIONAL
    status: RequirementStatus = RequirementStatus.DRAFT
    priority: Priority = Priority.MEDIUM
    source: Optional[str] = None
    estimated_effort: Optional[float] = None
    actual_effort: Optional[float] = None
    epic: Optional[str] = None
    parent_id: Optional[str] = None
    owner_id: str = ""
    version: int = 1
    is_baseline: bool = False
    baseline_version: Optional[int] = None
    baseline_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, v: list[str]) -> list[str]:
        return _unique(v)


class RequirementCreate(BaseModel):
    """Caller-supplied fields for a single requirement creation."""
    title: str
    description: str = ""
    acceptance_criteria: list[str] = []
    tags: list[str] = []
    type: RequirementType = RequirementType.FUNCTIONAL
    status: RequirementStatus = RequirementStatus.DRAFT
    priority: Priority = Priority.MEDIUM
    source: Optional[str] = None
    estimated_effort: Optional[float] = None
    actual_effort: Optional[float] = None
    epic: Optional[str] = None
    parent_id: Optional[str] = None


class RequirementUpdate(BaseModel):
    """
    Proposed changes to a requirement.

    Only fields explicitly set by the caller take part in the diff, so an
    explicit None (e.g. parent_id=None) clears a value while an omitted
    field is left alone. `expected_version` is the version the caller read.
    """
    expected_version: int
    title: Optional[str] = None
    description: Optional[str] = None
    acceptance_criteria: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    type: Optional[RequirementType] = None
    status: Optional[RequirementStatus] = None
    priority: Optional[Priority] = None
    source: Optional[str] = None
    estimated_effort: Optional[float] = None
    actual_effort: Optional[float] = None
    epic: Optional[str] = None
    parent_id: Optional[str] = None

    @model_validator(mode="after")
    def _required_fields_not_cleared(self) -> RequirementUpdate:
        cleared = [
            name for name in ("title", "type", "status", "priority", "acceptance_criteria", "tags")
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if cleared:
            raise ValueError(f"Fields cannot be cleared: {', '.join(cleared)}")
        return self

    def proposed_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"expected_version"})


# ── History ──────────────────────────────────────────────


class HistoryEntry(BaseModel):
    """Immutable audit record. `changes` maps field → {old, new}."""
    id: str = ""
    requirement_id: str
    user_id: str
    action: HistoryAction
    version: int
    changes: dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=utcnow)


# ── Link tables ──────────────────────────────────────────


class StakeholderLink(BaseModel):
    requirement_id: str
    stakeholder_id: str
    role: StakeholderRole = StakeholderRole.REVIEWER


class TaskLink(BaseModel):
    requirement_id: str
    task_id: str


class MeetingLink(BaseModel):
    requirement_id: str
    meeting_id: str


class TestCaseLink(BaseModel):
    __test__ = False  # keep pytest from collecting this record

    requirement_id: str
    test_case_id: str
    test_case_name: str = ""
    status: CaseStatus = CaseStatus.NOT_RUN
    last_tested_at: Optional[datetime] = None


class RequirementComment(BaseModel):
    """Free-text discussion on a requirement. Not versioned."""
    id: str = ""
    requirement_id: str
    user_id: str
    content: str
    created_at: datetime = Field(default_factory=utcnow)


# ── Import boundary ──────────────────────────────────────


class RequirementRow(BaseModel):
    """
    Canonical row produced by the RowNormalizer.

    type / status / priority stay as text here; pre-validation decides
    whether they are enum members.
    """
    row_number: int = 0
    sequence_id: Optional[str] = None
    group_key: Optional[str] = None
    level: Optional[int] = None
    parent_sequence_id: Optional[str] = None
    title: str = ""
    description: str = ""
    type: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    source: Optional[str] = None
    estimated_effort: Optional[float] = None
    actual_effort: Optional[float] = None
    acceptance_criteria: list[str] = []
    tags: list[str] = []
    dependencies: list[str] = []
    epic: Optional[str] = None


class ImportResult(BaseModel):
    success_count: int = 0
    failed_count: int = 0
    errors: list[str] = []


class AllocationResult(BaseModel):
    """Outcome of IdentifierAllocator.allocate: the committed requirement."""
    requirement_id: str
    requirement: Requirement
    used_fallback: bool = False
    attempts: int = 1


# ── Read side ────────────────────────────────────────────


class MatrixStakeholder(BaseModel):
    id: str
    name: str
    role: StakeholderRole


class MatrixTask(BaseModel):
    id: str
    title: str
    status: str
    assignee: Optional[str] = None


class MatrixMeeting(BaseModel):
    id: str
    title: str
    date: Optional[datetime] = None


class MatrixTestCase(BaseModel):
    id: str
    name: str
    status: CaseStatus


class MatrixRow(BaseModel):
    """One requirement flattened with everything that traces to it."""
    id: str
    requirement_id: str
    title: str
    type: RequirementType
    status: RequirementStatus
    priority: Priority
    owner: str = ""
    stakeholders: list[MatrixStakeholder] = []
    tasks: list[MatrixTask] = []
    meetings: list[MatrixMeeting] = []
    test_cases: list[MatrixTestCase] = []


class CoverageSummary(BaseModel):
    total_requirements: int = 0
    covered_requirements: int = 0
    partial_coverage: int = 0
    no_coverage: int = 0
    coverage_percentage: int = 0


class RequirementNode(BaseModel):
    """A requirement with its children, for the hierarchy view."""
    requirement: Requirement
    children: list[RequirementNode] = []
