"""
History Recorder — field-level diffs and version-numbered history entries.

The recorder is pure: it builds the HistoryEntry and the next state of the
requirement, and leaves committing both to the repository.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping

from req_traceability.errors import NoChangesDetected
from req_traceability.models.enums import HistoryAction
from req_traceability.models.schemas import (
    HistoryEntry,
    Requirement,
    RequirementUpdate,
    Task,
    utcnow,
)

logger = logging.getLogger(__name__)

TRACKED_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "type",
    "priority",
    "status",
    "acceptance_criteria",
    "source",
    "tags",
    "estimated_effort",
    "actual_effort",
    "epic",
    "parent_id",
)

# Fields captured in the synthetic CREATED diff
CREATION_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "type",
    "priority",
    "status",
    "acceptance_criteria",
    "source",
    "tags",
    "estimated_effort",
    "epic",
)


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class HistoryRecorder:
    """Builds history entries for every kind of requirement mutation."""

    # ── Diffing ──────────────────────────────────────────

    @staticmethod
    def diff(current: Requirement, proposed: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
        """Return {field: {old, new}} for every tracked field whose value changes."""
        changes: dict[str, dict[str, Any]] = {}
        for field in TRACKED_FIELDS:
            if field not in proposed:
                continue
            old = _plain(getattr(current, field))
            new = _plain(proposed[field])
            if field == "tags" and new is not None:
                new = list(dict.fromkeys(new))
            if old != new:
                changes[field] = {"old": old, "new": new}
        return changes

    @staticmethod
    def choose_action(changes: Mapping[str, Any]) -> HistoryAction:
        if "status" in changes:
            return HistoryAction.STATUS_CHANGED
        if "priority" in changes:
            return HistoryAction.PRIORITY_CHANGED
        return HistoryAction.UPDATED

    # ── Versioned mutations ──────────────────────────────

    def record_change(
        self,
        current: Requirement,
        proposed: RequirementUpdate | Mapping[str, Any],
        actor: str,
    ) -> tuple[HistoryEntry, Requirement]:
        """
        Diff `current` against `proposed` and return (entry, next state).
        Raises NoChangesDetected when nothing tracked differs.
        """
        fields = (
            proposed.proposed_fields()
            if isinstance(proposed, RequirementUpdate)
            else dict(proposed)
        )
        changes = self.diff(current, fields)
        if not changes:
            raise NoChangesDetected(current.id)

        version = current.version + 1
        merged = current.model_dump()
        merged.update({k: v for k, v in fields.items() if k in TRACKED_FIELDS})
        merged["version"] = version
        updated = Requirement.model_validate(merged)

        entry = HistoryEntry(
            requirement_id=current.id,
            user_id=actor,
            action=self.choose_action(changes),
            version=version,
            changes=changes,
        )
        logger.debug(
            f"{current.requirement_id} v{current.version}→v{version} "
            f"{entry.action.value}: {sorted(changes)}"
        )
        return entry, updated

    def record_creation(
        self, requirement: Requirement, actor: str, imported: bool = False
    ) -> HistoryEntry:
        """CREATED entry at version 1 with every initial value as {old: None, new}."""
        changes: dict[str, Any] = {}
        for field in CREATION_FIELDS:
            value = _plain(getattr(requirement, field))
            if value in (None, "", []):
                continue
            changes[field] = {"old": None, "new": value}
        if imported:
            changes["imported"] = {"old": None, "new": True}

        return HistoryEntry(
            requirement_id=requirement.id,
            user_id=actor,
            action=HistoryAction.CREATED,
            version=1,
            changes=changes,
        )

    # ── Non-versioned markers ────────────────────────────

    def record_baseline(
        self, current: Requirement, actor: str
    ) -> tuple[HistoryEntry, Requirement]:
        """Mark the current version as baseline. The version does not move."""
        now = utcnow()
        updated = current.model_copy(
            update={
                "is_baseline": True,
                "baseline_version": current.version,
                "baseline_date": now,
            }
        )
        entry = HistoryEntry(
            requirement_id=current.id,
            user_id=actor,
            action=HistoryAction.BASELINED,
            version=current.version,
            changes={
                "baseline_version": current.version,
                "baseline_date": now.isoformat(),
            },
            timestamp=now,
        )
        return entry, updated

    def record_task_link(self, current: Requirement, task: Task, actor: str) -> HistoryEntry:
        return HistoryEntry(
            requirement_id=current.id,
            user_id=actor,
            action=HistoryAction.TASK_LINKED,
            version=current.version,
            changes={"task_id": task.id, "task_title": task.title},
        )

    def record_test_case_link(
        self, current: Requirement, test_case_id: str, test_case_name: str, actor: str
    ) -> HistoryEntry:
        return HistoryEntry(
            requirement_id=current.id,
            user_id=actor,
            action=HistoryAction.TEST_CASE_LINKED,
            version=current.version,
            changes={"test_case_id": test_case_id, "test_case_name": test_case_name},
        )
