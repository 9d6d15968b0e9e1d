"""
Identifier Allocator — human-readable requirement IDs that never collide.

Format:  REQ-<PREFIX>-<NNN>     (PREFIX = first 8 chars of the project id)
Fallback: REQ-<PREFIX>-<base36 millisecond timestamp>

Counting existing requirements and then inserting is a check-then-act race
when several imports run at once.  The scan loop only avoids the obvious
collisions; the store's uniqueness check at commit time is authoritative,
and a conflict there switches to the timestamp form, which keeps moving
forward until an insert succeeds.
"""

from __future__ import annotations

import logging
import string
import threading
import time
from typing import Callable

from req_traceability.config import Settings, get_settings
from req_traceability.errors import PersistenceError
from req_traceability.models.schemas import AllocationResult, HistoryEntry, Requirement
from req_traceability.persistence.requirement_repository import RequirementRepository

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 value must be non-negative")
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _now_ms() -> int:
    return int(time.time() * 1000)


class IdentifierAllocator:
    """Allocate a requirement_id and commit the requirement under it."""

    def __init__(
        self,
        repository: RequirementRepository,
        settings: Settings | None = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.repo = repository
        self.settings = settings or get_settings()
        self._clock = clock
        self._ts_lock = threading.Lock()
        self._last_ts = 0

    # ── Identifier shapes ────────────────────────────────

    def project_prefix(self, project_id: str) -> str:
        return project_id[: self.settings.requirement_id_prefix_length].upper()

    def sequence_id(self, project_id: str, sequence: int) -> str:
        width = self.settings.requirement_id_pad_width
        return f"REQ-{self.project_prefix(project_id)}-{sequence:0{width}d}"

    def fallback_id(self, project_id: str) -> str:
        return f"REQ-{self.project_prefix(project_id)}-{to_base36(self._next_timestamp())}"

    def _next_timestamp(self) -> int:
        # strictly increasing per allocator, even within one millisecond
        with self._ts_lock:
            ts = max(self._clock(), self._last_ts + 1)
            self._last_ts = ts
            return ts

    # ── Scan ─────────────────────────────────────────────

    def scan(self, project_id: str) -> tuple[str | None, int]:
        """
        Return the first counter-based id not yet in the store, or None if
        every scan attempt was taken. Second value is attempts used.
        """
        count = self.repo.count_requirements(project_id)
        attempts = self.settings.requirement_id_scan_attempts
        for attempt in range(attempts):
            candidate = self.sequence_id(project_id, count + 1 + attempt)
            if not self.repo.requirement_id_exists(candidate):
                return candidate, attempt + 1
        return None, attempts

    # ── Allocate + commit ────────────────────────────────

    def allocate(
        self,
        project_id: str,
        requirement: Requirement,
        initial_entry: HistoryEntry,
    ) -> AllocationResult:
        """
        Commit `requirement` (with its CREATED entry) under a fresh id.
        Conflicts are absorbed here; callers only ever see the stored record
        or a PersistenceError when the store itself keeps failing.
        """
        candidate, attempts = self.scan(project_id)

        if candidate is not None:
            outcome = self.repo.insert_requirement(
                requirement.model_copy(update={"requirement_id": candidate}), initial_entry
            )
            if outcome.ok:
                return AllocationResult(
                    requirement_id=candidate,
                    requirement=outcome.requirement,
                    attempts=attempts,
                )
            logger.info(f"Requirement ID collision on {candidate}; using timestamp fallback")

        for _ in range(self.settings.requirement_id_fallback_attempts):
            attempts += 1
            candidate = self.fallback_id(project_id)
            outcome = self.repo.insert_requirement(
                requirement.model_copy(update={"requirement_id": candidate}), initial_entry
            )
            if outcome.ok:
                return AllocationResult(
                    requirement_id=candidate,
                    requirement=outcome.requirement,
                    used_fallback=True,
                    attempts=attempts,
                )
            logger.debug(f"Fallback ID {candidate} also taken; advancing timestamp")

        raise PersistenceError(
            f"Could not allocate a requirement ID for project {project_id} "
            f"after {attempts} attempts"
        )
