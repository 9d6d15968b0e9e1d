"""
Tests: IdentifierAllocator — sequential ids, probing, and the timestamp
fallback taken when the store reports a collision.

Run with:
    pytest req_traceability/tests/test_id_allocator.py -v
"""

import re
import threading

import pytest

from req_traceability.config import Settings
from req_traceability.errors import IdentifierCollisionError, PersistenceError
from req_traceability.models.enums import HistoryAction
from req_traceability.models.schemas import HistoryEntry, Requirement
from req_traceability.persistence.requirement_repository import (
    InMemoryRequirementRepository,
    InsertOutcome,
)
from req_traceability.services.id_allocator import IdentifierAllocator, to_base36


class StaleLookupRepository(InMemoryRequirementRepository):
    """Existence checks always miss, as when another writer commits between lookup and insert."""

    def requirement_id_exists(self, requirement_id: str) -> bool:
        return False


class AlwaysConflictRepository(InMemoryRequirementRepository):
    def insert_requirement(self, requirement, initial_entry):
        return InsertOutcome(conflict=IdentifierCollisionError(requirement.requirement_id))


def _draft(project_id, title="Req"):
    return Requirement(project_id=project_id, title=title)


def _entry():
    return HistoryEntry(requirement_id="", user_id="u", action=HistoryAction.CREATED, version=1)


def _seed(repo, project_id, requirement_id):
    repo.insert_requirement(
        Requirement(project_id=project_id, title="seed", requirement_id=requirement_id), _entry()
    )


class TestIdentifierShapes:
    def test_prefix_is_first_eight_chars_uppercased(self, allocator, project_id):
        assert allocator.project_prefix(project_id) == "A1B2C3D4"

    def test_sequence_id_is_zero_padded(self, allocator, project_id):
        assert allocator.sequence_id(project_id, 7) == "REQ-A1B2C3D4-007"
        assert allocator.sequence_id(project_id, 1234) == "REQ-A1B2C3D4-1234"

    def test_pad_width_is_configurable(self, repo, project_id):
        alloc = IdentifierAllocator(repo, settings=Settings(_env_file=None, requirement_id_pad_width=5))
        assert alloc.sequence_id(project_id, 3) == "REQ-A1B2C3D4-00003"

    @pytest.mark.parametrize(
        "value,expected", [(0, "0"), (9, "9"), (10, "A"), (35, "Z"), (36, "10"), (1295, "ZZ")]
    )
    def test_base36(self, value, expected):
        assert to_base36(value) == expected

    def test_base36_rejects_negative(self):
        with pytest.raises(ValueError):
            to_base36(-1)

    def test_fallback_timestamps_strictly_increase(self, repo, settings, project_id):
        alloc = IdentifierAllocator(repo, settings=settings, clock=lambda: 1000)
        ids = [alloc.fallback_id(project_id) for _ in range(3)]
        assert ids == [f"REQ-A1B2C3D4-{to_base36(t)}" for t in (1000, 1001, 1002)]


class TestSequentialAllocation:
    def test_first_requirements_are_numbered(self, allocator, project_id):
        ids = [
            allocator.allocate(project_id, _draft(project_id, f"R{i}"), _entry()).requirement_id
            for i in range(3)
        ]
        assert ids == ["REQ-A1B2C3D4-001", "REQ-A1B2C3D4-002", "REQ-A1B2C3D4-003"]

    def test_counts_are_per_project(self, allocator, project_id, other_project_id):
        allocator.allocate(project_id, _draft(project_id), _entry())
        result = allocator.allocate(other_project_id, _draft(other_project_id), _entry())
        assert result.requirement_id == "REQ-FFEE0011-001"

    def test_scan_skips_taken_ids(self, repo, allocator, project_id, other_project_id):
        allocator.allocate(project_id, _draft(project_id), _entry())
        # a record in another project already holds the next counter id
        _seed(repo, other_project_id, "REQ-A1B2C3D4-002")

        result = allocator.allocate(project_id, _draft(project_id), _entry())

        assert result.requirement_id == "REQ-A1B2C3D4-003"
        assert result.attempts == 2
        assert not result.used_fallback

    def test_committed_record_carries_history(self, repo, allocator, project_id):
        result = allocator.allocate(project_id, _draft(project_id), _entry())
        stored = repo.get_requirement(result.requirement.id)
        assert stored.requirement_id == result.requirement_id
        history = repo.list_history(stored.id)
        assert len(history) == 1
        assert history[0].requirement_id == stored.id


class TestFallbackAllocation:
    def test_collision_switches_to_timestamp_form(self, settings, project_id, other_project_id):
        repo = StaleLookupRepository()
        _seed(repo, other_project_id, "REQ-A1B2C3D4-001")
        alloc = IdentifierAllocator(repo, settings=settings, clock=lambda: 1_700_000_000_000)

        result = alloc.allocate(project_id, _draft(project_id), _entry())

        assert result.used_fallback
        assert result.requirement_id == f"REQ-A1B2C3D4-{to_base36(1_700_000_000_000)}"
        assert repo.get_requirement(result.requirement.id) is not None

    def test_repeated_fallback_collisions_advance(self, settings, project_id, other_project_id):
        repo = StaleLookupRepository()
        _seed(repo, other_project_id, "REQ-A1B2C3D4-001")
        _seed(repo, other_project_id, f"REQ-A1B2C3D4-{to_base36(5000)}")
        alloc = IdentifierAllocator(repo, settings=settings, clock=lambda: 5000)

        result = alloc.allocate(project_id, _draft(project_id), _entry())

        assert result.requirement_id == f"REQ-A1B2C3D4-{to_base36(5001)}"
        assert result.attempts == 3

    def test_store_that_never_accepts_raises(self, project_id):
        repo = AlwaysConflictRepository()
        alloc = IdentifierAllocator(
            repo, settings=Settings(_env_file=None, requirement_id_fallback_attempts=3)
        )
        with pytest.raises(PersistenceError, match="after 4 attempts"):
            alloc.allocate(project_id, _draft(project_id), _entry())


class TestConcurrentAllocation:
    @pytest.mark.parametrize("repo_cls", [InMemoryRequirementRepository, StaleLookupRepository])
    def test_parallel_allocations_are_unique(self, repo_cls, settings, project_id):
        repo = repo_cls()
        alloc = IdentifierAllocator(repo, settings=settings)
        results: list[str] = []
        lock = threading.Lock()

        def worker(n):
            for i in range(10):
                r = alloc.allocate(project_id, _draft(project_id, f"W{n}-{i}"), _entry())
                with lock:
                    results.append(r.requirement_id)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 80
        assert len(set(results)) == 80
        assert repo.count_requirements(project_id) == 80
        pattern = re.compile(r"^REQ-A1B2C3D4-[0-9A-Z]+$")
        assert all(pattern.match(r) for r in results)
