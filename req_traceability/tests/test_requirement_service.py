"""
Tests: RequirementService — create, optimistic updates, parents, delete,
baseline, links and comments.

Run with:
    pytest req_traceability/tests/test_requirement_service.py -v
"""

from datetime import datetime, timezone

import pytest

from req_traceability.errors import (
    InvalidCommentError,
    InvalidParentError,
    LinkError,
    NoChangesDetected,
    ProjectNotFoundError,
    RequirementNotFoundError,
    VersionConflictError,
)
from req_traceability.models.enums import (
    CaseStatus,
    HistoryAction,
    Priority,
    RequirementStatus,
    StakeholderRole,
)
from req_traceability.models.schemas import (
    Meeting,
    RequirementCreate,
    RequirementUpdate,
    Stakeholder,
    Task,
)


class TestCreate:
    def test_create_stores_version_one_with_history(self, service, make_requirement, actor):
        req = make_requirement("Login", estimated_effort=4)
        assert req.requirement_id == "REQ-A1B2C3D4-001"
        assert req.version == 1
        assert req.owner_id == actor

        history = service.get_history(req.id)
        assert [e.action for e in history] == [HistoryAction.CREATED]
        assert history[0].version == 1

    def test_unknown_project(self, service, actor):
        with pytest.raises(ProjectNotFoundError):
            service.create_requirement("nope", RequirementCreate(title="x"), actor)

    def test_stakeholders_linked_as_reviewers(self, service, repo, project_id, actor):
        repo.save_stakeholder(Stakeholder(id="s1", project_id=project_id, name="Grace"))
        req = service.create_requirement(
            project_id, RequirementCreate(title="x"), actor, stakeholder_ids=["s1", "s1"]
        )
        links = repo.list_stakeholder_links(req.id)
        assert [(l.stakeholder_id, l.role) for l in links] == [("s1", StakeholderRole.REVIEWER)]

    def test_unknown_stakeholder_writes_nothing(self, service, repo, project_id, actor):
        with pytest.raises(LinkError):
            service.create_requirement(
                project_id, RequirementCreate(title="x"), actor, stakeholder_ids=["ghost"]
            )
        assert repo.count_requirements(project_id) == 0

    def test_parent_must_share_project(self, service, make_requirement, other_project_id):
        parent = make_requirement("Parent", project_id=other_project_id)
        with pytest.raises(InvalidParentError, match="same project"):
            make_requirement("Child", parent_id=parent.id)

    def test_missing_parent(self, make_requirement):
        with pytest.raises(InvalidParentError, match="not found"):
            make_requirement("Child", parent_id="missing")


class TestUpdate:
    def test_version_tracks_history_length(self, service, make_requirement):
        req = make_requirement()
        for i in range(4):
            req, _ = service.update_requirement(
                req.id, RequirementUpdate(expected_version=req.version, description=f"v{i}"), "u"
            )
        history = service.get_history(req.id)
        assert req.version == 5
        assert len(history) == 5
        assert [e.version for e in history] == [1, 2, 3, 4, 5]

    def test_returns_entry_with_action(self, service, make_requirement):
        req = make_requirement()
        updated, entry = service.update_requirement(
            req.id, RequirementUpdate(expected_version=1, status=RequirementStatus.APPROVED), "u"
        )
        assert entry.action == HistoryAction.STATUS_CHANGED
        assert updated.status == RequirementStatus.APPROVED
        assert service.get_requirement(req.id).status == RequirementStatus.APPROVED

    def test_stale_version_rejected(self, service, make_requirement):
        req = make_requirement()
        service.update_requirement(req.id, RequirementUpdate(expected_version=1, title="A"), "u")

        with pytest.raises(VersionConflictError) as exc:
            service.update_requirement(
                req.id, RequirementUpdate(expected_version=1, priority=Priority.HIGH), "u"
            )
        assert exc.value.expected == 1
        assert exc.value.actual == 2
        stored = service.get_requirement(req.id)
        assert stored.priority == Priority.MEDIUM
        assert len(service.get_history(req.id)) == 2

    def test_lost_compare_and_swap_is_a_conflict(self, service, repo, make_requirement, monkeypatch):
        req = make_requirement()
        monkeypatch.setattr(repo, "commit_update", lambda *a, **kw: False)
        with pytest.raises(VersionConflictError):
            service.update_requirement(req.id, RequirementUpdate(expected_version=1, title="B"), "u")

    def test_no_changes(self, service, make_requirement):
        req = make_requirement("Login")
        with pytest.raises(NoChangesDetected):
            service.update_requirement(
                req.id, RequirementUpdate(expected_version=1, title="Login"), "u"
            )
        assert service.get_requirement(req.id).version == 1

    def test_unknown_requirement(self, service):
        with pytest.raises(RequirementNotFoundError):
            service.update_requirement("nope", RequirementUpdate(expected_version=1, title="x"), "u")

    def test_cycle_rejected(self, service, make_requirement):
        a = make_requirement("A")
        b = make_requirement("B", parent_id=a.id)
        with pytest.raises(InvalidParentError, match="ancestor"):
            service.update_requirement(a.id, RequirementUpdate(expected_version=1, parent_id=b.id), "u")
        with pytest.raises(InvalidParentError):
            service.update_requirement(a.id, RequirementUpdate(expected_version=1, parent_id=a.id), "u")

    def test_reparent_and_clear(self, service, make_requirement):
        a = make_requirement("A")
        b = make_requirement("B")
        b, _ = service.update_requirement(b.id, RequirementUpdate(expected_version=1, parent_id=a.id), "u")
        assert b.parent_id == a.id
        b, entry = service.update_requirement(b.id, RequirementUpdate(expected_version=2, parent_id=None), "u")
        assert b.parent_id is None
        assert entry.changes["parent_id"] == {"old": a.id, "new": None}


class TestDeleteAndBaseline:
    def test_delete_cascades(self, service, repo, make_requirement, project_id, actor):
        repo.save_task(Task(id="t1", project_id=project_id, title="Build"))
        parent = make_requirement("Parent")
        child = make_requirement("Child", parent_id=parent.id)
        service.link_task(parent.id, "t1", actor)
        service.link_test_case(parent.id, "tc1", "Smoke", actor)

        service.delete_requirement(parent.id)

        assert repo.get_requirement(parent.id) is None
        assert repo.list_history(parent.id) == []
        assert repo.list_task_links(parent.id) == []
        assert repo.list_test_case_links(parent.id) == []
        assert service.get_requirement(child.id).parent_id is None

    def test_deleted_identifier_not_reused(self, service, make_requirement):
        first = make_requirement("One")
        service.delete_requirement(first.id)
        second = make_requirement("Two")
        assert second.requirement_id != first.requirement_id

    def test_delete_unknown(self, service):
        with pytest.raises(RequirementNotFoundError):
            service.delete_requirement("nope")

    def test_baseline_does_not_bump_version(self, service, make_requirement, actor):
        req = make_requirement()
        req, _ = service.update_requirement(req.id, RequirementUpdate(expected_version=1, title="X"), actor)

        baselined = service.baseline_requirement(req.id, actor)

        assert baselined.version == 2
        assert baselined.is_baseline
        assert baselined.baseline_version == 2
        last = service.get_history(req.id)[-1]
        assert last.action == HistoryAction.BASELINED
        assert last.version == 2
        # the next real update still moves to version 3
        after, _ = service.update_requirement(req.id, RequirementUpdate(expected_version=2, title="Y"), actor)
        assert after.version == 3
        assert after.is_baseline


class TestLinks:
    def test_task_link_records_history(self, service, repo, make_requirement, project_id, actor):
        repo.save_task(Task(id="t1", project_id=project_id, title="Build form"))
        req = make_requirement()

        service.link_task(req.id, "t1", actor)

        assert [l.task_id for l in repo.list_task_links(req.id)] == ["t1"]
        last = service.get_history(req.id)[-1]
        assert last.action == HistoryAction.TASK_LINKED
        assert last.version == 1
        assert last.changes == {"task_id": "t1", "task_title": "Build form"}
        assert service.get_requirement(req.id).version == 1

    def test_task_in_other_project_rejected(self, service, repo, make_requirement, other_project_id, actor):
        repo.save_task(Task(id="t2", project_id=other_project_id))
        req = make_requirement()
        with pytest.raises(LinkError, match="same project"):
            service.link_task(req.id, "t2", actor)

    def test_duplicate_task_link_rejected(self, service, repo, make_requirement, project_id, actor):
        repo.save_task(Task(id="t1", project_id=project_id))
        req = make_requirement()
        service.link_task(req.id, "t1", actor)
        with pytest.raises(LinkError, match="already linked"):
            service.link_task(req.id, "t1", actor)

    def test_unknown_task(self, service, make_requirement, actor):
        req = make_requirement()
        with pytest.raises(LinkError, match="Task not found"):
            service.link_task(req.id, "ghost", actor)

    def test_test_case_link_and_status(self, service, repo, make_requirement, actor):
        req = make_requirement()
        service.link_test_case(req.id, "tc1", "Login smoke", actor)
        with pytest.raises(LinkError):
            service.link_test_case(req.id, "tc1", "Login smoke", actor)

        link = service.update_test_case_status(req.id, "tc1", CaseStatus.PASSED)

        assert link.status == CaseStatus.PASSED
        assert link.last_tested_at is not None
        stored = repo.find_test_case_link(req.id, "tc1")
        assert stored.status == CaseStatus.PASSED
        assert service.get_history(req.id)[-1].action == HistoryAction.TEST_CASE_LINKED

    def test_status_of_unlinked_test_case(self, service, make_requirement):
        req = make_requirement()
        with pytest.raises(LinkError):
            service.update_test_case_status(req.id, "tc-x", CaseStatus.FAILED)

    def test_stakeholder_link_roles(self, service, repo, make_requirement, project_id):
        repo.save_stakeholder(Stakeholder(id="s1", project_id=project_id, name="Grace"))
        req = make_requirement()
        link = service.link_stakeholder(req.id, "s1", StakeholderRole.APPROVER)
        assert link.role == StakeholderRole.APPROVER
        with pytest.raises(LinkError):
            service.link_stakeholder(req.id, "s1")

    def test_meeting_link(self, service, repo, make_requirement, project_id, other_project_id):
        when = datetime(2024, 3, 1, tzinfo=timezone.utc)
        repo.save_meeting(Meeting(id="m1", project_id=project_id, title="Kickoff", meeting_date=when))
        repo.save_meeting(Meeting(id="m2", project_id=other_project_id, title="Other"))
        req = make_requirement()

        service.link_meeting(req.id, "m1")

        assert [l.meeting_id for l in repo.list_meeting_links(req.id)] == ["m1"]
        with pytest.raises(LinkError):
            service.link_meeting(req.id, "m1")
        with pytest.raises(LinkError, match="same project"):
            service.link_meeting(req.id, "m2")


class TestQueries:
    def test_list_filters(self, service, make_requirement, project_id):
        make_requirement("A", priority=Priority.HIGH)
        make_requirement("B")
        make_requirement("C", priority=Priority.HIGH, status=RequirementStatus.APPROVED)

        assert [r.title for r in service.list_requirements(project_id)] == ["A", "B", "C"]
        assert [r.title for r in service.list_requirements(project_id, priority="HIGH")] == ["A", "C"]
        assert [
            r.title for r in service.list_requirements(project_id, priority="HIGH", status="APPROVED")
        ] == ["C"]

    def test_hierarchy_view(self, service, make_requirement, project_id):
        root = make_requirement("Root")
        make_requirement("Child", parent_id=root.id)
        make_requirement("Other root")

        tree = service.get_hierarchy(project_id)

        assert [n.requirement.title for n in tree] == ["Root", "Other root"]
        assert [n.requirement.title for n in tree[0].children] == ["Child"]


class TestComments:
    def test_comments_listed_newest_first(self, service, make_requirement, actor):
        req = make_requirement()
        service.add_comment(req.id, "Needs SSO too", actor)
        service.add_comment(req.id, "  Agreed  ", "user-2")

        comments = service.list_comments(req.id)

        assert [c.content for c in comments] == ["  Agreed  ", "Needs SSO too"]
        assert [c.user_id for c in comments] == ["user-2", actor]
        assert all(c.id for c in comments)

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_blank_comment_rejected(self, service, repo, make_requirement, actor, content):
        req = make_requirement()
        with pytest.raises(InvalidCommentError, match="content is required"):
            service.add_comment(req.id, content, actor)
        assert repo.list_comments(req.id) == []

    def test_comment_does_not_touch_version(self, service, make_requirement, actor):
        req = make_requirement()
        service.add_comment(req.id, "Looks good", actor)
        assert service.get_requirement(req.id).version == 1
        assert len(service.get_history(req.id)) == 1

    def test_unknown_requirement(self, service, actor):
        with pytest.raises(RequirementNotFoundError):
            service.add_comment("nope", "hello", actor)

    def test_delete_removes_comments(self, service, repo, make_requirement, actor):
        req = make_requirement()
        service.add_comment(req.id, "Soon gone", actor)
        service.delete_requirement(req.id)
        assert repo.list_comments(req.id) == []
