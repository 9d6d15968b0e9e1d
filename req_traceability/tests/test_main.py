"""
Tests: command-line entry point (mock mode, in-memory store).

Run with:
    pytest req_traceability/tests/test_main.py -v
"""

import json

import pytest
from openpyxl import Workbook

from req_traceability import main as cli
from req_traceability.persistence import InMemoryRequirementRepository


def _write(path, rows):
    wb = Workbook()
    for row in rows:
        wb.active.append(row)
    wb.save(path)
    return str(path)


@pytest.fixture
def shared_repo(monkeypatch):
    repo = InMemoryRequirementRepository()
    monkeypatch.setattr(cli, "get_repository", lambda: repo)
    return repo


class TestCli:
    def test_import_then_matrix(self, shared_repo, tmp_path, capsys):
        path = _write(tmp_path / "reqs.xlsx", [
            ["SN", "Main Module", "Level", "Item", "Description"],
            ["1", "Auth", 0, "Authentication", "All auth"],
            ["1.1", "Auth", 1, "Login", "Password login"],
        ])

        assert cli.main(["import", path, "--project", "proj-0001", "--actor", "u1"]) == 0
        assert shared_repo.count_requirements("proj-0001") == 2

        capsys.readouterr()
        assert cli.main(["matrix", "--project", "proj-0001"]) == 0
        out = capsys.readouterr().out
        printed = json.loads(out[out.index("[\n"):])
        assert [row["requirement_id"] for row in printed] == ["REQ-PROJ-000-001", "REQ-PROJ-000-002"]

    def test_validation_failure_exit_code(self, shared_repo, tmp_path):
        path = _write(tmp_path / "bad.xlsx", [
            ["Requirement ID", "Title", "Description", "Type"],
            [None, "Thing", "x", "EPIC"],
        ])
        assert cli.main(["import", path, "--project", "p1", "--actor", "u1"]) == 2
        assert shared_repo.count_requirements("p1") == 0

    def test_layout_option(self, shared_repo, tmp_path):
        path = _write(tmp_path / "flat.xlsx", [["Requirement ID", "Title"], [None, "Thing"]])
        code = cli.main(["import", path, "--project", "p1", "--actor", "u1", "--layout", "hierarchical"])
        assert code == 2
