"""
Requirements Traceability — Main Entry Point

Import a workbook into a project (CLI):
    python -m req_traceability import path/to/requirements.xlsx --project <id> --actor <user>

Print the traceability matrix of a project:
    python -m req_traceability matrix --project <id>

Or import and run programmatically:
    from req_traceability.main import run_import
    result = run_import("path/to/requirements.xlsx", project_id="...", actor="...")
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from req_traceability.config import get_settings
from req_traceability.errors import ImportValidationError, TraceabilityError
from req_traceability.models.enums import RowLayout
from req_traceability.models.schemas import ImportResult, MatrixRow, Project
from req_traceability.persistence import RequirementRepository, get_repository
from req_traceability.services.import_service import ImportOrchestrator
from req_traceability.services.matrix import TraceabilityMatrixBuilder
from req_traceability.utils.logger import setup_logging

logger = logging.getLogger(__name__)


def _ensure_mock_project(repo: RequirementRepository, project_id: str) -> None:
    # the in-memory store starts empty, so the CLI registers the project itself
    if get_settings().mock_mode and repo.get_project(project_id) is None:
        logger.info(f"[MOCK] Registering project {project_id}")
        repo.save_project(Project(id=project_id, name=project_id))


def run_import(
    file_path: str,
    project_id: str,
    actor: str,
    layout: RowLayout | None = None,
    repository: RequirementRepository | None = None,
) -> ImportResult:
    """Import a workbook and return the ImportResult."""
    repo = repository or get_repository()
    _ensure_mock_project(repo, project_id)

    logger.info("=" * 60)
    logger.info("  REQUIREMENTS IMPORT")
    logger.info(f"  File: {file_path} | Project: {project_id} | Actor: {actor}")
    logger.info("=" * 60)

    result = ImportOrchestrator(repo).import_workbook(
        file_path, project_id, actor, expected_layout=layout
    )
    _print_summary(result)
    return result


def run_matrix(project_id: str, repository: RequirementRepository | None = None) -> list[MatrixRow]:
    """Build the traceability matrix of a project."""
    repo = repository or get_repository()
    _ensure_mock_project(repo, project_id)
    return TraceabilityMatrixBuilder(repo).build_matrix(project_id)


def _print_summary(result: ImportResult) -> None:
    """Log a human-readable summary of the import."""
    logger.info("")
    logger.info("-" * 60)
    logger.info("  IMPORT RESULT SUMMARY")
    logger.info("-" * 60)
    logger.info(f"  Imported:       {result.success_count}")
    logger.info(f"  Failed:         {result.failed_count}")
    for error in result.errors:
        logger.info(f"    - {error}")
    logger.info("-" * 60)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="req_traceability")
    sub = parser.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Import requirements from an .xlsx workbook")
    imp.add_argument("file")
    imp.add_argument("--project", required=True)
    imp.add_argument("--actor", required=True)
    imp.add_argument(
        "--layout",
        choices=[l.value.lower() for l in RowLayout],
        help="Reject the file unless it has this layout",
    )

    mat = sub.add_parser("matrix", help="Print the traceability matrix as JSON")
    mat.add_argument("--project", required=True)
    return parser


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    setup_logging(settings.log_level)
    args = _build_parser().parse_args(argv)

    try:
        if args.command == "import":
            layout = RowLayout(args.layout.upper()) if args.layout else None
            result = run_import(args.file, args.project, args.actor, layout=layout)
            return 0 if result.failed_count == 0 else 1

        matrix = run_matrix(args.project)
        print(json.dumps([row.model_dump(mode="json") for row in matrix], indent=2))
        return 0
    except ImportValidationError as e:
        logger.error(f"{e}:")
        for error in e.errors:
            logger.error(f"  {error}")
        return 2
    except TraceabilityError as e:
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
