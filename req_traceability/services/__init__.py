"""Services — normalizer, hierarchy, allocator, history, import, matrix."""

from req_traceability.services.row_normalizer import RowNormalizer, normalize_status
from req_traceability.services.hierarchy import HierarchyReconstructor, build_tree
from req_traceability.services.id_allocator import IdentifierAllocator
from req_traceability.services.history import HistoryRecorder
from req_traceability.services.requirement_service import RequirementService
from req_traceability.services.import_service import ImportOrchestrator
from req_traceability.services.matrix import TraceabilityMatrixBuilder
from req_traceability.services.spreadsheet_reader import read_requirement_rows

__all__ = [
    "RowNormalizer",
    "normalize_status",
    "HierarchyReconstructor",
    "build_tree",
    "IdentifierAllocator",
    "HistoryRecorder",
    "RequirementService",
    "ImportOrchestrator",
    "TraceabilityMatrixBuilder",
    "read_requirement_rows",
]
