"""Persistence — MongoClient, RequirementRepository and its backends."""

from req_traceability.config import get_settings
from req_traceability.persistence.mongo_client import MongoClient
from req_traceability.persistence.mongo_repository import MongoRequirementRepository
from req_traceability.persistence.requirement_repository import (
    InMemoryRequirementRepository,
    InsertOutcome,
    RequirementRepository,
)


def get_repository() -> RequirementRepository:
    """Build the repository selected by settings (in-memory in mock mode)."""
    settings = get_settings()
    if settings.mock_mode:
        return InMemoryRequirementRepository()
    repo = MongoRequirementRepository(MongoClient().get_database())
    repo.ensure_indexes()
    return repo


__all__ = [
    "MongoClient",
    "RequirementRepository",
    "InMemoryRequirementRepository",
    "MongoRequirementRepository",
    "InsertOutcome",
    "get_repository",
]
