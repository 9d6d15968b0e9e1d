"""Shared fixtures: an in-memory store seeded with two projects and a user."""

import pytest

from req_traceability.config import Settings
from req_traceability.models.schemas import Project, RequirementCreate, User
from req_traceability.persistence.requirement_repository import InMemoryRequirementRepository
from req_traceability.services.id_allocator import IdentifierAllocator
from req_traceability.services.import_service import ImportOrchestrator
from req_traceability.services.matrix import TraceabilityMatrixBuilder
from req_traceability.services.requirement_service import RequirementService


@pytest.fixture
def project_id() -> str:
    return "a1b2c3d4-e5f6-7890-abcd-ef1234567890"


@pytest.fixture
def other_project_id() -> str:
    return "ffee0011-2233-4455-6677-8899aabbccdd"


@pytest.fixture
def actor() -> str:
    return "user-1"


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def repo(project_id, other_project_id, actor) -> InMemoryRequirementRepository:
    r = InMemoryRequirementRepository()
    r.save_project(Project(id=project_id, name="Portal Revamp"))
    r.save_project(Project(id=other_project_id, name="Billing"))
    r.save_user(User(id=actor, name="Ada Lovelace", email="ada@example.com"))
    return r


@pytest.fixture
def allocator(repo, settings) -> IdentifierAllocator:
    return IdentifierAllocator(repo, settings=settings)


@pytest.fixture
def service(repo, allocator) -> RequirementService:
    return RequirementService(repo, allocator=allocator)


@pytest.fixture
def orchestrator(repo, service) -> ImportOrchestrator:
    return ImportOrchestrator(repo, service=service)


@pytest.fixture
def matrix_builder(repo) -> TraceabilityMatrixBuilder:
    return TraceabilityMatrixBuilder(repo)


@pytest.fixture
def make_requirement(service, project_id, actor):
    """Create a requirement in the default project with minimal fields."""

    def _make(title: str = "Login", **fields):
        pid = fields.pop("project_id", project_id)
        return service.create_requirement(pid, RequirementCreate(title=title, **fields), actor)

    return _make
