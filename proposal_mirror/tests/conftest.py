import pytest

from ..services.database import Database
from ..services.embeddings import EmbeddingService
from ..services.repository import ProposalRepository
from .fixtures import FakeSentenceModel


@pytest.fixture
def db():
    """Fresh in-memory SQLite store with the schema applied."""
    database = Database.from_url("sqlite:///:memory:")
    database.initialize_schema()
    yield database
    database.close()


@pytest.fixture
def repository(db):
    return ProposalRepository(db)


@pytest.fixture
def fake_model():
    return FakeSentenceModel()


@pytest.fixture
def embeddings(fake_model):
    service = EmbeddingService(model_loader=lambda name: fake_model)
    yield service
    service.close()
