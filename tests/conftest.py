import pytest

import typstchat.persistence as persistence
from fixtures.fakes import FakeRenderer
from typstchat.persistence import InMemoryTranscriptStore


@pytest.fixture
def store() -> InMemoryTranscriptStore:
    return InMemoryTranscriptStore()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture(autouse=True)
def _reset_store_instance():
    persistence._store_instance = None
    yield
    persistence._store_instance = None
